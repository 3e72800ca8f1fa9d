from fastapi import APIRouter

from asr_relay.config import settings

router = APIRouter()


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "upstream_configured": bool(settings.dashscope_api_key.strip()),
    }
