from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from asr_relay.config import require_api_key, settings
from asr_relay.logging_config import setup_logging
from asr_relay.middleware.correlation import CorrelationIdMiddleware
from asr_relay.routers import health, relay

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_json)
    require_api_key(settings)
    logger.info(
        "asr_relay_starting",
        environment=settings.environment,
        relay_path=settings.relay_ws_path,
        model=settings.asr_model,
    )
    yield
    logger.info("asr_relay_shutting_down")


app = FastAPI(
    title="ASR Relay",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(CorrelationIdMiddleware)

app.include_router(health.router)
app.include_router(relay.router)
