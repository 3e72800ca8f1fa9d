import uuid
from dataclasses import dataclass
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, WebSocket

from asr_relay.config import settings
from asr_relay.schemas.events import RecognitionParameters
from asr_relay.services.downstream_relay import DownstreamRelay, OriginPolicy, build_origin_policy
from asr_relay.services.session_coordinator import SessionCoordinator, UpstreamConnector
from asr_relay.services.upstream_session import UpstreamConfig, UpstreamSession

router = APIRouter()
logger = structlog.get_logger()


@dataclass(frozen=True)
class RelayOptions:
    upstream: UpstreamConfig
    params: RecognitionParameters
    origin_policy: OriginPolicy
    task_start_timeout: float


def get_relay_options() -> RelayOptions:
    return RelayOptions(
        upstream=UpstreamConfig(
            url=settings.upstream_url,
            api_key=settings.dashscope_api_key.strip(),
            data_inspection=settings.upstream_data_inspection,
            open_timeout=settings.upstream_open_timeout_seconds,
        ),
        params=RecognitionParameters(
            model=settings.asr_model,
            format=settings.audio_format,
            sample_rate=settings.sample_rate,
            language_hints=settings.language_hints,
            vocabulary_id=settings.vocabulary_id,
            disfluency_removal_enabled=settings.disfluency_removal_enabled,
        ),
        origin_policy=build_origin_policy(settings.ws_allowed_origins),
        task_start_timeout=settings.task_start_timeout_seconds,
    )


def get_upstream_connector() -> UpstreamConnector:
    return UpstreamSession.connect


async def relay_ws(
    websocket: WebSocket,
    options: Annotated[RelayOptions, Depends(get_relay_options)],
    connector: Annotated[UpstreamConnector, Depends(get_upstream_connector)],
):
    session_id = str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(session_id=session_id)
    try:
        downstream = DownstreamRelay(websocket, options.origin_policy)
        if not await downstream.accept():
            return

        coordinator = SessionCoordinator(
            downstream,
            options.upstream,
            options.params,
            connector=connector,
            task_start_timeout=options.task_start_timeout,
        )
        await coordinator.run()
    finally:
        structlog.contextvars.unbind_contextvars("session_id")


router.add_api_websocket_route(settings.relay_ws_path, relay_ws)
