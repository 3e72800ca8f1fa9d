import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from asr_relay.errors import EventDecodeError, UpstreamClosedError, UpstreamConnectError
from asr_relay.schemas.events import Event, RecognitionParameters
from asr_relay.services.event_codec import (
    build_finish_task,
    build_run_task,
    decode_event,
    encode_event,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class UpstreamConfig:
    url: str
    api_key: str
    data_inspection: bool = True
    open_timeout: float = 10.0

    def handshake_headers(self) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self.data_inspection:
            headers["X-DashScope-DataInspection"] = "enable"
        return headers


class UpstreamSession:
    """One WebSocket connection to the realtime recognition service."""

    def __init__(self, connection) -> None:
        self.connection = connection
        self._closed = False

    @classmethod
    async def connect(cls, config: UpstreamConfig) -> "UpstreamSession":
        if not config.api_key:
            raise UpstreamConnectError("refusing to dial upstream without an API key")
        try:
            connection = await websockets.connect(
                config.url,
                additional_headers=config.handshake_headers(),
                open_timeout=config.open_timeout,
                max_size=None,
            )
        except (InvalidHandshake, InvalidURI, OSError, TimeoutError) as exc:
            raise UpstreamConnectError(f"upstream handshake failed: {exc}") from exc
        logger.info("upstream_connected", url=config.url)
        return cls(connection)

    async def send_run_task(self, params: RecognitionParameters) -> str:
        task_id = str(uuid.uuid4())
        await self._send(encode_event(build_run_task(task_id, params)))
        logger.info("upstream_run_task_sent", task_id=task_id, model=params.model)
        return task_id

    async def send_finish_task(self, task_id: str) -> None:
        await self._send(encode_event(build_finish_task(task_id)))
        logger.info("upstream_finish_task_sent", task_id=task_id)

    async def send_audio(self, chunk: bytes) -> None:
        await self._send(chunk)

    async def events(self) -> AsyncIterator[Event]:
        """Yield decoded events until the connection closes or fails."""
        while True:
            try:
                message = await self.connection.recv()
            except ConnectionClosed as exc:
                logger.info("upstream_receive_ended", reason=str(exc))
                return
            try:
                event = decode_event(message)
            except EventDecodeError as exc:
                logger.warning("upstream_invalid_event_envelope", error=str(exc))
                continue
            yield event

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.connection.close()
        except Exception as exc:
            logger.warning("upstream_close_failed", error=str(exc))

    async def _send(self, message: str | bytes) -> None:
        try:
            await self.connection.send(message)
        except ConnectionClosed as exc:
            raise UpstreamClosedError(f"upstream connection closed: {exc}") from exc
