"""
Local-facing side of a relay session.

``DownstreamRelay`` wraps a live client WebSocket; ``FileAudioSource`` offers the
same surface over a local audio file for offline runs.
"""

import asyncio
from collections.abc import Callable
from pathlib import Path

import structlog
from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from asr_relay.errors import DownstreamClosedError

logger = structlog.get_logger()

OriginPolicy = Callable[[str | None], bool]

POLICY_VIOLATION = 1008


def build_origin_policy(allowed_origins: list[str]) -> OriginPolicy:
    allowed = {origin.rstrip("/") for origin in allowed_origins}
    if "*" in allowed:
        return lambda origin: True

    def _check(origin: str | None) -> bool:
        # Non-browser clients send no Origin header.
        if origin is None:
            return True
        return origin.rstrip("/") in allowed

    return _check


class DownstreamRelay:
    """Binary audio in, recognized text out, over the client WebSocket."""

    def __init__(self, websocket: WebSocket, origin_policy: OriginPolicy) -> None:
        self.websocket = websocket
        self.origin_policy = origin_policy
        self._closed = False

    async def accept(self) -> bool:
        origin = self.websocket.headers.get("origin")
        if not self.origin_policy(origin):
            logger.warning("downstream_origin_rejected", origin=origin)
            await self.close(code=POLICY_VIOLATION, reason="Origin not allowed")
            return False
        await self.websocket.accept()
        logger.info("downstream_connected", origin=origin)
        return True

    async def receive_audio(self) -> bytes:
        while True:
            try:
                message = await self.websocket.receive()
            except (RuntimeError, WebSocketDisconnect) as exc:
                raise DownstreamClosedError(f"client receive failed: {exc}") from exc

            if message["type"] == "websocket.disconnect":
                raise DownstreamClosedError(f"client disconnected (code={message.get('code')})")

            chunk = message.get("bytes")
            if chunk is not None:
                return chunk
            # Text frames from the client have no meaning upstream.
            logger.warning("downstream_text_frame_ignored", size=len(message.get("text") or ""))

    async def emit_result(self, text: str) -> None:
        try:
            await self.websocket.send_text(text)
        except (RuntimeError, WebSocketDisconnect) as exc:
            raise DownstreamClosedError(f"client send failed: {exc}") from exc

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        if self.websocket.client_state == WebSocketState.DISCONNECTED:
            return
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as exc:
            logger.warning("downstream_close_failed", error=str(exc))


class FileAudioSource:
    """Reads a local audio file in fixed-size chunks, paced like a live stream."""

    def __init__(
        self,
        path: str | Path,
        chunk_size: int = 1024,
        interval_seconds: float = 0.02,
    ) -> None:
        self.path = Path(path)
        self.chunk_size = chunk_size
        self.interval_seconds = interval_seconds
        self.results: list[str] = []
        self._file = None
        self._sent_first = False
        self._closed = False

    async def accept(self) -> bool:
        self._file = self.path.open("rb")
        logger.info("file_source_opened", path=str(self.path))
        return True

    async def receive_audio(self) -> bytes:
        if self._file is None:
            raise DownstreamClosedError("audio file is not open")
        if self._sent_first and self.interval_seconds > 0:
            await asyncio.sleep(self.interval_seconds)
        chunk = self._file.read(self.chunk_size)
        if not chunk:
            raise DownstreamClosedError("end of audio file")
        self._sent_first = True
        return chunk

    async def emit_result(self, text: str) -> None:
        self.results.append(text)
        logger.info("recognition_result", text=text)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        if self._file is not None:
            self._file.close()
