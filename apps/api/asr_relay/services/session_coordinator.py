"""
Relay session state machine.

One coordinator drives one client session:

    connecting -> awaiting_task_started -> forwarding -> finishing -> closed

with ``failed`` reachable from connecting (dial error) and from
awaiting_task_started (no task-started inside the window).

Two activities run concurrently. The foreground sends run-task, waits for
task-started and then copies downstream audio upstream. A background listener
consumes upstream events and dispatches them. They only talk through two
one-shot futures: ``task_started`` and ``task_done``.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Protocol

import structlog

from asr_relay.errors import (
    DownstreamClosedError,
    TaskStartTimeout,
    UpstreamClosedError,
    UpstreamConnectError,
)
from asr_relay.schemas.events import Event, InboundEventType, RecognitionParameters
from asr_relay.services.upstream_session import UpstreamConfig, UpstreamSession

logger = structlog.get_logger()

TASK_START_TIMEOUT_SECONDS = 60.0


class SessionState(str, Enum):
    CONNECTING = "connecting"
    AWAITING_TASK_STARTED = "awaiting_task_started"
    FORWARDING = "forwarding"
    FINISHING = "finishing"
    CLOSED = "closed"
    FAILED = "failed"


class SessionOutcome(str, Enum):
    TASK_FINISHED = "task_finished"
    TASK_FAILED = "task_failed"
    DOWNSTREAM_CLOSED = "downstream_closed"
    UPSTREAM_CLOSED = "upstream_closed"
    START_TIMEOUT = "start_timeout"
    CONNECT_FAILED = "connect_failed"
    INTERNAL_ERROR = "internal_error"


# Close code and reason sent to a still-connected local client.
CLIENT_CLOSE_FRAMES: dict[SessionOutcome, tuple[int, str]] = {
    SessionOutcome.TASK_FINISHED: (1000, "task finished"),
    SessionOutcome.DOWNSTREAM_CLOSED: (1000, "client closed"),
    SessionOutcome.TASK_FAILED: (1011, "recognition task failed"),
    SessionOutcome.UPSTREAM_CLOSED: (1011, "upstream connection lost"),
    SessionOutcome.START_TIMEOUT: (1011, "timed out waiting for task start"),
    SessionOutcome.CONNECT_FAILED: (1013, "upstream unavailable"),
    SessionOutcome.INTERNAL_ERROR: (1011, "internal error"),
}


class AudioSource(Protocol):
    async def receive_audio(self) -> bytes: ...

    async def emit_result(self, text: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


UpstreamConnector = Callable[[UpstreamConfig], Awaitable[UpstreamSession]]


class SessionCoordinator:
    def __init__(
        self,
        downstream: AudioSource,
        upstream_config: UpstreamConfig,
        params: RecognitionParameters,
        connector: UpstreamConnector = UpstreamSession.connect,
        task_start_timeout: float = TASK_START_TIMEOUT_SECONDS,
        finish_drain_timeout: float = 0.0,
    ) -> None:
        self.downstream = downstream
        self.upstream_config = upstream_config
        self.params = params
        self.connector = connector
        self.task_start_timeout = task_start_timeout
        self.finish_drain_timeout = finish_drain_timeout

        self.state = SessionState.CONNECTING
        self.task_id: str | None = None
        self.upstream: UpstreamSession | None = None

        self._task_started: asyncio.Future[None] | None = None
        self._task_done: asyncio.Future[SessionOutcome] | None = None
        self._listener: asyncio.Task | None = None
        self._finish_sent = False

    async def run(self) -> SessionOutcome:
        """Drive the session to completion; both connections are closed on return."""
        loop = asyncio.get_running_loop()
        self._task_started = loop.create_future()
        self._task_done = loop.create_future()
        # Stays INTERNAL_ERROR if _run raises or the session is cancelled.
        outcome = SessionOutcome.INTERNAL_ERROR
        try:
            outcome = await self._run()
        except BaseException:
            self._set_state(SessionState.FAILED)
            raise
        finally:
            await self._release(outcome)
        return outcome

    async def wait_for_task_started(self) -> bool:
        """Block until task-started, a terminal event, or the start timeout.

        Returns ``True`` once the task has started and ``False`` if the task
        ended before starting. Raises ``TaskStartTimeout`` otherwise.
        """
        done, _ = await asyncio.wait(
            {self._task_started, self._task_done},
            timeout=self.task_start_timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if self._task_started in done:
            logger.info("task_started", task_id=self.task_id)
            return True
        if self._task_done in done:
            return False
        raise TaskStartTimeout(
            f"no task-started within {self.task_start_timeout:g}s for task {self.task_id}"
        )

    async def _run(self) -> SessionOutcome:
        try:
            self.upstream = await self.connector(self.upstream_config)
        except UpstreamConnectError as exc:
            logger.error("upstream_connect_failed", error=str(exc))
            self._set_state(SessionState.FAILED)
            return SessionOutcome.CONNECT_FAILED

        self._listener = asyncio.create_task(self._listen(self.upstream))
        self._set_state(SessionState.AWAITING_TASK_STARTED)

        try:
            self.task_id = await self.upstream.send_run_task(self.params)
        except UpstreamClosedError as exc:
            logger.error("upstream_run_task_failed", error=str(exc))
            self._set_state(SessionState.FAILED)
            return SessionOutcome.UPSTREAM_CLOSED
        structlog.contextvars.bind_contextvars(task_id=self.task_id)

        try:
            started = await self.wait_for_task_started()
        except TaskStartTimeout as exc:
            logger.error("task_start_timeout", error=str(exc))
            self._set_state(SessionState.FAILED)
            return SessionOutcome.START_TIMEOUT
        if not started:
            return self._task_done.result()

        self._set_state(SessionState.FORWARDING)
        return await self._forward()

    async def _forward(self) -> SessionOutcome:
        while True:
            read = asyncio.create_task(self.downstream.receive_audio())
            try:
                done, _ = await asyncio.wait(
                    {read, self._task_done}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                if not read.done():
                    read.cancel()
            if read not in done:
                with contextlib.suppress(asyncio.CancelledError, DownstreamClosedError):
                    await read
                return self._task_done.result()

            try:
                chunk = read.result()
            except DownstreamClosedError as exc:
                logger.info("downstream_read_ended", error=str(exc))
                return await self._finish(SessionOutcome.DOWNSTREAM_CLOSED)

            if self._task_done.done():
                return self._task_done.result()

            try:
                await self.upstream.send_audio(chunk)
            except UpstreamClosedError as exc:
                logger.error("upstream_audio_write_failed", error=str(exc))
                return await self._finish(SessionOutcome.UPSTREAM_CLOSED)

    async def _finish(self, outcome: SessionOutcome) -> SessionOutcome:
        self._set_state(SessionState.FINISHING)
        await self._send_finish_task()
        if self.finish_drain_timeout <= 0:
            return outcome
        try:
            return await asyncio.wait_for(
                asyncio.shield(self._task_done), timeout=self.finish_drain_timeout
            )
        except TimeoutError:
            logger.warning("task_finish_drain_timeout", timeout=self.finish_drain_timeout)
            return outcome

    async def _send_finish_task(self) -> None:
        if self._finish_sent or self.upstream is None or self.task_id is None:
            return
        self._finish_sent = True
        try:
            await self.upstream.send_finish_task(self.task_id)
        except UpstreamClosedError as exc:
            logger.warning("upstream_finish_task_failed", error=str(exc))

    async def _listen(self, upstream: UpstreamSession) -> None:
        try:
            async for event in upstream.events():
                if await self.handle_event(event):
                    return
        finally:
            # No-op when a terminal event already resolved task_done.
            self._signal_done(SessionOutcome.UPSTREAM_CLOSED)

    async def handle_event(self, event: Event) -> bool:
        """Dispatch one upstream event; returns ``True`` when it is terminal."""
        # The listener starts before task_id is bound in the foreground context.
        log = logger.bind(task_id=self.task_id)
        event_type = event.event_type
        if event_type is InboundEventType.TASK_STARTED:
            if not self._task_started.done():
                self._task_started.set_result(None)
            return False

        if event_type is InboundEventType.RESULT_GENERATED:
            text = event.sentence_text
            if not text:
                return False
            log.info("recognition_result", text=text)
            try:
                await self.downstream.emit_result(text)
            except DownstreamClosedError as exc:
                log.warning("downstream_emit_failed", error=str(exc))
            return False

        if event_type is InboundEventType.TASK_FINISHED:
            log.info("upstream_task_finished")
            self._signal_done(SessionOutcome.TASK_FINISHED)
            return True

        if event_type is InboundEventType.TASK_FAILED:
            if event.header.error_message:
                log.error(
                    "upstream_task_failed",
                    error_message=event.header.error_message,
                    error_code=event.header.error_code,
                )
            else:
                log.error("upstream_task_failed", error_message="unknown reason")
            self._signal_done(SessionOutcome.TASK_FAILED)
            return True

        log.warning("upstream_unrecognized_event", event_name=event.header.event)
        return False

    def _signal_done(self, outcome: SessionOutcome) -> None:
        if not self._task_done.done():
            self._task_done.set_result(outcome)

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        logger.debug("session_state_changed", previous=self.state.value, current=state.value)
        self.state = state

    async def _release(self, outcome: SessionOutcome) -> None:
        if self._listener is not None:
            self._listener.cancel()
        if self.upstream is not None:
            await self.upstream.close()

        code, reason = CLIENT_CLOSE_FRAMES[outcome]
        await self.downstream.close(code=code, reason=reason)

        if self._listener is not None:
            results = await asyncio.gather(self._listener, return_exceptions=True)
            error = results[0]
            if isinstance(error, Exception):
                logger.error("upstream_listener_crashed", error=repr(error))

        if self.state is not SessionState.FAILED:
            self._set_state(SessionState.CLOSED)
        structlog.contextvars.unbind_contextvars("task_id")
        logger.info("session_closed", outcome=outcome.value, state=self.state.value)
