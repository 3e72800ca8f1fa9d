"""In-memory stand-ins for the two sides of a relay session."""

import asyncio
import uuid

from asr_relay.errors import DownstreamClosedError, UpstreamClosedError
from asr_relay.schemas.events import Event, RecognitionParameters
from asr_relay.services.upstream_session import UpstreamConfig


def make_event(event: str, task_id: str | None = None, **fields) -> Event:
    """Build an inbound event the way the upstream service shapes it."""
    header = {"event": event, "task_id": task_id, "attributes": {}}
    payload: dict = {}
    if "text" in fields:
        payload["output"] = {
            "sentence": {"begin_time": 170, "end_time": None, "text": fields["text"], "words": []}
        }
    if "error_message" in fields:
        header["error_code"] = "CLIENT_ERROR"
        header["error_message"] = fields["error_message"]
    return Event.model_validate({"header": header, "payload": payload})


class FakeUpstreamSession:
    """In-memory upstream that replays scripted events.

    ``on_run_task`` events are delivered as soon as run-task is sent;
    ``on_audio`` maps the n-th audio chunk (0-based) to the events it triggers.
    A ``None`` entry ends the event stream like a dropped connection.
    """

    def __init__(self, on_run_task=None, on_audio=None, fail_audio: bool = False) -> None:
        self.on_run_task = on_run_task if on_run_task is not None else ["task-started"]
        self.on_audio = on_audio or {}
        self.fail_audio = fail_audio
        self.sent_actions: list[tuple[str, str]] = []
        self.audio: list[bytes] = []
        self.timeline: list[str] = []
        self.close_calls = 0
        self.task_id: str | None = None
        self._inbox: asyncio.Queue | None = None

    @property
    def inbox(self) -> asyncio.Queue:
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        return self._inbox

    def push(self, item) -> None:
        if isinstance(item, str):
            item = make_event(item, self.task_id)
        self.inbox.put_nowait(item)

    async def send_run_task(self, params: RecognitionParameters) -> str:
        self.task_id = str(uuid.uuid4())
        self.sent_actions.append(("run-task", self.task_id))
        for item in self.on_run_task:
            self.push(item)
        return self.task_id

    async def send_finish_task(self, task_id: str) -> None:
        self.sent_actions.append(("finish-task", task_id))

    async def send_audio(self, chunk: bytes) -> None:
        if self.fail_audio:
            raise UpstreamClosedError("upstream went away")
        index = len(self.audio)
        self.audio.append(chunk)
        self.timeline.append("audio")
        for item in self.on_audio.get(index, []):
            self.push(item)

    async def events(self):
        while True:
            item = await self.inbox.get()
            if item is None:
                return
            self.timeline.append(f"event:{item.header.event}")
            yield item

    async def close(self) -> None:
        self.close_calls += 1


class FakeDownstream:
    """Audio source fed from a queue; ``None`` simulates a client disconnect."""

    def __init__(self, chunks=None) -> None:
        self._initial = list(chunks or [])
        self._queue: asyncio.Queue | None = None
        self.emitted: list[str] = []
        self.close_calls: list[tuple[int, str | None]] = []
        self.cancelled_reads = 0

    @property
    def queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
            for chunk in self._initial:
                self._queue.put_nowait(chunk)
        return self._queue

    async def receive_audio(self) -> bytes:
        try:
            chunk = await self.queue.get()
        except asyncio.CancelledError:
            self.cancelled_reads += 1
            raise
        if chunk is None:
            raise DownstreamClosedError("client disconnected")
        return chunk

    async def emit_result(self, text: str) -> None:
        self.emitted.append(text)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_calls.append((code, reason))


def connector_for(upstream):
    async def _connect(config: UpstreamConfig):
        return upstream

    return _connect


