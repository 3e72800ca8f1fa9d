from enum import Enum

from pydantic import BaseModel, Field


class InboundEventType(str, Enum):
    TASK_STARTED = "task-started"
    RESULT_GENERATED = "result-generated"
    TASK_FINISHED = "task-finished"
    TASK_FAILED = "task-failed"
    UNRECOGNIZED = "unrecognized"


class OutboundAction(str, Enum):
    RUN_TASK = "run-task"
    FINISH_TASK = "finish-task"


class Header(BaseModel):
    event: str | None = None
    action: OutboundAction | None = None
    task_id: str | None = None
    streaming: str | None = None
    error_code: str | None = None
    error_message: str | None = None


class Parameters(BaseModel):
    format: str
    sample_rate: int
    language_hints: list[str] = Field(default_factory=list)
    vocabulary_id: str | None = None
    disfluency_removal_enabled: bool | None = None


class Word(BaseModel):
    begin_time: int | None = None
    # None until the recogniser finalises the word
    end_time: int | None = None
    text: str = ""
    punctuation: str = ""


class Sentence(BaseModel):
    begin_time: int | None = None
    end_time: int | None = None
    text: str = ""
    words: list[Word] = Field(default_factory=list)


class Output(BaseModel):
    sentence: Sentence | None = None


class Payload(BaseModel):
    task_group: str | None = None
    task: str | None = None
    function: str | None = None
    model: str | None = None
    parameters: Parameters | None = None
    output: Output | None = None
    input: dict = Field(default_factory=dict)


class Event(BaseModel):
    header: Header = Field(default_factory=Header)
    payload: Payload = Field(default_factory=Payload)

    @property
    def event_type(self) -> InboundEventType:
        try:
            event_type = InboundEventType(self.header.event)
        except ValueError:
            return InboundEventType.UNRECOGNIZED
        return event_type

    @property
    def sentence_text(self) -> str:
        output = self.payload.output
        if output is None or output.sentence is None:
            return ""
        return output.sentence.text


class RecognitionParameters(BaseModel):
    """Task options sent with every run-task command."""

    model: str = "paraformer-realtime-v2"
    format: str = "pcm"
    sample_rate: int = 16000
    language_hints: list[str] = Field(default_factory=lambda: ["zh"])
    vocabulary_id: str | None = None
    disfluency_removal_enabled: bool | None = None
