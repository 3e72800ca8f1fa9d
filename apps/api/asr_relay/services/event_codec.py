"""
Wire codec for the upstream control plane.

Every control message, in both directions, is one JSON envelope of the form
``{"header": {...}, "payload": {...}}``. Outbound commands carry an ``action``,
inbound notifications carry an ``event``; both carry the ``task_id``.
"""

from pydantic import ValidationError

from asr_relay.errors import EventDecodeError
from asr_relay.schemas.events import (
    Event,
    Header,
    OutboundAction,
    Parameters,
    Payload,
    RecognitionParameters,
)

TASK_GROUP = "audio"
TASK = "asr"
FUNCTION = "recognition"
STREAMING_MODE = "duplex"


def build_run_task(task_id: str, params: RecognitionParameters) -> Event:
    return Event(
        header=Header(
            action=OutboundAction.RUN_TASK,
            task_id=task_id,
            streaming=STREAMING_MODE,
        ),
        payload=Payload(
            task_group=TASK_GROUP,
            task=TASK,
            function=FUNCTION,
            model=params.model,
            parameters=Parameters(
                format=params.format,
                sample_rate=params.sample_rate,
                language_hints=list(params.language_hints),
                vocabulary_id=params.vocabulary_id,
                disfluency_removal_enabled=params.disfluency_removal_enabled,
            ),
        ),
    )


def build_finish_task(task_id: str) -> Event:
    return Event(
        header=Header(
            action=OutboundAction.FINISH_TASK,
            task_id=task_id,
            streaming=STREAMING_MODE,
        ),
        payload=Payload(),
    )


def encode_event(event: Event) -> str:
    """Render ``event`` as the JSON text frame the upstream expects.

    Unset optional fields are dropped; ``payload.input`` is always present as
    an empty object.
    """
    return event.model_dump_json(exclude_none=True)


def decode_event(raw: str | bytes) -> Event:
    try:
        return Event.model_validate_json(raw)
    except ValidationError as exc:
        raise EventDecodeError(f"invalid event envelope: {exc}") from exc
