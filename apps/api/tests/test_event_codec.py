import json

import pytest

from asr_relay.errors import EventDecodeError
from asr_relay.schemas.events import InboundEventType, RecognitionParameters
from asr_relay.services.event_codec import (
    build_finish_task,
    build_run_task,
    decode_event,
    encode_event,
)

RESULT_FRAME = {
    "header": {
        "task_id": "2bf83b9a-baeb-4fda-8d9a-000000000000",
        "event": "result-generated",
        "attributes": {},
    },
    "payload": {
        "output": {
            "sentence": {
                "begin_time": 170,
                "end_time": None,
                "text": "好，我们的一个",
                "words": [
                    {"begin_time": 170, "end_time": 295, "text": "好", "punctuation": "，"},
                    {"begin_time": 295, "end_time": 503, "text": "我们", "punctuation": ""},
                ],
            }
        },
        "usage": None,
    },
}


def test_run_task_envelope_shape():
    params = RecognitionParameters(language_hints=["zh", "en"])
    body = json.loads(encode_event(build_run_task("task-1", params)))

    assert body["header"] == {"action": "run-task", "task_id": "task-1", "streaming": "duplex"}
    assert body["payload"] == {
        "task_group": "audio",
        "task": "asr",
        "function": "recognition",
        "model": "paraformer-realtime-v2",
        "parameters": {"format": "pcm", "sample_rate": 16000, "language_hints": ["zh", "en"]},
        "input": {},
    }


def test_run_task_includes_optional_parameters_when_set():
    params = RecognitionParameters(vocabulary_id="vocab-123", disfluency_removal_enabled=False)
    body = json.loads(encode_event(build_run_task("task-1", params)))

    assert body["payload"]["parameters"]["vocabulary_id"] == "vocab-123"
    assert body["payload"]["parameters"]["disfluency_removal_enabled"] is False


def test_finish_task_envelope_shape():
    body = json.loads(encode_event(build_finish_task("task-1")))

    assert body == {
        "header": {"action": "finish-task", "task_id": "task-1", "streaming": "duplex"},
        "payload": {"input": {}},
    }


def test_decode_result_generated_keeps_partial_timing():
    event = decode_event(json.dumps(RESULT_FRAME, ensure_ascii=False))

    assert event.event_type is InboundEventType.RESULT_GENERATED
    assert event.sentence_text == "好，我们的一个"
    sentence = event.payload.output.sentence
    assert sentence.end_time is None
    assert [word.punctuation for word in sentence.words] == ["，", ""]


def test_decode_task_failed_exposes_error_fields():
    event = decode_event(
        b'{"header": {"task_id": "t", "event": "task-failed", "error_code": "CLIENT_ERROR",'
        b' "error_message": "request timeout after 23 seconds.", "attributes": {}}, "payload": {}}'
    )

    assert event.event_type is InboundEventType.TASK_FAILED
    assert event.header.error_message == "request timeout after 23 seconds."
    assert event.header.error_code == "CLIENT_ERROR"
    assert event.sentence_text == ""


def test_unknown_event_maps_to_unrecognized_and_keeps_raw_name():
    event = decode_event('{"header": {"event": "task-paused"}, "payload": {}}')

    assert event.event_type is InboundEventType.UNRECOGNIZED
    assert event.header.event == "task-paused"


@pytest.mark.parametrize("raw", ["{not json", "[]", '{"header": "oops"}'])
def test_decode_rejects_malformed_frames(raw):
    with pytest.raises(EventDecodeError):
        decode_event(raw)
