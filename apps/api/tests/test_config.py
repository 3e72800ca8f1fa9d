import pytest
from fastapi.testclient import TestClient

from asr_relay import main
from asr_relay.config import Settings, require_api_key, settings
from asr_relay.errors import MissingAPIKeyError


def test_missing_api_key_is_fatal():
    with pytest.raises(MissingAPIKeyError):
        require_api_key(Settings(dashscope_api_key="   ", _env_file=None))


def test_api_key_is_trimmed():
    assert require_api_key(Settings(dashscope_api_key=" sk-1 ", _env_file=None)) == "sk-1"


def test_defaults_match_upstream_protocol(monkeypatch):
    monkeypatch.delenv("SAMPLE_RATE", raising=False)
    config = Settings(_env_file=None)
    assert config.upstream_url == "wss://dashscope.aliyuncs.com/api-ws/v1/inference/"
    assert config.asr_model == "paraformer-realtime-v2"
    assert config.sample_rate == 16000
    assert config.language_hints == ["zh"]
    assert config.task_start_timeout_seconds == 60.0


def test_language_hints_from_environment(monkeypatch):
    monkeypatch.setenv("LANGUAGE_HINTS", '["zh", "en"]')
    assert Settings(_env_file=None).language_hints == ["zh", "en"]


def test_server_refuses_to_start_without_api_key(monkeypatch):
    monkeypatch.setattr(settings, "dashscope_api_key", "")
    monkeypatch.setattr(main, "setup_logging", lambda *args, **kwargs: None)

    with pytest.raises(MissingAPIKeyError):
        with TestClient(main.app):
            pass
