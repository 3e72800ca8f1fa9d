import os

import pytest
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("DASHSCOPE_API_KEY", "test-key")

from asr_relay.main import app  # noqa: E402
from asr_relay.schemas.events import RecognitionParameters  # noqa: E402
from asr_relay.services.upstream_session import UpstreamConfig  # noqa: E402


@pytest.fixture
def upstream_config() -> UpstreamConfig:
    return UpstreamConfig(url="ws://127.0.0.1:1/unused", api_key="test-key")


@pytest.fixture
def recognition_params() -> RecognitionParameters:
    return RecognitionParameters()


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
