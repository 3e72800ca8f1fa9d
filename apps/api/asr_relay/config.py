from pydantic_settings import BaseSettings

from asr_relay.errors import MissingAPIKeyError


class Settings(BaseSettings):
    dashscope_api_key: str = ""
    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = False
    upstream_url: str = "wss://dashscope.aliyuncs.com/api-ws/v1/inference/"
    upstream_data_inspection: bool = True
    upstream_open_timeout_seconds: float = 10.0
    relay_ws_path: str = "/ws"
    # "*" keeps the permissive behaviour; list explicit origins to lock it down
    ws_allowed_origins: list[str] = ["*"]
    asr_model: str = "paraformer-realtime-v2"
    audio_format: str = "pcm"
    sample_rate: int = 16000
    language_hints: list[str] = ["zh"]
    vocabulary_id: str | None = None
    disfluency_removal_enabled: bool | None = None
    task_start_timeout_seconds: float = 60.0

    class Config:
        env_file = ".env"


def require_api_key(config: Settings) -> str:
    api_key = config.dashscope_api_key.strip()
    if not api_key:
        raise MissingAPIKeyError("DASHSCOPE_API_KEY is not set")
    return api_key


settings = Settings()
