"""Settings via pydantic-settings with SPRINTWISE_ env prefix.

LLM credentials use validation_alias so the same unprefixed env vars
(OLLAMA_BASE_URL, OLLAMA_AUTH_USER, ...) the model host already uses
drive the Python app too.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SPRINTWISE_", env_file=".env")

    log_level: str = "info"

    # Runtime
    host: str = "0.0.0.0"
    port: int = 8000
    default_config_id: str = "default"

    # LLM (Ollama-compatible chat API)
    llm_base_url: str = Field("http://localhost:11434", validation_alias="OLLAMA_BASE_URL")
    model: str = Field("qwen2.5:7b", validation_alias="OLLAMA_MODEL")
    llm_auth_user: str = Field("", validation_alias="OLLAMA_AUTH_USER")
    llm_auth_pass: str = Field("", validation_alias="OLLAMA_AUTH_PASS")
    classifier_model: str = ""  # empty = same as model
    max_tokens: int = 4096
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds

    # Orchestration loop
    max_tool_iterations: int = 10
    token_warning_threshold: int = 25000
    stream_queue_size: int = 64
    max_sessions: int = 100

    # Tool-execution service
    tool_service_url: str = "http://localhost:3000"
    tool_service_bypass_secret: str = ""

    # Bulk remote fetches
    bulk_concurrency: int = 5
    max_retries: int = 3
    retry_delay: float = 1.0  # seconds, doubled per attempt

    @model_validator(mode="after")
    def _validate_bounds(self) -> "Settings":
        if self.max_tool_iterations < 1:
            raise ValueError("max_tool_iterations must be >= 1")
        if self.stream_queue_size < 1:
            raise ValueError("stream_queue_size must be >= 1")
        if self.bulk_concurrency < 1:
            raise ValueError("bulk_concurrency must be >= 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        return self

    @property
    def effective_classifier_model(self) -> str:
        return self.classifier_model or self.model
