from functools import lru_cache
from typing import Dict, Optional

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProxySettings(BaseSettings):
    """Process-wide configuration, read once at startup and never mutated."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
        protected_namespaces=(),
    )

    upstream_base_url: str = "https://integrate.api.nvidia.com/v1"
    upstream_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("upstream_api_key", "UPSTREAM_API_KEY", "NIM_KEY"),
    )
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    # DeepSeek v3.2 context window and the slack kept below it
    max_context_tokens: int = 8192
    token_buffer: int = 50
    max_output_tokens: Optional[int] = None
    default_temperature: float = 0.7
    request_timeout: float = 20.0

    model_map: Dict[str, str] = Field(
        default_factory=lambda: {"deepseek_v3_2": "deepseek-ai/deepseek-v3.2"}
    )
    default_model: str = "deepseek_v3_2"
    enforce_model_allowlist: bool = False
    model_owner: str = "deepseek"

    chunking_enabled: bool = True
    streaming_enabled: bool = True

    @model_validator(mode="after")
    def _check_consistency(self) -> "ProxySettings":
        if self.token_buffer < 0:
            raise ValueError("token_buffer must not be negative")
        if self.token_buffer >= self.max_context_tokens:
            raise ValueError("token_buffer must be smaller than max_context_tokens")
        if self.max_output_tokens is not None and self.max_output_tokens <= 0:
            raise ValueError("max_output_tokens must be positive")
        if self.enforce_model_allowlist and self.default_model not in self.model_map:
            raise ValueError(
                f"default_model '{self.default_model}' is not in model_map while the allow-list is enforced"
            )
        return self

    @property
    def output_ceiling(self) -> int:
        if self.max_output_tokens is not None:
            return self.max_output_tokens
        return self.max_context_tokens - self.token_buffer

    @property
    def completions_url(self) -> str:
        return f"{self.upstream_base_url.rstrip('/')}/chat/completions"


@lru_cache()
def get_settings() -> ProxySettings:
    return ProxySettings()
