from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the agent stream server."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # FastAPI configuration
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8080, alias="APP_PORT")
    debug: bool = Field(default=False, alias="DEBUG")
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"], alias="CORS_ALLOW_ORIGINS")

    # Bearer gate in front of the agent endpoints
    require_auth: bool = Field(default=True, alias="REQUIRE_AUTH")
    api_bearer_token: str | None = Field(default=None, alias="API_BEARER_TOKEN")

    # Which backend produces the replies
    generation_backend: Literal["scripted", "langgraph"] = Field(
        default="scripted", alias="GENERATION_BACKEND"
    )
    google_api_key: str | None = Field(default=None, alias="GOOGLE_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-flash", alias="GEMINI_MODEL")
    system_prompt: str | None = Field(default=None, alias="SYSTEM_PROMPT")

    # Streaming behaviour
    stream_token_delay: float = Field(default=0.02, ge=0, alias="STREAM_TOKEN_DELAY")
    # 0 disables inline re-chunking of text fragments
    stream_chunk_size: int = Field(default=0, ge=0, alias="STREAM_CHUNK_SIZE")
    stop_grace_seconds: float = Field(default=5.0, ge=0, alias="STOP_GRACE_SECONDS")


@lru_cache
def get_settings() -> Settings:
    """Return memoized settings so multiple imports share a single instance."""

    return Settings()  # type: ignore[call-arg]
