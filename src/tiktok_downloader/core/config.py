"""Application configuration utilities.

Settings are loaded from environment variables (prefix ``TTD_``) and an
optional ``.env`` file. The listen port also honors the conventional ``PORT``.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_SOURCES: frozenset[str] = frozenset({"tikwm", "tiklydown", "ytdlp"})

BROWSER_USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


class Settings(BaseSettings):
    """Typed application settings loaded from the environment.

    Notes
    -----
    - ``sources`` lists resolver endpoints by name, in the order they are tried.
      Names must come from ``KNOWN_SOURCES``; ``"ytdlp"`` enables a local
      yt-dlp extraction step and is off by default.
    - ``resolver_timeout`` bounds each endpoint attempt separately; the whole
      resolution may take up to ``len(sources) * resolver_timeout``.
    - ``media_timeout`` bounds connection and each read of the media stream,
      not the full transfer.
    """

    model_config = SettingsConfigDict(env_prefix="TTD_", env_file=".env", extra="ignore")

    app_name: str = Field(default="TikTok Downloader", description="Application display name")
    debug: bool = Field(default=False, description="Enable debug mode")
    host: str = Field(default="0.0.0.0", description="Interface uvicorn binds to")
    port: int = Field(
        default=3000,
        validation_alias=AliasChoices("PORT", "TTD_PORT"),
        description="Listen port",
    )
    cors_origins: list[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")

    sources: list[str] = Field(
        default_factory=lambda: ["tikwm", "tiklydown"],
        description="Resolver endpoints in priority order",
    )
    resolver_timeout: float = Field(default=15.0, gt=0, description="Per-endpoint lookup timeout (s)")
    media_timeout: float = Field(default=60.0, gt=0, description="Media stream connect/read timeout (s)")
    user_agent: str = Field(default=BROWSER_USER_AGENT, description="User-Agent sent upstream")
    media_referer: str = Field(
        default="https://www.tiktok.com/",
        description="Referer sent to the media origin to pass hotlink protection",
    )
    chunk_size: int = Field(default=64 * 1024, gt=0, description="Relay read size in bytes")

    @field_validator("sources")
    @classmethod
    def _check_sources(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("At least one resolver source is required")
        unknown: list[str] = [name for name in value if name not in KNOWN_SOURCES]
        if unknown:
            raise ValueError(f"Unknown resolver source(s): {', '.join(unknown)}")
        if len(set(value)) != len(value):
            raise ValueError("Resolver sources must not repeat")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache application settings.

    Notes
    -----
    - Cached with ``functools.lru_cache(maxsize=1)``; tests call
      ``get_settings.cache_clear()`` after changing the environment.
    """

    return Settings()
