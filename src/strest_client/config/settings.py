"""Settings configuration"""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StrestSettings(BaseSettings):
    """Connection settings, read from ``STREST_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="STREST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        validate_assignment=True,
    )

    # Connection
    url: str = Field(default="ws://localhost:8000/strest")
    open_timeout: float = Field(default=10.0, gt=0)
    user_agent: str = Field(default="PyStrest 2.0")

    # Keepalive
    keepalive: bool = Field(default=True)
    ping: Optional[str] = Field(default=None)
    ping_interval: float = Field(default=30.0, gt=0)
    reconnect_interval: float = Field(default=5.0, gt=0)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @field_validator("ping", mode="before")
    @classmethod
    def parse_ping(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        if not v:
            return None
        if not v.startswith("/"):
            raise ValueError("ping must be an absolute path such as '/ping'")
        return v

    @field_validator("log_format")
    @classmethod
    def check_log_format(cls, v):
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v

    @property
    def ping_enabled(self) -> bool:
        return self.keepalive and self.ping is not None


@lru_cache()
def get_settings() -> StrestSettings:
    """Get cached settings instance"""
    return StrestSettings()
