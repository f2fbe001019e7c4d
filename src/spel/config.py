from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DaemonSettings(BaseSettings):
    """Daemon defaults, overridable through ``SPEL_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="SPEL_")

    session: str = "default"
    headless: bool = True
    runtime_dir: str | None = None
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "DEBUG"

    # Playwright timeouts, in milliseconds
    action_timeout: int = Field(default=30000, ge=0)
    navigation_timeout: int = Field(default=60000, ge=0)

    # Client side, in seconds
    socket_timeout: float = 120.0
    start_timeout: float = 15.0

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v

    @field_validator("session", mode="before")
    @classmethod
    def strip_session(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return "default"
        return v


def load_settings(**overrides: object) -> DaemonSettings:
    """Build settings from the environment, with explicit *overrides* on top.

    ``None`` values in *overrides* are ignored so argparse namespaces can be
    passed through without clobbering environment values.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    return DaemonSettings(**values)


def get_version() -> str:
    """Return the package version string."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("spel-daemon")
    except PackageNotFoundError:
        return "0.1.0"
