"""Configuration management for hudwatch."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Mapping
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DAEMON_ENABLED_ENV = "HUDWATCH_DAEMON_ENABLED"
DAEMON_SOCKET_ENV = "HUDWATCH_DAEMON_SOCKET"
_TRUTHY = {"1", "true", "yes"}


class HudSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    state_dir: Path = Field(default=Path("~/.hudwatch"), validation_alias="HUDWATCH_STATE_DIR")
    launch_agents_dir: Path = Field(
        default=Path("~/Library/LaunchAgents"), validation_alias="HUDWATCH_LAUNCH_AGENTS_DIR"
    )
    daemon_socket: Path | None = Field(default=None, validation_alias=DAEMON_SOCKET_ENV)
    agent_binary: Path | None = Field(default=None, validation_alias="HUDWATCH_AGENT_BINARY")
    launchctl_path: Path = Field(default=Path("/bin/launchctl"), validation_alias="HUDWATCH_LAUNCHCTL")
    service_label: str = Field(default="dev.hudwatch.agent", validation_alias="HUDWATCH_SERVICE_LABEL")
    associated_bundle_ids: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(), validation_alias="HUDWATCH_ASSOCIATED_BUNDLE_IDS"
    )
    log_level: str = Field(default="INFO", validation_alias="HUDWATCH_LOG_LEVEL")
    debug: bool = Field(default=False, validation_alias="HUDWATCH_DEBUG")
    agent_log_level: str = Field(default="debug", validation_alias="HUDWATCH_AGENT_LOG")

    probe_timeout: float = Field(default=0.6, validation_alias="HUDWATCH_PROBE_TIMEOUT")
    health_attempts: int = Field(default=6, validation_alias="HUDWATCH_HEALTH_ATTEMPTS")
    health_retry_delay: float = Field(default=0.2, validation_alias="HUDWATCH_HEALTH_RETRY_DELAY")
    throttle_interval: int = Field(default=10, validation_alias="HUDWATCH_THROTTLE_INTERVAL")

    thinking_stale_after: float = Field(default=30.0, validation_alias="HUDWATCH_THINKING_STALE_AFTER")
    ready_stale_after: float = Field(default=120.0, validation_alias="HUDWATCH_READY_STALE_AFTER")
    cooling_grace: float = Field(default=8.0, validation_alias="HUDWATCH_COOLING_GRACE")
    flash_duration: float = Field(default=1.4, validation_alias="HUDWATCH_FLASH_DURATION")
    tick_interval: float = Field(default=1.0, validation_alias="HUDWATCH_TICK_INTERVAL")

    projects_file: Path | None = Field(default=None, validation_alias="HUDWATCH_PROJECTS_FILE")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "HUDWATCH_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("associated_bundle_ids", mode="before")
    @classmethod
    def _parse_bundle_ids(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(str(item).strip() for item in value if str(item).strip())
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        raise TypeError("HUDWATCH_ASSOCIATED_BUNDLE_IDS must be a list or a comma-separated string")

    @field_validator("health_attempts")
    @classmethod
    def _validate_health_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("HUDWATCH_HEALTH_ATTEMPTS must be >= 1")
        return value

    @field_validator(
        "probe_timeout",
        "health_retry_delay",
        "thinking_stale_after",
        "ready_stale_after",
        "cooling_grace",
        "flash_duration",
        "tick_interval",
    )
    @classmethod
    def _validate_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("durations must be >= 0")
        return value

    @property
    def socket_path(self) -> Path:
        return self.daemon_socket or self.state_dir / "daemon.sock"

    @property
    def sessions_file(self) -> Path:
        return self.state_dir / "sessions.json"

    @property
    def lock_dir(self) -> Path:
        return self.state_dir / "locks"

    @property
    def order_file(self) -> Path:
        return self.state_dir / "project-order.json"

    @property
    def log_dir(self) -> Path:
        return self.state_dir / "daemon"

    @property
    def resolved_projects_file(self) -> Path:
        return self.projects_file or self.state_dir / "projects.yaml"

    def descriptor_environment(self) -> dict[str, str]:
        """Environment overrides propagated into the service descriptor in debug mode."""

        if not self.debug:
            return {}
        return {"HUDWATCH_DEBUG_LOG": "1", "HUDWATCH_AGENT_LOG": self.agent_log_level}


def daemon_enabled(environ: Mapping[str, str] | None = None) -> bool:
    """Return whether the daemon has been enabled for this process."""

    source = os.environ if environ is None else environ
    return source.get(DAEMON_ENABLED_ENV, "").strip().lower() in _TRUTHY


@lru_cache(maxsize=1)
def get_settings() -> HudSettings:
    """Return cached settings instance."""

    settings = HudSettings()
    settings.state_dir = settings.state_dir.expanduser().resolve()
    settings.launch_agents_dir = settings.launch_agents_dir.expanduser().resolve()
    if settings.daemon_socket is not None:
        settings.daemon_socket = settings.daemon_socket.expanduser()
    if settings.agent_binary is not None:
        settings.agent_binary = settings.agent_binary.expanduser()
    if settings.projects_file is not None:
        settings.projects_file = settings.projects_file.expanduser().resolve()
    return settings


__all__ = [
    "DAEMON_ENABLED_ENV",
    "DAEMON_SOCKET_ENV",
    "HudSettings",
    "daemon_enabled",
    "get_settings",
]
