"""
Environment configuration for relay-worker.

Loads configuration from environment variables using pydantic-settings,
optionally layered over a YAML file.
"""

import re
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay_worker.domain.errors import ConfigError
from relay_worker.domain.value_objects import LifecycleLimits


_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}

DEFAULT_MAX_FRAME_SIZE = 64 * 1024 * 1024


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) or strings such as ``200ms``, ``1.5s``,
    ``5m`` and ``1h``.
    """
    if isinstance(value, bool):
        raise ValueError("duration cannot be a boolean")
    if isinstance(value, (int, float)):
        return float(value)
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"invalid duration: {value!r}")
    number, unit = match.groups()
    return float(number) * _DURATION_UNITS[unit]


class WorkerSettings(BaseSettings):
    """Worker settings, immutable for the lifetime of the process."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_WORKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Transport
    relay: str = Field(
        default="pipes",
        description="pipes, tcp://host:port or unix:///path/to/socket",
    )
    max_frame_size: int = Field(
        default=DEFAULT_MAX_FRAME_SIZE, ge=1, le=2**32 - 1, description="Largest accepted payload in bytes"
    )

    # Lifecycle
    max_jobs: int = Field(default=0, ge=0, description="Stop after N jobs, 0 = unlimited")
    idle_timeout: float = Field(default=0.0, ge=0, description="Stop after this long without a job, 0 = disabled")
    ttl: float = Field(default=0.0, ge=0, description="Stop after this much uptime, 0 = unlimited")
    exec_timeout: float = Field(default=0.0, ge=0, description="Bound on one handler call, 0 = unlimited")
    cancel_grace: float = Field(
        default=1.0, ge=0, description="Time a timed out sync handler gets to honor cancellation"
    )
    max_memory: float = Field(default=0.0, ge=0, description="Stop once RSS exceeds this many MiB, 0 = unlimited")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["text", "json"] = Field(
        default="text", description="text for human-readable, json for structured logs"
    )

    @field_validator("idle_timeout", "ttl", "exec_timeout", "cancel_grace", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        return parse_duration(value)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("relay")
    @classmethod
    def _check_relay(cls, value: str) -> str:
        if value != "pipes" and not value.startswith(("tcp://", "unix://")):
            raise ValueError(f"unsupported relay: {value!r}")
        return value

    def lifecycle_limits(self) -> LifecycleLimits:
        return LifecycleLimits(
            max_jobs=self.max_jobs,
            idle_timeout=self.idle_timeout,
            ttl=self.ttl,
            exec_timeout=self.exec_timeout,
            max_memory_mb=self.max_memory,
        )


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    section = data.get("worker", data)
    if not isinstance(section, dict):
        raise ConfigError(f"'worker' section of {path} must be a mapping")
    return section


def load_settings(config_file: Optional[Union[str, Path]] = None, **overrides: Any) -> WorkerSettings:
    """
    Build settings from, in increasing precedence: defaults, YAML file,
    environment, explicit overrides. ``None`` overrides are ignored.

    Raises:
        ConfigError: If any source holds an invalid value
    """
    file_values = _read_yaml(Path(config_file)) if config_file else {}
    explicit = {k: v for k, v in overrides.items() if v is not None}
    try:
        env_values = WorkerSettings().model_dump(exclude_unset=True)
        return WorkerSettings(**{**file_values, **env_values, **explicit})
    except ValidationError as e:
        raise ConfigError(f"Invalid worker settings: {e}") from e
