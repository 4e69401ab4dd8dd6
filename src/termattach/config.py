"""Configuration loading and validation for the attachment pipeline."""

from __future__ import annotations

from copy import deepcopy
import logging
import os
from pathlib import Path
import tempfile
from typing import Any

from platformdirs import user_config_path
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .exceptions import ConfigValidationError

import tomllib  # stdlib since Python 3.11 (project requires >=3.11)

LOGGER = logging.getLogger(__name__)

APP_NAME = "termattach"
CONFIG_DIR = user_config_path(APP_NAME)
CONFIG_PATH = CONFIG_DIR / "config.toml"

MIB = 1024 * 1024
VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def default_scratch_directory() -> str:
    return str(Path(tempfile.gettempdir()) / f"{APP_NAME}-attachments")


def default_drop_directory() -> str:
    return str(Path(tempfile.gettempdir()) / f"{APP_NAME}-drag-drop")


def _normalize_path_string(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string.")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{field_name} must not be empty.")
    return normalized


class AttachmentsConfig(BaseModel):
    """Registry quotas, per-kind size ceilings, and the scratch directory."""

    max_attachments: int = Field(default=10, ge=1, le=1000)
    max_total_size_bytes: int = Field(default=50 * MIB, ge=1)
    max_file_size_bytes: int = Field(default=10 * MIB, ge=1)
    max_image_size_bytes: int = Field(default=5 * MIB, ge=1)
    max_drag_file_size_bytes: int = Field(default=50 * MIB, ge=1)
    scratch_directory: str = Field(default_factory=default_scratch_directory)

    @field_validator("scratch_directory", mode="before")
    @classmethod
    def _validate_scratch_directory(cls, value: Any) -> str:
        return _normalize_path_string(value, "scratch_directory")

    @property
    def scratch_path(self) -> Path:
        return Path(self.scratch_directory).expanduser()


class DragConfig(BaseModel):
    """Drag-and-drop detection strategies and timing."""

    enabled: bool = True
    ansi_detection: bool = True
    filesystem_fallback: bool = True
    poll_interval_seconds: float = Field(default=0.5, ge=0.1, le=1.0)
    detection_window_ms: int = Field(default=3000, ge=100, le=60_000)
    session_timeout_seconds: float = Field(default=5.0, gt=0, le=120)
    watch_directories: list[str] = Field(default_factory=list)

    @field_validator("watch_directories", mode="before")
    @classmethod
    def _validate_watch_directories(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("watch_directories must be a list.")
        normalized: list[str] = []
        for item in value:
            if not isinstance(item, str):
                raise ValueError("watch_directories entries must be strings.")
            candidate = item.strip()
            if candidate and candidate not in normalized:
                normalized.append(candidate)
        return normalized

    def resolved_watch_directories(self) -> list[Path]:
        """Configured directories, or the usual drop locations when unset."""
        if self.watch_directories:
            return [Path(item).expanduser() for item in self.watch_directories]
        temp_root = Path(tempfile.gettempdir())
        cwd = Path.cwd()
        home = Path.home()
        return [
            temp_root,
            Path(default_drop_directory()),
            cwd / "temp",
            cwd / "dropped-files",
            home / "Downloads",
            home / "Desktop",
        ]


class StabilityConfig(BaseModel):
    """Settle-interval sampling used before a dropped file is read."""

    settle_delay_seconds: float = Field(default=1.0, ge=0, le=30)
    backoff_factor: float = Field(default=1.5, ge=1.0, le=10)
    max_delay_seconds: float = Field(default=3.0, ge=0, le=60)
    max_retries: int = Field(default=4, ge=0, le=50)

    @model_validator(mode="after")
    def _clamp_max_delay(self) -> StabilityConfig:
        if self.max_delay_seconds < self.settle_delay_seconds:
            self.max_delay_seconds = self.settle_delay_seconds
        return self


class ClipboardConfig(BaseModel):
    """Clipboard access settings."""

    enabled: bool = True
    command_timeout_seconds: float = Field(default=1.0, gt=0, le=30)


class LoggingConfig(BaseModel):
    """Logging behavior and output destinations."""

    level: str = "INFO"
    structured: bool = True
    log_to_file: bool = False
    log_file_path: str = "~/.local/state/termattach/pipeline.log"

    @field_validator("level", mode="before")
    @classmethod
    def _validate_level(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Logging level must be a string.")
        normalized = value.strip().upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(f"Unsupported log level {normalized!r}.")
        return normalized

    @field_validator("log_file_path", mode="before")
    @classmethod
    def _validate_log_file_path(cls, value: Any) -> str:
        return _normalize_path_string(value, "log_file_path")


class Config(BaseModel):
    """Root configuration model for all sections."""

    model_config = ConfigDict(populate_by_name=True)
    attachments: AttachmentsConfig = AttachmentsConfig()
    drag: DragConfig = DragConfig()
    stability: StabilityConfig = StabilityConfig()
    clipboard: ClipboardConfig = ClipboardConfig()
    logging: LoggingConfig = LoggingConfig()

    @model_validator(mode="after")
    def _validate_quota_consistency(self) -> Config:
        attachments = self.attachments
        largest_single = max(
            attachments.max_file_size_bytes,
            attachments.max_image_size_bytes,
        )
        if largest_single > attachments.max_total_size_bytes:
            raise ValueError(
                "attachments.max_total_size_bytes must be at least the largest per-file ceiling."
            )
        return self


DEFAULT_CONFIG: dict[str, dict[str, Any]] = Config().model_dump(by_alias=True)


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Ensure that the config directory exists and return its path."""
    directory = config_dir or CONFIG_DIR
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create config directory %s: %s", directory, exc)
    return directory


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override values onto base values."""
    merged: dict[str, Any] = deepcopy(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _enforce_private_permissions(path: Path) -> None:
    """Best-effort enforcement of private file permissions on POSIX systems."""
    if os.name != "posix" or not path.exists():
        return
    try:
        path.chmod(0o600)
    except OSError as exc:
        LOGGER.warning("Unable to enforce 0600 permissions for %s: %s", path, exc)


def _validate_config(raw: dict[str, Any]) -> Config:
    """Validate merged config and fallback to safe defaults when possible."""
    try:
        return Config.model_validate(raw)
    except ValidationError as exc:
        LOGGER.warning("Configuration validation failed, using safe defaults: %s", exc)
        return Config()
    except Exception as exc:  # noqa: BLE001 - unexpected model construction failure.
        raise ConfigValidationError(f"Unable to validate configuration: {exc}") from exc


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from TOML, merge with defaults, and validate.

    The optional ``config_path`` argument is intended for tests and tooling.
    """
    target_path = config_path or CONFIG_PATH
    ensure_config_dir(target_path.parent)

    raw_data: dict[str, Any] = {}
    if target_path.exists():
        _enforce_private_permissions(target_path)
        try:
            raw_data = tomllib.loads(target_path.read_text(encoding="utf-8"))
        except (
            Exception
        ) as exc:  # noqa: BLE001 - we must not crash on invalid user config.
            LOGGER.warning("Failed to parse config at %s: %s", target_path, exc)
            raw_data = {}

    merged = _deep_merge(DEFAULT_CONFIG, raw_data)
    return _validate_config(merged)
