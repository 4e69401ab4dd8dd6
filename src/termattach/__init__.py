"""Top-level package for termattach."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .config import Config, ensure_config_dir, load_config
    from .coordinator import IngestionCoordinator
    from .exceptions import (
        AttachmentError,
        ConfigValidationError,
        ErrorKind,
        TermAttachError,
    )
    from .managers import AttachmentManager
    from .models import Attachment, AttachmentStats, Candidate, Rejected
    from .registry import AttachmentRegistry

__all__ = [
    "Attachment",
    "AttachmentError",
    "AttachmentManager",
    "AttachmentRegistry",
    "AttachmentStats",
    "Candidate",
    "Config",
    "ConfigValidationError",
    "ErrorKind",
    "IngestionCoordinator",
    "Rejected",
    "TermAttachError",
    "ensure_config_dir",
    "load_config",
]


def __getattr__(name: str) -> Any:
    """Lazily import symbols so ``import termattach`` stays cheap."""
    if name == "AttachmentManager":
        from .managers import AttachmentManager

        return AttachmentManager
    if name in {"Config", "ensure_config_dir", "load_config"}:
        from .config import Config, ensure_config_dir, load_config

        return {"Config": Config, "ensure_config_dir": ensure_config_dir, "load_config": load_config}[
            name
        ]
    if name in {"AttachmentError", "ConfigValidationError", "ErrorKind", "TermAttachError"}:
        from .exceptions import (
            AttachmentError,
            ConfigValidationError,
            ErrorKind,
            TermAttachError,
        )

        return {
            "AttachmentError": AttachmentError,
            "ConfigValidationError": ConfigValidationError,
            "ErrorKind": ErrorKind,
            "TermAttachError": TermAttachError,
        }[name]
    if name in {"Attachment", "AttachmentStats", "Candidate", "Rejected"}:
        from .models import Attachment, AttachmentStats, Candidate, Rejected

        return {
            "Attachment": Attachment,
            "AttachmentStats": AttachmentStats,
            "Candidate": Candidate,
            "Rejected": Rejected,
        }[name]
    if name == "IngestionCoordinator":
        from .coordinator import IngestionCoordinator

        return IngestionCoordinator
    if name == "AttachmentRegistry":
        from .registry import AttachmentRegistry

        return AttachmentRegistry
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
