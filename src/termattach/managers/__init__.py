"""Manager classes that front the attachment pipeline.

Available managers:
- AttachmentManager: file, clipboard, drag and buffer ingestion plus lifecycle
"""

from __future__ import annotations

from ..content_reader import IMAGE_EXTENSIONS
from .attachment import AttachmentManager

__all__ = [
    "AttachmentManager",
    "IMAGE_EXTENSIONS",
]
