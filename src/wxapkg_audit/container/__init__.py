"""Public container API re-exported for external users."""
from __future__ import annotations

from wxapkg_audit.container.extract import DEFAULT_WORKERS, ExtractionResult, extract_entries
from wxapkg_audit.container.format import (
    ArchiveEntry,
    decode_container,
    encode_container,
    package_kind,
    read_container,
)

__all__ = [
    "ArchiveEntry",
    "DEFAULT_WORKERS",
    "ExtractionResult",
    "decode_container",
    "encode_container",
    "extract_entries",
    "package_kind",
    "read_container",
]
