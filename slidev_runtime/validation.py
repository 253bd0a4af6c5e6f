from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from slidev_runtime.errors import InvalidArgument

EXPORT_FORMATS = ("pdf", "pptx")


def require_positive_int(value: Any, field: str) -> int:
    # bool is an int subclass; a JSON `true` is not a slide id
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidArgument(f"{field} must be a positive integer")
    return value


def require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"{field} must be a non-empty string")
    return value


def require_absolute_path(value: str, field: str) -> str:
    if not os.path.isabs(value):
        raise InvalidArgument(f"{field} must be an absolute path")
    return value


def require_existing_path(value: str | Path, field: str) -> Path:
    path = Path(value)
    if not path.exists():
        raise InvalidArgument(f"{field} does not exist: {value}")
    return path


def parse_export_format(value: str | None) -> str:
    """Normalize an export format, defaulting to pdf."""
    fmt = (value or "pdf").lower()
    if fmt not in EXPORT_FORMATS:
        raise InvalidArgument(f"unsupported export format: {fmt}")
    return fmt
