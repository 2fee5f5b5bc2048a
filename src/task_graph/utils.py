"""Provide utility helpers for timestamps and IDs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _numeric_id(value: str) -> Optional[int]:
    """Return *value* as an int when it is a plain decimal ID, else None."""
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    return None


def _id_sort_key(value: str) -> tuple[int, int, str]:
    """Order numeric IDs numerically, then anything else lexically."""
    num = _numeric_id(value)
    if num is not None:
        return (0, num, "")
    return (1, 0, str(value))
