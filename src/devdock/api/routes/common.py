"""Common route helpers."""

from __future__ import annotations

from typing import Any


def ok(data: Any = None, **extra: Any) -> dict[str, Any]:
    """Success envelope shared by every JSON route."""
    return {"success": True, "data": data, **extra}
