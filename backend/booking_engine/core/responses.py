"""Standardized API response helpers.

List endpoints return a consistent envelope:
    {"items": [...], "total": <int>}

Single-item endpoints return the object directly (no wrapper). Errors use
the body produced by ``BookingEngineError.to_dict()``:
    {"ok": false, "error": <code>, "message": <text>}
"""

from typing import Optional


def list_response(
    items: list,
    total: Optional[int] = None,
) -> dict:
    """Wrap a list in the standard envelope.

    Args:
        items: The list of serialized items.
        total: Total count (defaults to len(items) when the full list is returned).
    """
    return {
        "items": items,
        "total": total if total is not None else len(items),
    }


def error_response_body(code: str, message: str) -> dict:
    return {"ok": False, "error": code, "message": message}
