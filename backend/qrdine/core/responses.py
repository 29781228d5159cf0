"""Standardized API response helpers.

Customer-facing operations return a structured envelope:
    {"success": true, "data": ...}

List endpoints wrap their items:
    {"success": true, "data": {"items": [...], "total": <int>}}

Failures are produced by the exception handlers in ``qrdine.main``:
    {"success": false, "error": "<code>", "message": "..."}
"""

from typing import Any, Optional


def success_response(data: Any = None, message: Optional[str] = None) -> dict:
    """Wrap a payload in the success envelope."""
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def list_response(
    items: list,
    total: Optional[int] = None,
) -> dict:
    """Wrap a list in the standard envelope.

    Args:
        items: The list of serialized items.
        total: Total count (defaults to len(items) when the full list is returned).

    Returns:
        {"success": True, "data": {"items": items, "total": total}}
    """
    return success_response({
        "items": items,
        "total": total if total is not None else len(items),
    })


def error_response(code: str, message: str, details: Optional[dict] = None) -> dict:
    """Build the failure envelope for errors raised outside the domain layer."""
    body = {"success": False, "error": code, "message": message}
    if details:
        body["details"] = details
    return body
