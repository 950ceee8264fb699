"""Standardized API response helpers.

Successful responses share one envelope:
    {"success": true, "data": <payload>}

Lists add a count, paginated reports add a pagination block:
    {"success": true, "data": [...], "pagination": {"page", "limit", "total", "totalPages"}}

Errors are rendered by the handlers in app.main as
    {"success": false, "error": "<message>"}
"""

import math
from typing import Any, Optional


def success_response(data: Any = None, message: Optional[str] = None) -> dict:
    """Wrap a payload in the success envelope."""
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def list_response(items: list, total: Optional[int] = None) -> dict:
    """Wrap a list in the success envelope.

    Args:
        items: The list of serialized items.
        total: Total count (defaults to len(items) when the full list is returned).
    """
    return {
        "success": True,
        "data": items,
        "count": total if total is not None else len(items),
    }


def paginated_response(items: list, total: int, page: int = 1, limit: int = 10) -> dict:
    """Wrap one page of a list in the success envelope.

    Args:
        items: The page of serialized items.
        total: Total count across all pages.
        page: 1-based page number.
        limit: Page size requested.
    """
    return {
        "success": True,
        "data": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if total and limit else 0,
        },
    }


def error_response(message: str) -> dict:
    return {"success": False, "error": message}
