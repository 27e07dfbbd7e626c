# Overview: Shared offset pagination for list endpoints.

from __future__ import annotations

from typing import Callable


def paginate(query, *, page: int, limit: int, serialize: Callable | None = None) -> dict:
    """
    Run an ordered query one page at a time.

    Returns {"data", "total", "page", "limit", "total_pages"}; total_pages is
    at least 1 so clients can always render page 1.
    """
    page = max(page or 1, 1)
    limit = min(max(limit or 10, 1), 100)

    total = query.order_by(None).count()
    total_pages = (total + limit - 1) // limit if total > 0 else 1

    rows = query.offset((page - 1) * limit).limit(limit).all()
    serialize = serialize or (lambda row: row.to_dict())

    return {
        "data": [serialize(row) for row in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
    }


def like_pattern(search: str) -> str:
    """Case-insensitive substring pattern with LIKE wildcards escaped."""
    escaped = search.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"
