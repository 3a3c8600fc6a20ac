"""
Attendance Recovery Program service
Blueprint registry.
"""

from flask import request


def _int_arg(name, default, minimum=0, maximum=None):
    try:
        value = int(request.args.get(name, default))
    except (ValueError, TypeError):
        return default
    value = max(value, minimum)
    if maximum is not None:
        value = min(value, maximum)
    return value


def paginate_query(query, serialize, default_limit=200, max_limit=1000) -> dict:
    """Apply limit/offset pagination to a SQLAlchemy query and serialize the page.

    Query params:
        limit  : max items (default 200, capped at max_limit)
        offset : starting position (default 0)

    Returns:
        {"items": [...], "total": n, "limit": l, "offset": o}
    """
    total = query.count()
    limit = _int_arg("limit", default_limit, minimum=1, maximum=max_limit)
    offset = _int_arg("offset", 0)
    items = query.limit(limit).offset(offset).all()
    return {
        "items": [serialize(item) for item in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    }
