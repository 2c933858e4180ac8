from collections.abc import Mapping, Sequence

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def _parse_int(raw, default: int) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except ValueError:
        return default


def parse_pagination(
    query: Mapping[str, object],
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> tuple[int, int]:
    """Read ``limit``/``offset`` from query parameters.

    Unparseable values fall back to the defaults; ``limit`` is clamped to
    ``[1, max_limit]`` and ``offset`` to ``>= 0``.
    """
    limit = _parse_int(query.get("limit"), default_limit)
    offset = _parse_int(query.get("offset"), 0)
    return max(1, min(limit, max_limit)), max(0, offset)


def paginate(items: Sequence, limit: int, offset: int) -> tuple[list, int]:
    """Return the requested page and the total item count."""
    return list(items[offset:offset + limit]), len(items)
