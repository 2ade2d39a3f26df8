from __future__ import annotations
from typing import List, Optional, Tuple
from servicedesk.errors import ValidationFailed


def parse_sort(sort_expr: Optional[str], allowed: dict) -> List[Tuple[str, bool]]:
    """Split ``-created_at,status`` into ``[('created_at', True), ('status', False)]``.

    A leading ``+`` is accepted as explicit ascending; a key repeated later in the
    expression is ignored.
    """
    keys: List[Tuple[str, bool]] = []
    seen = set()
    for token in (t.strip() for t in (sort_expr or '').split(',')):
        if not token:
            continue
        descending = token[0] == '-'
        key = token.lstrip('+-')
        if key not in allowed:
            raise ValidationFailed(description=f'Invalid sort field {key}')
        if key in seen:
            continue
        seen.add(key)
        keys.append((key, descending))
    return keys


def apply_multi_sort(query, sort_expr: Optional[str], allowed: dict, tie_breaker, default: Optional[str] = None):
    """Order ``query`` by the requested keys, falling back to ``default``; ``tie_breaker`` always goes last."""
    order = [
        allowed[key].desc() if descending else allowed[key].asc()
        for key, descending in parse_sort(sort_expr or default, allowed)
    ]
    return query.order_by(*order, tie_breaker.asc())
