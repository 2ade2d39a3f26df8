"""Pagination and HTTP validators (ETag / Last-Modified) for JSON listings.

List endpoints hand a filtered, sorted query to ``paged_list_response``; single
resources go through ``make_cached_item_response``. Both answer 304 when the
client's ``If-None-Match`` or ``If-Modified-Since`` still matches.
"""
from __future__ import annotations
import hashlib
from datetime import datetime, timezone, timedelta
from email.utils import parsedate_to_datetime, format_datetime
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from flask import request, make_response, jsonify
from sqlalchemy.orm import Query

from servicedesk.errors import ValidationFailed

DEFAULT_LIMIT = 50
MAX_LIMIT = 200
# second-resolution HTTP dates lose the sub-second part of updated_at
TIMESTAMP_TOLERANCE = timedelta(seconds=1)


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes which are UTC by convention
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def canonicalize_timestamp(dt: datetime) -> datetime:
    return _as_utc(dt).replace(microsecond=0)


def iso(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 in UTC with a trailing Z."""
    if dt is None:
        return None
    return _as_utc(dt).isoformat().replace('+00:00', 'Z')


def normalize_pagination(limit_raw, offset_raw) -> Tuple[int, int]:
    """Clamp ``limit`` to 1..MAX_LIMIT and ``offset`` to >= 0."""
    try:
        limit = DEFAULT_LIMIT if limit_raw in (None, '') else int(limit_raw)
        offset = 0 if offset_raw in (None, '') else int(offset_raw)
    except (TypeError, ValueError):
        raise ValidationFailed(description='limit/offset must be int')
    return max(1, min(limit, MAX_LIMIT)), max(0, offset)


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    total = q.count()
    return q.offset(offset).limit(limit), total, limit, offset


def compute_etag(*parts: Any) -> str:
    seed = '|'.join('' if p is None else str(p) for p in parts)
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def build_list_payload(rows: list, total: int, limit: int, offset: int) -> Dict[str, Any]:
    return {
        'data': rows,
        'pagination': {'total': total, 'limit': limit, 'offset': offset, 'returned': len(rows)},
    }


def _set_validators(resp, etag: str, latest_ts: Optional[datetime]):
    resp.headers['ETag'] = etag
    if latest_ts:
        latest = canonicalize_timestamp(latest_ts)
        resp.headers['Last-Modified'] = format_datetime(latest, usegmt=True)
        resp.headers['X-Last-Modified-ISO'] = iso(latest)
    return resp


def _parse_http_timestamp(value: str) -> Optional[datetime]:
    """Accept an RFC 1123 HTTP-date or an ISO-8601 timestamp."""
    try:
        return _as_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))
    except ValueError:
        pass
    try:
        return _as_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError):
        return None


def _etag_matches(header: str, etag: str) -> bool:
    if header.strip() == '*':
        return True
    # weak comparison: W/"x" matches "x"
    tags = (t.strip() for t in header.split(','))
    return any(t.removeprefix('W/').strip('"') == etag for t in tags)


def handle_conditional(etag: str, latest_ts: Optional[datetime]):
    """Return a 304 response when the client copy is current, else ``None``.

    ``If-None-Match`` wins over ``If-Modified-Since`` when both are sent.
    """
    inm = request.headers.get('If-None-Match')
    if inm:
        if _etag_matches(inm, etag):
            return _set_validators(make_response('', 304), etag, latest_ts)
        return None
    ims = request.headers.get('If-Modified-Since')
    if ims and latest_ts:
        since = _parse_http_timestamp(ims)
        if since and canonicalize_timestamp(latest_ts) <= canonicalize_timestamp(since) + TIMESTAMP_TOLERANCE:
            return _set_validators(make_response('', 304), etag, latest_ts)
    return None


def make_cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None):
    latest_iso = iso(canonicalize_timestamp(latest_ts)) if isinstance(latest_ts, datetime) else ''
    etag = compute_etag([r.get('id') for r in rows], total, limit, offset, latest_iso)
    resp = make_response(build_list_payload(rows, total, limit, offset))
    return _set_validators(resp, etag, latest_ts), etag


def paged_list_response(q: Query, serialize: Callable[[Any], Dict[str, Any]], stamp: Callable[[Any], Optional[datetime]]):
    """Paginate ``q``, serialize each row and attach validators.

    ``stamp`` picks the modification time of a row (``updated_at`` for tickets,
    ``created_at`` for append-only audit rows); the newest one drives
    ``Last-Modified``.
    """
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    latest_ts = max((stamp(r) for r in rows if stamp(r) is not None), default=None)
    resp, etag = make_cached_list_response([serialize(r) for r in rows], total, limit, offset, latest_ts)
    return handle_conditional(etag, latest_ts) or resp


def make_cached_item_response(body: Dict[str, Any], latest_ts: Optional[datetime] = None, version: Any = None):
    """Single-resource variant: the ETag covers id, version and last modification."""
    etag = compute_etag(body.get('id'), iso(latest_ts), version)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    return _set_validators(make_response(jsonify(body)), etag, latest_ts)


__all__ = [
    'iso', 'canonicalize_timestamp', 'normalize_pagination', 'apply_pagination', 'compute_etag',
    'build_list_payload', 'handle_conditional', 'make_cached_list_response', 'paged_list_response',
    'make_cached_item_response',
]
