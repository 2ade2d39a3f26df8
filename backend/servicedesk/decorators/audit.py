"""Audit logging decorator to keep add_audit() calls out of route handlers.

Usage examples:

@audit_log('TKT.CREATE', entity='Ticket', entity_id_key='id', meta_keys=['ticket_number', 'status'])
def create_ticket():
    ... return _ticket_json(t), 201

@audit_log('TKT.STATUS', entity='Ticket', entity_id_key='id', diff_keys=['status'],
           pre_fetch=lambda a, kw: _prefetch_ticket(kw.get('ticket_id')))
def change_status(ticket_id): ...

Parameters:
  action: required audit action code (e.g. TKT.CREATE)
  entity: optional entity label (Ticket, Device, User)
  entity_id_key: key in the returned JSON object whose value becomes entity_id.
  entity_id_arg: name of the function argument / path parameter to use for entity_id (fallback if entity_id_key absent).
  meta_keys: list of keys to project from returned JSON into meta dict (shallow copy).
  meta_builder: callable returning a meta dict; receives (data, original_return_value, args, kwargs). If provided it overrides meta_keys.
  diff_keys / pre_fetch: snapshot taken before the view runs; changed keys land in meta['changes'].

Return handling:
  Flask view functions commonly return one of:
    dict
    (dict, status)
    (dict, status, headers)
  The decorator extracts the first element as the JSON payload for key/meta extraction while preserving the original return value.
  Error responses (status >= 400) are not audited.
"""
from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Iterable, Optional, Dict

from servicedesk.services.audit import add_audit
from servicedesk import get_db

logger = logging.getLogger(__name__)


def _extract_payload(rv: Any):
    """Return (data, status) where data is the JSON-able dict for inspection."""
    if isinstance(rv, tuple) and rv:
        status = rv[1] if len(rv) > 1 and isinstance(rv[1], int) else 200
        return rv[0], status
    return rv, 200


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    commit: bool = True,
    # Diff support
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before_snapshot = None
            if diff_keys and pre_fetch:
                try:
                    before_snapshot = pre_fetch(args, kwargs)
                except Exception:
                    logger.warning('audit pre_fetch failed for %s', action, exc_info=True)
                    before_snapshot = None
            rv = fn(*args, **kwargs)
            try:
                data, status = _extract_payload(rv)
                if status >= 400:
                    return rv
                if not isinstance(data, dict):  # nothing to inspect
                    add_audit(action, entity, kwargs.get(entity_id_arg) if entity_id_arg else None, None)
                else:
                    entity_id = None
                    if entity_id_key and entity_id_key in data:
                        entity_id = data.get(entity_id_key)
                    elif entity_id_arg and entity_id_arg in kwargs:
                        entity_id = kwargs.get(entity_id_arg)
                    meta = None
                    if meta_builder:
                        try:
                            meta = meta_builder(data, rv, args, kwargs)
                        except Exception:
                            logger.warning('audit meta_builder failed for %s', action, exc_info=True)
                            meta = None
                    elif meta_keys:
                        meta = {k: data.get(k) for k in meta_keys if k in data}
                    if diff_keys and before_snapshot and isinstance(before_snapshot, dict):
                        changes = {}
                        for k in diff_keys:
                            if k in before_snapshot and k in data:
                                if before_snapshot.get(k) != data.get(k):
                                    changes[k] = {
                                        'before': before_snapshot.get(k),
                                        'after': data.get(k)
                                    }
                        if changes:
                            if meta is None:
                                meta = {}
                            meta['changes'] = changes
                    add_audit(action, entity, entity_id, meta)
                if commit:
                    get_db().commit()
            except Exception:
                # audit must not interfere with the main response
                logger.exception('audit logging failed for %s', action)
                get_db().rollback()
            return rv
        return wrapper
    return outer
