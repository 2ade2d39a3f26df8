from __future__ import annotations
import logging
from typing import Any, Dict, Optional, Tuple
from flask_jwt_extended import get_jwt
from servicedesk import get_db
from servicedesk.models.audit import AuditLog

logger = logging.getLogger(__name__)

ANONYMOUS = 'anonymous'


def _actor() -> Tuple[str, Dict[str, Any]]:
    """Return the acting user id and a snapshot of their role claims.

    Public endpoints (self-registration, legacy API) carry no token; their
    entries are attributed to ``anonymous``.
    """
    try:
        claims = get_jwt() or {}
    except RuntimeError:
        claims = {}
    snapshot = {'role': claims.get('role'), 'name': claims.get('name'), 'perms': claims.get('perms', [])}
    return str(claims.get('sub') or ANONYMOUS), snapshot


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None):
    """Stage an audit row (e.g. ``TKT.STATUS`` on ``Ticket``) in the current session.

    The caller commits; an entry for a rolled back mutation disappears with it.
    """
    actor, snapshot = _actor()
    log = AuditLog(
        actor_user_id=actor,
        action=action,
        entity=entity,
        entity_id=None if entity_id is None else str(entity_id),
        role_snapshot=snapshot,
        meta=dict(meta or {}),
    )
    get_db().add(log)
    logger.debug('audit %s %s/%s by %s', action, entity, entity_id, actor)
    return log
