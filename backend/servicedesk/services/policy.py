from __future__ import annotations
from typing import Set, Optional
from flask import abort
from flask_jwt_extended import get_jwt, get_jwt_identity
from servicedesk.models.user import User
from servicedesk.models.ticket import Ticket
from servicedesk.models.device import Device


def current_permissions() -> Set[str]:
    claims = get_jwt()
    return set(claims.get('perms', []))


def has_permissions(*codes: str) -> bool:
    perms = current_permissions()
    return all(c in perms for c in codes)


def current_user_id() -> str:
    return str(get_jwt_identity())


def current_role() -> Optional[str]:
    return get_jwt().get('role')


def build_claims(user: User) -> dict:
    from servicedesk.constants.permissions import permissions_for_role
    return {
        'role': user.role,
        'perms': permissions_for_role(user.role),
        'name': user.full_name,
    }


def scope_ticket_query(query):
    """Restrict a Ticket query to what the caller's role may see.

    Clients see their own tickets, technicians the ones assigned to them; workers and
    managers see everything.
    """
    role = current_role()
    uid = current_user_id()
    if role == User.ROLE_CLIENT:
        return query.filter(Ticket.client_id == uid)
    if role == User.ROLE_TECHNICIAN:
        return query.filter(Ticket.technician_id == uid)
    return query


def scope_device_query(query):
    if current_role() == User.ROLE_CLIENT:
        return query.filter(Device.owner_id == current_user_id())
    return query


def assert_ticket_access(ticket: Ticket):
    role = current_role()
    uid = current_user_id()
    if role == User.ROLE_CLIENT and ticket.client_id != uid:
        abort(403, description='Ticket access denied')
    if role == User.ROLE_TECHNICIAN and ticket.technician_id != uid:
        abort(403, description='Ticket access denied')


def assert_device_access(device: Device):
    if current_role() == User.ROLE_CLIENT and device.owner_id != current_user_id():
        abort(403, description='Device access denied')
