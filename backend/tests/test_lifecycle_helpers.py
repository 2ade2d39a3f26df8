"""Reusable test helpers for the ticket lifecycle to reduce duplication.

Patterns unified:
 - Auth header creation using direct JWT claims (bypassing /iam/auth/login).
 - Creation + transition sequencing with assertion helpers.
"""
from __future__ import annotations
from typing import Dict, Iterable
from flask_jwt_extended import create_access_token
from servicedesk.constants.permissions import permissions_for_role
from servicedesk.models.ticket import Ticket

HAPPY_PATH = [
    Ticket.STATUS_RECEIVED,
    Ticket.STATUS_DIAGNOSED,
    Ticket.STATUS_REPAIRING,
    Ticket.STATUS_READY,
    Ticket.STATUS_CLOSED,
]

PARTS_PATH = [
    Ticket.STATUS_RECEIVED,
    Ticket.STATUS_DIAGNOSED,
    Ticket.STATUS_WAITING_FOR_PARTS,
    Ticket.STATUS_REPAIRING,
    Ticket.STATUS_READY,
    Ticket.STATUS_CLOSED,
]

# ---------- Generic Auth Helpers ---------- #

def jwt_headers(user_id: str, role: str, perms: Iterable[str] = None):
    token = create_access_token(identity=str(user_id), additional_claims={
        'role': role,
        'perms': list(perms) if perms is not None else permissions_for_role(role),
        'name': user_id,
    })
    return {'Authorization': f'Bearer {token}'}


def headers_for(user):
    return jwt_headers(user.id, user.role)

# ---------- Assertion Helpers ---------- #

def assert_transition(client, ticket_id: str, headers: Dict[str, str], target: str, expected_status: int = 200):
    resp = client.post(f'/tickets/{ticket_id}/status', json={'status': target}, headers=headers)
    assert resp.status_code == expected_status, resp.get_json()
    if expected_status < 400:
        body = resp.get_json()
        assert body['status'] == target
        assert body['status_history'][-1]['status'] == target
    return resp


def create_ticket_and_assert(client, payload: dict, headers: Dict[str, str], expected_initial_status: str = Ticket.STATUS_REGISTERED):
    resp = client.post('/tickets', json=payload, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body['status'] == expected_initial_status
    return body


def walk(client, ticket_id: str, headers: Dict[str, str], path: Iterable[str]):
    for status in path:
        assert_transition(client, ticket_id, headers, status)


__all__ = ['HAPPY_PATH', 'PARTS_PATH', 'jwt_headers', 'headers_for', 'assert_transition', 'create_ticket_and_assert', 'walk']
