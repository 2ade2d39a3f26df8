import pytest
from flask import Flask
from servicedesk.errors import InvalidTransition
from servicedesk.models.ticket import Ticket
from servicedesk.models.user import User
from servicedesk.services import tickets as lifecycle
from tests.test_utils_seed import ensure_user, ensure_technicians, seed_ticket
from tests.test_lifecycle_helpers import (
    HAPPY_PATH, PARTS_PATH, headers_for, assert_transition, create_ticket_and_assert, walk,
)


def _world():
    client_user = ensure_user('c1', User.ROLE_CLIENT)
    worker = ensure_user('w1', User.ROLE_WORKER)
    ensure_technicians(['t1', 't2'])
    return client_user, worker


def test_client_creates_ticket_registered_with_history(app_context: Flask):
    client = app_context.test_client()
    client_user, _ = _world()
    body = create_ticket_and_assert(client, {'description': 'screen broken'}, headers_for(client_user))
    assert body['client_id'] == 'c1'
    assert body['ticket_number'].startswith('TKT-')
    assert len(body['status_history']) == 1
    entry = body['status_history'][0]
    assert entry['status'] == Ticket.STATUS_REGISTERED
    assert entry['changed_by'] == 'c1'
    assert body['allowed_next'] == [Ticket.STATUS_RECEIVED]


@pytest.mark.parametrize('path', [HAPPY_PATH, PARTS_PATH])
def test_full_lifecycle_via_api(app_context: Flask, path):
    client = app_context.test_client()
    client_user, worker = _world()
    ticket = create_ticket_and_assert(client, {'description': 'no power'}, headers_for(client_user))
    walk(client, ticket['id'], headers_for(worker), path)
    body = client.get(f"/tickets/{ticket['id']}", headers=headers_for(worker)).get_json()
    assert body['status'] == Ticket.STATUS_CLOSED
    assert [h['status'] for h in body['status_history']] == [Ticket.STATUS_REGISTERED] + path
    assert all(h['changed_by'] == 'w1' for h in body['status_history'][1:])
    assert body['allowed_next'] == []


def test_invalid_transition_leaves_ticket_unchanged(app_context: Flask):
    client = app_context.test_client()
    client_user, worker = _world()
    ticket = create_ticket_and_assert(client, {'description': 'fan noise'}, headers_for(client_user))
    resp = assert_transition(client, ticket['id'], headers_for(worker), Ticket.STATUS_REPAIRING, expected_status=400)
    assert resp.get_json()['error']['detail'] == 'Invalid status transition Registered -> Repairing'
    body = client.get(f"/tickets/{ticket['id']}", headers=headers_for(worker)).get_json()
    assert body['status'] == Ticket.STATUS_REGISTERED
    assert len(body['status_history']) == 1
    assert body['version'] == ticket['version']


def test_repeated_invalid_transition_fails_identically(app_context: Flask):
    _world()
    t = seed_ticket()
    errors = []
    for _ in range(2):
        with pytest.raises(InvalidTransition) as exc:
            lifecycle.transition_ticket(t.id, Ticket.STATUS_READY, 'w1')
        errors.append((exc.value.code, exc.value.description))
    assert errors[0] == errors[1]


def test_same_status_is_rejected(app_context: Flask):
    _world()
    t = seed_ticket(status_path=[Ticket.STATUS_RECEIVED])
    with pytest.raises(InvalidTransition):
        lifecycle.transition_ticket(t.id, Ticket.STATUS_RECEIVED, 'w1')
    assert len(lifecycle.get_ticket(t.id).status_history) == 2


def test_closed_is_terminal(app_context: Flask):
    _world()
    t = seed_ticket(status_path=HAPPY_PATH)
    for status in Ticket.ALL_STATUSES:
        with pytest.raises(InvalidTransition):
            lifecycle.transition_ticket(t.id, status, 'w1')


def test_status_always_matches_last_history_entry(app_context: Flask):
    _world()
    t = seed_ticket()
    for status in PARTS_PATH:
        t = lifecycle.transition_ticket(t.id, status, 'w1')
        fresh = lifecycle.get_ticket(t.id)
        assert fresh.status == fresh.status_history[-1].status == status
        # ordered by insertion
        ids = [h.id for h in fresh.status_history]
        assert ids == sorted(ids)


def test_transition_unknown_ticket_404(app_context: Flask):
    client = app_context.test_client()
    _, worker = _world()
    resp = client.post('/tickets/missing/status', json={'status': Ticket.STATUS_RECEIVED}, headers=headers_for(worker))
    assert resp.status_code == 404


def test_status_required(app_context: Flask):
    client = app_context.test_client()
    _, worker = _world()
    t = seed_ticket()
    resp = client.post(f'/tickets/{t.id}/status', json={}, headers=headers_for(worker))
    assert resp.status_code == 400


def test_technician_limited_to_assigned_tickets(app_context: Flask):
    client = app_context.test_client()
    _world()
    t1, t2 = ensure_user('t1'), ensure_user('t2')
    t = seed_ticket(technician_id='t1')
    resp = client.post(f'/tickets/{t.id}/status', json={'status': Ticket.STATUS_RECEIVED}, headers=headers_for(t2))
    assert resp.status_code == 403
    assert_transition(client, t.id, headers_for(t1), Ticket.STATUS_RECEIVED)
    listed = client.get('/tickets', headers=headers_for(t2)).get_json()
    assert listed['data'] == []


def test_client_cannot_change_status_or_see_others(app_context: Flask):
    client = app_context.test_client()
    client_user, _ = _world()
    other = ensure_user('c2', User.ROLE_CLIENT)
    t = seed_ticket(client_id='c2')
    resp = client.post(f'/tickets/{t.id}/status', json={'status': Ticket.STATUS_RECEIVED}, headers=headers_for(other))
    assert resp.status_code == 403
    resp = client.get(f'/tickets/{t.id}', headers=headers_for(client_user))
    assert resp.status_code == 403
    own = client.get('/tickets', headers=headers_for(other)).get_json()
    assert [row['id'] for row in own['data']] == [t.id]


def test_list_filters_and_sort(app_context: Flask):
    client = app_context.test_client()
    _, worker = _world()
    first = seed_ticket(description='first')
    second = seed_ticket(description='second', status_path=[Ticket.STATUS_RECEIVED])
    headers = headers_for(worker)
    body = client.get('/tickets', headers=headers).get_json()
    assert [row['id'] for row in body['data']] == [second.id, first.id]
    assert body['pagination'] == {'total': 2, 'limit': 50, 'offset': 0, 'returned': 2}
    body = client.get(f'/tickets?status={Ticket.STATUS_RECEIVED}', headers=headers).get_json()
    assert [row['id'] for row in body['data']] == [second.id]
    body = client.get('/tickets?sort=created_at&limit=1', headers=headers).get_json()
    assert [row['id'] for row in body['data']] == [first.id]
    assert client.get('/tickets?sort=bogus', headers=headers).status_code == 400
