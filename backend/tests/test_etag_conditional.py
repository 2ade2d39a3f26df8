from flask import Flask
from servicedesk.models.ticket import Ticket
from servicedesk.models.user import User
from servicedesk.services import tickets as lifecycle
from tests.test_utils_seed import ensure_user, seed_ticket
from tests.test_lifecycle_helpers import headers_for


def test_ticket_list_conditional(app_context: Flask):
    client = app_context.test_client()
    worker = ensure_user('w1', User.ROLE_WORKER)
    ensure_user('c1')
    seed_ticket()
    headers = headers_for(worker)
    first = client.get('/tickets?limit=5', headers=headers)
    assert first.status_code == 200
    etag = first.headers.get('ETag')
    assert etag
    second = client.get('/tickets?limit=5', headers={**headers, 'If-None-Match': etag})
    assert second.status_code == 304
    assert second.headers.get('ETag') == etag
    lm = first.headers.get('Last-Modified')
    assert lm
    third = client.get('/tickets?limit=5', headers={**headers, 'If-Modified-Since': lm})
    assert third.status_code == 304


def test_if_none_match_weak_and_listed(app_context: Flask):
    client = app_context.test_client()
    worker = ensure_user('w1', User.ROLE_WORKER)
    ensure_user('c1')
    seed_ticket()
    headers = headers_for(worker)
    first = client.get('/devices', headers=headers)
    etag = first.headers['ETag']
    listed = client.get('/devices', headers={**headers, 'If-None-Match': f'"stale", W/"{etag}"'})
    assert listed.status_code == 304
    # a stale tag wins over a fresh If-Modified-Since
    stale = client.get('/tickets', headers={
        **headers,
        'If-None-Match': '"stale"',
        'If-Modified-Since': 'Fri, 01 Jan 2100 00:00:00 GMT',
    })
    assert stale.status_code == 200


def test_ticket_item_etag_changes_with_version(app_context: Flask):
    client = app_context.test_client()
    worker = ensure_user('w1', User.ROLE_WORKER)
    ensure_user('c1')
    t = seed_ticket()
    headers = headers_for(worker)
    first = client.get(f'/tickets/{t.id}', headers=headers)
    etag = first.headers['ETag']
    assert client.get(f'/tickets/{t.id}', headers={**headers, 'If-None-Match': etag}).status_code == 304
    lifecycle.transition_ticket(t.id, Ticket.STATUS_RECEIVED, 'w1')
    changed = client.get(f'/tickets/{t.id}', headers={**headers, 'If-None-Match': etag})
    assert changed.status_code == 200
    assert changed.headers['ETag'] != etag


def test_head_returns_validators_without_body(app_context: Flask):
    client = app_context.test_client()
    worker = ensure_user('w1', User.ROLE_WORKER)
    ensure_user('c1')
    seed_ticket()
    resp = client.head('/tickets', headers=headers_for(worker))
    assert resp.status_code == 200
    assert resp.headers.get('ETag')
    assert resp.data == b''


def test_pagination_validation(app_context: Flask):
    client = app_context.test_client()
    worker = ensure_user('w1', User.ROLE_WORKER)
    headers = headers_for(worker)
    assert client.get('/tickets?limit=abc', headers=headers).status_code == 400
    body = client.get('/tickets?limit=1000&offset=-4', headers=headers).get_json()
    assert body['pagination']['limit'] == 200
    assert body['pagination']['offset'] == 0
