import io
import json
import re
from flask import Flask
from servicedesk import get_db
from servicedesk.models.device import Device
from servicedesk.models.ticket import Ticket
from servicedesk.models.user import User
from tests.test_utils_seed import ensure_user, ensure_technicians, ensure_device
from tests.test_lifecycle_helpers import headers_for, create_ticket_and_assert

PNG = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64


def test_ticket_number_format(app_context: Flask):
    client = app_context.test_client()
    body = create_ticket_and_assert(client, {'description': 'x'}, headers_for(ensure_user('c1')))
    assert re.fullmatch(r'TKT-\d{4}-\d+', body['ticket_number'])


def test_missing_description_creates_nothing(app_context: Flask):
    client = app_context.test_client()
    worker = ensure_user('w1', User.ROLE_WORKER)
    resp = client.post('/tickets', json={'description': '  ', 'new_client': {'full_name': 'Ghost'}}, headers=headers_for(worker))
    assert resp.status_code == 400
    session = get_db()
    assert session.query(Ticket).count() == 0
    # the client profile is only created once the ticket payload is valid
    assert session.query(User).filter_by(full_name='Ghost').count() == 0


def test_worker_registers_new_client_and_device(app_context: Flask):
    client = app_context.test_client()
    worker = ensure_user('w1', User.ROLE_WORKER)
    ensure_technicians(['t1'])
    payload = {
        'description': 'keyboard dead',
        'new_client': {'full_name': 'Jan Kowalski', 'phone': '123456789'},
        'device': {'brand': 'Lenovo', 'model': 'T480', 'serial_number': 'SN-T480', 'year': 2019},
        'preferred_delivery_date': '2030-01-15',
    }
    body = create_ticket_and_assert(client, payload, headers_for(worker))
    assert body['client_id'].startswith('user-')
    assert body['created_by'] == 'w1'
    assert body['technician_id'] == 't1'
    assert body['preferred_delivery_date'] == '2030-01-15'
    assert body['device'] == {'brand': 'Lenovo', 'model': 'T480', 'serial_number': 'SN-T480', 'year': 2019}
    session = get_db()
    new_client = session.get(User, body['client_id'])
    assert new_client.has_account is False and new_client.role == User.ROLE_CLIENT
    device = session.get(Device, body['device_id'])
    assert device.owner_id == body['client_id']
    assert device.serial_number == 'SN-T480'


def test_known_serial_reuses_device(app_context: Flask):
    client = app_context.test_client()
    worker = ensure_user('w1', User.ROLE_WORKER)
    ensure_user('c1')
    existing = ensure_device('d1', owner_id='c1', serial_number='SN-SAME')
    payload = {'description': 'again', 'client_id': 'c1', 'device': {'brand': 'Dell', 'model': 'XPS 13', 'serial_number': 'SN-SAME'}}
    body = create_ticket_and_assert(client, payload, headers_for(worker))
    assert body['device_id'] == existing.id
    assert get_db().query(Device).count() == 1


def test_device_id_snapshot_taken_from_registry(app_context: Flask):
    client = app_context.test_client()
    owner = ensure_user('c1')
    ensure_device('d1', owner_id='c1', brand='Apple', model='MacBook Pro', serial_number='SN-87654321', year_production=2021)
    body = create_ticket_and_assert(client, {'description': 'battery', 'device_id': 'd1'}, headers_for(owner))
    assert body['device'] == {'brand': 'Apple', 'model': 'MacBook Pro', 'serial_number': 'SN-87654321', 'year': 2021}
    stranger = ensure_user('c2')
    resp = client.post('/tickets', json={'description': 'not mine', 'device_id': 'd1'}, headers=headers_for(stranger))
    assert resp.status_code == 403


def test_client_cannot_pick_technician(app_context: Flask):
    client = app_context.test_client()
    ensure_technicians(['t1', 't2'])
    owner = ensure_user('c1')
    body = create_ticket_and_assert(client, {'description': 'x', 'technician_id': 't2'}, headers_for(owner))
    assert body['technician_id'] == 't1'


def test_worker_explicit_and_unassigned(app_context: Flask):
    client = app_context.test_client()
    worker = ensure_user('w1', User.ROLE_WORKER)
    ensure_user('c1')
    ensure_technicians(['t1', 't2'])
    headers = headers_for(worker)
    body = create_ticket_and_assert(client, {'description': 'x', 'client_id': 'c1', 'technician_id': 't2'}, headers)
    assert body['technician_id'] == 't2'
    assert body['assigned_by'] == 'w1'
    body = create_ticket_and_assert(client, {'description': 'y', 'client_id': 'c1', 'technician_id': None, 'auto_assign': False}, headers)
    assert body['technician_id'] is None
    resp = client.post('/tickets', json={'description': 'z', 'client_id': 'c1', 'technician_id': 'w1'}, headers=headers)
    assert resp.status_code == 400
    assert get_db().query(Ticket).count() == 2


def test_worker_requires_client(app_context: Flask):
    client = app_context.test_client()
    worker = ensure_user('w1', User.ROLE_WORKER)
    resp = client.post('/tickets', json={'description': 'x'}, headers=headers_for(worker))
    assert resp.status_code == 400
    resp = client.post('/tickets', json={'description': 'x', 'client_id': 'nobody'}, headers=headers_for(worker))
    assert resp.status_code == 404


def test_technician_cannot_create(app_context: Flask):
    client = app_context.test_client()
    tech = ensure_user('t1', User.ROLE_TECHNICIAN)
    resp = client.post('/tickets', json={'description': 'x'}, headers=headers_for(tech))
    assert resp.status_code == 403


def test_multipart_creation_tolerates_image_failures(app_context: Flask):
    client = app_context.test_client()
    owner = ensure_user('c1')
    data = {
        'payload': json.dumps({'description': 'cracked screen'}),
        'images': [
            (io.BytesIO(PNG), 'front.png', 'image/png'),
            (io.BytesIO(b'not an image'), 'notes.txt', 'text/plain'),
        ],
    }
    resp = client.post('/tickets', data=data, headers=headers_for(owner), content_type='multipart/form-data')
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert len(body['images']) == 1
    image = body['images'][0]
    assert image['path'].startswith(f"tickets/{body['id']}/front-")
    assert image['url'] == '/storage/' + image['path']
    assert body['image_errors'] == [{'filename': 'notes.txt', 'error': 'File must be an image'}]
    assert get_db().query(Ticket).count() == 1


def test_multipart_bad_payload(app_context: Flask):
    client = app_context.test_client()
    owner = ensure_user('c1')
    resp = client.post('/tickets', data={'payload': '{oops'}, headers=headers_for(owner), content_type='multipart/form-data')
    assert resp.status_code == 400


def test_explicit_inactive_technician_creates_nothing(app_context: Flask):
    client = app_context.test_client()
    worker = ensure_user('w1', User.ROLE_WORKER)
    ensure_user('c1')
    ensure_technicians(['t9'], active=False)
    resp = client.post('/tickets', json={'description': 'x', 'client_id': 'c1', 'technician_id': 't9'}, headers=headers_for(worker))
    assert resp.status_code == 400
    assert get_db().query(Ticket).count() == 0


def test_device_must_be_an_object(app_context: Flask):
    client = app_context.test_client()
    worker = ensure_user('w1', User.ROLE_WORKER)
    ensure_user('c1')
    for device in ('abc', ['Dell', 'XPS']):
        resp = client.post('/tickets', json={'description': 'x', 'new_client': {'full_name': 'Ghost'}, 'device': device},
                           headers=headers_for(worker))
        assert resp.status_code == 400
        assert resp.get_json()['error']['detail'] == 'device must be an object'
    session = get_db()
    assert session.query(Ticket).count() == 0
    assert session.query(Device).count() == 0
    assert session.query(User).filter_by(full_name='Ghost').count() == 0
