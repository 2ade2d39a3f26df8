from __future__ import annotations
import json
import logging
from flask import Blueprint, request, make_response
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from servicedesk.decorators.auth import require_permissions
from servicedesk.decorators.audit import audit_log
from servicedesk.errors import ImageRejected, ValidationFailed
from servicedesk.utils.listing import make_cached_item_response, paged_list_response, iso
from servicedesk.utils.sorting import apply_multi_sort
from servicedesk.utils.validation import parse_date
from servicedesk.services.policy import (
    assert_ticket_access, assert_device_access, current_role, current_user_id, scope_ticket_query,
)
from servicedesk.services import tickets as lifecycle
from servicedesk.services import storage
from servicedesk.services.assignment import assign_least_loaded
from servicedesk.services.devices import get_device, find_or_create_device_by_serial
from servicedesk.services.users import get_user, create_user_profile
from servicedesk.services.sheets import ticket_sheet
from servicedesk import get_db
from servicedesk.models.ticket import Ticket
from servicedesk.models.user import User

logger = logging.getLogger(__name__)

tickets_bp = Blueprint('tickets', __name__)

AUTO = 'auto'
SORTABLE = {
    'created_at': Ticket.created_at,
    'updated_at': Ticket.updated_at,
    'status': Ticket.status,
    'ticket_number': Ticket.ticket_number,
}


@tickets_bp.get('')
@require_permissions('TKT.READ')
def list_tickets():
    session = get_db()
    q = scope_ticket_query(session.query(Ticket))
    for key in ('status', 'client_id', 'technician_id', 'device_id'):
        value = request.args.get(key)
        if value:
            q = q.filter(getattr(Ticket, key) == value)
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, Ticket.id, default='-created_at')
    return paged_list_response(q, lambda t: _ticket_json(t, detail=False), lambda t: t.updated_at)


@tickets_bp.post('')
@require_permissions('TKT.CREATE')
@audit_log('TKT.CREATE', entity='Ticket', entity_id_key='id', meta_keys=['ticket_number', 'status', 'client_id', 'technician_id'])
def create_ticket():
    data, files = _create_payload()
    role = current_role()
    uid = current_user_id()
    description = (data.get('description') or '').strip()
    if not description:
        raise ValidationFailed(description='description required')
    preferred = parse_date(data.get('preferred_delivery_date'), 'preferred_delivery_date')
    if data.get('device') is not None and not isinstance(data['device'], dict):
        raise ValidationFailed(description='device must be an object')

    technician_choice = AUTO if role == User.ROLE_CLIENT else data.get('technician_id', AUTO)
    if data.get('auto_assign') is False and not data.get('technician_id'):
        technician_choice = None
    if technician_choice and technician_choice != AUTO:
        lifecycle.require_technician(get_db(), technician_choice)

    if role == User.ROLE_CLIENT:
        client_id = uid
    elif data.get('new_client'):
        if not isinstance(data['new_client'], dict):
            raise ValidationFailed(description='new_client must be an object')
        client_id = create_user_profile({**data['new_client'], 'role': User.ROLE_CLIENT}, created_by=uid).id
    else:
        client_id = data.get('client_id')
        if not client_id:
            raise ValidationFailed(description='client_id or new_client required')
        get_user(client_id)

    device_id = data.get('device_id')
    snapshot = data.get('device')
    if device_id:
        device = get_device(device_id)
        assert_device_access(device)
        if not snapshot:
            snapshot = {'brand': device.brand, 'model': device.model, 'serial_number': device.serial_number, 'year': device.year_production}
    elif snapshot and role != User.ROLE_CLIENT:
        # front desk registers the device itself, reusing an existing record with the same serial
        device = find_or_create_device_by_serial(
            snapshot.get('serial_number') or '',
            {
                'brand': snapshot.get('brand'),
                'model': snapshot.get('model'),
                'year_production': snapshot.get('year', snapshot.get('year_production')),
                'asset_tag': data.get('asset_tag') or '',
            },
            owner_id=client_id,
        )
        device_id = device.id

    t = lifecycle.create_ticket(
        client_id,
        description,
        device_id=device_id,
        device=snapshot,
        created_by=uid,
        preferred_delivery_date=preferred,
    )
    if technician_choice == AUTO:
        assign_least_loaded(t.id, uid)
    elif technician_choice:
        lifecycle.assign_technician(t.id, technician_choice, uid)

    image_errors = []
    for f in files:
        try:
            meta = storage.upload_image(f, t.id)
            lifecycle.add_image(t.id, meta['url'], meta['path'], meta['filename'])
        except (ImageRejected, OSError, SQLAlchemyError) as e:
            # the ticket is the unit of success; a failed image never undoes it
            if isinstance(e, SQLAlchemyError):
                get_db().rollback()
            logger.warning('image %s for ticket %s not stored: %s', f.filename, t.id, e)
            image_errors.append({'filename': f.filename, 'error': getattr(e, 'description', None) or str(e)})
    body = _ticket_json(lifecycle.get_ticket(t.id))
    if image_errors:
        body['image_errors'] = image_errors
    return body, 201


@tickets_bp.get('/<ticket_id>')
@require_permissions('TKT.READ')
def get_ticket(ticket_id: str):
    t = lifecycle.get_ticket(ticket_id)
    assert_ticket_access(t)
    return make_cached_item_response(_ticket_json(t), t.updated_at, t.version)


@tickets_bp.post('/<ticket_id>/status')
@require_permissions('TKT.STATUS')
@audit_log('TKT.STATUS', entity='Ticket', entity_id_key='id', diff_keys=['status'], pre_fetch=lambda a, kw: _prefetch_ticket(kw.get('ticket_id')), meta_keys=['status'])
def change_status(ticket_id: str):
    data = request.json or {}
    new_status = data.get('status')
    if not new_status:
        raise ValidationFailed(description='status required')
    assert_ticket_access(lifecycle.get_ticket(ticket_id))
    t = lifecycle.transition_ticket(ticket_id, new_status, current_user_id())
    return _ticket_json(t)


@tickets_bp.post('/<ticket_id>/assign')
@require_permissions('TKT.ASSIGN')
@audit_log('TKT.ASSIGN', entity='Ticket', entity_id_key='id', diff_keys=['technician_id'], pre_fetch=lambda a, kw: _prefetch_ticket(kw.get('ticket_id')), meta_keys=['technician_id'])
def assign_ticket(ticket_id: str):
    data = request.json or {}
    technician_id = data.get('technician_id') or AUTO
    if technician_id == AUTO:
        lifecycle.get_ticket(ticket_id)
        assign_least_loaded(ticket_id, current_user_id())
        t = lifecycle.get_ticket(ticket_id)
    else:
        t = lifecycle.assign_technician(ticket_id, technician_id, current_user_id())
    return _ticket_json(t)


@tickets_bp.post('/<ticket_id>/reassign')
@require_permissions('TKT.REASSIGN')
@audit_log('TKT.REASSIGN', entity='Ticket', entity_id_key='id', diff_keys=['technician_id'], pre_fetch=lambda a, kw: _prefetch_ticket(kw.get('ticket_id')), meta_keys=['technician_id'])
def reassign_ticket(ticket_id: str):
    data = request.json or {}
    technician_id = data.get('technician_id')
    if not technician_id:
        raise ValidationFailed(description='technician_id required')
    t = lifecycle.reassign_ticket(ticket_id, technician_id, current_user_id())
    return _ticket_json(t)


# ---------------- Notes ---------------- #

@tickets_bp.get('/<ticket_id>/notes')
@require_permissions('TKT.READ')
def list_notes(ticket_id: str):
    assert_ticket_access(lifecycle.get_ticket(ticket_id))
    return {'data': [_note_json(n) for n in lifecycle.get_notes(ticket_id)]}


@tickets_bp.post('/<ticket_id>/notes')
@require_permissions('TKT.WORK')
@audit_log('TKT.NOTE.ADD', entity='Ticket', entity_id_arg='ticket_id', meta_keys=['id', 'author_id'])
def add_note(ticket_id: str):
    data = request.json or {}
    assert_ticket_access(lifecycle.get_ticket(ticket_id))
    author = get_db().get(User, current_user_id())
    note = lifecycle.add_note(ticket_id, data.get('content'), current_user_id(), author.full_name if author else None)
    return _note_json(note), 201


# ---------------- Parts ---------------- #

@tickets_bp.get('/<ticket_id>/parts')
@require_permissions('TKT.READ')
def list_parts(ticket_id: str):
    assert_ticket_access(lifecycle.get_ticket(ticket_id))
    return {'data': [_part_json(p) for p in lifecycle.get_parts(ticket_id)]}


@tickets_bp.post('/<ticket_id>/parts')
@require_permissions('TKT.WORK')
@audit_log('TKT.PART.ADD', entity='Ticket', entity_id_arg='ticket_id', meta_keys=['id', 'type', 'description', 'quantity', 'status'])
def add_part(ticket_id: str):
    assert_ticket_access(lifecycle.get_ticket(ticket_id))
    part = lifecycle.add_part(ticket_id, request.json or {})
    return _part_json(part), 201


@tickets_bp.delete('/<ticket_id>/parts/<int:part_id>')
@require_permissions('TKT.WORK')
@audit_log('TKT.PART.REMOVE', entity='Ticket', entity_id_arg='ticket_id')
def remove_part(ticket_id: str, part_id: int):
    assert_ticket_access(lifecycle.get_ticket(ticket_id))
    lifecycle.remove_part(ticket_id, part_id)
    return '', 204


@tickets_bp.post('/<ticket_id>/parts/<int:part_id>/status')
@require_permissions('TKT.WORK')
@audit_log('TKT.PART.STATUS', entity='Ticket', entity_id_arg='ticket_id', meta_keys=['id', 'status'])
def change_part_status(ticket_id: str, part_id: int):
    data = request.json or {}
    if not data.get('status'):
        raise ValidationFailed(description='status required')
    assert_ticket_access(lifecycle.get_ticket(ticket_id))
    part = lifecycle.update_part_status(ticket_id, part_id, data['status'])
    return _part_json(part)


# ---------------- Images ---------------- #

@tickets_bp.get('/<ticket_id>/images')
@require_permissions('TKT.READ')
def list_images(ticket_id: str):
    t = lifecycle.get_ticket(ticket_id)
    assert_ticket_access(t)
    return {'data': [_image_json(i) for i in t.images]}


@tickets_bp.post('/<ticket_id>/images')
@require_permissions('TKT.READ')
@audit_log('TKT.IMAGE.ADD', entity='Ticket', entity_id_arg='ticket_id', meta_keys=['id', 'path'])
def upload_image(ticket_id: str):
    assert_ticket_access(lifecycle.get_ticket(ticket_id))
    meta = storage.upload_image(request.files.get('file'), ticket_id)
    image = lifecycle.add_image(ticket_id, meta['url'], meta['path'], meta['filename'])
    return _image_json(image), 201


@tickets_bp.delete('/<ticket_id>/images/<int:image_id>')
@require_permissions('TKT.WORK')
@audit_log('TKT.IMAGE.REMOVE', entity='Ticket', entity_id_arg='ticket_id')
def delete_image(ticket_id: str, image_id: int):
    assert_ticket_access(lifecycle.get_ticket(ticket_id))
    image = lifecycle.remove_image(ticket_id, image_id)
    storage.delete_image(image.path)
    return '', 204


@tickets_bp.get('/<ticket_id>/sheet')
@require_permissions('TKT.READ')
def download_sheet(ticket_id: str):
    t = lifecycle.get_ticket(ticket_id)
    assert_ticket_access(t)
    session = get_db()
    client = session.get(User, t.client_id) if t.client_id else None
    technician = session.get(User, t.technician_id) if t.technician_id else None
    resp = make_response(ticket_sheet(t, client, technician))
    resp.headers['Content-Type'] = 'text/plain; charset=us-ascii'
    resp.headers['Content-Disposition'] = f'attachment; filename=ticket-{t.ticket_number}.txt'
    return resp


def _create_payload():
    """JSON body, or multipart with a JSON 'payload' field plus 'images' files."""
    if request.mimetype == 'multipart/form-data':
        try:
            data = json.loads(request.form.get('payload') or '{}')
        except ValueError:
            raise ValidationFailed(description='payload must be JSON')
        return data, request.files.getlist('images')
    return request.json or {}, []


def _ticket_json(t: Ticket, detail: bool = True):
    body = {
        'id': t.id,
        'ticket_number': t.ticket_number,
        'client_id': t.client_id,
        'device_id': t.device_id,
        'technician_id': t.technician_id,
        'created_by': t.created_by,
        'description': t.description,
        'preferred_delivery_date': t.preferred_delivery_date.isoformat() if t.preferred_delivery_date else None,
        'status': t.status,
        'allowed_next': list(lifecycle.TICKET_FSM.allowed_next(t.status)),
        'device': t.device,
        'assigned_at': iso(t.assigned_at),
        'assigned_by': t.assigned_by,
        'created_at': iso(t.created_at),
        'updated_at': iso(t.updated_at),
        'version': t.version,
    }
    if detail:
        body['status_history'] = [
            {'status': h.status, 'timestamp': iso(h.timestamp), 'changed_by': h.changed_by} for h in t.status_history
        ]
        body['reassignment_history'] = [
            {
                'old_technician_id': r.old_technician_id,
                'new_technician_id': r.new_technician_id,
                'reassigned_by': r.reassigned_by,
                'timestamp': iso(r.timestamp),
            }
            for r in t.reassignment_history
        ]
        body['notes'] = [_note_json(n) for n in t.notes]
        body['parts'] = [_part_json(p) for p in t.parts]
        body['images'] = [_image_json(i) for i in t.images]
    return body


def _note_json(n):
    return {'id': n.id, 'content': n.content, 'author': n.author, 'author_id': n.author_id, 'created_at': iso(n.created_at)}


def _part_json(p):
    return {
        'id': p.id,
        'type': p.type,
        'description': p.description,
        'sku': p.sku,
        'manufacturer': p.manufacturer,
        'unit_price': p.unit_price,
        'quantity': p.quantity,
        'status': p.status,
        'added_at': iso(p.added_at),
    }


def _image_json(i):
    return {'id': i.id, 'url': i.url, 'path': i.path, 'filename': i.filename, 'uploaded_at': iso(i.uploaded_at)}


def _prefetch_ticket(ticket_id: str):
    row = get_db().execute(select(Ticket.status, Ticket.technician_id).where(Ticket.id == ticket_id)).first()
    if not row:
        return {}
    return {'status': row.status, 'technician_id': row.technician_id}
