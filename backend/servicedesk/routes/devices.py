from __future__ import annotations
from flask import Blueprint, request
from servicedesk.decorators.auth import require_permissions
from servicedesk.decorators.audit import audit_log
from servicedesk.utils.listing import make_cached_item_response, paged_list_response, iso
from servicedesk.utils.sorting import apply_multi_sort
from servicedesk.services.policy import assert_device_access, current_role, current_user_id, scope_device_query
from servicedesk.services import devices as registry
from servicedesk import get_db
from servicedesk.models.device import Device
from servicedesk.models.user import User

devices_bp = Blueprint('devices', __name__)

SORTABLE = {
    'created_at': Device.created_at,
    'brand': Device.brand,
    'model': Device.model,
    'serial_number': Device.serial_number,
}


def _device_json(d: Device):
    return {
        'id': d.id,
        'brand': d.brand,
        'model': d.model,
        'serial_number': d.serial_number,
        'year_production': d.year_production,
        'owner_id': d.owner_id,
        'warranty_status': d.warranty_status,
        'warranty_expire_date': d.warranty_expire_date.isoformat() if d.warranty_expire_date else None,
        'asset_tag': d.asset_tag,
        'photos': list(d.photos or []),
        'created_at': iso(d.created_at),
        'updated_at': iso(d.updated_at),
    }


@devices_bp.get('')
@require_permissions('DEV.READ')
def list_devices():
    session = get_db()
    q = scope_device_query(session.query(Device))
    owner_id = request.args.get('owner_id')
    if owner_id:
        q = q.filter(Device.owner_id == owner_id)
    serial = request.args.get('serial_number')
    if serial:
        q = q.filter(Device.serial_number == serial)
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, Device.id, default='-created_at')
    return paged_list_response(q, _device_json, lambda d: d.updated_at)


@devices_bp.post('')
@require_permissions('DEV.MANAGE')
@audit_log('DEV.CREATE', entity='Device', entity_id_key='id', meta_keys=['brand', 'model', 'serial_number', 'owner_id'])
def create_device():
    data = request.json or {}
    # clients always register devices for themselves
    owner_id = current_user_id() if current_role() == User.ROLE_CLIENT else data.get('owner_id')
    d = registry.create_device(data, owner_id=owner_id)
    return _device_json(d), 201


@devices_bp.get('/<device_id>')
@require_permissions('DEV.READ')
def get_device(device_id: str):
    d = registry.get_device(device_id)
    assert_device_access(d)
    return make_cached_item_response(_device_json(d), d.updated_at, None)


@devices_bp.patch('/<device_id>')
@require_permissions('DEV.MANAGE')
@audit_log(
    'DEV.UPDATE',
    entity='Device',
    entity_id_key='id',
    diff_keys=['owner_id', 'warranty_status', 'serial_number'],
    pre_fetch=lambda a, kw: _device_json(registry.get_device(kw.get('device_id'))),
)
def update_device(device_id: str):
    data = dict(request.json or {})
    d = registry.get_device(device_id)
    assert_device_access(d)
    if current_role() == User.ROLE_CLIENT:
        data.pop('owner_id', None)
    d = registry.update_device(device_id, data)
    return _device_json(d)


@devices_bp.get('/<device_id>/repairs')
@require_permissions('DEV.READ', 'TKT.READ')
def device_repairs(device_id: str):
    assert_device_access(registry.get_device(device_id))
    history = registry.repair_history(device_id)
    if current_role() == User.ROLE_TECHNICIAN:
        uid = current_user_id()
        history = [t for t in history if t.technician_id == uid]
    return {
        'data': [
            {
                'id': t.id,
                'ticket_number': t.ticket_number,
                'status': t.status,
                'description': t.description,
                'technician_id': t.technician_id,
                'created_at': iso(t.created_at),
            }
            for t in history
        ]
    }
