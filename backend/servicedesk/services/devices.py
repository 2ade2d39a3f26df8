from __future__ import annotations
import logging
import uuid
from typing import Any, List, Mapping, Optional

from sqlalchemy import select

from servicedesk import get_db
from servicedesk.errors import DeviceNotFound, ValidationFailed
from servicedesk.models.device import Device
from servicedesk.models.ticket import Ticket
from servicedesk.utils.validation import require_fields, parse_int, parse_date

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('brand', 'model', 'serial_number', 'year_production', 'owner_id', 'warranty_status',
                    'warranty_expire_date', 'asset_tag', 'photos')


def _apply(device: Device, data: Mapping[str, Any]):
    for key in UPDATABLE_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if key == 'year_production':
            value = parse_int(value, key)
        elif key == 'warranty_expire_date':
            value = parse_date(value, key)
        elif key == 'photos':
            if not isinstance(value, list) or not all(isinstance(p, str) for p in value):
                raise ValidationFailed(description='photos must be a list of URLs')
        elif value is None and key not in ('owner_id',):
            value = ''
        setattr(device, key, value)


def create_device(data: Mapping[str, Any], owner_id: Optional[str] = None) -> Device:
    require_fields(data, 'brand', 'model')
    session = get_db()
    device = Device(id=uuid.uuid4().hex, warranty_status=Device.WARRANTY_UNKNOWN, photos=[])
    _apply(device, data)
    if owner_id is not None:
        device.owner_id = owner_id
    session.add(device)
    session.commit()
    logger.info('device %s created for owner %s', device.id, device.owner_id)
    return device


def get_device(device_id: str) -> Device:
    device = get_db().get(Device, device_id)
    if device is None:
        raise DeviceNotFound(device_id)
    return device


def update_device(device_id: str, data: Mapping[str, Any]) -> Device:
    device = get_device(device_id)
    _apply(device, data)
    get_db().commit()
    logger.info('device %s updated (%s)', device_id, ', '.join(k for k in data if k in UPDATABLE_FIELDS))
    return device


def find_or_create_device_by_serial(serial_number: str, data: Mapping[str, Any], owner_id: Optional[str]) -> Device:
    """Reuse the device registered under serial_number, or register a new one for owner_id."""
    if serial_number:
        existing = get_db().execute(
            select(Device).where(Device.serial_number == serial_number).order_by(Device.created_at)
        ).scalars().first()
        if existing is not None:
            return existing
    return create_device({**data, 'serial_number': serial_number or ''}, owner_id=owner_id)


def repair_history(device_id: str) -> List[Ticket]:
    """Tickets referencing the device, newest first; recomputed from the tickets table."""
    get_device(device_id)
    q = select(Ticket).where(Ticket.device_id == device_id).order_by(Ticket.created_at.desc(), Ticket.id)
    return list(get_db().execute(q).scalars())


__all__ = ['create_device', 'get_device', 'update_device', 'find_or_create_device_by_serial', 'repair_history']
