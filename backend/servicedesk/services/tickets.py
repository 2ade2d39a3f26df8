"""Ticket lifecycle: creation, status transitions, assignment and the per-ticket
logs (status history, reassignments, notes, parts, images).

Every log is a child table, so appending or editing one item never rewrites its
siblings. Writes that change the ticket row itself go through the mapper's
version counter; a concurrent writer makes the flush fail with StaleDataError and
the whole read-validate-write step is replayed against fresh state.
"""
from __future__ import annotations
import logging
import time
import uuid
from datetime import datetime, date
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from flask import current_app, has_app_context
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import NotFound

from servicedesk import get_db
from servicedesk.errors import (
    ConcurrentUpdate, PartNotFound, TicketNotFound, UserNotFound, ValidationFailed,
)
from servicedesk.models.ticket import (
    Ticket, StatusChange, Reassignment, TicketNote, TicketPart, TicketImage,
)
from servicedesk.models.user import User, utcnow
from servicedesk.utils.fsm import TransitionValidator
from servicedesk.utils.validation import validate_choice, require_fields, parse_int, parse_number

logger = logging.getLogger(__name__)

T = TypeVar('T')

TICKET_FSM = TransitionValidator({
    Ticket.STATUS_REGISTERED: {Ticket.STATUS_RECEIVED},
    Ticket.STATUS_RECEIVED: {Ticket.STATUS_DIAGNOSED},
    Ticket.STATUS_DIAGNOSED: {Ticket.STATUS_WAITING_FOR_PARTS, Ticket.STATUS_REPAIRING},
    Ticket.STATUS_WAITING_FOR_PARTS: {Ticket.STATUS_REPAIRING},
    Ticket.STATUS_REPAIRING: {Ticket.STATUS_READY},
    Ticket.STATUS_READY: {Ticket.STATUS_CLOSED},
    Ticket.STATUS_CLOSED: set(),
})

DEFAULT_CONFLICT_RETRIES = 3
MAX_NUMBER_PROBES = 1000


def _conflict_retries() -> int:
    if has_app_context():
        return int(current_app.config.get('CONFLICT_RETRIES', DEFAULT_CONFLICT_RETRIES))
    return DEFAULT_CONFLICT_RETRIES


def retry_on_conflict(step: Callable[[Any], T], retries: Optional[int] = None) -> T:
    """Run step(session) and commit; replay it when the ticket row changed underneath.

    step must re-read whatever it validates against, since a rollback expires the
    identity map. Raises ConcurrentUpdate once attempts are exhausted.
    """
    session = get_db()
    attempts = 1 + (retries if retries is not None else _conflict_retries())
    for attempt in range(1, attempts + 1):
        try:
            result = step(session)
            session.commit()
            return result
        except StaleDataError:
            session.rollback()
            logger.warning('ticket version conflict (attempt %d/%d)', attempt, attempts)
    raise ConcurrentUpdate(description='Ticket was modified concurrently, please retry')


def _now_ms(now: Optional[datetime] = None) -> int:
    if now is None:
        return time.time_ns() // 1_000_000
    return int(now.timestamp() * 1000)


def generate_ticket_number(session, now: Optional[datetime] = None, with_year: bool = True) -> str:
    """TKT-<year>-<ms> (or TKT-<ms> for the legacy endpoint), bumped one millisecond
    at a time until no stored ticket carries it. The unique column catches the
    remaining race between two transactions probing at once.
    """
    now = now or utcnow()
    ms = _now_ms(now)
    prefix = f'TKT-{now.year}-' if with_year else 'TKT-'
    for _ in range(MAX_NUMBER_PROBES):
        candidate = f'{prefix}{ms}'
        taken = session.execute(select(Ticket.id).where(Ticket.ticket_number == candidate)).first()
        if not taken:
            return candidate
        ms += 1
    raise ConcurrentUpdate(description='Could not allocate a ticket number')


def get_ticket(ticket_id: str) -> Ticket:
    return load_ticket(get_db(), ticket_id)


def load_ticket(session, ticket_id: str) -> Ticket:
    t = session.execute(
        select(Ticket).where(Ticket.id == ticket_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if t is None:
        raise TicketNotFound(ticket_id)
    return t


def device_snapshot(device: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Normalise inline device data into the {brand, model, serial_number, year} snapshot."""
    if not device:
        return None
    if not isinstance(device, Mapping):
        raise ValidationFailed(description='device must be an object')
    year = device.get('year', device.get('year_production'))
    return {
        'brand': device.get('brand') or '',
        'model': device.get('model') or '',
        'serial_number': device.get('serial_number') or '',
        'year': parse_int(year, 'device.year'),
    }


def create_ticket(
    client_id: Optional[str],
    description: str,
    *,
    device_id: Optional[str] = None,
    device: Optional[Mapping[str, Any]] = None,
    created_by: Optional[str] = None,
    preferred_delivery_date: Optional[date] = None,
    legacy_number: bool = False,
) -> Ticket:
    """Persist a Registered ticket with its one-entry status history.

    Client and device references are trusted; callers validate them.
    """
    if not description or not str(description).strip():
        raise ValidationFailed(description='description required')
    session = get_db()
    snapshot = device_snapshot(device)
    for attempt in range(1, _conflict_retries() + 2):
        now = utcnow()
        t = Ticket(
            id=uuid.uuid4().hex,
            ticket_number=generate_ticket_number(session, now, with_year=not legacy_number),
            client_id=client_id,
            device_id=device_id,
            created_by=created_by,
            description=str(description).strip(),
            preferred_delivery_date=preferred_delivery_date,
            status=Ticket.STATUS_REGISTERED,
            device=snapshot,
            created_at=now,
        )
        t.status_history.append(StatusChange(
            status=Ticket.STATUS_REGISTERED,
            changed_by=created_by or client_id or 'unknown',
            timestamp=now,
        ))
        session.add(t)
        try:
            session.commit()
        except IntegrityError:
            # another transaction took the same number between lookup and insert
            session.rollback()
            logger.warning('ticket number collision on %s (attempt %d)', t.ticket_number, attempt)
            continue
        logger.info('ticket %s created as %s for client %s', t.id, t.ticket_number, client_id)
        return t
    raise ConcurrentUpdate(description='Could not allocate a ticket number')


def transition_ticket(ticket_id: str, new_status: str, actor_id: str) -> Ticket:
    def step(session):
        t = load_ticket(session, ticket_id)
        TICKET_FSM.assert_can_transition(t.status, new_status)
        t.status = new_status
        t.status_history.append(StatusChange(status=new_status, changed_by=actor_id, timestamp=utcnow()))
        session.flush()
        return t

    t = retry_on_conflict(step)
    logger.info('ticket %s moved to %s by %s', ticket_id, new_status, actor_id)
    return t


def require_technician(session, technician_id: str) -> User:
    tech = session.get(User, technician_id)
    if tech is None:
        raise UserNotFound(technician_id)
    if tech.role != User.ROLE_TECHNICIAN:
        raise ValidationFailed(description=f'User {technician_id} is not a technician')
    if not tech.active:
        raise ValidationFailed(description=f'Technician {technician_id} is inactive')
    return tech


def claim_technician(session, technician_id: str, seen_seq: Optional[int] = None) -> None:
    """Bump the technician's assignment counter inside the current write.

    With ``seen_seq`` the bump only lands if no other assignment to this technician
    committed since the counter was read; otherwise StaleDataError sends the caller
    back through retry_on_conflict.
    """
    stmt = update(User).where(User.id == technician_id)
    if seen_seq is not None:
        stmt = stmt.where(User.assignment_seq == seen_seq)
    stmt = stmt.values(assignment_seq=User.assignment_seq + 1, updated_at=User.updated_at)
    if session.execute(stmt.execution_options(synchronize_session=False)).rowcount != 1:
        raise StaleDataError(f'technician {technician_id} was assigned concurrently')


def assign_technician(ticket_id: str, technician_id: str, assigned_by: str) -> Ticket:
    def step(session):
        t = load_ticket(session, ticket_id)
        require_technician(session, technician_id)
        claim_technician(session, technician_id)
        t.technician_id = technician_id
        t.assigned_at = utcnow()
        t.assigned_by = assigned_by
        session.flush()
        return t

    t = retry_on_conflict(step)
    logger.info('ticket %s assigned to technician %s by %s', ticket_id, technician_id, assigned_by)
    return t


def reassign_ticket(ticket_id: str, new_technician_id: str, manager_id: str) -> Ticket:
    def step(session):
        t = load_ticket(session, ticket_id)
        require_technician(session, new_technician_id)
        claim_technician(session, new_technician_id)
        t.reassignment_history.append(Reassignment(
            old_technician_id=t.technician_id,
            new_technician_id=new_technician_id,
            reassigned_by=manager_id,
            timestamp=utcnow(),
        ))
        t.technician_id = new_technician_id
        session.flush()
        return t

    t = retry_on_conflict(step)
    logger.info('ticket %s reassigned to %s by %s', ticket_id, new_technician_id, manager_id)
    return t


# ---------------- Notes ---------------- #

def add_note(ticket_id: str, content: str, author_id: str, author_name: Optional[str] = None) -> TicketNote:
    if not content or not str(content).strip():
        raise ValidationFailed(description='content required')
    session = get_db()
    t = load_ticket(session, ticket_id)
    note = TicketNote(
        content=str(content).strip(),
        author=author_name or author_id,
        author_id=author_id,
        created_at=utcnow(),
    )
    t.notes.append(note)
    session.commit()
    logger.info('note %s added to ticket %s', note.id, ticket_id)
    return note


def get_notes(ticket_id: str) -> List[TicketNote]:
    return list(get_ticket(ticket_id).notes)


# ---------------- Parts ---------------- #

def add_part(ticket_id: str, part_data: Mapping[str, Any]) -> TicketPart:
    require_fields(part_data, 'type', 'description')
    part = TicketPart(
        type=validate_choice(part_data.get('type'), TicketPart.ALL_TYPES, 'type'),
        description=str(part_data.get('description')).strip(),
        sku=part_data.get('sku') or '',
        manufacturer=part_data.get('manufacturer') or '',
        unit_price=parse_number(part_data.get('unit_price'), 'unit_price'),
        quantity=parse_int(part_data.get('quantity'), 'quantity', minimum=1, default=1),
        status=validate_choice(part_data.get('status') or TicketPart.STATUS_ORDERED, TicketPart.ALL_STATUSES, 'status'),
        added_at=utcnow(),
    )
    session = get_db()
    t = load_ticket(session, ticket_id)
    t.parts.append(part)
    session.commit()
    logger.info('part %s (%s) added to ticket %s', part.id, part.type, ticket_id)
    return part


def get_parts(ticket_id: str) -> List[TicketPart]:
    return list(get_ticket(ticket_id).parts)


def _load_part(session, ticket_id: str, part_id: int) -> TicketPart:
    load_ticket(session, ticket_id)
    part = session.execute(
        select(TicketPart).where(TicketPart.id == part_id, TicketPart.ticket_id == ticket_id)
    ).scalar_one_or_none()
    if part is None:
        raise PartNotFound(part_id)
    return part


def remove_part(ticket_id: str, part_id: int) -> None:
    session = get_db()
    part = _load_part(session, ticket_id, part_id)
    t = session.get(Ticket, ticket_id)
    t.parts.remove(part)
    session.commit()
    logger.info('part %s removed from ticket %s', part_id, ticket_id)


def update_part_status(ticket_id: str, part_id: int, new_status: str) -> TicketPart:
    validate_choice(new_status, TicketPart.ALL_STATUSES, 'status')
    session = get_db()
    part = _load_part(session, ticket_id, part_id)
    part.status = new_status
    session.commit()
    logger.info('part %s on ticket %s set to %s', part_id, ticket_id, new_status)
    return part


# ---------------- Images ---------------- #

def add_image(ticket_id: str, url: str, path: str, filename: str) -> TicketImage:
    session = get_db()
    t = load_ticket(session, ticket_id)
    image = TicketImage(url=url, path=path, filename=filename, uploaded_at=utcnow())
    t.images.append(image)
    session.commit()
    return image


def remove_image(ticket_id: str, image_id: int) -> TicketImage:
    session = get_db()
    t = load_ticket(session, ticket_id)
    image = next((i for i in t.images if i.id == image_id), None)
    if image is None:
        raise NotFound(description=f'Image {image_id} not found')
    t.images.remove(image)
    session.commit()
    return image


__all__ = [
    'TICKET_FSM', 'retry_on_conflict', 'generate_ticket_number', 'get_ticket', 'device_snapshot',
    'create_ticket', 'transition_ticket', 'require_technician', 'claim_technician', 'assign_technician', 'reassign_ticket',
    'add_note', 'get_notes', 'add_part', 'get_parts', 'remove_part', 'update_part_status',
    'add_image', 'remove_image',
]
