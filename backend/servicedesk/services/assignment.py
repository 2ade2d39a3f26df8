"""Technician assignment by least load.

Load is the number of non-Closed tickets assigned to a technician. Technicians
without tickets count as zero; ties go to the lowest technician id so the choice
is reproducible.
"""
from __future__ import annotations
import logging
from collections import Counter
from typing import Dict, Iterable, Optional

from sqlalchemy import select, func

from servicedesk import get_db
from servicedesk.models.ticket import Ticket
from servicedesk.models.user import User, utcnow
from servicedesk.services.tickets import claim_technician, retry_on_conflict, load_ticket

logger = logging.getLogger(__name__)


def pick_least_loaded(technician_ids: Iterable[str], open_ticket_technician_ids: Iterable[Optional[str]]) -> Optional[str]:
    """Return the technician with the fewest open tickets, or None without technicians.

    open_ticket_technician_ids holds one entry per open ticket (None when unassigned).
    """
    load = Counter(tid for tid in open_ticket_technician_ids if tid)
    candidates = sorted(set(technician_ids))
    if not candidates:
        return None
    return min(candidates, key=lambda tid: (load.get(tid, 0), tid))


def _technician_seqs(session) -> Dict[str, int]:
    """Active technician ids mapped to their assignment counter."""
    q = select(User.id, User.assignment_seq).where(User.role == User.ROLE_TECHNICIAN, User.active.is_(True))
    return {tid: seq for tid, seq in session.execute(q).all()}


def _technician_ids(session):
    return sorted(_technician_seqs(session))


def _open_ticket_technicians(session):
    q = select(Ticket.technician_id).where(Ticket.status != Ticket.STATUS_CLOSED, Ticket.technician_id.is_not(None))
    return list(session.execute(q).scalars())


def least_loaded_technician() -> Optional[str]:
    session = get_db()
    return pick_least_loaded(_technician_ids(session), _open_ticket_technicians(session))


def technician_load(technician_id: str) -> int:
    session = get_db()
    q = select(func.count(Ticket.id)).where(Ticket.technician_id == technician_id, Ticket.status != Ticket.STATUS_CLOSED)
    return int(session.execute(q).scalar_one())


def technician_loads() -> dict:
    session = get_db()
    counts = dict(
        session.execute(
            select(Ticket.technician_id, func.count(Ticket.id))
            .where(Ticket.status != Ticket.STATUS_CLOSED, Ticket.technician_id.is_not(None))
            .group_by(Ticket.technician_id)
        ).all()
    )
    return {tid: int(counts.get(tid, 0)) for tid in _technician_ids(session)}


def assign_least_loaded(ticket_id: str, assigned_by: str) -> Optional[str]:
    """Select the least loaded technician and record the assignment in one commit.

    The counters are read before the loads; claiming the chosen technician's counter
    fails if another assignment to them committed in between, and the selection is
    replayed against the new loads.

    Returns the chosen technician id, or None (ticket left unassigned) when there are
    no active technicians.
    """
    def step(session):
        t = load_ticket(session, ticket_id)
        seqs = _technician_seqs(session)
        chosen = pick_least_loaded(seqs, _open_ticket_technicians(session))
        if chosen is None:
            return None
        claim_technician(session, chosen, seen_seq=seqs[chosen])
        t.technician_id = chosen
        t.assigned_at = utcnow()
        t.assigned_by = assigned_by
        session.flush()
        return chosen

    chosen = retry_on_conflict(step)
    if chosen is None:
        logger.warning('no active technician available for ticket %s', ticket_id)
    else:
        logger.info('ticket %s auto-assigned to technician %s', ticket_id, chosen)
    return chosen


__all__ = ['pick_least_loaded', 'least_loaded_technician', 'technician_load', 'technician_loads', 'assign_least_loaded']
