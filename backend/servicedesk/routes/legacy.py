"""Endpoints of the first, unauthenticated backend, kept for clients still calling it."""
from flask import Blueprint, request
from servicedesk import get_db
from servicedesk.models.ticket import Ticket
from servicedesk.services.tickets import create_ticket
from servicedesk.utils.listing import iso

legacy_bp = Blueprint('legacy', __name__)


def _ticket_json(t: Ticket):
    return {
        'id': t.id,
        'ticket_number': t.ticket_number,
        'description': t.description,
        'status': t.status,
        'client_id': t.client_id,
        'technician_id': t.technician_id,
        'created_at': iso(t.created_at),
    }


@legacy_bp.get('/health')
def health():
    return {'status': 'Backend running'}


@legacy_bp.get('/api/tickets')
def list_tickets():
    rows = get_db().query(Ticket).order_by(Ticket.created_at.desc(), Ticket.id).all()
    return {'tickets': [_ticket_json(t) for t in rows]}


@legacy_bp.post('/api/tickets')
def add_ticket():
    data = request.get_json(silent=True) or {}
    t = create_ticket(None, data.get('description') or 'No description', legacy_number=True)
    return {'id': t.id, 'message': 'Ticket created'}
