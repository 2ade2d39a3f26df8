from __future__ import annotations
from flask import Blueprint, request, make_response
from sqlalchemy.orm import selectinload
from servicedesk.decorators.auth import require_permissions
from servicedesk.services.policy import scope_ticket_query
from servicedesk.services.stats import compute_stats, average_repair_time, parts_statistics, technician_performance
from servicedesk.services.assignment import technician_loads
from servicedesk.services.sheets import tickets_report
from servicedesk.utils.listing import iso
from servicedesk.utils.validation import parse_date
from servicedesk import get_db
from servicedesk.models.ticket import Ticket
from servicedesk.models.user import utcnow

rpt_bp = Blueprint('reports', __name__)


def _load_tickets():
    """Tickets matching the report filters, children eagerly loaded for the aggregations."""
    session = get_db()
    q = scope_ticket_query(session.query(Ticket)).options(
        selectinload(Ticket.status_history),
        selectinload(Ticket.parts),
    )
    start = parse_date(request.args.get('start_date'), 'start_date')
    end = parse_date(request.args.get('end_date'), 'end_date')
    if start:
        q = q.filter(Ticket.created_at >= start)
    if end:
        q = q.filter(Ticket.created_at < end)
    status = request.args.get('status')
    if status:
        q = q.filter(Ticket.status == status)
    technician_id = request.args.get('technician_id')
    if technician_id:
        q = q.filter(Ticket.technician_id == technician_id)
    return q.order_by(Ticket.created_at.desc(), Ticket.id).all()


@rpt_bp.get('/tickets')
@require_permissions('RPT.READ')
def tickets_dashboard():
    tickets = _load_tickets()
    return {
        'stats': compute_stats(tickets),
        'average_repair_time': average_repair_time(tickets),
        'parts': parts_statistics(tickets),
        'technicians': technician_performance(tickets),
        'generated_at': iso(utcnow()),
    }


@rpt_bp.get('/technicians/load')
@require_permissions('RPT.READ')
def technicians_load():
    loads = technician_loads()
    return {'data': [{'technician_id': tid, 'open_tickets': count} for tid, count in loads.items()]}


@rpt_bp.get('/tickets/sheet')
@require_permissions('RPT.READ')
def tickets_sheet():
    tickets = _load_tickets()
    resp = make_response(tickets_report(tickets, compute_stats(tickets)))
    resp.headers['Content-Type'] = 'text/plain; charset=us-ascii'
    resp.headers['Content-Disposition'] = f"attachment; filename=tickets-report-{utcnow().strftime('%Y-%m-%d')}.txt"
    return resp
