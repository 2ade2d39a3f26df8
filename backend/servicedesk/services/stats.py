"""Dashboard aggregations over an in-memory list of tickets.

All functions are pure: they take already loaded Ticket objects (or anything with
the same attributes) and never touch the session.
"""
from __future__ import annotations
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from servicedesk.models.ticket import Ticket, TicketPart

MS_PER_DAY = 1000 * 60 * 60 * 24


def _utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def compute_stats(tickets: Iterable[Any]) -> Dict[str, Any]:
    per_status = OrderedDict((s, 0) for s in Ticket.ALL_STATUSES)
    total = 0
    for t in tickets:
        total += 1
        per_status[t.status] = per_status.get(t.status, 0) + 1
    closed = per_status.get(Ticket.STATUS_CLOSED, 0)
    return {
        'total': total,
        'open': total - closed,
        'closed': closed,
        'per_status': dict(per_status),
    }


def closed_at(ticket: Any) -> Optional[datetime]:
    for entry in ticket.status_history or []:
        if entry.status == Ticket.STATUS_CLOSED:
            return entry.timestamp
    return None


def average_repair_time(tickets: Iterable[Any]) -> float:
    """Mean days from creation to the Closed history entry, rounded to 2 decimals.

    Closed tickets lacking a Closed history entry are left out of both the sum and
    the count.
    """
    durations_ms: List[float] = []
    for t in tickets:
        if t.status != Ticket.STATUS_CLOSED:
            continue
        closed = closed_at(t)
        if closed is None or t.created_at is None:
            continue
        durations_ms.append((_utc(closed) - _utc(t.created_at)).total_seconds() * 1000)
    if not durations_ms:
        return 0
    return round(sum(durations_ms) / len(durations_ms) / MS_PER_DAY, 2)


def parts_statistics(tickets: Iterable[Any]) -> Dict[str, Any]:
    by_status = {s: 0 for s in TicketPart.ALL_STATUSES}
    by_type = {t: 0 for t in TicketPart.ALL_TYPES}
    items: Dict[str, Dict[str, Any]] = {}
    total_cost = 0.0
    for t in tickets:
        for p in t.parts or []:
            qty = p.quantity or 0
            cost = (p.unit_price or 0) * qty
            by_status[p.status] = by_status.get(p.status, 0) + qty
            by_type[p.type] = by_type.get(p.type, 0) + qty
            total_cost += cost
            key = p.sku or p.description
            item = items.setdefault(key, {
                'sku': p.sku,
                'description': p.description,
                'manufacturer': p.manufacturer,
                'quantity': 0,
                'total_cost': 0.0,
                'tickets': 0,
            })
            item['quantity'] += qty
            item['total_cost'] = round(item['total_cost'] + cost, 2)
            item['tickets'] += 1
    ranked = sorted(items.values(), key=lambda i: (-i['quantity'], i['description']))
    return {
        'total_quantity': sum(by_type.values()),
        'total_cost': round(total_cost, 2),
        'by_status': by_status,
        'by_type': by_type,
        'items': ranked,
    }


def technician_performance(tickets: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
    perf: Dict[str, Dict[str, Any]] = {}
    for t in tickets:
        if not t.technician_id:
            continue
        row = perf.setdefault(t.technician_id, {'total': 0, 'open': 0, 'closed': 0, 'closure_rate': 0.0})
        row['total'] += 1
        if t.status == Ticket.STATUS_CLOSED:
            row['closed'] += 1
        else:
            row['open'] += 1
    for row in perf.values():
        row['closure_rate'] = round(row['closed'] / row['total'] * 100, 1) if row['total'] else 0.0
    return perf


__all__ = ['compute_stats', 'closed_at', 'average_repair_time', 'parts_statistics', 'technician_performance']
