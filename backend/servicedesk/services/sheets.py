"""Printable ticket form and tickets report.

The output is plain text laid out like the PDF forms; a renderer can typeset it
directly. Renderer fonts only cover ASCII, so every string is folded first.
"""
from __future__ import annotations
import unicodedata
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from servicedesk.models.user import utcnow

# letters that carry no combining mark under NFKD
_FOLD_EXTRA = str.maketrans({
    'ł': 'l', 'Ł': 'L', 'ø': 'o', 'Ø': 'O', 'đ': 'd', 'Đ': 'D', 'ß': 'ss', 'æ': 'ae', 'Æ': 'AE',
    'œ': 'oe', 'Œ': 'OE', 'þ': 'th', 'Þ': 'Th', '–': '-', '—': '-', '„': '"', '”': '"', '“': '"',
    '‘': "'", '’': "'", '…': '...',
})

WIDTH = 72


def ascii_fold(value: Any) -> str:
    text = '' if value is None else str(value)
    text = unicodedata.normalize('NFKD', text.translate(_FOLD_EXTRA))
    return text.encode('ascii', 'ignore').decode('ascii')


def _fmt_dt(dt: Optional[datetime]) -> str:
    return dt.strftime('%Y-%m-%d %H:%M') if dt else '-'


def _rows(pairs: Iterable[tuple]) -> List[str]:
    return [f'{ascii_fold(label):<22}{ascii_fold(value)}' for label, value in pairs]


def _section(title: str) -> List[str]:
    return ['', title, '-' * len(title)]


def _wrap(text: str, width: int = WIDTH) -> List[str]:
    words, lines, line = ascii_fold(text).split(), [], ''
    for w in words:
        if line and len(line) + 1 + len(w) > width:
            lines.append(line)
            line = w
        else:
            line = f'{line} {w}' if line else w
    if line:
        lines.append(line)
    return lines or ['-']


def ticket_sheet(ticket, client=None, technician=None) -> str:
    device: Dict[str, Any] = ticket.device or {}
    lines = ['=' * WIDTH, 'ServiceDesk Pro - Ticket Form', '=' * WIDTH]
    lines += _section('TICKET')
    lines += _rows([
        ('Number:', ticket.ticket_number),
        ('Status:', ticket.status),
        ('Created:', _fmt_dt(ticket.created_at)),
        ('Preferred delivery:', ticket.preferred_delivery_date or '-'),
    ])
    lines += _section('CLIENT')
    lines += _rows([
        ('Name:', getattr(client, 'full_name', None) or '-'),
        ('Email:', getattr(client, 'email', None) or '-'),
        ('Phone:', getattr(client, 'phone', None) or '-'),
    ])
    lines += _section('DEVICE')
    lines += _rows([
        ('Brand:', device.get('brand') or '-'),
        ('Model:', device.get('model') or '-'),
        ('Serial number:', device.get('serial_number') or '-'),
        ('Year:', device.get('year') or '-'),
    ])
    lines += _section('PROBLEM DESCRIPTION')
    lines += _wrap(ticket.description)
    if technician is not None:
        lines += _section('ASSIGNMENT')
        lines += _rows([
            ('Technician:', technician.full_name or '-'),
            ('Email:', technician.email or '-'),
            ('Phone:', technician.phone or '-'),
        ])
    lines += ['', f'Generated: {_fmt_dt(utcnow())}   Ticket ID: {ticket.id}']
    return '\n'.join(lines) + '\n'


def tickets_report(tickets: List[Any], stats: Dict[str, Any]) -> str:
    lines = ['=' * WIDTH, 'ServiceDesk Pro - Tickets Report', '=' * WIDTH]
    lines += _section('STATISTICS')
    lines += _rows([
        ('Total:', stats.get('total', 0)),
        ('Open:', stats.get('open', 0)),
        ('Closed:', stats.get('closed', 0)),
    ])
    lines += _rows((f'{status}:', count) for status, count in stats.get('per_status', {}).items())
    lines += _section('TICKETS')
    lines.append(f"{'No.':<5}{'Status':<20}{'Description':<35}{'Date':<12}")
    for idx, t in enumerate(tickets, start=1):
        desc = ascii_fold(t.description)
        if len(desc) > 30:
            desc = desc[:30] + '...'
        lines.append(f"{idx:<5}{ascii_fold(t.status)[:18]:<20}{desc:<35}{t.created_at.strftime('%Y-%m-%d') if t.created_at else '-':<12}")
    lines += ['', f'Generated: {_fmt_dt(utcnow())}']
    return '\n'.join(lines) + '\n'


__all__ = ['ascii_fold', 'ticket_sheet', 'tickets_report']
