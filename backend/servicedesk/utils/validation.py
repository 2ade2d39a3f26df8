"""Reusable validation helpers for request payloads.

Everything here raises ValidationFailed (400) so handlers can validate inline
before anything is persisted.
"""
from __future__ import annotations
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional
from servicedesk.errors import ValidationFailed


def validate_choice(value: str, allowed: Iterable[str], field_name: str = 'status') -> str:
    """Validate that value is inside allowed.

    Returns the value (to enable inline usage) or raises.
    """
    if value not in tuple(allowed):
        raise ValidationFailed(description=f"{field_name} invalid")
    return value


def require_fields(data: Mapping[str, Any], *names: str):
    missing = [n for n in names if data.get(n) in (None, '') or (isinstance(data.get(n), str) and not data.get(n).strip())]
    if missing:
        raise ValidationFailed(description=f"{', '.join(missing)} required")


def parse_date(value: Any, field_name: str) -> Optional[date]:
    if value in (None, ''):
        return None
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ValidationFailed(description=f'{field_name} must be YYYY-MM-DD')


def parse_int(value: Any, field_name: str, minimum: Optional[int] = None, default: Optional[int] = None) -> Optional[int]:
    if value in (None, ''):
        return default
    try:
        out = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(description=f'{field_name} must be an integer')
    if minimum is not None and out < minimum:
        raise ValidationFailed(description=f'{field_name} must be >= {minimum}')
    return out


def parse_number(value: Any, field_name: str, default: float = 0) -> float:
    if value in (None, ''):
        return default
    try:
        out = float(value)
    except (TypeError, ValueError):
        raise ValidationFailed(description=f'{field_name} must be a number')
    if out < 0:
        raise ValidationFailed(description=f'{field_name} must be >= 0')
    return out

__all__ = ['validate_choice', 'require_fields', 'parse_date', 'parse_int', 'parse_number']
