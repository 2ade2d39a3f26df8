"""Domain exceptions.

Each one is a werkzeug HTTP exception so the app-wide error handler renders it in
the standard ``{"error": {...}}`` shape without per-route try/except blocks.
Services raise them directly; they never need a request context.
"""
from __future__ import annotations
from typing import Optional
from werkzeug.exceptions import BadRequest, NotFound, Conflict


class ValidationFailed(BadRequest):
    pass


class InvalidTransition(BadRequest):
    def __init__(self, current: Optional[str], target: Optional[str], field_name: str = 'status'):
        self.current = current
        self.target = target
        super().__init__(description=f"Invalid {field_name} transition {current} -> {target}")


class ImageRejected(BadRequest):
    pass


class TicketNotFound(NotFound):
    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(description=f'Ticket {ticket_id} not found')


class DeviceNotFound(NotFound):
    def __init__(self, device_id: str):
        self.device_id = device_id
        super().__init__(description=f'Device {device_id} not found')


class UserNotFound(NotFound):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(description=f'User {user_id} not found')


class PartNotFound(NotFound):
    def __init__(self, part_id: int):
        self.part_id = part_id
        super().__init__(description=f'Part {part_id} not found')


class ConcurrentUpdate(Conflict):
    pass


__all__ = [
    'ValidationFailed', 'InvalidTransition', 'ImageRejected', 'TicketNotFound', 'DeviceNotFound',
    'UserNotFound', 'PartNotFound', 'ConcurrentUpdate',
]
