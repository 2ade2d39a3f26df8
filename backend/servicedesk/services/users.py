from __future__ import annotations
import logging
import secrets
import string
import time
import uuid
from typing import Any, Mapping, Optional

from sqlalchemy import select

from servicedesk import get_db
from servicedesk.errors import UserNotFound, ValidationFailed
from servicedesk.models.user import User
from servicedesk.utils.validation import require_fields, validate_choice

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
UPDATABLE_FIELDS = ('email', 'full_name', 'phone')


def profile_id() -> str:
    """Id for a user without an identity account: user-<ms>-<9 base36 chars>."""
    suffix = ''.join(secrets.choice(_BASE36) for _ in range(9))
    return f'user-{time.time_ns() // 1_000_000}-{suffix}'


def get_user(user_id: str) -> User:
    user = get_db().get(User, user_id)
    if user is None:
        raise UserNotFound(user_id)
    return user


def find_by_email(email: str) -> Optional[User]:
    return get_db().execute(select(User).where(User.email == email, User.has_account.is_(True))).scalar_one_or_none()


def create_user_with_account(data: Mapping[str, Any], password: str, created_by: Optional[str] = None) -> User:
    require_fields(data, 'email', 'full_name')
    if not password:
        raise ValidationFailed(description='email and password required to create an account')
    if find_by_email(data['email']) is not None:
        raise ValidationFailed(description='email already registered')
    role = validate_choice(data.get('role') or User.ROLE_CLIENT, User.ALL_ROLES, 'role')
    user = User(
        id=uuid.uuid4().hex,
        email=data['email'],
        full_name=data['full_name'],
        role=role,
        phone=data.get('phone') or '',
        created_by=created_by,
        active=True,
    )
    user.set_password(password)
    session = get_db()
    session.add(user)
    session.commit()
    logger.info('user %s (%s) created with account', user.id, role)
    return user


def create_user_profile(data: Mapping[str, Any], created_by: Optional[str] = None) -> User:
    require_fields(data, 'full_name')
    role = validate_choice(data.get('role') or User.ROLE_CLIENT, User.ALL_ROLES, 'role')
    user = User(
        id=profile_id(),
        email=data.get('email') or '',
        full_name=data['full_name'],
        role=role,
        phone=data.get('phone') or '',
        created_by=created_by,
        has_account=False,
        active=True,
    )
    session = get_db()
    session.add(user)
    session.commit()
    logger.info('user profile %s (%s) created by %s', user.id, role, created_by)
    return user


def _email_taken(email: str, exclude_id: str) -> bool:
    q = select(User.id).where(User.email == email, User.has_account.is_(True), User.id != exclude_id)
    return get_db().execute(q.limit(1)).first() is not None


def update_user(user_id: str, data: Mapping[str, Any]) -> User:
    user = get_user(user_id)
    email = data.get('email')
    # login looks accounts up by email, so it must stay unique among them
    if user.has_account and email and email != user.email and _email_taken(email, user_id):
        raise ValidationFailed(description='email already registered')
    for key in UPDATABLE_FIELDS:
        if key in data and data[key] is not None:
            setattr(user, key, data[key])
    get_db().commit()
    logger.info('user %s updated', user_id)
    return user


def change_role(user_id: str, new_role: str) -> User:
    validate_choice(new_role, User.ALL_ROLES, 'role')
    user = get_user(user_id)
    user.role = new_role
    get_db().commit()
    logger.info('user %s role changed to %s', user_id, new_role)
    return user


def set_active(user_id: str, active: bool) -> User:
    user = get_user(user_id)
    user.active = active
    get_db().commit()
    logger.info('user %s %s', user_id, 'activated' if active else 'deactivated')
    return user


def delete_user(user_id: str) -> None:
    user = get_user(user_id)
    session = get_db()
    session.delete(user)
    session.commit()
    logger.info('user %s deleted', user_id)


__all__ = [
    'profile_id', 'get_user', 'find_by_email', 'create_user_with_account', 'create_user_profile',
    'update_user', 'change_role', 'set_active', 'delete_user',
]
