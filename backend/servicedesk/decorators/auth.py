"""Route guards over the permission claims carried in the access token."""
import logging
from functools import wraps
from flask import abort
from flask_jwt_extended import verify_jwt_in_request
from servicedesk.services.policy import current_permissions, current_user_id

logger = logging.getLogger(__name__)


def _deny(codes):
    missing = sorted(set(codes) - current_permissions())
    logger.info('permission denied for %s, missing %s', current_user_id(), ','.join(missing))
    abort(403, description='Missing permission')


def require_permissions(*codes: str):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            if not set(codes) <= current_permissions():
                _deny(codes)
            return fn(*args, **kwargs)
        return wrapper
    return outer


def require_self_or_permissions(user_arg: str, *codes: str):
    """Let a user act on their own record; anyone else needs ``codes``."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            if kwargs.get(user_arg) != current_user_id() and not set(codes) <= current_permissions():
                _deny(codes)
            return fn(*args, **kwargs)
        return wrapper
    return outer
