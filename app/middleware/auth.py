"""
User Authentication Middleware.

Identity is resolved upstream by the account service; requests reaching the
pricing API carry the authenticated user's ID in the X-User-Id header.
"""
from functools import wraps
from flask import request, g
from ..extensions import db
from ..models import User
from ..utils.errors import unauthorized, not_found, forbidden


def get_user_id_from_request():
    """Parse X-User-Id, returning None when missing or malformed."""
    raw = request.headers.get('X-User-Id')
    if not raw:
        return None
    try:
        return int(raw)
    except (ValueError, TypeError):
        return None


def require_user(f):
    """
    Decorator to require an authenticated storefront user.

    Sets g.user and g.user_id.

    Usage:
        @require_user
        def my_endpoint():
            user_id = g.user_id
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = get_user_id_from_request()
        if user_id is None:
            return unauthorized('Missing or invalid X-User-Id header')

        user = db.session.get(User, user_id)
        if not user:
            return not_found(f'User {user_id} not found')

        g.user = user
        g.user_id = user.id
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Decorator to require an administrator.

    Must be used after @require_user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, 'user', None)
        if not user:
            return unauthorized()
        if not user.is_admin:
            return forbidden('Administrator access required')
        return f(*args, **kwargs)

    return decorated_function
