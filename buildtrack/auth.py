"""
Authentication helpers for route protection.

Usage:
    from buildtrack.auth import require_auth, get_current_user

    @bp.route("/guitars/mine")
    @require_auth
    def my_guitars():
        user = get_current_user()
        ...

The user row (and therefore the role) is loaded fresh per request from
the uid in the access token; a token for a deleted or disabled account is
treated as unauthenticated.
"""

import functools
import logging

from flask import g

from buildtrack.models import db
from buildtrack.models.auth import User
from buildtrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

_UNSET = object()


def get_current_user():
    """Return the authenticated, enabled User for this request, or None."""
    cached = getattr(g, "_current_user", _UNSET)
    if cached is not _UNSET:
        return cached

    user = None
    uid = getattr(g, "jwt_user_id", None)
    if uid:
        user = db.session.get(User, uid)
        if user is not None and user.disabled:
            logger.warning("Disabled user %s presented a valid token", uid)
            user = None
    g._current_user = user
    return user


def auth_error_message() -> str:
    if getattr(g, "jwt_error", None) == "expired":
        return "Token expired"
    return "User must be authenticated"


def require_auth(f):
    """Decorator: 401 unless a valid access token for an enabled user is present."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if get_current_user() is None:
            return api_error(E.UNAUTHORIZED, auth_error_message())
        return f(*args, **kwargs)
    return decorated
