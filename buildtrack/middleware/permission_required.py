"""
Permission Decorators — capability checks for route protection.

Usage:
    @bp.route("/runs", methods=["POST"])
    @require_capability(Capability.RUNS_MANAGE)
    def create_run():
        ...

Returns 401 when no authenticated user is present and 403 when the user's
role does not grant the capability. Both paths go through
``permission_service.has_capability``.
"""

import functools
import logging

from flask import request

from buildtrack.auth import auth_error_message, get_current_user
from buildtrack.services.permission_service import Capability, has_capability
from buildtrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def require_capability(capability: Capability):
    """Decorator: require the current user's role to grant ``capability``."""
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = get_current_user()
            if user is None:
                return api_error(E.UNAUTHORIZED, auth_error_message())

            if not has_capability(user.role, capability):
                logger.warning(
                    "User %s (role=%s) denied: missing '%s' on %s",
                    user.uid, user.role, capability.value, request.path,
                )
                return api_error(E.FORBIDDEN, "Permission denied",
                                 details={"required": capability.value})

            return f(*args, **kwargs)
        return decorated
    return decorator
