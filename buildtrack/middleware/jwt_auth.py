"""
JWT Auth Middleware — parses the Bearer token, sets g.jwt_*.

Sets:
  g.jwt_user_id  — uid from the token's ``sub`` (None when absent/invalid)
  g.jwt_role     — role claim at issue time (informational)
  g.jwt_error    — "expired" | "invalid" | None, for 401 messages

The middleware never rejects a request itself; ``require_auth`` and the
callable endpoints decide.
"""

import logging

import jwt as pyjwt
from flask import g, request

from buildtrack.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Path prefixes that carry a bearer token
JWT_PREFIXES = ("/api/v1/", "/uploads/")

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/refresh",
    "/api/v1/auth/set-password",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_role = None
        g.jwt_error = None
        g.pop("_current_user", None)

        path = request.path
        if not path.startswith(JWT_PREFIXES):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
            g.jwt_user_id = payload.get("sub")
            g.jwt_role = payload.get("role")
        except pyjwt.ExpiredSignatureError:
            g.jwt_error = "expired"
        except pyjwt.InvalidTokenError:
            logger.info("Rejected invalid bearer token on %s", path)
            g.jwt_error = "invalid"
