"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/login         — Email + password → JWT pair
  POST /api/v1/auth/refresh       — Refresh token → new JWT pair
  POST /api/v1/auth/set-password  — Consume a one-time link token, set password
  GET  /api/v1/auth/me            — Current user profile
"""

import logging

import jwt as pyjwt
from flask import Blueprint, jsonify

from buildtrack.auth import get_current_user, require_auth
from buildtrack.blueprints import json_body
from buildtrack.models import db
from buildtrack.services import client_service, user_service
from buildtrack.services.jwt_service import decode_refresh_token, generate_token_pair
from buildtrack.services.permission_service import capabilities_for
from buildtrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


def _token_response(user):
    tokens = generate_token_pair(user.uid, user.role)
    return jsonify({**tokens, "user": user.to_dict()}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with email + password, return JWT pair.

    Body: { "email": "...", "password": "..." }
    """
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")

    user = user_service.authenticate(email, password)
    if user is None:
        logger.info("Failed login for %s", email)
        db.session.rollback()
        return api_error(E.UNAUTHORIZED, "Invalid email or password")

    if user.role == "client":
        client_service.record_activity(user, "login")
    db.session.commit()
    return _token_response(user)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """Body: { "refresh_token": "..." }"""
    token = json_body().get("refresh_token") or ""
    if not token:
        return api_error(E.VALIDATION_REQUIRED, "refresh_token is required")
    try:
        payload = decode_refresh_token(token)
    except pyjwt.ExpiredSignatureError:
        return api_error(E.UNAUTHORIZED, "Refresh token expired")
    except pyjwt.InvalidTokenError:
        return api_error(E.UNAUTHORIZED, "Invalid refresh token")

    user = user_service.get_user(payload.get("sub"))
    if user is None or user.disabled:
        return api_error(E.UNAUTHORIZED, "User not found or disabled")
    return _token_response(user)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/set-password
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/set-password", methods=["POST"])
def set_password():
    """
    Complete a set-password link issued by createUser / resetUserPassword.

    Body: { "token": "...", "password": "..." }
    """
    data = json_body()
    try:
        user = user_service.set_password_with_token(data.get("token") or "", data.get("password") or "")
    except user_service.UserServiceError as e:
        db.session.rollback()
        return api_error(E.VALIDATION_INVALID, e.message, status=e.status_code)
    db.session.commit()
    logger.info("Password set via link for uid=%s", user.uid)
    return _token_response(user)


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    user = get_current_user()
    return jsonify({
        **user.to_dict(),
        "capabilities": sorted(c.value for c in capabilities_for(user.role)),
    }), 200
