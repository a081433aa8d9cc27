"""
Callable functions blueprint.

    POST /api/v1/functions/<name>    Body: { "data": {...} }  (or the bare object)

Every call reloads the caller from the database, runs the registered
function, commits, then dispatches any outbox events. Errors come back as
``{"error": message, "code": <callable code>}`` with the code's status.
"""

import logging

from flask import Blueprint, jsonify

from buildtrack.auth import get_current_user
from buildtrack.blueprints import json_body
from buildtrack.core.exceptions import CallableError
from buildtrack.models import db
from buildtrack.services import outbox, user_service
from buildtrack.services.callable_functions import get_callable
from buildtrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

functions_bp = Blueprint("functions", __name__, url_prefix="/api/v1/functions")


@functions_bp.route("/<name>", methods=["POST"])
def call_function(name):
    fn = get_callable(name)
    if fn is None:
        return api_error(E.CALLABLE_NOT_FOUND, f"Unknown function: {name}")

    body = json_body()
    data = body.get("data") if isinstance(body.get("data"), dict) else body

    try:
        result = fn(get_current_user(), data)
        db.session.commit()
    except CallableError as e:
        db.session.rollback()
        logger.info("Callable %s rejected: %s", name, e)
        return api_error(e.code, e.message)
    except user_service.UserServiceError as e:
        db.session.rollback()
        return api_error(E.INVALID_ARGUMENT, e.message)
    except Exception as e:
        db.session.rollback()
        logger.exception("Callable %s failed", name)
        return api_error(E.CALLABLE_INTERNAL, f"Failed to run {name}: {e}")

    outbox.dispatch_after_commit()
    return jsonify(result), 200
