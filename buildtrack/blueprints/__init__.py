"""
Factory Standards Build Tracker
Blueprint helpers shared by every ``/api/v1`` blueprint.

    paginate_query                    limit/offset pagination
    json_body                         request JSON as a dict (never None)
    commit_and_dispatch               commit, then run outbox handlers
    register_service_error_handlers   map service exceptions to JSON errors
"""

import logging

from flask import request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from buildtrack.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from buildtrack.models import db
from buildtrack.services import outbox
from buildtrack.services.storage_service import StorageError
from buildtrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def arg_flag(name: str) -> bool:
    return (request.args.get(name) or "").lower() in ("1", "true", "yes")


def commit_and_dispatch():
    """Commit the request's transaction, then dispatch queued outbox events.

    A duplicate-key failure surfaces as ``ConflictError`` so the blueprint
    error handler answers 409. Outbox failures never undo the commit.
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError(resource="record", field="unique", message="Duplicate or constraint violation")
    outbox.dispatch_after_commit()


def register_service_error_handlers(bp):
    """Attach the standard service-exception handlers to ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        db.session.rollback()
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        db.session.rollback()
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        db.session.rollback()
        return api_error(E.CONFLICT_STATE, str(error), details={"field": error.field, "value": error.value})

    @bp.errorhandler(PermissionDenied)
    def _handle_permission(error: PermissionDenied):
        db.session.rollback()
        return api_error(E.FORBIDDEN, "Permission denied", details={"required": error.capability})

    @bp.errorhandler(StorageError)
    def _handle_storage(error: StorageError):
        db.session.rollback()
        return api_error(E.VALIDATION_INVALID, str(error))

    @bp.errorhandler(SQLAlchemyError)
    def _handle_db(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.DATABASE, "Database error")

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        # abort() keeps its own status
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
