"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — simple 200 for load balancers
    GET /api/v1/health/live   — database + outbox + mail configuration status
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from buildtrack.models import db
from buildtrack.models.outbox import OutboxEvent
from buildtrack.services.email_service import EmailService

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok", "app": "Factory Standards Build Tracker"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Outbox backlog ───────────────────────────────────────────────
    if checks["database"]["status"] == "ok":
        checks["outbox"] = {
            "pending": OutboxEvent.query.filter_by(status="pending").count(),
            "failed": OutboxEvent.query.filter_by(status="failed").count(),
        }

    # ── Mailgun ──────────────────────────────────────────────────────
    checks["mailgun"] = {"status": "configured" if EmailService.is_configured() else "not_configured"}

    checks["app"] = {
        "debug": current_app.debug,
        "testing": current_app.testing,
    }
    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), 200 if overall else 503
