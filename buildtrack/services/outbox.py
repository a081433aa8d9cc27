"""
Outbox Service — transactional side effects.

Writes that should trigger emails or fan-out notifications enqueue an
OutboxEvent in the same transaction. After commit the events are
dispatched to the handler registered for their type; a dispatcher first
claims an event by moving it to ``dispatching``. A handler failure
rolls back only the handler's own work; the event is marked ``failed``
with the error and the original write stays committed. Failed events are
not retried automatically; ``flask outbox-dispatch --retry-failed``
re-runs them.

Usage:
    from buildtrack.services import outbox

    outbox.enqueue("guitar.stage_changed", {"before": ..., "after": ...})
    db.session.commit()
    outbox.dispatch_after_commit()
"""

import logging
from datetime import datetime, timezone
from typing import Callable

from flask import current_app
from sqlalchemy import update

from buildtrack.models import db
from buildtrack.models.outbox import OutboxEvent

logger = logging.getLogger(__name__)

_handler_registry: dict[str, Callable[[dict], None]] = {}


def register_handler(event_type: str):
    """Decorator to register the handler of an event type.

    Usage:
        @register_handler("run_update.created")
        def on_run_update_created(payload):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _handler_registry[event_type] = fn
        return fn
    return decorator


def get_handler(event_type: str):
    return _handler_registry.get(event_type)


def enqueue(event_type: str, payload: dict) -> OutboxEvent:
    """Add an event to the current transaction (flush only)."""
    event = OutboxEvent(event_type=event_type, payload=payload, status="pending")
    db.session.add(event)
    db.session.flush()
    return event


def claim(event_id: int, statuses) -> bool:
    """
    Atomically move an event to ``dispatching`` and commit.

    Returns False when the event is no longer in ``statuses`` because
    another dispatcher claimed it first.
    """
    result = db.session.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id == event_id, OutboxEvent.status.in_(statuses))
        .values(status="dispatching", attempts=OutboxEvent.attempts + 1)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def dispatch_pending(limit: int = 100, include_failed: bool = False) -> dict:
    """
    Run handlers for pending (optionally failed) events in creation order.

    Every event is claimed and the claim committed before its handler
    runs, so concurrent dispatchers never run the same event twice. Each
    event is committed on its own so one failure never affects the
    others.

    Returns:
        {"dispatched": n, "failed": n}
    """
    statuses = ["pending", "failed"] if include_failed else ["pending"]
    event_ids = [
        row.id for row in
        db.session.query(OutboxEvent.id)
        .filter(OutboxEvent.status.in_(statuses))
        .order_by(OutboxEvent.id)
        .limit(limit)
        .all()
    ]

    summary = {"dispatched": 0, "failed": 0}
    for event_id in event_ids:
        if not claim(event_id, statuses):
            logger.debug("Outbox event %s already claimed", event_id)
            continue
        event = db.session.get(OutboxEvent, event_id)
        handler = get_handler(event.event_type)
        if handler is None:
            logger.error("No outbox handler for event_type=%s (event %s)", event.event_type, event_id)
            _mark_failed(event_id, f"No handler registered for {event.event_type}")
            summary["failed"] += 1
            continue

        try:
            handler(event.payload or {})
            event.status = "dispatched"
            event.last_error = None
            event.dispatched_at = datetime.now(timezone.utc)
            db.session.commit()
            summary["dispatched"] += 1
        except Exception as exc:
            db.session.rollback()
            logger.exception(
                "Outbox handler failed event=%s type=%s", event_id, event.event_type,
                extra={"event_type": event.event_type},
            )
            _mark_failed(event_id, str(exc))
            summary["failed"] += 1

    return summary


def _mark_failed(event_id: int, error: str) -> None:
    event = db.session.get(OutboxEvent, event_id)
    event.status = "failed"
    event.last_error = error[:2000]
    db.session.commit()


def dispatch_after_commit() -> dict | None:
    """Dispatch right away when OUTBOX_DISPATCH_INLINE is enabled."""
    if not current_app.config.get("OUTBOX_DISPATCH_INLINE", True):
        return None
    return dispatch_pending()
