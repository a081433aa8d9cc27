"""
Factory Standards Build Tracker
Outbox event handlers.

Registered on import (``create_app`` imports this module). Each email
handler loads the Mailgun configuration first and does nothing when it is
missing; sends go out once per recipient, are recorded in EmailLog and
are never retried here. The email handlers return the number of sends
attempted.

Events:
    guitar.stage_changed           client email on a stage change
    run_update.created             broadcast email to the run's clients
    custom_shop_request.created    acknowledgement + staff notify email
    note_comment.created           in-app notification to all staff
    run_update_comment.created     in-app notification to all staff
    invoice.payment_pending        in-app notification to all staff
"""

import logging

from flask import current_app

from buildtrack.models import db
from buildtrack.models.custom_shop import CustomShopRequest
from buildtrack.models.guitar import Guitar
from buildtrack.models.run import Run, RunStage, RunUpdate
from buildtrack.services import user_service
from buildtrack.services.email_service import EmailService
from buildtrack.services.email_templates import (
    custom_shop_staff_notify_html,
    custom_shop_thank_you_html,
    run_update_html,
    stage_change_html,
)
from buildtrack.services.notification import NotificationService
from buildtrack.services.outbox import register_handler
from buildtrack.services.run_update_service import run_client_uids

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 80


def guitar_label(model, finish):
    model = model or "Your guitar"
    return f"{model} – {finish}" if finish else model


def _stage_label(stage_id):
    stage = db.session.get(RunStage, stage_id) if stage_id else None
    if stage is None:
        return stage_id
    return stage.label or stage.client_status_label or stage.id


def _preview(message):
    message = message or ""
    return message[:PREVIEW_LENGTH] + "…" if len(message) > PREVIEW_LENGTH else message


# ═══════════════════════════════════════════════════════════════
# Email handlers
# ═══════════════════════════════════════════════════════════════
def handle_guitar_stage_change(before: dict, after: dict) -> int:
    cfg = EmailService.get_config()
    if cfg is None:
        return 0
    if before.get("stage_id") == after.get("stage_id"):
        return 0
    client_uid = after.get("client_uid")
    if not client_uid:
        return 0

    to = user_service.resolve_email(client_uid)
    if not to:
        logger.warning("No email for client %s; stage change email skipped", client_uid,
                       extra={"guitar_id": after.get("id")})
        return 0

    run = db.session.get(Run, after.get("run_id")) if after.get("run_id") else None
    run_name = (run.name if run else None) or "Your run"
    new_label = _stage_label(after.get("stage_id"))
    old_label = _stage_label(before.get("stage_id"))
    label = guitar_label(after.get("model"), after.get("finish"))

    subject = f"Update: {label} – {new_label}"
    html = stage_change_html(EmailService.branding(cfg), label, run_name, old_label, new_label)
    text = (
        f"Your guitar {label} ({run_name}) has moved from {old_label} to {new_label}. "
        "Log in to the portal for details."
    )
    EmailService.send(to=to, subject=subject, html=html, text=text,
                      template_name="stage_change", config=cfg)
    return 1


def handle_run_update_created(run_id: str, update_id: str) -> int:
    cfg = EmailService.get_config()
    if cfg is None:
        return 0
    update = db.session.get(RunUpdate, update_id)
    if update is None or not update.visible_to_clients:
        return 0

    title = update.title or "Run update"
    message = update.message or ""
    author_name = update.author_name or "The team"
    run = db.session.get(Run, run_id)
    run_name = (run.name if run else None) or "the run"

    emails = []
    for uid in run_client_uids(run_id):
        email = user_service.resolve_email(uid)
        if email:
            emails.append(email)

    subject = f"{run_name}: {title}"
    html = run_update_html(EmailService.branding(cfg), run_name, title, author_name, message)
    text = f"{run_name}: {title}\n\n{author_name}:\n{message}\n\nLog in to the portal for full details."
    for to in emails:
        EmailService.send(to=to, subject=subject, html=html, text=text,
                          template_name="run_update", config=cfg)
    logger.info("Run update %s emailed to %d client(s)", update_id, len(emails),
                extra={"run_id": run_id})
    return len(emails)


def custom_shop_summary(model, description):
    description = description or ""
    if model:
        suffix = "…" if len(description) > 200 else ""
        return f"{model}: {description[:200]}{suffix}"
    return description[:300] + ("…" if len(description) > 300 else "")


def handle_custom_shop_request_created(request_id: str) -> int:
    cfg = EmailService.get_config()
    if cfg is None:
        logger.info("Mailgun not configured; skipping Custom Shop emails")
        return 0
    request = db.session.get(CustomShopRequest, request_id)
    if request is None:
        logger.warning("Custom Shop request %s no longer exists", request_id)
        return 0
    email = request.submitter_email or ""
    if not email:
        logger.warning("Custom Shop request missing submitter_email (request %s)", request_id)
        return 0

    number = request.request_number
    portal_url = (cfg.portal_url or "").rstrip("/")
    view_url = f"{portal_url}/custom-shop/requests/{request.id}" if portal_url else ""
    branding = EmailService.branding(cfg)

    EmailService.send(
        to=email,
        subject=f"We've received your Custom Shop request ({number})",
        html=custom_shop_thank_you_html(branding, number, view_url),
        text=(
            "Thank you for your Custom Shop request. We've received it and will review it "
            f"shortly. Your request number is {number}. View your request: {view_url}. "
            "Builds may start 6–18 months from registration; we'll be in touch once we've "
            "reviewed your request."
        ),
        no_cc=True,
        template_name="custom_shop_thank_you",
        config=cfg,
    )

    name = request.submitter_name
    summary = custom_shop_summary(request.model, request.guitar_description)
    submitter = f"{name} <{email}>" if name else email
    EmailService.send(
        to=current_app.config.get("STAFF_EMAIL") or "guitars@ormsbyguitars.com",
        subject=f"New Custom Shop request: {number} from {name or email}",
        html=custom_shop_staff_notify_html(branding, name, email, number, summary),
        text=(
            f"New Custom Shop request {number}\nFrom: {submitter}\n\nSummary: {summary}\n\n"
            "Log in to the portal to view and manage Custom Shop requests."
        ),
        template_name="custom_shop_staff_notify",
        config=cfg,
    )
    logger.info("Custom Shop emails sent for %s", number)
    return 2


def send_test_emails(to: str) -> int:
    """Sample stage-change and run-update emails. Caller checks configuration."""
    cfg = EmailService.get_config()
    branding = EmailService.branding(cfg)
    label = "Hype GTR – Interstellar"
    run_name = "Perth Run #7 – March 2026"

    EmailService.send(
        to=to,
        subject=f"Update: {label} – Finishing",
        html=stage_change_html(branding, label, run_name, "Neck Carve & Routing", "Finishing"),
        text=(
            f"Your guitar {label} ({run_name}) has moved from Neck Carve & Routing to Finishing. "
            "Log in to the portal for details."
        ),
        template_name="test_stage_change",
        config=cfg,
    )
    EmailService.send(
        to=to,
        subject=f"{run_name}: Week 3 progress",
        html=run_update_html(
            branding, run_name, "Week 3 progress", "The Factory Team",
            "This is a test of the run update email.\n\nYour builds are moving along nicely. "
            "Log in to the portal to see photos and full details.",
        ),
        text=(
            f"{run_name}: Week 3 progress\n\nThe Factory Team:\nThis is a test of the run update "
            "email.\n\nYour builds are moving along nicely. Log in to the portal for full details."
        ),
        template_name="test_run_update",
        config=cfg,
    )
    return 2


# ═══════════════════════════════════════════════════════════════
# Outbox registrations
# ═══════════════════════════════════════════════════════════════
@register_handler("guitar.stage_changed")
def on_guitar_stage_changed(payload):
    handle_guitar_stage_change(payload.get("before") or {}, payload.get("after") or {})


@register_handler("run_update.created")
def on_run_update_created(payload):
    handle_run_update_created(payload["run_id"], payload["update_id"])


@register_handler("custom_shop_request.created")
def on_custom_shop_request_created(payload):
    handle_custom_shop_request_created(payload["request_id"])


@register_handler("note_comment.created")
def on_note_comment_created(payload):
    guitar = db.session.get(Guitar, payload["guitar_id"])
    if guitar is None:
        return
    author_name = payload.get("author_name") or "Someone"
    run_name = (guitar.run.name if guitar.run else None) or "the run"
    label = " – ".join(p for p in (guitar.model, guitar.finish) if p) or "Guitar"
    NotificationService.notify_all_staff(
        type="guitar_note_comment",
        title=f"New comment on {label}",
        message=f"{author_name}: {_preview(payload.get('message'))}",
        guitar_id=guitar.id,
        run_id=guitar.run_id,
        note_id=payload.get("note_id"),
        metadata={
            "guitarModel": guitar.model,
            "guitarFinish": guitar.finish,
            "customerName": guitar.customer_name,
            "runName": run_name,
            "authorName": author_name,
        },
        exclude_uid=payload.get("author_uid"),
    )


@register_handler("run_update_comment.created")
def on_run_update_comment_created(payload):
    run = db.session.get(Run, payload["run_id"])
    update = db.session.get(RunUpdate, payload["update_id"])
    run_name = (run.name if run else None) or "Run"
    update_title = (update.title if update else None) or "Update"
    author_name = payload.get("author_name") or "Someone"
    NotificationService.notify_all_staff(
        type="run_update_comment",
        title=f"New comment on run update: {update_title}",
        message=f"{author_name} on {run_name}: {_preview(payload.get('message'))}",
        run_id=payload["run_id"],
        metadata={"runName": run_name, "updateTitle": update_title, "authorName": author_name},
        exclude_uid=payload.get("author_uid"),
    )


@register_handler("invoice.payment_pending")
def on_invoice_payment_pending(payload):
    title = payload.get("title") or "Invoice"
    amount = payload.get("amount") or 0
    currency = payload.get("currency") or "AUD"
    NotificationService.notify_all_staff(
        type="payment_pending_approval",
        title="Payment recorded – awaiting approval",
        message=f"Client recorded {currency} {amount:,.2f} for invoice: {title}. Please review and approve.",
        guitar_id=payload.get("guitar_id"),
        metadata={
            "invoiceTitle": title,
            "amount": amount,
            "currency": currency,
            "clientUid": payload.get("client_uid"),
            "invoiceId": payload.get("invoice_id"),
        },
    )
