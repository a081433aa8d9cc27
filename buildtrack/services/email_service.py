"""
Factory Standards Build Tracker
Email Service.

Sends transactional email through the Mailgun gateway and records every
attempt in EmailLog. When Mailgun is not configured (no api key or no
domain) sends are skipped with an info log and nothing is recorded.

Configuration (env vars):
    MAILGUN_API_KEY     API key (required to send)
    MAILGUN_DOMAIN      Sending domain (required to send)
    MAILGUN_FROM_NAME   Display name (default: Ormsby Guitars)
    MAILGUN_FROM_EMAIL  From address (default: noreply@<domain>)
    MAILGUN_API_HOST    API base (default: https://api.mailgun.net)
    MAILGUN_CC          Copy address added to every email unless no_cc
    PORTAL_URL          Link target of the "Log in" button
    LOGO_URL            Header logo
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app

from buildtrack.integrations.mailgun_gateway import (
    MailgunConfig,
    load_mailgun_config,
    mailgun_gateway,
)
from buildtrack.models import db
from buildtrack.models.email_log import EmailLog
from buildtrack.services.email_templates import Branding

logger = logging.getLogger(__name__)


class EmailService:
    """Stateless email sender."""

    @staticmethod
    def get_config() -> MailgunConfig | None:
        return load_mailgun_config(current_app.config)

    @classmethod
    def is_configured(cls) -> bool:
        return cls.get_config() is not None

    @classmethod
    def branding(cls, config: MailgunConfig | None = None) -> Branding:
        cfg = config or cls.get_config()
        if cfg is None:
            return Branding(brand_name=current_app.config.get("MAILGUN_FROM_NAME") or "Ormsby Guitars")
        return Branding.from_mailgun(cfg)

    @classmethod
    def send(
        cls,
        *,
        to: str,
        subject: str,
        html: str,
        text: str | None = None,
        no_cc: bool = False,
        template_name: str | None = None,
        config: MailgunConfig | None = None,
    ) -> EmailLog | None:
        """
        Send one email and log it.

        Returns:
            The EmailLog row (status 'sent' or 'failed'), or None when
            Mailgun is not configured. Failures are logged, never raised.
        """
        cfg = config or cls.get_config()
        if cfg is None:
            logger.info("Mailgun not configured; skipping email to=%s subject=%r", to, subject)
            return None

        cc = None if no_cc else cfg.cc
        result = mailgun_gateway.send(cfg, to=to, subject=subject, html=html, text=text, cc=cc)

        log = EmailLog(
            recipient_email=to,
            subject=subject[:500],
            template_name=template_name,
            cc=cc,
            status="sent" if result.ok else "failed",
            error_message=(result.error or "")[:1000] or None,
            provider_message_id=result.message_id,
            sent_at=datetime.now(timezone.utc) if result.ok else None,
        )
        db.session.add(log)
        db.session.flush()
        return log
