"""
Mailgun Gateway — transactional email over the Mailgun REST API.

All outbound email goes through this class; services never call
`requests` directly.

  - POST {api_host}/v3/{domain}/messages
  - HTTP basic auth: user "api", password = API key
  - form-encoded body: from, to, subject, html, text?, cc?
  - one attempt per message, no retry; failures come back as a
    SendResult with ok=False and are never raised

Testability: pass a mock `session` to MailgunGateway() (or assign
`mailgun_gateway._session`) instead of letting it create a real
requests.Session internally.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import requests

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 15


@dataclass(frozen=True)
class MailgunConfig:
    """Resolved Mailgun settings. Only built when api_key and domain are set."""

    api_key: str
    domain: str
    from_name: str
    from_email: str
    api_host: str
    portal_url: str
    logo_url: str
    cc: str | None
    timeout: int = _DEFAULT_TIMEOUT

    @property
    def sender(self) -> str:
        return f"{self.from_name} <{self.from_email}>"

    @property
    def messages_url(self) -> str:
        return f"{self.api_host.rstrip('/')}/v3/{self.domain}/messages"


def load_mailgun_config(app_config) -> MailgunConfig | None:
    """Build a MailgunConfig from Flask config, or None when unconfigured."""
    api_key = app_config.get("MAILGUN_API_KEY")
    domain = app_config.get("MAILGUN_DOMAIN")
    if not api_key or not domain:
        return None
    return MailgunConfig(
        api_key=api_key,
        domain=domain,
        from_name=app_config.get("MAILGUN_FROM_NAME") or "Ormsby Guitars",
        from_email=app_config.get("MAILGUN_FROM_EMAIL") or f"noreply@{domain}",
        api_host=app_config.get("MAILGUN_API_HOST") or "https://api.mailgun.net",
        portal_url=app_config.get("PORTAL_URL") or "",
        logo_url=app_config.get("LOGO_URL") or "",
        cc=app_config.get("MAILGUN_CC") or None,
        timeout=int(app_config.get("MAILGUN_TIMEOUT") or _DEFAULT_TIMEOUT),
    )


class SendResult:
    """Structured return value from MailgunGateway.send.

    Attributes:
        ok:           True on HTTP 2xx without a transport error.
        status_code:  HTTP status (None on network-level failure).
        message_id:   Mailgun message id from the response body, if any.
        error:        Human-readable error or None.
        duration_ms:  Round-trip latency in milliseconds.
    """

    def __init__(self, ok, status_code, message_id, error, duration_ms):
        self.ok = ok
        self.status_code = status_code
        self.message_id = message_id
        self.error = error
        self.duration_ms = duration_ms

    def __repr__(self):
        return f"<SendResult ok={self.ok} status={self.status_code}>"


class MailgunGateway:
    """Mailgun REST API gateway (module-level singleton ``mailgun_gateway``).

    Usage:
        from buildtrack.integrations.mailgun_gateway import mailgun_gateway
        result = mailgun_gateway.send(cfg, to="a@b.com", subject="Hi", html="<p>Hi</p>")
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def send(
        self,
        config: MailgunConfig,
        *,
        to: str,
        subject: str,
        html: str,
        text: str | None = None,
        cc: str | None = None,
    ) -> SendResult:
        """Send one message. Never raises for HTTP or network failures."""
        form = {
            "from": config.sender,
            "to": to,
            "subject": subject,
            "html": html,
        }
        if text:
            form["text"] = text
        if cc:
            form["cc"] = cc

        start = time.monotonic()
        try:
            resp = self.session.post(
                config.messages_url,
                auth=("api", config.api_key),
                data=form,
                timeout=config.timeout,
            )
        except requests.RequestException as exc:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.error("Mailgun send error to=%s: %s", to, exc, extra={"recipient": to})
            return SendResult(False, None, None, str(exc), duration_ms)

        duration_ms = int((time.monotonic() - start) * 1000)
        if not resp.ok:
            body = (resp.text or "")[:500]
            logger.error(
                "Mailgun send failed status=%s to=%s body=%s",
                resp.status_code, to, body, extra={"recipient": to},
            )
            return SendResult(False, resp.status_code, None, f"HTTP {resp.status_code}: {body}", duration_ms)

        message_id = None
        try:
            message_id = (resp.json() or {}).get("id")
        except ValueError:
            pass
        logger.info("Email sent to=%s subject=%r (%dms)", to, subject, duration_ms,
                    extra={"recipient": to})
        return SendResult(True, resp.status_code, message_id, None, duration_ms)


# Module-level singleton
mailgun_gateway = MailgunGateway()
