"""
Factory Standards Build Tracker
Email templates.

Email-safe HTML: table layout, inline styles, max-width 600px. Every
interpolated value is HTML-escaped with markupsafe before formatting.

Usage:
    from buildtrack.services.email_templates import Branding, stage_change_html

    html = stage_change_html(branding, "Hype GTR – Interstellar", "Perth Run #7",
                             "Neck Carve & Routing", "Finishing")
"""

from dataclasses import dataclass

from markupsafe import escape


@dataclass(frozen=True)
class Branding:
    brand_name: str
    logo_url: str = ""
    portal_url: str = ""

    @classmethod
    def from_mailgun(cls, cfg):
        return cls(brand_name=cfg.from_name, logo_url=cfg.logo_url, portal_url=cfg.portal_url)


# ═══════════════════════════════════════════════════════════════════════════
#  Layout
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{brand}</title>
</head>
<body style="margin:0;padding:0;background-color:#f3f4f6;font-family:Arial,Helvetica,sans-serif;font-size:16px;line-height:1.5;color:#111827;">
  <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="background-color:#f3f4f6;padding:32px 16px;">
    <tr>
      <td align="center">
        <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="max-width:600px;background-color:#ffffff;border-radius:12px;overflow:hidden;">
          <tr>
            <td style="background-color:#1f2937;padding:24px 28px;text-align:left;">
              {header}
              <p style="margin:8px 0 0 0;font-size:13px;color:#9ca3af;">Build updates</p>
            </td>
          </tr>
          <tr>
            <td style="padding:32px 28px;">
              {content}
            </td>
          </tr>
          <tr>
            <td style="padding:24px 28px 28px 28px;border-top:1px solid #e5e7eb;background-color:#fafafa;">
              <p style="margin:0 0 20px 0;font-size:14px;color:#4b5563;">{cta}</p>
              <p style="margin:0;font-size:13px;color:#9ca3af;">— {brand}</p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""

_LOGO = ('<img src="{logo_url}" alt="{brand}" width="160" height="48" '
         'style="display:block;height:48px;width:auto;max-width:200px;" />')
_BRAND_TEXT = '<p style="margin:0;font-size:20px;font-weight:700;color:#ffffff;">{brand}</p>'
_CTA_LINK = ('<a href="{url}" style="display:inline-block;background:#2563eb;color:#ffffff !important;'
             'text-decoration:none;padding:14px 28px;border-radius:8px;font-weight:600;font-size:16px;">{text}</a>')

_P = '<p style="margin:0 0 {mb}px 0;{style}">{text}</p>'


def _is_http(url):
    return bool(url) and url.startswith("http")


def wrap_html(branding: Branding, content_html: str, cta_text: str = "Log in",
              cta_url: str | None = None) -> str:
    """Wrap already-escaped content in the shared header/footer layout.

    The CTA is a button only when a usable http(s) URL is available;
    otherwise its text is shown plain.
    """
    brand = escape(branding.brand_name)
    if _is_http(branding.logo_url):
        header = _LOGO.format(logo_url=escape(branding.logo_url), brand=brand)
    else:
        header = _BRAND_TEXT.format(brand=brand)

    url = cta_url if cta_url is not None else branding.portal_url
    if _is_http(url):
        cta = _CTA_LINK.format(url=escape(url), text=escape(cta_text))
    else:
        cta = f"<span>{escape(cta_text)}</span>"

    return _LAYOUT.format(brand=brand, header=header, content=content_html, cta=cta)


def _paragraphs(message: str, empty: str) -> str:
    if not message:
        return f"<p style='margin:0;'>{escape(empty)}</p>"
    return "".join(_P.format(mb=8, style="color:#374151;", text=escape(line)) for line in message.split("\n"))


# ═══════════════════════════════════════════════════════════════════════════
#  Templates
# ═══════════════════════════════════════════════════════════════════════════

_STAGE_CHANGE = """
    <p style="margin:0 0 16px 0;">Hi,</p>
    <p style="margin:0 0 20px 0;color:#374151;">Your guitar build has moved to a new stage.</p>
    <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="background-color:#f9fafb;border-radius:8px;margin-bottom:20px;">
      <tr>
        <td style="padding:16px 20px;">
          <p style="margin:0 0 4px 0;font-size:18px;font-weight:600;color:#111827;">{guitar_label}</p>
          <p style="margin:0;font-size:14px;color:#6b7280;">{run_name}</p>
          <p style="margin:12px 0 0 0;font-size:14px;color:#374151;">
            <span style="color:#6b7280;">{old_stage}</span>
            <span style="margin:0 8px;color:#9ca3af;">→</span>
            <strong style="color:#2563eb;">{new_stage}</strong>
          </p>
        </td>
      </tr>
    </table>
    <p style="margin:0;color:#6b7280;font-size:14px;">Log in to see full details and photos.</p>
"""

_WELCOME = """
    <p style="margin:0 0 16px 0;">Hi,</p>
    <p style="margin:0 0 16px 0;color:#374151;">Your account is set up for the {brand} portal.</p>
    <p style="margin:0 0 8px 0;font-size:14px;color:#6b7280;">Log in with this email:</p>
    <p style="margin:0 0 16px 0;font-family:monospace;font-size:14px;color:#111827;background:#f3f4f6;padding:10px 12px;border-radius:6px;">{login_email}</p>
    {password_block}
    <p style="margin:0;color:#374151;">Log in below to view your guitars and build updates.</p>
"""

_SET_PASSWORD = """
    <p style="margin:0 0 12px 0;font-size:14px;color:#374151;">Set your password using the link below:</p>
    <p style="margin:0 0 16px 0;"><a href="{link}" style="color:#2563eb;text-decoration:underline;word-break:break-all;">{link}</a></p>
"""

_RUN_UPDATE = """
    <p style="margin:0 0 16px 0;">Hi,</p>
    <p style="margin:0 0 12px 0;color:#374151;"><strong>{author_name}</strong> posted an update to <strong>{run_name}</strong>:</p>
    <p style="margin:0 0 16px 0;font-size:18px;font-weight:600;color:#111827;">{title}</p>
    <div style="color:#374151;margin-bottom:16px;">{message_html}</div>
    <p style="margin:0;color:#6b7280;font-size:14px;">Log in to see the full update and any photos.</p>
"""

_CUSTOM_SHOP_THANK_YOU = """
    <p style="margin:0 0 16px 0;">Hi,</p>
    <p style="margin:0 0 16px 0;color:#374151;">Thank you for your Custom Shop request. We've received it and will review it shortly.</p>
    <p style="margin:0 0 8px 0;font-size:14px;color:#6b7280;">Your request number:</p>
    <p style="margin:0 0 16px 0;font-family:monospace;font-size:16px;font-weight:600;color:#111827;background:#f3f4f6;padding:10px 12px;border-radius:6px;">{request_number}</p>
    <p style="margin:0;color:#374151;">Builds may start 6–18 months from registration; we'll be in touch once we've reviewed your request.</p>
"""

_CUSTOM_SHOP_STAFF = """
    <p style="margin:0 0 16px 0;">New Custom Shop request <strong>{request_number}</strong></p>
    <p style="margin:0 0 8px 0;font-size:14px;color:#6b7280;">From:</p>
    <p style="margin:0 0 16px 0;color:#111827;">{submitter}</p>
    <p style="margin:0 0 8px 0;font-size:14px;color:#6b7280;">Summary:</p>
    <p style="margin:0 0 16px 0;color:#374151;">{summary}</p>
    <p style="margin:0;color:#6b7280;font-size:14px;">Log in to the portal to view and manage Custom Shop requests.</p>
"""


def stage_change_html(branding: Branding, guitar_label: str, run_name: str,
                      old_stage_label: str, new_stage_label: str) -> str:
    content = _STAGE_CHANGE.format(
        guitar_label=escape(guitar_label),
        run_name=escape(run_name),
        old_stage=escape(old_stage_label),
        new_stage=escape(new_stage_label),
    ).strip()
    return wrap_html(branding, content, "Log in")


def welcome_login_html(branding: Branding, login_email: str,
                       set_password_link: str | None = None) -> str:
    """Welcome email for a staff-created account.

    Carries a set-password link when one was issued; passwords are never
    included.
    """
    password_block = ""
    if set_password_link:
        password_block = _SET_PASSWORD.format(link=escape(set_password_link))
    content = _WELCOME.format(
        brand=escape(branding.brand_name),
        login_email=escape(login_email),
        password_block=password_block,
    ).strip()
    return wrap_html(branding, content, "Log in")


def run_update_html(branding: Branding, run_name: str, title: str,
                    author_name: str, message: str) -> str:
    content = _RUN_UPDATE.format(
        author_name=escape(author_name),
        run_name=escape(run_name),
        title=escape(title),
        message_html=_paragraphs(message, "No additional message."),
    ).strip()
    return wrap_html(branding, content, "Log in")


def custom_shop_thank_you_html(branding: Branding, request_number: str,
                               view_request_url: str = "") -> str:
    content = _CUSTOM_SHOP_THANK_YOU.format(request_number=escape(request_number)).strip()
    return wrap_html(branding, content, "View your request", cta_url=view_request_url or None)


def custom_shop_staff_notify_html(branding: Branding, submitter_name: str | None,
                                  submitter_email: str, request_number: str,
                                  summary: str) -> str:
    submitter = f"{submitter_name} <{submitter_email}>" if submitter_name else submitter_email
    content = _CUSTOM_SHOP_STAFF.format(
        request_number=escape(request_number),
        submitter=escape(submitter),
        summary=escape(summary),
    ).strip()
    return wrap_html(branding, content, "Log in")
