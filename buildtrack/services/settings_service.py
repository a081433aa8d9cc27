"""
Settings Service — the singleton application settings record.

Each section is stored as a JSON blob and read back merged over
``DEFAULTS`` so callers always see every key. Updates replace keys of one
section at a time; unknown keys are rejected.
"""

import copy
import logging

from buildtrack.core.exceptions import ValidationError
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.settings import SETTINGS_SECTIONS, AppSettings

logger = logging.getLogger(__name__)

DEFAULTS = {
    "branding": {
        "company_name": "Factory Standards",
        "company_logo": None,
        "email_logo": None,
        "favicon": None,
        "background_image": None,
        "primary_color": "#F97316",
        "secondary_color": "#3B82F6",
        "accent_color": "#10B981",
        "footer_text": None,
    },
    "general": {
        "company_address": None,
        "contact_email": None,
        "contact_phone": None,
        "website_url": None,
        "timezone": "Australia/Perth",
    },
    "email": {
        "from_name": None,
        "from_email": None,
        "reply_to_email": None,
    },
    "notifications": {
        "email_notifications_enabled": True,
        "notify_on_new_guitar": True,
        "notify_on_stage_change": True,
        "notify_on_note_added": True,
        "notify_on_invoice_created": True,
        "notify_on_payment_received": True,
    },
    "system": {
        "maintenance_mode": False,
        "allow_client_registration": False,
        "default_client_role": "client",
        "session_timeout": 60,
        "max_file_upload_size": 10,
    },
    "run_specs": {},
}

_BOOL_KEYS = {
    "email_notifications_enabled", "notify_on_new_guitar", "notify_on_stage_change",
    "notify_on_note_added", "notify_on_invoice_created", "notify_on_payment_received",
    "maintenance_mode", "allow_client_registration",
}
_INT_KEYS = {"session_timeout", "max_file_upload_size"}


def _row():
    return db.session.get(AppSettings, AppSettings.SINGLETON_ID)


def get_settings() -> dict:
    """Every section, stored values merged over the defaults."""
    row = _row()
    merged = copy.deepcopy(DEFAULTS)
    if row is not None:
        for section in SETTINGS_SECTIONS:
            merged[section].update(getattr(row, section) or {})
    merged["updated_at"] = row.updated_at.isoformat() if row is not None and row.updated_at else None
    merged["updated_by"] = row.updated_by if row is not None else None
    return merged


def get_section(section: str) -> dict:
    if section not in SETTINGS_SECTIONS:
        raise ValidationError(f"Unknown settings section: {section}")
    return get_settings()[section]


def _validate(section, values):
    if not isinstance(values, dict):
        raise ValidationError("Settings values must be an object")
    if section == "run_specs":
        bad = [k for k, v in values.items() if not isinstance(v, list)]
        if bad:
            raise ValidationError("run_specs values must be lists", details={k: "list" for k in bad})
        return values

    unknown = sorted(set(values) - set(DEFAULTS[section]))
    if unknown:
        raise ValidationError(f"Unknown {section} settings: {', '.join(unknown)}",
                              details={k: "unknown" for k in unknown})
    errors = {}
    for key, value in values.items():
        if key in _BOOL_KEYS and not isinstance(value, bool):
            errors[key] = "must be true or false"
        elif key in _INT_KEYS and (not isinstance(value, int) or isinstance(value, bool) or value <= 0):
            errors[key] = "must be a positive integer"
    if section == "system" and values.get("default_client_role", "client") not in ("client", "staff", "admin"):
        errors["default_client_role"] = "must be client, staff or admin"
    if errors:
        raise ValidationError("Invalid settings", details=errors)
    return values


def update_section(section: str, values: dict, actor) -> dict:
    """Merge ``values`` into one section and audit the change. Flushes only."""
    if section not in SETTINGS_SECTIONS:
        raise ValidationError(f"Unknown settings section: {section}")
    values = _validate(section, values)

    row = _row()
    if row is None:
        row = AppSettings(id=AppSettings.SINGLETON_ID)
        db.session.add(row)

    old = dict(getattr(row, section) or {})
    new = {**old, **values}
    setattr(row, section, new)
    row.updated_by = actor.uid

    write_audit(
        entity_type="settings", entity_id=section, action="settings.update",
        actor_uid=actor.uid, actor_email=actor.email,
        diff={k: {"old": old.get(k), "new": v} for k, v in values.items() if old.get(k) != v},
    )
    db.session.flush()
    logger.info("Settings section %s updated by %s", section, actor.uid)
    return get_settings()
