"""
Permission Service — one authorization policy for every endpoint.

Roles are the closed set stored on ``User.role``. Each role maps to a
fixed set of capabilities; every check in the codebase goes through
``has_capability`` / ``check_capability`` (directly or via the
``require_capability`` decorator). Deny-by-default: an unknown or
missing role has no capabilities.
"""

import logging
from enum import Enum

from buildtrack.core.exceptions import PermissionDenied

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    # Accounts
    USERS_CREATE = "users.create"
    USERS_LIST = "users.list"
    USERS_LOOKUP = "users.lookup"
    USERS_READ_INFO = "users.read_info"
    USERS_RESET_PASSWORD = "users.reset_password"
    USERS_ASSIGN_CLIENT_ROLE = "users.assign_client_role"
    USERS_SET_ROLE = "users.set_role"
    EMAIL_SEND_TEST = "email.send_test"

    # Build pipeline
    RUNS_MANAGE = "runs.manage"
    RUNS_VIEW_ALL = "runs.view_all"
    RUN_UPDATES_POST = "run_updates.post"
    GUITARS_MANAGE = "guitars.manage"
    GUITARS_VIEW_ALL = "guitars.view_all"
    GUITARS_ADVANCE_STAGE = "guitars.advance_stage"
    NOTES_CREATE = "notes.create"
    NOTES_VIEW_INTERNAL = "notes.view_internal"

    # Clients & money
    CLIENTS_MANAGE = "clients.manage"
    INVOICES_MANAGE = "invoices.manage"
    PAYMENTS_APPROVE = "payments.approve"

    # Admin
    CUSTOM_SHOP_MANAGE = "custom_shop.manage"
    SETTINGS_MANAGE = "settings.manage"
    AUDIT_VIEW = "audit.view"


ROLES = ("staff", "client", "admin", "factory", "accounting")
STAFF_ROLES = ("staff", "admin")

_STAFF_CAPABILITIES = frozenset({
    Capability.USERS_CREATE,
    Capability.USERS_LIST,
    Capability.USERS_LOOKUP,
    Capability.USERS_READ_INFO,
    Capability.USERS_RESET_PASSWORD,
    Capability.USERS_ASSIGN_CLIENT_ROLE,
    Capability.EMAIL_SEND_TEST,
    Capability.RUNS_MANAGE,
    Capability.RUNS_VIEW_ALL,
    Capability.RUN_UPDATES_POST,
    Capability.GUITARS_MANAGE,
    Capability.GUITARS_VIEW_ALL,
    Capability.GUITARS_ADVANCE_STAGE,
    Capability.NOTES_CREATE,
    Capability.NOTES_VIEW_INTERNAL,
    Capability.CLIENTS_MANAGE,
    Capability.INVOICES_MANAGE,
    Capability.PAYMENTS_APPROVE,
    Capability.CUSTOM_SHOP_MANAGE,
})

ROLE_CAPABILITIES: dict[str, frozenset] = {
    "admin": frozenset(Capability),
    "staff": _STAFF_CAPABILITIES,
    "factory": frozenset({
        Capability.RUNS_VIEW_ALL,
        Capability.GUITARS_VIEW_ALL,
        Capability.GUITARS_ADVANCE_STAGE,
        Capability.NOTES_CREATE,
        Capability.NOTES_VIEW_INTERNAL,
    }),
    "accounting": frozenset({
        Capability.USERS_READ_INFO,
        Capability.RUNS_VIEW_ALL,
        Capability.GUITARS_VIEW_ALL,
        Capability.INVOICES_MANAGE,
        Capability.PAYMENTS_APPROVE,
    }),
    "client": frozenset(),
}


def capabilities_for(role: str | None) -> frozenset:
    """Return the capability set of a role (empty for unknown roles)."""
    return ROLE_CAPABILITIES.get(role or "", frozenset())


def has_capability(role: str | None, capability: Capability | str) -> bool:
    """True if ``role`` grants ``capability``."""
    try:
        capability = Capability(capability)
    except ValueError:
        logger.error("Unknown capability checked: %r", capability)
        return False
    return capability in capabilities_for(role)


def check_capability(user, capability: Capability | str) -> None:
    """Raise PermissionDenied unless ``user`` holds ``capability``."""
    role = getattr(user, "role", None)
    if not has_capability(role, capability):
        uid = getattr(user, "uid", None)
        codename = getattr(capability, "value", capability)
        logger.warning("User %s (role=%s) denied capability '%s'", uid, role, codename)
        raise PermissionDenied(uid, codename)


def is_staff_role(role: str | None) -> bool:
    return role in STAFF_ROLES
