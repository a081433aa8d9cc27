"""
Callable Functions — user provisioning and role management.

Each function takes the authenticated caller (a ``User`` loaded fresh
from the database, so the role is current) and the request's ``data``
object, and returns a plain ``{"success": ...}`` dict in the camelCase
shape the client SDK reads. Failures are raised as ``CallableError``
with one of the callable error codes.

Usage:
    fn = get_callable("createUser")
    result = fn(caller, {"email": "a@b.com"})
"""

import logging
from typing import Callable

from buildtrack.core.exceptions import CallableError
from buildtrack.models.audit import write_audit
from buildtrack.models.auth import USER_ROLES
from buildtrack.services import user_service
from buildtrack.services.email_service import EmailService
from buildtrack.services.email_templates import welcome_login_html
from buildtrack.services.notification_handlers import send_test_emails
from buildtrack.services.permission_service import Capability, has_capability
from buildtrack.utils.errors import E

logger = logging.getLogger(__name__)

_callable_registry: dict[str, Callable] = {}


def register_callable(name: str):
    """Decorator to expose a function at ``/api/v1/functions/<name>``."""
    def decorator(fn: Callable) -> Callable:
        _callable_registry[name] = fn
        return fn
    return decorator


def get_callable(name: str):
    return _callable_registry.get(name)


def callable_names():
    return sorted(_callable_registry)


def _require(caller, capability: Capability, message: str) -> None:
    if caller is None:
        raise CallableError(E.UNAUTHENTICATED, "User must be authenticated")
    if not has_capability(caller.role, capability):
        logger.warning("Callable denied uid=%s role=%s capability=%s",
                       caller.uid, caller.role, capability.value)
        raise CallableError(E.PERMISSION_DENIED, message)


def _string_arg(data, key, message):
    value = data.get(key)
    if not value or not isinstance(value, str) or not value.strip():
        raise CallableError(E.INVALID_ARGUMENT, message)
    return value.strip()


def _iso(value):
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════
# Provisioning
# ═══════════════════════════════════════════════════════════════
@register_callable("createUser")
def create_user(caller, data):
    _require(caller, Capability.USERS_CREATE, "Only staff and admins can create users")
    email = _string_arg(data, "email", "Email is required")
    password = data.get("password") or None
    role = data.get("role") or "client"
    if role not in USER_ROLES:
        raise CallableError(E.INVALID_ARGUMENT, f"Role must be one of: {', '.join(USER_ROLES)}")

    existing = user_service.get_user_by_email(email)
    if existing is not None:
        return {"success": False, "message": "User already exists", "uid": existing.uid}

    try:
        user = user_service.create_user(
            email, password=password, display_name=data.get("displayName"),
            role=role, created_by=caller.uid,
        )
    except user_service.UserServiceError as e:
        if e.status_code == 409:
            found = user_service.get_user_by_email(email)
            return {"success": False, "message": "User already exists",
                    "uid": found.uid if found else None}
        raise CallableError(E.INVALID_ARGUMENT, e.message)

    reset_link = None if password else user_service.issue_password_reset_link(user)
    write_audit(entity_type="user", entity_id=user.uid, action="user.create",
                actor_uid=caller.uid, actor_email=caller.email, diff={"role": role})

    if data.get("sendWelcomeEmail"):
        cfg = EmailService.get_config()
        if cfg is not None:
            EmailService.send(
                to=user.email,
                subject=f"Your {cfg.from_name} portal account",
                html=welcome_login_html(EmailService.branding(cfg), user.email, reset_link),
                template_name="welcome_login",
                config=cfg,
            )

    return {
        "success": True,
        "uid": user.uid,
        "email": user.email,
        "displayName": user.display_name,
        "role": user.role,
        "resetLink": reset_link,
        "message": "User created successfully" if password
        else "User created. Password reset link generated.",
    }


@register_callable("resetUserPassword")
def reset_user_password(caller, data):
    _require(caller, Capability.USERS_RESET_PASSWORD, "Only staff and admins can reset passwords")
    uid = _string_arg(data, "uid", "User UID is required")
    user = user_service.get_user(uid)
    if user is None:
        raise CallableError(E.CALLABLE_NOT_FOUND, "User not found")
    link = user_service.issue_password_reset_link(user)
    write_audit(entity_type="user", entity_id=user.uid, action="user.reset_password",
                actor_uid=caller.uid, actor_email=caller.email)
    return {"success": True, "resetLink": link, "message": "Password reset link generated"}


# ═══════════════════════════════════════════════════════════════
# Directory
# ═══════════════════════════════════════════════════════════════
@register_callable("listUsers")
def list_users(caller, data):
    _require(caller, Capability.USERS_LIST, "Only staff and admins can list users")
    role_filter = data.get("roleFilter") or None
    try:
        page_size = int(data.get("limit") or user_service.DEFAULT_PAGE_SIZE)
    except (TypeError, ValueError):
        raise CallableError(E.INVALID_ARGUMENT, "limit must be a number")

    users = []
    for user in user_service.iter_all_users(page_size):
        if role_filter and user.role != role_filter:
            continue
        users.append({
            "uid": user.uid,
            "email": user.email,
            "displayName": user.display_name,
            "role": user.role,
            "emailVerified": user.email_verified,
            "createdAt": _iso(user.created_at),
            "lastSignIn": _iso(user.last_sign_in_at),
        })
    return {"success": True, "users": users, "count": len(users)}


@register_callable("lookupUserByEmail")
def lookup_user_by_email(caller, data):
    _require(caller, Capability.USERS_LOOKUP, "Only staff and admins can look up users")
    email = _string_arg(data, "email", "Email is required")
    user = user_service.get_user_by_email(email)
    if user is None:
        return {"success": False, "message": "User not found with this email address"}
    return {
        "success": True,
        "uid": user.uid,
        "email": user.email,
        "displayName": user.display_name,
        "role": user.role,
    }


@register_callable("getUserInfo")
def get_user_info(caller, data):
    _require(caller, Capability.USERS_READ_INFO,
             "Only staff, admins, and accounting can get user info")
    uid = _string_arg(data, "uid", "User UID is required")
    user = user_service.get_user(uid)
    if user is None:
        return {"success": False, "message": "User not found"}
    return {
        "success": True,
        "uid": user.uid,
        "email": user.email,
        "displayName": user.display_name,
        "role": user.role,
    }


# ═══════════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════════
@register_callable("setUserRole")
def set_user_role(caller, data):
    _require(caller, Capability.USERS_SET_ROLE, "Only admins can set user roles")
    email = data.get("email")
    role = data.get("role")
    if not email or not role:
        raise CallableError(E.INVALID_ARGUMENT, "Email and role are required")
    if role not in USER_ROLES:
        raise CallableError(E.INVALID_ARGUMENT, f"Role must be one of: {', '.join(USER_ROLES)}")
    user = user_service.get_user_by_email(email)
    if user is None:
        raise CallableError(E.CALLABLE_NOT_FOUND, "User not found with this email address")

    previous = user.role
    user_service.set_role(user, role)
    write_audit(entity_type="user", entity_id=user.uid, action="user.set_role",
                actor_uid=caller.uid, actor_email=caller.email,
                diff={"role": {"old": previous, "new": role}})
    return {"success": True, "message": f'Role "{role}" set for {email}'}


@register_callable("setClientRole")
def set_client_role(caller, data):
    """A new user claims the client role for themselves; staff may set it for others."""
    if caller is None:
        raise CallableError(E.UNAUTHENTICATED, "User must be authenticated")
    uid = data.get("uid") or caller.uid

    if uid == caller.uid:
        if caller.role:
            return {"success": True, "message": "User already has a role", "role": caller.role}
        if data.get("displayName"):
            caller.display_name = data["displayName"]
        user_service.set_role(caller, "client")
        return {"success": True, "message": "Client role set successfully", "role": "client"}

    _require(caller, Capability.USERS_ASSIGN_CLIENT_ROLE,
             "Only staff and admins can set roles for other users")
    target = user_service.get_user(uid)
    if target is None:
        raise CallableError(E.CALLABLE_NOT_FOUND, "User not found")
    user_service.set_role(target, "client")
    return {"success": True, "message": "Role set successfully", "role": "client"}


# ═══════════════════════════════════════════════════════════════
# Email
# ═══════════════════════════════════════════════════════════════
@register_callable("sendTestEmails")
def send_test_emails_callable(caller, data):
    _require(caller, Capability.EMAIL_SEND_TEST, "Admin or staff only")
    to = _string_arg(data, "to", "Provide 'to' email address")
    if not EmailService.is_configured():
        raise CallableError(E.FAILED_PRECONDITION, "Mailgun not configured")
    sent = send_test_emails(to)
    return {"success": True, "sent": sent, "to": to}
