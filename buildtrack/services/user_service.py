"""
User Service — account directory, provisioning and credentials.

Plays the role of the auth provider's admin API:
  - paged directory listing with an opaque page token
  - lookup by uid / email
  - create user (bcrypt hash, never a stored plaintext password)
  - role ("custom claim") assignment
  - one-time set-password links built from AUTH_DOMAIN
  - email/password authentication for the login endpoint
"""

import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from email_validator import EmailNotValidError, validate_email
from flask import current_app

from buildtrack.models import db
from buildtrack.models.auth import USER_ROLES, User
from buildtrack.models.client import ClientProfile
from buildtrack.utils.crypto import (
    MIN_PASSWORD_LENGTH,
    generate_token,
    hash_password,
    hash_token,
    verify_password,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000


class UserServiceError(Exception):
    """Business-rule violation in user operations."""

    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def normalize_email(email: str) -> str:
    """Validate syntax and return the canonical lower-case address."""
    try:
        valid = validate_email((email or "").strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise UserServiceError(f"Invalid email: {e}")
    return valid.normalized.lower()


# ═══════════════════════════════════════════════════════════════
# Directory
# ═══════════════════════════════════════════════════════════════
def get_user(uid: str) -> User | None:
    return db.session.get(User, uid) if uid else None


def get_user_by_email(email: str) -> User | None:
    if not email:
        return None
    return User.query.filter_by(email=email.strip().lower()).first()


def list_users_page(max_results: int = DEFAULT_PAGE_SIZE, page_token: str | None = None):
    """
    Return one directory page ordered by uid.

    Returns:
        (users, next_page_token) — next_page_token is None on the last page.
    """
    max_results = max(1, min(int(max_results), DEFAULT_PAGE_SIZE))
    q = User.query.order_by(User.uid)
    if page_token:
        q = q.filter(User.uid > page_token)
    rows = q.limit(max_results + 1).all()
    if len(rows) > max_results:
        rows = rows[:max_results]
        return rows, rows[-1].uid
    return rows, None


def iter_all_users(page_size: int = DEFAULT_PAGE_SIZE):
    """Yield every user, walking pages until no page token is returned."""
    page_token = None
    while True:
        users, page_token = list_users_page(page_size, page_token)
        yield from users
        if not page_token:
            break


def resolve_email(uid: str) -> str | None:
    """Client email: the account's address first, then the client profile's."""
    user = get_user(uid)
    if user is not None and user.email:
        return user.email
    profile = db.session.get(ClientProfile, uid) if uid else None
    if profile is not None and profile.email:
        return profile.email
    return None


# ═══════════════════════════════════════════════════════════════
# Provisioning
# ═══════════════════════════════════════════════════════════════
def create_user(
    email: str,
    password: str | None = None,
    display_name: str | None = None,
    role: str = "client",
    created_by: str | None = None,
) -> User:
    """
    Create a user (and a client profile for clients). Flushes only.

    Raises:
        UserServiceError: invalid email, short password, bad role, or
            duplicate email (status 409).
    """
    email = normalize_email(email)
    role = role or "client"
    if role not in USER_ROLES:
        raise UserServiceError(f"Role must be one of: {', '.join(USER_ROLES)}")
    if password is not None and not isinstance(password, str):
        raise UserServiceError("Password must be a string")
    if password is not None and len(password) < MIN_PASSWORD_LENGTH:
        raise UserServiceError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if get_user_by_email(email) is not None:
        raise UserServiceError(f"User with email {email} already exists", 409)

    user = User(
        email=email,
        password_hash=hash_password(password) if password else None,
        display_name=(display_name or "").strip() or None,
        role=role,
    )
    db.session.add(user)
    db.session.flush()

    if role == "client":
        db.session.add(ClientProfile(
            uid=user.uid,
            email=email,
            display_name=user.display_name,
            account_created_at=datetime.now(timezone.utc),
            account_created_by=created_by,
            updated_by=created_by,
        ))
        db.session.flush()

    logger.info("User created uid=%s role=%s by=%s", user.uid, role, created_by)
    return user


def set_role(user: User, role: str) -> User:
    if role not in USER_ROLES:
        raise UserServiceError(f"Role must be one of: {', '.join(USER_ROLES)}")
    previous = user.role
    user.role = role
    if role == "client" and db.session.get(ClientProfile, user.uid) is None:
        db.session.add(ClientProfile(uid=user.uid, email=user.email, display_name=user.display_name))
    db.session.flush()
    logger.info("Role changed uid=%s %s -> %s", user.uid, previous, role)
    return user


# ═══════════════════════════════════════════════════════════════
# Credentials
# ═══════════════════════════════════════════════════════════════
def issue_password_reset_link(user: User) -> str:
    """
    Issue a one-time set-password link, replacing any previous one.

    Only the token hash is stored; the raw token exists in the returned
    link alone.
    """
    token = generate_token()
    ttl = current_app.config.get("PASSWORD_RESET_EXPIRES", 259200)
    user.password_reset_token_hash = hash_token(token)
    user.password_reset_expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
    db.session.flush()

    domain = current_app.config.get("AUTH_DOMAIN") or "localhost"
    query = urlencode({"mode": "setPassword", "token": token})
    return f"https://{domain}/login?{query}"


def set_password_with_token(token: str, new_password: str) -> User:
    """Consume a set-password token and store the new bcrypt hash."""
    if not isinstance(new_password, str) or len(new_password) < MIN_PASSWORD_LENGTH:
        raise UserServiceError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not token:
        raise UserServiceError("Token is required")

    user = User.query.filter_by(password_reset_token_hash=hash_token(token)).first()
    if user is None:
        raise UserServiceError("Invalid or already used link", 400)
    expires_at = user.password_reset_expires_at
    if expires_at is not None and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at is None or expires_at < datetime.now(timezone.utc):
        raise UserServiceError("Link has expired", 400)

    user.password_hash = hash_password(new_password)
    user.password_reset_token_hash = None
    user.password_reset_expires_at = None
    user.email_verified = True
    db.session.flush()
    return user


def authenticate(email: str, password: str) -> User | None:
    """Return the user for valid credentials, else None."""
    user = get_user_by_email(email)
    if user is None or user.disabled or not user.password_hash:
        return None
    if not verify_password(password or "", user.password_hash):
        return None
    user.last_sign_in_at = datetime.now(timezone.utc)
    db.session.flush()
    return user
