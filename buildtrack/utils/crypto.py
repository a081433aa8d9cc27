"""
Crypto utilities — bcrypt password hashing and one-time tokens.

Password hashing:
  Supports both bcrypt ($2b$) and werkzeug (scrypt/pbkdf2) hashes so
  accounts imported from the previous auth provider export keep working.

One-time tokens:
  Set-password links carry a random token; only its SHA-256 is stored.
"""

import hashlib
import secrets

import bcrypt
from werkzeug.security import check_password_hash

MIN_PASSWORD_LENGTH = 6


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (12 rounds)."""
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its hash.

    Handles both bcrypt ($2b$/$2a$) and werkzeug (scrypt/pbkdf2) formats.
    """
    if not password_hash:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)


def generate_token() -> str:
    """URL-safe random token for one-time links."""
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a token (never store raw tokens)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
