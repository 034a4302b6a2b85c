"""
Security primitives shared by the identity services.

This module provides:
- Password hashing and verification using bcrypt
- Password strength rules
- Opaque token secrets and their SHA-256 storage form
- The default clock (aware UTC)
"""

import base64
import hashlib
import re
import secrets
from collections.abc import Callable
from datetime import UTC, datetime

import bcrypt

from identity_core.config import settings

# Symbols a password may contain; at least one is required
PASSWORD_SYMBOLS = "@$!%*?&#^~-_=."

_SYMBOL_CLASS = re.escape(PASSWORD_SYMBOLS)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Default clock for every time-dependent component."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes read back from the database as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def validate_password_strength(
    password: str,
    min_length: int | None = None,
    max_length: int | None = None,
) -> tuple[bool, str | None]:
    """
    Validate password meets security requirements.

    Requirements:
    - Between PASSWORD_MIN_LENGTH (12) and PASSWORD_MAX_LENGTH (128) characters
    - Contains at least one uppercase letter
    - Contains at least one lowercase letter
    - Contains at least one digit
    - Contains at least one symbol from PASSWORD_SYMBOLS
    - Contains nothing but letters, digits and those symbols

    Args:
        password: The password to validate
        min_length: Override for the configured minimum
        max_length: Override for the configured maximum

    Returns:
        Tuple of (is_valid, error_message)
    """
    min_length = min_length or settings.PASSWORD_MIN_LENGTH
    max_length = max_length or settings.PASSWORD_MAX_LENGTH

    if not password:
        return False, "Password is required"

    if len(password) < min_length:
        return False, f"Password must be at least {min_length} characters long"

    if len(password) > max_length:
        return False, f"Password must be at most {max_length} characters long"

    if not re.search(r"[A-Z]", password):
        return False, "Password must contain at least one uppercase letter"

    if not re.search(r"[a-z]", password):
        return False, "Password must contain at least one lowercase letter"

    if not re.search(r"\d", password):
        return False, "Password must contain at least one digit"

    if not re.search(rf"[{_SYMBOL_CLASS}]", password):
        return False, f"Password must contain at least one special character ({PASSWORD_SYMBOLS})"

    return True, None


def _prepare_password_for_bcrypt(password: str) -> str:
    """
    Prepare password for bcrypt by handling long passwords.

    Bcrypt has a 72 byte limit. For passwords longer than 72 bytes,
    we SHA256 hash them first and encode as base64.
    """
    password_bytes = password.encode("utf-8")

    if len(password_bytes) <= 72:
        return password

    # SHA256 produces 32 bytes, base64 encoding produces 44 chars (well under 72)
    hashed = hashlib.sha256(password_bytes).digest()
    return base64.b64encode(hashed).decode("ascii")


def get_password_hash(password: str, rounds: int | None = None) -> str:
    """
    Hash a password using bcrypt with a fresh random salt.

    Args:
        password: The plain text password to hash
        rounds: bcrypt cost factor (defaults to settings.BCRYPT_ROUNDS)

    Returns:
        The bcrypt hashed password
    """
    prepared_password = _prepare_password_for_bcrypt(password)
    salt = bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(prepared_password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a bcrypt hash.

    Malformed or empty hashes verify as False instead of raising.
    """
    if not plain_password or not hashed_password:
        return False
    prepared_password = _prepare_password_for_bcrypt(plain_password)
    try:
        return bcrypt.checkpw(prepared_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def generate_token_secret(nbytes: int = 48) -> str:
    """
    Create a cryptographically secure opaque token.

    Returns:
        URL-safe random token string (64 characters for the default 48 bytes)
    """
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    """SHA-256 hex digest; the only form in which opaque tokens are stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
