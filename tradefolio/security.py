from __future__ import annotations

from werkzeug.security import check_password_hash, generate_password_hash

MIN_PASSWORD_LENGTH = 8
MAX_USERNAME_LENGTH = 64


class CredentialError(ValueError):
    """Raised when a new username or password fails the account policy."""


def clean_username(username: str) -> str:
    """Trimmed username, rejecting blanks and overlong names."""
    clean = (username or "").strip()
    if not clean:
        raise CredentialError("Username is required")
    if len(clean) > MAX_USERNAME_LENGTH:
        raise CredentialError(f"Username must be at most {MAX_USERNAME_LENGTH} characters")
    return clean


def hash_password(password: str) -> str:
    """Hash a new password after checking the minimum length."""
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise CredentialError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    if not password_hash or not password:
        return False
    return check_password_hash(password_hash, password)
