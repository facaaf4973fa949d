"""Password hashing with bcrypt."""

import bcrypt

DEFAULT_COST = 10
_MAX_PASSWORD_BYTES = 72


class PasswordMismatchError(ValueError):
    """Raised when a password does not match its stored hash."""


def encrypt_password(password: str) -> str:
    """Hash a password with bcrypt at the default cost."""
    encoded = password.encode("utf-8")
    if len(encoded) > _MAX_PASSWORD_BYTES:
        raise ValueError("password length exceeds 72 bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=DEFAULT_COST)).decode("ascii")


def compare_password(hashed_password: str, password: str) -> None:
    """Check a plain password against a bcrypt hash; raise on mismatch."""
    try:
        matches = bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError as exc:
        raise PasswordMismatchError(f"malformed password hash: {exc}") from exc
    if not matches:
        raise PasswordMismatchError("hashed password does not match the given password")