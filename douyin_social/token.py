"""Signing and verifying HS256 session tokens."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

import jwt

_SIGNING_ALGORITHM = "HS256"
_ACCEPTED_ALGORITHMS = ["HS256", "HS384", "HS512"]

_STANDARD_CLAIMS = (
    ("audience", "aud"),
    ("expires_at", "exp"),
    ("token_id", "jti"),
    ("issued_at", "iat"),
    ("issuer", "iss"),
    ("not_before", "nbf"),
    ("subject", "sub"),
)


class InvalidTokenError(Exception):
    """Raised when a token cannot be verified."""


@dataclass
class Claims:
    """The claims carried by a session token."""

    user_id: int = 0
    username: str = ""
    role: str = ""
    audience: str = ""
    expires_at: int = 0
    token_id: str = ""
    issued_at: int = 0
    issuer: str = ""
    not_before: int = 0
    subject: str = ""

    def to_payload(self) -> dict[str, Any]:
        """Return the JWT payload; empty standard claims are left out."""
        payload = {
            name: getattr(self, attr)
            for attr, name in _STANDARD_CLAIMS
            if getattr(self, attr)
        }
        payload.update(user_id=self.user_id, username=self.username, role=self.role)
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Claims":
        """Build claims from a decoded JWT payload."""
        standard = {attr: payload[name] for attr, name in _STANDARD_CLAIMS if name in payload}
        return cls(
            user_id=int(payload.get("user_id", 0)),
            username=str(payload.get("username", "")),
            role=str(payload.get("role", "")),
            **standard,
        )


def generate_token(secret_key: bytes | str, claims: Claims) -> str:
    """Sign the claims with HS256."""
    return jwt.encode(claims.to_payload(), secret_key, algorithm=_SIGNING_ALGORITHM)


def parse_token(secret_key: bytes | str, token_string: str) -> Claims:
    """Verify a token and return its claims."""
    try:
        payload = jwt.decode(
            token_string,
            secret_key,
            algorithms=_ACCEPTED_ALGORITHMS,
            options={"verify_aud": False},
        )
    except jwt.PyJWTError as exc:
        raise InvalidTokenError(f"invalid token: {exc}") from exc
    return Claims.from_payload(payload)