"""
auth/errors.py -- Tagged authentication failures.

Every component in auth/ reports a failed decision by raising AuthFailure with
one FailureKind. Nothing in auth/ knows about HTTP: api/main.py owns the
mapping from kind to status code and client-facing message.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    MISSING_EMAIL = "missing_email"
    PROVIDER_CONFLICT = "provider_conflict"
    EXPIRED = "token_expired"
    MALFORMED = "token_invalid"
    MISSING_TOKEN = "missing_token"
    ACCOUNT_INACTIVE = "account_inactive"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"  # uniqueness violation on create/link


class AuthFailure(Exception):
    """Raised when an authentication or authorization decision is negative.

    The optional detail is for logs only. It may name the email or provider
    involved and must never be copied into a response body.
    """

    def __init__(self, kind: FailureKind, detail: str = "") -> None:
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail

    def __repr__(self) -> str:
        return f"AuthFailure({self.kind.name})"
