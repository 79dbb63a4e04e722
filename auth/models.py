"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, almost zero logic). Stores and
services do the work; these classes only own the domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of account roles. New accounts always start as seeker."""

    seeker = "seeker"
    owner = "owner"
    admin = "admin"


# Roles a caller may pick for themselves at registration. admin is only ever
# granted through the admin account routes.
SELF_ASSIGNABLE_ROLES = frozenset({Role.seeker, Role.owner})

LOCAL_PROVIDER = "local"


@dataclass(frozen=True)
class ProviderLink:
    """Association between an account and one external identity-provider subject.

    (provider, subject_id) is unique across all accounts, and an account holds
    at most one link per provider. Links are insert-only.
    """

    provider: str  # "google", "facebook"
    subject_id: str  # provider's stable user ID


@dataclass
class Account:
    """The durable identity record.

    password_hash is None for accounts created purely through a federated
    provider. auth_provider records how the account was first created; a local
    account that later logs in with Google stays "local" and gains a link.

    Timestamps are ISO 8601 UTC strings, the same representation the store
    writes.
    """

    id: str
    name: str
    email: str
    role: Role = Role.seeker
    auth_provider: str = LOCAL_PROVIDER
    password_hash: str | None = None
    provider_links: list[ProviderLink] = field(default_factory=list)
    avatar_url: str | None = None
    referral_code: str | None = None
    is_verified: bool = False
    is_active: bool = True
    created_at: str | None = None
    last_login_at: str | None = None
    last_active_at: str | None = None

    def link_for(self, provider: str) -> ProviderLink | None:
        """Return this account's link for the given provider, if any."""
        for link in self.provider_links:
            if link.provider == provider:
                return link
        return None


@dataclass
class AccountDraft:
    """Fields written when an account is created. The store assigns id,
    referral_code and created_at."""

    name: str
    email: str
    role: Role = Role.seeker
    auth_provider: str = LOCAL_PROVIDER
    password_hash: str | None = None
    provider_link: ProviderLink | None = None
    avatar_url: str | None = None
    is_verified: bool = False


@dataclass(frozen=True)
class Principal:
    """The authenticated identity attached to one in-flight request.

    Built by the authentication dependency from the freshly loaded Account and
    never cached across requests.
    """

    account_id: str
    role: Role
    is_verified: bool


@dataclass(frozen=True)
class SessionToken:
    """A signed bearer token plus the claims it was minted with."""

    token: str
    subject: str
    issued_at: datetime
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        """Lifetime in whole seconds, as reported to API clients."""
        return int((self.expires_at - self.issued_at).total_seconds())


def normalize_email(email: str | None) -> str:
    """Return the canonical form used for storage and lookup ("" when absent)."""
    return (email or "").strip().lower()
