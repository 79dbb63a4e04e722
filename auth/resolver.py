"""
auth/resolver.py -- Map a federated login onto exactly one account.

One resolver serves every provider. The provider name is data, not a code
path: Google and Facebook callbacks go through the same three steps.

Precedence (order matters for account-takeover and duplicate-account safety):
  1. (provider, subject_id) already linked  -> that account, no write.
  2. email already registered                -> attach the link to that
                                                account, unless it already has
                                                a different subject for the
                                                same provider (PROVIDER_CONFLICT).
  3. nothing matches                         -> create a verified seeker
                                                account with the link and no
                                                password.

A provider link is never overwritten. Two concurrent callbacks for the same
new subject race on the store's UNIQUE constraints; the loser gets
AuthFailure(CONFLICT) and can simply retry the login, which then takes step 1.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from auth.errors import AuthFailure, FailureKind
from auth.models import Account, AccountDraft, ProviderLink, Role, normalize_email
from auth.store import AccountStore

logger = logging.getLogger("rentally.auth")


@dataclass(frozen=True)
class ProviderIdentity:
    """What an OAuth client extracted from a provider callback.

    email is None when the provider did not return a usable (verified) address.
    """

    provider: str
    subject_id: str
    email: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None


class ProviderIdentityResolver:
    def __init__(self, store: AccountStore) -> None:
        self._store = store

    def resolve(self, identity: ProviderIdentity) -> Account:
        """Return the account for this federated identity, linking or creating as needed.

        Raises:
            AuthFailure(MISSING_EMAIL): no usable email and no existing link.
            AuthFailure(PROVIDER_CONFLICT): the email's account is linked to a
                different subject at the same provider.
            AuthFailure(CONFLICT): a concurrent writer claimed the link or email.
        """
        if not identity.provider or not identity.subject_id:
            raise AuthFailure(FailureKind.MALFORMED, "provider callback without subject")

        account = self._store.find_by_provider_link(identity.provider, identity.subject_id)
        if account is not None:
            return account

        email = normalize_email(identity.email)
        if not email:
            raise AuthFailure(FailureKind.MISSING_EMAIL, f"{identity.provider} returned no usable email")

        account = self._store.find_by_email(email)
        if account is not None:
            return self._attach(account, identity)
        return self._create(identity, email)

    def _attach(self, account: Account, identity: ProviderIdentity) -> Account:
        existing = account.link_for(identity.provider)
        if existing is not None:
            # The same subject would have matched in step 1, so this is a
            # second subject at one provider claiming the same email.
            logger.warning(
                "Refusing to relink account %s: %s subject already linked",
                account.id,
                identity.provider,
            )
            raise AuthFailure(
                FailureKind.PROVIDER_CONFLICT,
                f"account {account.id} already linked to {identity.provider}",
            )
        try:
            linked = self._store.link_provider(account.id, identity.provider, identity.subject_id)
        except IntegrityError as exc:
            raise AuthFailure(FailureKind.CONFLICT, "provider link already claimed") from exc
        logger.info("Linked %s identity to existing account %s", identity.provider, account.id)
        return linked

    def _create(self, identity: ProviderIdentity, email: str) -> Account:
        draft = AccountDraft(
            name=(identity.display_name or "").strip() or email.split("@", 1)[0],
            email=email,
            role=Role.seeker,
            auth_provider=identity.provider,
            provider_link=ProviderLink(provider=identity.provider, subject_id=identity.subject_id),
            avatar_url=identity.avatar_url,
            is_verified=True,
        )
        try:
            account = self._store.create(draft)
        except IntegrityError as exc:
            raise AuthFailure(FailureKind.CONFLICT, "account created concurrently") from exc
        logger.info("Created %s account %s", identity.provider, account.id)
        return account
