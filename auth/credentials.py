"""
auth/credentials.py -- Local email/password accounts.

Passwords: bcrypt used directly (no passlib wrapper). bcrypt salts every hash
and checkpw compares in constant time. The cost factor comes from
Settings.bcrypt_rounds and is baked into each stored hash, so raising it only
affects new hashes.

bcrypt only looks at the first 72 bytes of a password and recent releases
refuse longer input outright. The API layer caps passwords at 72 bytes;
hash_password() raises ValueError if something longer slips through.

Timing equalization: CredentialVerifier always runs one bcrypt comparison,
against a dummy hash when the email is unknown or the account has no
password, so response time does not reveal whether an account exists or how
it signs in.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

import bcrypt
from sqlalchemy.exc import IntegrityError

from auth.errors import AuthFailure, FailureKind
from auth.models import LOCAL_PROVIDER, SELF_ASSIGNABLE_ROLES, Account, AccountDraft, Role, normalize_email
from auth.store import AccountStore

logger = logging.getLogger("rentally.auth")

DEFAULT_ROUNDS = 12
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a salted bcrypt hash of the plaintext password."""
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Passwords are limited to {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A corrupt stored hash or an over-long candidate counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


class CredentialVerifier:
    """Check an email/password pair against local accounts."""

    def __init__(self, store: AccountStore, rounds: int = DEFAULT_ROUNDS) -> None:
        self._store = store
        # Same cost as real hashes, so the miss path takes as long as the hit path.
        self._dummy_hash = hash_password("rentally-timing-dummy", rounds)

    def verify(self, email: str, password: str) -> Account:
        """Return the local account for these credentials.

        Every failure is INVALID_CREDENTIALS: unknown email, federated-only
        account and wrong password are indistinguishable to the caller.
        Updating last_login_at is the caller's decision.
        """
        account = self._store.find_by_email(normalize_email(email), auth_provider=LOCAL_PROVIDER)
        if account is None or account.password_hash is None:
            verify_password(password, self._dummy_hash)
            raise AuthFailure(FailureKind.INVALID_CREDENTIALS, "no local password for email")
        if not verify_password(password, account.password_hash):
            raise AuthFailure(FailureKind.INVALID_CREDENTIALS, f"wrong password for account {account.id}")
        return account


def register_local_account(
    store: AccountStore,
    name: str,
    email: str,
    password: str,
    role: Role = Role.seeker,
    rounds: int = DEFAULT_ROUNDS,
) -> Account:
    """Create a local account with a hashed password.

    Raises:
        AuthFailure(FORBIDDEN): role is not self-assignable (admin).
        AuthFailure(CONFLICT): the email already belongs to an account, or a
            concurrent registration took it first.
    """
    role = Role(role)
    if role not in SELF_ASSIGNABLE_ROLES:
        raise AuthFailure(FailureKind.FORBIDDEN, f"role {role.value} cannot be self-assigned")

    email = normalize_email(email)
    if store.find_by_email(email) is not None:
        raise AuthFailure(FailureKind.CONFLICT, "email already registered")

    draft = AccountDraft(
        name=name.strip(),
        email=email,
        role=role,
        auth_provider=LOCAL_PROVIDER,
        password_hash=hash_password(password, rounds),
    )
    try:
        account = store.create(draft)
    except IntegrityError as exc:
        raise AuthFailure(FailureKind.CONFLICT, "email already registered") from exc
    logger.info("Registered local account %s (role=%s)", account.id, account.role.value)
    return account
