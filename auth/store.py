"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Components in auth/ receive an AccountStore at
construction and never touch SQL directly.

Uniqueness is enforced by the database, not by read-then-write checks in
code, so concurrent registrations or federated callbacks cannot both win:
  accounts.email                          -- one account per email
  accounts.referral_code                  -- codes are never reused
  provider_links(provider, subject_id)    -- a provider subject maps to one account
  provider_links(account_id, provider)    -- one link per provider per account

The losing writer gets sqlalchemy.exc.IntegrityError. Callers translate that
into AuthFailure(CONFLICT).

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Account, AccountDraft, ProviderLink, Role

logger = logging.getLogger("rentally.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL for federated-only accounts
    Column("auth_provider", String(30), nullable=False, server_default="local"),
    Column("role", String(20), nullable=False, server_default="seeker"),
    Column("avatar_url", Text),
    Column("referral_code", String(16), nullable=False, unique=True),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
    Column("last_active_at", String(32)),
)

_provider_links = Table(
    "provider_links",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(32), ForeignKey("accounts.id"), nullable=False),
    Column("provider", String(30), nullable=False),
    Column("subject_id", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("provider", "subject_id", name="uq_provider_subject"),
    UniqueConstraint("account_id", "provider", name="uq_account_provider"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_account_id() -> str:
    return uuid.uuid4().hex


def _new_referral_code() -> str:
    return f"REF{secrets.token_hex(4).upper()}"


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account records and their provider links.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        account = store.create(AccountDraft(name="Ann", email="ann@x.com", password_hash=h))
        same = store.find_by_email("ann@x.com", auth_provider="local")
        store.close()
    """

    # Columns update() may touch. email, password_hash, auth_provider and
    # referral_code are fixed at creation; links go through link_provider().
    _UPDATABLE_FIELDS = frozenset(
        {"name", "avatar_url", "role", "is_active", "is_verified", "last_login_at", "last_active_at"}
    )

    def __init__(self, db_url: str = "sqlite:///:memory:") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_id(self, account_id: str) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
            return _load(conn, row)

    def find_by_email(self, email: str, auth_provider: str | None = None) -> Account | None:
        """Look up an account by normalized email, optionally restricted to
        the provider that created it.

        Callers normalize the email first (auth.models.normalize_email); the
        store compares exactly.
        """
        query = _accounts.select().where(_accounts.c.email == email)
        if auth_provider is not None:
            query = query.where(_accounts.c.auth_provider == auth_provider)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
            return _load(conn, row)

    def find_by_provider_link(self, provider: str, subject_id: str) -> Account | None:
        """Look up the account that owns a (provider, subject_id) link."""
        query = (
            _accounts.select()
            .join(_provider_links, _provider_links.c.account_id == _accounts.c.id)
            .where((_provider_links.c.provider == provider) & (_provider_links.c.subject_id == subject_id))
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
            return _load(conn, row)

    def count_active_admins(self) -> int:
        """Return the number of active admin accounts."""
        query = (
            select(func.count())
            .select_from(_accounts)
            .where((_accounts.c.role == Role.admin.value) & (_accounts.c.is_active == 1))
        )
        with self.engine.connect() as conn:
            result = conn.execute(query).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, draft: AccountDraft) -> Account:
        """Insert a new account (and its first provider link, if any) atomically.

        Raises sqlalchemy.exc.IntegrityError when the email, referral code or
        provider link is already taken.
        """
        account_id = _new_account_id()
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account_id,
                    name=draft.name,
                    email=draft.email,
                    password_hash=draft.password_hash,
                    auth_provider=draft.auth_provider,
                    role=Role(draft.role).value,
                    avatar_url=draft.avatar_url,
                    referral_code=_new_referral_code(),
                    is_verified=1 if draft.is_verified else 0,
                    is_active=1,
                    created_at=now,
                )
            )
            if draft.provider_link is not None:
                conn.execute(
                    _provider_links.insert().values(
                        account_id=account_id,
                        provider=draft.provider_link.provider,
                        subject_id=draft.provider_link.subject_id,
                        created_at=now,
                    )
                )
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
            return _load(conn, row)

    def link_provider(self, account_id: str, provider: str, subject_id: str) -> Account:
        """Attach a provider link to an existing account.

        Insert-only: an existing link is never re-pointed. Raises IntegrityError
        when the subject is linked elsewhere or the account already has a link
        for this provider.
        """
        with self.engine.begin() as conn:
            conn.execute(
                _provider_links.insert().values(
                    account_id=account_id,
                    provider=provider,
                    subject_id=subject_id,
                    created_at=_now_iso(),
                )
            )
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
            return _load(conn, row)

    def update(self, account_id: str, **fields) -> Account | None:
        """Update mutable fields on an existing account and return the fresh record.

        Unknown field names raise ValueError rather than being ignored.
        Returns None if account_id was not found.
        """
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)!r}")
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        for flag in ("is_active", "is_verified"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        with self.engine.begin() as conn:
            if fields:
                result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**fields))
                if result.rowcount == 0:
                    return None
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
            return _load(conn, row)

    def record_login(self, account_id: str) -> Account | None:
        """Stamp last_login_at and last_active_at after a successful login."""
        now = _now_iso()
        return self.update(account_id, last_login_at=now, last_active_at=now)

    def record_activity(self, account_id: str) -> Account | None:
        """Stamp last_active_at only (used by logout)."""
        return self.update(account_id, last_active_at=_now_iso())

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            logger.exception("Account store ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _load(conn: Connection, row) -> Account | None:
    if row is None:
        return None
    links = conn.execute(
        select(_provider_links.c.provider, _provider_links.c.subject_id)
        .where(_provider_links.c.account_id == row.id)
        .order_by(_provider_links.c.id)
    ).fetchall()
    return _row_to_account(row, [ProviderLink(provider=p, subject_id=s) for p, s in links])


def _row_to_account(row, links: list[ProviderLink]) -> Account:
    return Account(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        auth_provider=row.auth_provider,
        role=Role(row.role),
        provider_links=links,
        avatar_url=row.avatar_url,
        referral_code=row.referral_code,
        is_verified=bool(row.is_verified),
        is_active=bool(row.is_active),
        created_at=row.created_at,
        last_login_at=row.last_login_at,
        last_active_at=row.last_active_at,
    )
