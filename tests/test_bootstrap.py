"""
tests/test_bootstrap.py -- Startup creation of the first admin account.
"""

from __future__ import annotations

from api.main import bootstrap_admin
from auth.credentials import CredentialVerifier, register_local_account
from auth.models import Role
from auth.store import AccountStore
from core.config import Settings


def _settings(**overrides) -> Settings:
    values = {
        "secret_key": "bootstrap-test-secret-key-0123456789abcdef",
        "bcrypt_rounds": 4,
        "bootstrap_admin_email": "Root@Rentally.test",
        "bootstrap_admin_password": "rootpass123",
    }
    values.update(overrides)
    return Settings(**values)


class TestBootstrapAdmin:
    def test_creates_admin_when_none_exist(self, store: AccountStore) -> None:
        bootstrap_admin(store, _settings())
        admin = store.find_by_email("root@rentally.test")
        assert admin is not None
        assert admin.role == Role.admin
        assert admin.is_verified is True
        assert CredentialVerifier(store, rounds=4).verify("root@rentally.test", "rootpass123").id == admin.id

    def test_idempotent(self, store: AccountStore) -> None:
        bootstrap_admin(store, _settings())
        bootstrap_admin(store, _settings())
        assert store.count_active_admins() == 1

    def test_skipped_without_credentials(self, store: AccountStore) -> None:
        bootstrap_admin(store, _settings(bootstrap_admin_password=""))
        assert store.count_active_admins() == 0

    def test_never_promotes_existing_account(self, store: AccountStore) -> None:
        existing = register_local_account(store, "Root", "root@rentally.test", "userpass1", rounds=4)
        bootstrap_admin(store, _settings())
        assert store.find_by_id(existing.id).role == Role.seeker
        assert store.count_active_admins() == 0
