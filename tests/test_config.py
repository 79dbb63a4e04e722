"""
tests/test_config.py -- SECRET_KEY policy and settings bounds.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings


class TestSecretKey:
    def test_debug_generates_key(self) -> None:
        settings = Settings(debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_production_requires_key(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=False, secret_key="")

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=True, secret_key="too-short")

    def test_explicit_key_kept(self) -> None:
        key = "k" * 40
        assert Settings(debug=False, secret_key=key).secret_key == key


class TestBounds:
    def test_bcrypt_rounds_floor(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=True, bcrypt_rounds=3)

    def test_token_lifetime_positive(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=True, token_expire_seconds=0)
