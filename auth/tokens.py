"""
auth/tokens.py -- Session token issue and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry only the subject account id plus
       iat/exp. Role and active state are NOT in the token: the
       authentication dependency reloads the account on every request so an
       admin deactivation takes effect immediately.

  Verification order: signature first, then expiry, then subject. Any decode
       or signature failure is MALFORMED, a past exp is EXPIRED. Expiry is
       checked against the injected clock instead of jose's internal
       utcnow() so the boundary is testable to the second.

  No revocation list: issued tokens are never stored, so logout cannot kill a
       token before its exp. Rotating SECRET_KEY invalidates all of them.

  SECRET_KEY: passed in by the caller (api/main.py builds one TokenService
       from core.config at startup). This module never reads settings itself.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from jose import JWTError, jwt

from auth.errors import AuthFailure, FailureKind
from auth.models import SessionToken

logger = logging.getLogger("rentally.auth")

DEFAULT_TTL_SECONDS = 7 * 24 * 3600
DEFAULT_ALGORITHM = "HS256"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Mint and verify signed, time-bounded session tokens.

    Holds no mutable state after construction, so one instance is shared by
    every request without locking.
    """

    def __init__(
        self,
        secret_key: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        algorithm: str = DEFAULT_ALGORITHM,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenService requires a non-empty secret key")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._clock = clock
        self.ttl_seconds = ttl_seconds

    def issue(self, account_id: str) -> SessionToken:
        """Return a token whose subject is account_id, valid for ttl_seconds."""
        issued_at = int(self._clock().timestamp())
        expires_at = issued_at + self.ttl_seconds
        payload = {"sub": account_id, "iat": issued_at, "exp": expires_at}
        token = jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
        return SessionToken(
            token=token,
            subject=account_id,
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )

    def verify(self, token: str) -> str:
        """Return the subject account id of a valid token.

        Raises:
            AuthFailure(MALFORMED): bad signature, undecodable token, or
                missing/invalid claims.
            AuthFailure(EXPIRED): the clock is past the exp claim.
        """
        if not token or not isinstance(token, str):
            raise AuthFailure(FailureKind.MALFORMED, "empty token")
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            raise AuthFailure(FailureKind.MALFORMED, str(exc)) from exc

        expires_at = claims.get("exp")
        if isinstance(expires_at, bool) or not isinstance(expires_at, int):
            raise AuthFailure(FailureKind.MALFORMED, "missing exp claim")
        if self._clock().timestamp() > expires_at:
            raise AuthFailure(FailureKind.EXPIRED)

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise AuthFailure(FailureKind.MALFORMED, "missing sub claim")
        return subject
