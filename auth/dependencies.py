"""
auth/dependencies.py -- Per-request authentication and per-route role gates.

Authentication is two steps:
  1. Stateless: verify the bearer token's signature and expiry (TokenService).
  2. Stateful: load the account once and veto inactive or deleted accounts.

A cryptographically valid token for a deactivated account is rejected with
ACCOUNT_INACTIVE. There is no retry and no silent renewal; clients call
POST /auth/refresh explicitly.

authenticate_request() is the FastAPI dependency. It stores the Principal and
the loaded Account on request.state so handlers like GET /auth/me reuse the
account instead of querying again. require_role() only reads
request.state.principal and must be listed after authenticate_request:

    @router.get("/owner-only", dependencies=[Depends(authenticate_request), Depends(require_role(Role.owner))])

Layer rule: may import from fastapi (Request) because this module is part of
the dependency injection system. No imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.errors import AuthFailure, FailureKind
from auth.models import Account, Principal, Role
from auth.store import AccountStore
from auth.tokens import TokenService

_BEARER_PREFIX = "bearer "


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" header value."""
    if not authorization:
        return None
    if authorization[: len(_BEARER_PREFIX)].lower() != _BEARER_PREFIX:
        return None
    token = authorization[len(_BEARER_PREFIX) :].strip()
    return token or None


class Authenticator:
    """Resolve an Authorization header to a Principal, or raise AuthFailure."""

    def __init__(self, token_service: TokenService, store: AccountStore) -> None:
        self._tokens = token_service
        self._store = store

    def authenticate(self, authorization: str | None) -> tuple[Principal, Account]:
        token = extract_bearer_token(authorization)
        if token is None:
            raise AuthFailure(FailureKind.MISSING_TOKEN)

        account_id = self._tokens.verify(token)

        account = self._store.find_by_id(account_id)
        if account is None or not account.is_active:
            raise AuthFailure(FailureKind.ACCOUNT_INACTIVE, f"account {account_id} missing or inactive")

        principal = Principal(account_id=account.id, role=account.role, is_verified=account.is_verified)
        return principal, account


def authenticate_request(request: Request) -> Principal:
    """Require a valid bearer token for an active account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(authenticate_request)): ...
    """
    authenticator: Authenticator = request.app.state.authenticator
    principal, account = authenticator.authenticate(request.headers.get("Authorization"))
    request.state.principal = principal
    request.state.account = account
    return principal


def current_account(request: Request, principal: Principal = Depends(authenticate_request)) -> Account:
    """Return the Account authenticate_request loaded, without a second lookup."""
    return request.state.account


def require_role(*allowed_roles: Role) -> Callable[[Request], Principal]:
    """Build a dependency that only lets principals with one of allowed_roles through.

    UNAUTHENTICATED if no principal was attached (authenticate_request did not
    run), FORBIDDEN if the role is not allowed.
    """
    allowed = frozenset(Role(r) for r in allowed_roles)
    if not allowed:
        raise ValueError("require_role() needs at least one role")

    def guard(request: Request) -> Principal:
        principal: Principal | None = getattr(request.state, "principal", None)
        if principal is None:
            raise AuthFailure(FailureKind.UNAUTHENTICATED)
        if principal.role not in allowed:
            raise AuthFailure(FailureKind.FORBIDDEN, f"role {principal.role.value} not in allow-list")
        return principal

    return guard
