"""
api/routes/v1/auth.py -- Registration, login, session and federated-login endpoints.

Routes:
  POST /api/v1/auth/register             -- create local account; 201 + token
  POST /api/v1/auth/login                -- email/password login; 200 + token
  GET  /api/v1/auth/providers            -- list enabled federated providers (public)
  GET  /api/v1/auth/oauth/{provider}     -- redirect to the provider's consent page
  GET  /api/v1/auth/callback/{provider}  -- provider callback; redirect to frontend with token
  GET  /api/v1/auth/me                   -- current account (requires auth)
  POST /api/v1/auth/refresh              -- mint a fresh token (requires auth)
  POST /api/v1/auth/logout               -- stamp last_active_at (requires auth)

Security:
  POST /login and /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  CredentialVerifier equalizes timing -- use it, never inline the lookup.
  Cache-Control: no-store on every response that carries a token.
  Logout does not invalidate the token: tokens are not stored server-side and
  stay valid until exp. Clients must discard them.

Failures are raised as AuthFailure; api/main.py maps them to status codes.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

import httpx
from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter
from api.models import (
    AccountView,
    LoginRequest,
    MessageResponse,
    OAuthProviderInfo,
    RegisterRequest,
    TokenResponse,
)
from auth.credentials import CredentialVerifier, register_local_account
from auth.dependencies import authenticate_request, current_account
from auth.errors import AuthFailure, FailureKind
from auth.models import Account, Principal, Role
from auth.oauth import fetch_provider_identity, get_enabled_providers
from auth.resolver import ProviderIdentityResolver
from auth.store import AccountStore
from auth.tokens import TokenService
from core.config import get_settings

logger = logging.getLogger("rentally.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /auth/register, /auth/login:          public, rate limited
# - GET  /auth/providers, /auth/oauth/*, /auth/callback/*: public
# - GET  /auth/me, POST /auth/refresh, /auth/logout: authenticate_request
router = APIRouter()


def _login_rate_limit() -> str:
    """Current LOGIN_RATE_LIMIT. slowapi re-reads callable limits on every request."""
    return get_settings().login_rate_limit


def _token_response(status_code: int, body: TokenResponse) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Local credentials
# ---------------------------------------------------------------------------
#
# @limiter.limit must sit below @router.post so the router registers the
# limiting wrapper. SlowAPIMiddleware leaves decorated routes to the decorator.


@router.post("/auth/register", response_model=TokenResponse, status_code=201)
@limiter.limit(_login_rate_limit)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a local account and return a session token for it.

    An email that already belongs to any account (local or federated) is a
    409 conflict. Federated users who want a password must be linked by an
    explicit flow, never by registering over their email.
    """
    store: AccountStore = request.app.state.account_store
    tokens: TokenService = request.app.state.token_service

    account = register_local_account(
        store,
        name=body.name,
        email=body.email,
        password=body.password,
        role=Role(body.role.value),
        rounds=_settings.bcrypt_rounds,
    )
    account = store.record_login(account.id) or account
    return _token_response(201, TokenResponse.build(tokens.issue(account.id), account))


@router.post("/auth/login", response_model=TokenResponse)
@limiter.limit(_login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Wrong email, wrong password and federated-only accounts all produce the
    same 400 invalid_credentials so account existence is not revealed. A
    deactivated account is only reported after the password checks out.
    """
    verifier: CredentialVerifier = request.app.state.credential_verifier
    store: AccountStore = request.app.state.account_store
    tokens: TokenService = request.app.state.token_service

    account = verifier.verify(body.email, body.password)
    if not account.is_active:
        raise AuthFailure(FailureKind.ACCOUNT_INACTIVE, f"login to inactive account {account.id}")

    account = store.record_login(account.id) or account
    logger.info("Password login for account %s", account.id)
    return _token_response(200, TokenResponse.build(tokens.issue(account.id), account))


# ---------------------------------------------------------------------------
# Federated login
# ---------------------------------------------------------------------------


def _frontend_redirect(path: str, **params: str) -> RedirectResponse:
    url = f"{_settings.frontend_url.rstrip('/')}{path}?{urlencode(params)}"
    resp = RedirectResponse(url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured federated providers so clients can render buttons."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(_settings)]


@router.get("/auth/oauth/{provider}")
async def oauth_redirect(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page.

    The provider name is checked against the enabled list first so a spoofed
    name cannot reach create_client().
    """
    enabled = {p["name"] for p in get_enabled_providers(_settings)}
    if provider not in enabled:
        return _frontend_redirect("/auth/error", code="provider_disabled")

    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/callback/{provider}", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Finish a federated login and hand the frontend a session token.

    Flow:
      1. Exchange the authorization code (Authlib verifies OAuth state).
      2. Normalize the provider profile into a ProviderIdentity.
      3. Resolve it to one account: existing link, link-by-email, or create.
      4. Reject inactive accounts, stamp last login, issue the token.
      5. Redirect to {FRONTEND_URL}/auth/callback?token=...

    Every failure redirects to {FRONTEND_URL}/auth/error?code=<code> where code
    is the AuthFailure code or oauth_failed.
    """
    enabled = {p["name"] for p in get_enabled_providers(_settings)}
    if provider not in enabled:
        return _frontend_redirect("/auth/error", code="provider_disabled")

    resolver: ProviderIdentityResolver = request.app.state.resolver
    store: AccountStore = request.app.state.account_store
    tokens: TokenService = request.app.state.token_service
    client = request.app.state.oauth.create_client(provider)

    try:
        oauth_token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        return _frontend_redirect("/auth/error", code="oauth_failed")

    try:
        identity = await fetch_provider_identity(client, provider, oauth_token)
    except (ValueError, httpx.HTTPError):
        logger.exception("Could not read %r profile", provider)
        return _frontend_redirect("/auth/error", code="oauth_failed")

    try:
        account = resolver.resolve(identity)
        if not account.is_active:
            raise AuthFailure(FailureKind.ACCOUNT_INACTIVE, f"federated login to inactive account {account.id}")
    except AuthFailure as exc:
        logger.warning("Federated login via %s rejected: %s (%s)", provider, exc.kind.name, exc.detail)
        return _frontend_redirect("/auth/error", code=exc.kind.value)

    store.record_login(account.id)
    session = tokens.issue(account.id)
    logger.info("Federated login via %s for account %s", provider, account.id)
    return _frontend_redirect("/auth/callback", token=session.token)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=AccountView)
def me(account: Account = Depends(current_account)) -> AccountView:
    """Return the public view of the authenticated account."""
    return AccountView.from_account(account)


@router.post("/auth/refresh", response_model=TokenResponse, dependencies=[Depends(authenticate_request)])
def refresh(request: Request) -> JSONResponse:
    """Issue a new token for the already-authenticated account.

    The old token is not revoked and stays valid until its own exp.
    """
    tokens: TokenService = request.app.state.token_service
    principal: Principal = request.state.principal
    return _token_response(200, TokenResponse.build(tokens.issue(principal.account_id)))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, principal: Principal = Depends(authenticate_request)) -> MessageResponse:
    """Acknowledge logout and stamp last_active_at. The token itself stays valid until exp."""
    store: AccountStore = request.app.state.account_store
    store.record_activity(principal.account_id)
    return MessageResponse(message="Logged out.")
