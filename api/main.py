"""
api/main.py -- FastAPI application entry point for the identity service.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  0. log_requests       -- one access-log line per request
  1. CORSMiddleware     -- CORS headers for the configured frontend origins
  2. SlowAPIMiddleware  -- per-route rate limits from api.limiter
  3. SessionMiddleware  -- holds OAuth state between redirect and callback

Lifespan builds the shared, read-only collaborators once (account store,
token service, credential verifier, resolver, authenticator, OAuth registry)
and hangs them on app.state. Route handlers and auth dependencies read them
from there; nothing in auth/ reaches for a global.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import IntegrityError
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.accounts import router as accounts_router
from api.routes.v1.auth import router as auth_router
from auth.credentials import CredentialVerifier, hash_password
from auth.dependencies import Authenticator
from auth.errors import AuthFailure, FailureKind
from auth.models import AccountDraft, Role, normalize_email
from auth.oauth import build_oauth
from auth.resolver import ProviderIdentityResolver
from auth.store import AccountStore
from auth.tokens import TokenService
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("rentally.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def attach_identity_services(app: FastAPI, store: AccountStore, settings: Settings) -> None:
    """Build the auth components around one store and publish them on app.state.

    Shared by the real lifespan and the test fixtures, so tests exercise the
    same wiring with an in-memory store.
    """
    token_service = TokenService(settings.secret_key, ttl_seconds=settings.token_expire_seconds)
    app.state.account_store = store
    app.state.token_service = token_service
    app.state.credential_verifier = CredentialVerifier(store, rounds=settings.bcrypt_rounds)
    app.state.resolver = ProviderIdentityResolver(store)
    app.state.authenticator = Authenticator(token_service, store)


def bootstrap_admin(store: AccountStore, settings: Settings) -> None:
    """Create the first admin from BOOTSTRAP_ADMIN_* when no active admin exists.

    Self-registration can never produce an admin, so without this there would
    be nobody allowed to call the account admin routes.
    """
    email = normalize_email(settings.bootstrap_admin_email)
    if not email or not settings.bootstrap_admin_password:
        return
    if store.count_active_admins() > 0:
        return
    if store.find_by_email(email) is not None:
        logger.warning("BOOTSTRAP_ADMIN_EMAIL %s already belongs to a non-admin account; not promoting it", email)
        return
    try:
        account = store.create(
            AccountDraft(
                name=settings.bootstrap_admin_name,
                email=email,
                role=Role.admin,
                password_hash=hash_password(settings.bootstrap_admin_password, settings.bcrypt_rounds),
                is_verified=True,
            )
        )
    except IntegrityError:
        # Another worker created it between the lookup and the insert.
        logger.info("Bootstrap admin already created by another process")
        return
    logger.info("Bootstrap admin account %s created", account.id)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the server lifetime.

    Everything before yield runs on startup, everything after on shutdown.
    """
    logger.info("Identity API starting up")
    store = AccountStore(_settings.database_url)
    attach_identity_services(app, store, _settings)
    bootstrap_admin(store, _settings)
    app.state.oauth = build_oauth(_settings)
    logger.info("Auth initialized (token ttl=%ss)", _settings.token_expire_seconds)

    yield

    app.state.account_store.close()
    logger.info("Identity API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Rentally Identity API",
    description="Account registration, login, federated sign-in and session tokens.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the last one added is the
# outermost. Added innermost first: Session -> SlowAPI -> CORS.
# ---------------------------------------------------------------------------

# Authlib keeps the OAuth state value in the session between the
# authorization redirect and the callback (CSRF protection for the code flow).
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(accounts_router, prefix="/api/v1", tags=["Accounts"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly.
# ---------------------------------------------------------------------------

# Status code and client-facing message per failure kind. Messages are fixed
# strings: AuthFailure.detail is logged, never returned.
_AUTH_FAILURE_RESPONSES: dict[FailureKind, tuple[int, str]] = {
    FailureKind.INVALID_CREDENTIALS: (400, "Invalid credentials."),
    FailureKind.MISSING_EMAIL: (400, "The identity provider did not supply a usable email address."),
    FailureKind.PROVIDER_CONFLICT: (409, "This email is already linked to a different account at that provider."),
    FailureKind.CONFLICT: (409, "An account with these details already exists."),
    FailureKind.EXPIRED: (401, "Token expired. Please log in again."),
    FailureKind.MALFORMED: (401, "Invalid token."),
    FailureKind.MISSING_TOKEN: (401, "Authentication required."),
    FailureKind.ACCOUNT_INACTIVE: (401, "Token is no longer valid."),
    FailureKind.UNAUTHENTICATED: (401, "Authentication required."),
    FailureKind.FORBIDDEN: (403, "Insufficient permissions."),
}


@app.exception_handler(AuthFailure)
async def auth_failure_handler(request: Request, exc: AuthFailure) -> JSONResponse:
    """Map a tagged AuthFailure onto its status code and stable message."""
    status_code, message = _AUTH_FAILURE_RESPONSES[exc.kind]
    logger.info("Auth failure on %s %s: %s %s", request.method, request.url.path, exc.kind.name, exc.detail)
    response = JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.kind.value, message=message)).model_dump(),
    )
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail; use it directly as the error field.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. The traceback is logged, never returned."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router state.
# Not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and account-store reachability."""
    store: AccountStore = request.app.state.account_store
    database = "ok" if store.ping() else "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
