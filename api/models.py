"""
API request and response models for the identity REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

AccountView is the only shape an account ever leaves the service in: it has
no password hash and no provider links.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Account, Role, SessionToken

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt ignores (and newer releases reject) anything past 72 bytes.
MAX_PASSWORD_BYTES = 72


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RegistrationRole(str, Enum):
    """Roles a caller may choose at registration. admin is never self-assigned."""

    seeker = "seeker"
    owner = "owner"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    name: str = Field(min_length=2, max_length=100)
    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=MAX_PASSWORD_BYTES)
    role: RegistrationRole = RegistrationRole.seeker

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        """Strip and lower-case before the pattern check. Passwords are never stripped."""
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        """Reject passwords whose UTF-8 encoding bcrypt would truncate."""
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Deliberately looser than RegisterRequest: a malformed email or an
    over-long password simply fails as invalid credentials.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class AccountPatch(BaseModel):
    """Request body for PATCH /api/v1/accounts/{account_id} (admin only)."""

    role: Optional[Role] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountView(BaseModel):
    """Public view of an account."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    role: Role
    auth_provider: str
    avatar_url: Optional[str] = None
    is_verified: bool
    is_active: bool
    referral_code: Optional[str] = None
    created_at: Optional[str] = None
    last_login_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountView":
        """Build the public view from a domain Account."""
        return cls(
            id=account.id,
            name=account.name,
            email=account.email,
            role=account.role,
            auth_provider=account.auth_provider,
            avatar_url=account.avatar_url,
            is_verified=account.is_verified,
            is_active=account.is_active,
            referral_code=account.referral_code,
            created_at=account.created_at,
            last_login_at=account.last_login_at,
        )


class TokenResponse(BaseModel):
    """Response for register, login and refresh. account is omitted on refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    account: Optional[AccountView] = None

    @classmethod
    def build(cls, session: SessionToken, account: Optional[Account] = None) -> "TokenResponse":
        return cls(
            access_token=session.token,
            expires_in=session.expires_in,
            account=AccountView.from_account(account) if account is not None else None,
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
