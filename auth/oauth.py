"""
auth/oauth.py -- Authlib OAuth/OIDC client registry and identity extraction.

build_oauth() registers only the providers whose client id and secret are
both configured. get_enabled_providers() reports the same set, so the
provider list endpoint and the redirect routes never disagree.

The OAuth handshake (state, code exchange) belongs to Authlib. This module
stops at turning a provider token into a ProviderIdentity; deciding which
account that identity belongs to is auth.resolver's job.

Security notes:
  Google emails are only trusted when email_verified is true. An unverified
  address is passed on as email=None, which the resolver rejects with
  MISSING_EMAIL instead of linking it to whoever owns that address locally.
  Facebook only returns confirmed emails, and omits the field otherwise.

  OAuth state (CSRF protection) lives in the Starlette session between the
  authorization redirect and the callback; SessionMiddleware is mounted in
  api/main.py.

Supported providers:
  google   -- Authorization code flow; OIDC discovery.
  facebook -- Authorization code flow; static Graph API endpoints.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from authlib.integrations.starlette_client import OAuth

from auth.resolver import ProviderIdentity

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("rentally.auth.oauth")

_GRAPH_API = "https://graph.facebook.com/v19.0/"

_PROVIDER_LABELS = {"google": "Google", "facebook": "Facebook"}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def _configured(settings: Settings) -> dict[str, tuple[str, str]]:
    credentials = {
        "google": (settings.google_client_id, settings.google_client_secret),
        "facebook": (settings.facebook_client_id, settings.facebook_client_secret),
    }
    return {name: pair for name, pair in credentials.items() if pair[0] and pair[1]}


def build_oauth(settings: Settings) -> OAuth:
    """Return an Authlib registry with every configured provider registered."""
    oauth = OAuth()
    configured = _configured(settings)

    if "google" in configured:
        client_id, client_secret = configured["google"]
        oauth.register(
            name="google",
            client_id=client_id,
            client_secret=client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    if "facebook" in configured:
        client_id, client_secret = configured["facebook"]
        oauth.register(
            name="facebook",
            client_id=client_id,
            client_secret=client_secret,
            access_token_url=f"{_GRAPH_API}oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://www.facebook.com/v19.0/dialog/oauth",
            api_base_url=_GRAPH_API,
            client_kwargs={"scope": "email public_profile"},
        )
        logger.info("Facebook OAuth provider registered")

    return oauth


def get_enabled_providers(settings: Settings) -> list[dict]:
    """Return {"name", "label"} for every configured provider."""
    return [{"name": name, "label": _PROVIDER_LABELS[name]} for name in _configured(settings)]


# ---------------------------------------------------------------------------
# Identity extraction -- one normalizer per provider, one dispatch point
# ---------------------------------------------------------------------------


async def fetch_provider_identity(client, provider: str, token: dict) -> ProviderIdentity:
    """Normalize a provider token response into a ProviderIdentity.

    Args:
        client:   The Authlib client for this provider.
        provider: "google" or "facebook".
        token:    The token dict Authlib returned after code exchange.

    Raises:
        ValueError: unknown provider, or no stable subject id in the response.
        httpx.HTTPError: the provider's profile endpoint failed.
    """
    extractor = _EXTRACTORS.get(provider)
    if extractor is None:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")
    return await extractor(client, token)


async def _google_identity(client, token: dict) -> ProviderIdentity:
    """Read the OIDC userinfo claims Authlib parsed from Google's id_token."""
    userinfo = token.get("userinfo")
    if not userinfo:
        userinfo = await client.userinfo(token=token)

    subject_id = userinfo.get("sub")
    if not subject_id:
        raise ValueError("google OAuth: missing sub claim in userinfo")

    email = userinfo.get("email") if userinfo.get("email_verified", False) else None
    if userinfo.get("email") and email is None:
        logger.warning("google OAuth: ignoring unverified email for subject %s", subject_id)

    return ProviderIdentity(
        provider="google",
        subject_id=str(subject_id),
        email=email,
        display_name=userinfo.get("name"),
        avatar_url=userinfo.get("picture"),
    )


async def _facebook_identity(client, token: dict) -> ProviderIdentity:
    """Fetch id, name, email and picture from the Graph API /me endpoint."""
    resp = await client.get("me", params={"fields": "id,name,email,picture.type(large)"}, token=token)
    resp.raise_for_status()
    profile = resp.json()

    subject_id = profile.get("id")
    if not subject_id:
        raise ValueError("facebook OAuth: missing id in profile response")

    picture = (profile.get("picture") or {}).get("data") or {}
    return ProviderIdentity(
        provider="facebook",
        subject_id=str(subject_id),
        email=profile.get("email"),
        display_name=profile.get("name"),
        avatar_url=picture.get("url"),
    )


_EXTRACTORS = {
    "google": _google_identity,
    "facebook": _facebook_identity,
}
