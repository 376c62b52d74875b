"""Static metadata for the supported OAuth providers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from smartbookmark.config import Settings

DUMMY_PROVIDER_KEY = "dummy"


@dataclass(frozen=True)
class OAuthProviderInfo:
    name: str
    auth_url: str
    token_url: str
    userinfo_url: str
    scopes: list[str] = field(default_factory=list)


OAUTH_PROVIDERS: dict[str, OAuthProviderInfo] = {
    "google": OAuthProviderInfo(
        name="Google",
        auth_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        userinfo_url="https://www.googleapis.com/oauth2/v2/userinfo",
        scopes=["openid", "email", "profile"],
    ),
    "github": OAuthProviderInfo(
        name="GitHub",
        auth_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        userinfo_url="https://api.github.com/user",
        scopes=["read:user", "user:email"],
    ),
    "discord": OAuthProviderInfo(
        name="Discord",
        auth_url="https://discord.com/api/oauth2/authorize",
        token_url="https://discord.com/api/oauth2/token",
        userinfo_url="https://discord.com/api/users/@me",
        scopes=["identify", "email"],
    ),
    DUMMY_PROVIDER_KEY: OAuthProviderInfo(
        name="Development login",
        auth_url="",
        token_url="",
        userinfo_url="",
    ),
}


def get_provider_info(provider_key: str) -> OAuthProviderInfo | None:
    return OAUTH_PROVIDERS.get(provider_key)


def validate_no_dummy_auth_in_production(settings: Settings) -> None:
    """Refuse to start with the development provider outside debug mode."""
    if DUMMY_PROVIDER_KEY in settings.auth.providers and not settings.debug:
        raise SystemExit(
            "The 'dummy' auth provider is for development only. "
            "Remove it from app.yaml or enable debug mode."
        )
