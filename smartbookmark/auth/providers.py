"""OAuth provider strategy classes and the authorization-code exchange."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from smartbookmark.auth.provider_info import OAuthProviderInfo, get_provider_info
from smartbookmark.lib import observability
from smartbookmark.lib.exceptions import AuthError, NetworkError

if TYPE_CHECKING:
    from smartbookmark.config import Settings

HTTP_TIMEOUT = 10.0


@dataclass
class NormalizedUserData:
    """Provider-agnostic user data extracted from OAuth responses."""

    oauth_id: str | None
    email: str | None
    name: str | None
    picture_url: str | None


class OAuthProvider(ABC):
    """Base class for OAuth provider strategies."""

    def __init__(self, provider_key: str, provider_info: OAuthProviderInfo):
        self.provider_key = provider_key
        self.provider_info = provider_info

    @property
    def requires_pkce(self) -> bool:
        return False

    def build_auth_params(
        self,
        client_id: str,
        redirect_uri: str,
        scopes: list[str],
        state: str,
        code_challenge: str | None = None,
    ) -> dict:
        """Build the authorization URL query parameters."""
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "state": state,
        }
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        return params

    def build_token_data(
        self,
        client_id: str,
        client_secret: str,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> dict:
        """Build token exchange POST data."""
        data = {
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier
        return data

    async def fetch_user_info(self, client: httpx.AsyncClient, access_token: str) -> dict:
        """Fetch user info from the provider's userinfo endpoint."""
        headers = {"Authorization": f"Bearer {access_token}"}
        response = await client.get(self.provider_info.userinfo_url, headers=headers)
        if response.status_code != 200:
            raise AuthError("Failed to fetch user info")
        return response.json()

    @abstractmethod
    def extract_user_data(self, user_info: dict) -> NormalizedUserData:
        """Extract normalized user data from provider-specific response."""
        ...


class GoogleProvider(OAuthProvider):
    def build_auth_params(self, client_id, redirect_uri, scopes, state, code_challenge=None):
        params = super().build_auth_params(client_id, redirect_uri, scopes, state, code_challenge)
        params["prompt"] = "select_account"
        return params

    def extract_user_data(self, user_info: dict) -> NormalizedUserData:
        return NormalizedUserData(
            oauth_id=user_info.get("id"),
            email=user_info.get("email"),
            name=user_info.get("name"),
            picture_url=user_info.get("picture"),
        )


class GitHubProvider(OAuthProvider):
    async def fetch_user_info(self, client: httpx.AsyncClient, access_token: str) -> dict:
        user_info = await super().fetch_user_info(client, access_token)

        # Private emails are only exposed through the emails endpoint
        if not user_info.get("email"):
            headers = {"Authorization": f"Bearer {access_token}"}
            email_response = await client.get("https://api.github.com/user/emails", headers=headers)
            if email_response.status_code == 200:
                primary_email = next(
                    (e["email"] for e in email_response.json() if e.get("primary")), None
                )
                if primary_email:
                    user_info["email"] = primary_email

        return user_info

    def extract_user_data(self, user_info: dict) -> NormalizedUserData:
        return NormalizedUserData(
            oauth_id=str(user_info.get("id")) if user_info.get("id") is not None else None,
            email=user_info.get("email"),
            name=user_info.get("name") or user_info.get("login"),
            picture_url=user_info.get("avatar_url"),
        )


class DiscordProvider(OAuthProvider):
    def extract_user_data(self, user_info: dict) -> NormalizedUserData:
        avatar = user_info.get("avatar")
        user_id = user_info.get("id")
        avatar_url = None
        if avatar and user_id:
            avatar_url = f"https://cdn.discordapp.com/avatars/{user_id}/{avatar}.png"
        return NormalizedUserData(
            oauth_id=user_id,
            email=user_info.get("email"),
            name=user_info.get("global_name") or user_info.get("username"),
            picture_url=avatar_url,
        )


class GenericProvider(OAuthProvider):
    """Fallback provider for unknown/custom OAuth providers."""

    def extract_user_data(self, user_info: dict) -> NormalizedUserData:
        oauth_id = user_info.get("id", user_info.get("sub"))
        return NormalizedUserData(
            oauth_id=str(oauth_id) if oauth_id is not None else None,
            email=user_info.get("email"),
            name=user_info.get("name"),
            picture_url=user_info.get("picture"),
        )


_PROVIDER_CLASSES: dict[str, type[OAuthProvider]] = {
    "google": GoogleProvider,
    "github": GitHubProvider,
    "discord": DiscordProvider,
}


def get_oauth_provider(provider_key: str) -> OAuthProvider:
    """Get an OAuth provider strategy instance by key.

    Returns a GenericProvider for keys without a dedicated strategy.
    """
    provider_info = get_provider_info(provider_key)
    if not provider_info:
        raise ValueError(f"Unknown provider: {provider_key}")

    cls = _PROVIDER_CLASSES.get(provider_key, GenericProvider)
    return cls(provider_key, provider_info)


async def exchange_and_fetch(
    provider_key: str,
    settings: Settings,
    code: str,
    code_verifier: str | None = None,
) -> tuple[NormalizedUserData, dict]:
    """Exchange an authorization code for a token and fetch the user's profile.

    Raises:
        AuthError: the provider refused the code or returned no usable identity.
        NetworkError: the provider could not be reached.
    """
    provider = get_oauth_provider(provider_key)
    provider_config = settings.auth.providers.get(provider_key)
    if not provider_config:
        raise AuthError(f"Provider {provider_key} not configured")

    token_data = provider.build_token_data(
        provider_config.client_id,
        provider_config.client_secret,
        code,
        settings.auth.get_redirect_uri(provider_key),
        code_verifier,
    )

    try:
        with observability.span("oauth.exchange", provider=provider_key):
            user_info = await _exchange(provider, token_data)
    except httpx.TransportError as exc:
        raise NetworkError(f"Could not reach {provider.provider_info.name}: {exc}") from exc

    user_data = provider.extract_user_data(user_info)
    if not user_data.oauth_id:
        raise AuthError("Could not determine user ID")

    return user_data, user_info


async def _exchange(provider: OAuthProvider, token_data: dict) -> dict:
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
        response = await client.post(
            provider.provider_info.token_url,
            data=token_data,
            headers={"Accept": "application/json"},
        )
        if response.status_code != 200:
            raise AuthError(f"Failed to exchange code for tokens: {response.text}")

        access_token = response.json().get("access_token")
        if not access_token:
            raise AuthError("No access token received")

        return await provider.fetch_user_info(client, access_token)
