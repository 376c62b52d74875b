"""Tests for OAuth provider strategy classes and the code exchange."""

from unittest.mock import patch

import httpx
import pytest

from smartbookmark.auth.provider_info import get_provider_info
from smartbookmark.auth.providers import (
    DiscordProvider,
    GenericProvider,
    GitHubProvider,
    GoogleProvider,
    NormalizedUserData,
    exchange_and_fetch,
    get_oauth_provider,
)
from smartbookmark.lib.exceptions import AuthError, NetworkError

RealAsyncClient = httpx.AsyncClient


def mock_client(handler):
    """Patch the module's AsyncClient so requests go to ``handler``."""

    def factory(**kwargs):
        return RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    return patch("smartbookmark.auth.providers.httpx.AsyncClient", side_effect=factory)


class TestGoogleProvider:
    def setup_method(self):
        self.provider = GoogleProvider("google", get_provider_info("google"))

    def test_extract_user_data(self):
        user_info = {"id": "123", "email": "test@gmail.com", "name": "Test User", "picture": "https://photo.url"}
        result = self.provider.extract_user_data(user_info)
        assert result == NormalizedUserData(oauth_id="123", email="test@gmail.com", name="Test User", picture_url="https://photo.url")

    def test_build_auth_params_includes_prompt(self):
        params = self.provider.build_auth_params("cid", "https://redir", ["openid"], "state123")
        assert params["prompt"] == "select_account"
        assert params["scope"] == "openid"
        assert params["state"] == "state123"

    def test_requires_pkce_false(self):
        assert self.provider.requires_pkce is False


class TestGitHubProvider:
    def setup_method(self):
        self.provider = GitHubProvider("github", get_provider_info("github"))

    def test_extract_user_data(self):
        user_info = {"id": 456, "email": "dev@github.com", "name": "Dev User", "avatar_url": "https://avatar.url"}
        result = self.provider.extract_user_data(user_info)
        assert result.oauth_id == "456"
        assert result.email == "dev@github.com"
        assert result.picture_url == "https://avatar.url"

    def test_extract_user_data_falls_back_to_login(self):
        user_info = {"id": 789, "email": None, "name": None, "login": "ghuser"}
        result = self.provider.extract_user_data(user_info)
        assert result.name == "ghuser"

    @pytest.mark.asyncio
    async def test_fetch_user_info_uses_primary_email(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/user/emails":
                return httpx.Response(
                    200,
                    json=[
                        {"email": "other@example.com", "primary": False},
                        {"email": "main@example.com", "primary": True},
                    ],
                )
            return httpx.Response(200, json={"id": 1, "email": None, "login": "gh"})

        async with RealAsyncClient(transport=httpx.MockTransport(handler)) as client:
            user_info = await self.provider.fetch_user_info(client, "token")

        assert user_info["email"] == "main@example.com"


class TestDiscordProvider:
    def setup_method(self):
        self.provider = DiscordProvider("discord", get_provider_info("discord"))

    def test_extract_user_data_with_avatar(self):
        user_info = {"id": "111", "email": "user@discord.com", "global_name": "Cool User", "avatar": "abc123"}
        result = self.provider.extract_user_data(user_info)
        assert result.picture_url == "https://cdn.discordapp.com/avatars/111/abc123.png"

    def test_extract_user_data_no_avatar(self):
        user_info = {"id": "222", "email": "user@discord.com", "username": "discorduser", "avatar": None}
        result = self.provider.extract_user_data(user_info)
        assert result.picture_url is None
        assert result.name == "discorduser"


class TestGenericProvider:
    def setup_method(self):
        self.provider = GenericProvider("custom", get_provider_info("google"))

    def test_extract_user_data_with_sub(self):
        user_info = {"sub": "sub-456", "email": "user@oidc.com", "name": "OIDC User"}
        assert self.provider.extract_user_data(user_info).oauth_id == "sub-456"

    def test_build_auth_params_with_code_challenge(self):
        params = self.provider.build_auth_params("cid", "https://redir", ["openid"], "state", code_challenge="c")
        assert params["code_challenge"] == "c"
        assert params["code_challenge_method"] == "S256"

    def test_build_token_data_with_verifier(self):
        data = self.provider.build_token_data("cid", "secret", "code123", "https://redir", code_verifier="v")
        assert data["code_verifier"] == "v"
        assert data["grant_type"] == "authorization_code"


class TestGetOAuthProvider:
    def test_returns_google_provider(self):
        assert isinstance(get_oauth_provider("google"), GoogleProvider)

    def test_returns_github_provider(self):
        assert isinstance(get_oauth_provider("github"), GitHubProvider)

    def test_returns_generic_for_dummy(self):
        assert isinstance(get_oauth_provider("dummy"), GenericProvider)

    def test_raises_for_unknown(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            get_oauth_provider("nonexistent")


class TestExchangeAndFetch:
    @pytest.mark.asyncio
    async def test_success(self, settings):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.host == "github.com":
                return httpx.Response(200, json={"access_token": "tok"})
            if request.url.path == "/user":
                return httpx.Response(
                    200, json={"id": 42, "email": "dev@example.com", "name": "Dev", "avatar_url": None}
                )
            return httpx.Response(404)

        with mock_client(handler):
            user_data, raw = await exchange_and_fetch("github", settings, "the-code")

        assert user_data.oauth_id == "42"
        assert raw["email"] == "dev@example.com"
        token_request = seen[0]
        assert b"code=the-code" in token_request.content
        assert b"redirect_uri=http%3A%2F%2Ftestserver.local%2Fauth%2Fgithub%2Fcallback" in token_request.content
        assert seen[1].headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_refused_code(self, settings):
        with mock_client(lambda request: httpx.Response(400, text="bad_verification_code")):
            with pytest.raises(AuthError, match="Failed to exchange code"):
                await exchange_and_fetch("github", settings, "stale")

    @pytest.mark.asyncio
    async def test_missing_access_token(self, settings):
        with mock_client(lambda request: httpx.Response(200, json={"error": "nope"})):
            with pytest.raises(AuthError, match="No access token"):
                await exchange_and_fetch("github", settings, "code")

    @pytest.mark.asyncio
    async def test_missing_user_id(self, settings):
        def handler(request):
            if request.url.host == "github.com":
                return httpx.Response(200, json={"access_token": "tok"})
            return httpx.Response(200, json={"email": "x@example.com"})

        with mock_client(handler):
            with pytest.raises(AuthError, match="user ID"):
                await exchange_and_fetch("github", settings, "code")

    @pytest.mark.asyncio
    async def test_unreachable_provider_is_network_error(self, settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with mock_client(handler):
            with pytest.raises(NetworkError, match="GitHub"):
                await exchange_and_fetch("github", settings, "code")

    @pytest.mark.asyncio
    async def test_unconfigured_provider(self, settings):
        with pytest.raises(AuthError, match="not configured"):
            await exchange_and_fetch("google", settings, "code")
