"""Tests for the request-bound session provider and session rotation on login."""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from smartbookmark.auth.providers import NormalizedUserData
from smartbookmark.auth.session import (
    CurrentUser,
    RequestSessionProvider,
    SessionProvider,
    current_user_from_session,
    set_login_session,
)
from smartbookmark.lib.exceptions import AuthError, NetworkError


def _make_request(session=None):
    request = MagicMock()
    request.session = session if session is not None else {}
    return request


def _make_user(user_id=None, name="Test", email="test@example.com", picture_url=None):
    user = MagicMock()
    user.id = user_id or uuid4()
    user.name = name
    user.email = email
    user.picture_url = picture_url
    return user


class TestSetLoginSession:
    def test_session_is_cleared(self):
        """Session should be cleared (rotated) during login."""
        request = _make_request({"old_key": "old_value", "oauth_state": "stale"})

        set_login_session(request, _make_user())

        assert "old_key" not in request.session
        assert "oauth_state" not in request.session

    def test_user_data_is_set(self):
        user_id = uuid4()
        request = _make_request()

        set_login_session(
            request,
            _make_user(user_id, "Alice", "alice@test.com", "https://img.example.com/alice.jpg"),
        )

        assert request.session["user_id"] == str(user_id)
        assert request.session["user_name"] == "Alice"
        assert request.session["user_email"] == "alice@test.com"
        assert request.session["user_picture_url"] == "https://img.example.com/alice.jpg"

    def test_flash_is_preserved(self):
        request = _make_request({"flash": "Welcome back!"})

        set_login_session(request, _make_user())

        assert request.session["flash"] == "Welcome back!"

    def test_no_flash_when_absent(self):
        request = _make_request()
        set_login_session(request, _make_user())
        assert "flash" not in request.session


class TestCurrentUserFromSession:
    def test_empty_session(self):
        assert current_user_from_session({}) is None

    def test_invalid_user_id(self):
        assert current_user_from_session({"user_id": "not-a-uuid"}) is None

    def test_populated_session(self):
        user_id = str(uuid4())
        user = current_user_from_session({"user_id": user_id, "user_email": "a@example.com", "user_name": "A"})
        assert user == CurrentUser(id=user_id, email="a@example.com", name="A")
        assert str(user.uuid) == user_id

    def test_round_trip_through_dict(self):
        user = CurrentUser(id=str(uuid4()), email="a@example.com", name="A")
        assert CurrentUser.from_dict(user.to_dict()) == user


class TestRequestSessionProvider:
    def _provider(self, session, db_session=None, settings=None):
        return RequestSessionProvider(_make_request(session), db_session or AsyncMock(), settings or MagicMock())

    def test_satisfies_protocol(self):
        assert isinstance(self._provider({}), SessionProvider)

    @pytest.mark.asyncio
    async def test_get_session(self):
        user_id = str(uuid4())
        provider = self._provider({"user_id": user_id})
        assert (await provider.get_session()).id == user_id

    @pytest.mark.asyncio
    async def test_exchange_code_without_pending_sign_in(self):
        with pytest.raises(AuthError, match="No sign-in in progress"):
            await self._provider({}).exchange_code("code")

    @pytest.mark.asyncio
    async def test_exchange_code_signs_in(self, db_session, settings):
        session = {"oauth_provider": "github", "oauth_code_verifier": "verifier", "oauth_state": "s"}
        provider = RequestSessionProvider(_make_request(session), db_session, settings)
        user_data = NormalizedUserData(oauth_id="42", email="dev@example.com", name="Dev", picture_url=None)

        with patch(
            "smartbookmark.auth.session.exchange_and_fetch",
            AsyncMock(return_value=(user_data, {"id": 42})),
        ) as exchange:
            user = await provider.exchange_code("the-code")

        exchange.assert_awaited_once_with("github", settings, "the-code", "verifier")
        assert user.email == "dev@example.com"
        assert provider.request.session["user_id"] == user.id
        assert "oauth_state" not in provider.request.session

    @pytest.mark.asyncio
    async def test_failed_exchange_leaves_session_alone(self, settings):
        session = {"oauth_provider": "github", "flash": "hello"}
        db_session = AsyncMock()
        provider = RequestSessionProvider(_make_request(session), db_session, settings)

        with patch(
            "smartbookmark.auth.session.exchange_and_fetch",
            AsyncMock(side_effect=NetworkError("down")),
        ):
            with pytest.raises(NetworkError):
                await provider.exchange_code("code")

        assert provider.request.session == {"oauth_provider": "github", "flash": "hello"}
        db_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sign_out_clears_session(self):
        provider = self._provider({"user_id": str(uuid4()), "flash": "x"})
        await provider.sign_out()
        assert provider.request.session == {}
        assert await provider.get_session() is None
