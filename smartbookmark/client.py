"""HTTP bindings of the bookmark store and session provider.

Both share one ``httpx.AsyncClient`` whose cookie jar carries the session
cookie issued by the server.

Usage:
    async with httpx.AsyncClient(base_url="http://localhost:8080") as client:
        client.cookies.set("session-0", cookie_value)
        sessions = ClientSessionProvider(client)
        store = HttpBookmarkStore(client, sessions)
        async with BookmarkSynchronizer(store) as sync:
            ...
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from urllib.parse import parse_qs, urlsplit

import httpx

from smartbookmark.auth.session import CurrentUser
from smartbookmark.lib.change_feed import BOOKMARKS_TABLE, ChangeEvent
from smartbookmark.lib.exceptions import AuthError, NetworkError, StoreError, ValidationError
from smartbookmark.store import BookmarkRecord

logger = logging.getLogger(__name__)

API_ME = "/api/me"
API_BOOKMARKS = "/api/bookmarks"
API_CHANGES = "/api/bookmarks/changes"


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return response.reason_phrase


class ClientSessionProvider:
    """Session provider driving the server's sign-in routes over HTTP."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client
        self._provider: str | None = None
        self._state: str | None = None

    async def get_session(self) -> CurrentUser | None:
        try:
            response = await self._client.get(API_ME)
        except httpx.TransportError as exc:
            raise NetworkError(str(exc)) from exc
        if response.status_code == 401:
            return None
        if response.status_code != 200:
            raise NetworkError(_error_detail(response))
        return CurrentUser.from_dict(response.json())

    async def begin_login(self, provider: str) -> str:
        """Start a sign-in and return the provider URL the user must visit."""
        try:
            response = await self._client.get(f"/auth/{provider}/login", follow_redirects=False)
        except httpx.TransportError as exc:
            raise NetworkError(str(exc)) from exc
        location = response.headers.get("location")
        if not response.is_redirect or not location:
            raise AuthError(f"Provider {provider} is not available")

        self._provider = provider
        self._state = parse_qs(urlsplit(location).query).get("state", [None])[0]
        return location

    async def exchange_code(
        self, code: str, *, provider: str | None = None, state: str | None = None
    ) -> CurrentUser:
        provider = provider or self._provider
        if not provider:
            raise AuthError("No sign-in in progress")

        params = {"code": code}
        state = state or self._state
        if state:
            params["state"] = state

        try:
            response = await self._client.get(
                f"/auth/{provider}/callback", params=params, follow_redirects=False
            )
        except httpx.TransportError as exc:
            raise NetworkError(str(exc)) from exc

        location = response.headers.get("location", "")
        if not response.is_redirect or "error=" in urlsplit(location).query:
            raise AuthError("Sign-in failed")

        self._provider = self._state = None
        user = await self.get_session()
        if user is None:
            raise AuthError("Sign-in failed")
        return user

    async def sign_out(self) -> None:
        try:
            await self._client.post("/auth/logout", follow_redirects=False)
        except httpx.TransportError:
            logger.warning("Logout request failed; clearing local session anyway", exc_info=True)
        self._client.cookies.clear()


class EventStreamSubscription:
    """Change subscription over the server's event stream.

    The stream is opened lazily on first iteration. ``unsubscribe()`` is
    idempotent and ends iteration.
    """

    def __init__(self, client: httpx.AsyncClient, path: str = API_CHANGES) -> None:
        self._client = client
        self._path = path
        self._response: httpx.Response | None = None
        self._lines: Any = None
        self._closed = False
        self._close_task: asyncio.Task | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    async def _open(self) -> None:
        request = self._client.build_request(
            "GET", self._path, headers={"Accept": "text/event-stream"}, timeout=None
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TransportError as exc:
            raise StoreError(f"Could not open change stream: {exc}") from exc

        if response.status_code != 200:
            await response.aread()
            await response.aclose()
            if response.status_code == 401:
                raise AuthError("Authentication required")
            raise StoreError(_error_detail(response))

        self._response = response
        self._lines = response.aiter_lines()

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._response is not None:
            self._close_task = asyncio.get_running_loop().create_task(self._response.aclose())

    async def aclose(self) -> None:
        self.unsubscribe()
        if self._close_task is not None:
            await self._close_task

    def __aiter__(self) -> EventStreamSubscription:
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._closed:
            raise StopAsyncIteration
        if self._response is None:
            await self._open()

        event_name = "message"
        data: list[str] = []
        try:
            async for line in self._lines:
                if self._closed:
                    break
                if not line:
                    if event_name == "change" and data:
                        try:
                            return ChangeEvent.from_dict(json.loads("\n".join(data)))
                        except (KeyError, ValueError):
                            logger.warning("Skipping malformed change event: %r", data)
                    event_name, data = "message", []
                    continue
                if line.startswith(":"):
                    continue
                field, _, value = line.partition(":")
                value = value.removeprefix(" ")
                if field == "event":
                    event_name = value
                elif field == "data":
                    data.append(value)
        except (httpx.HTTPError, httpx.StreamError) as exc:
            if self._closed:
                raise StopAsyncIteration from exc
            raise StoreError(f"Change stream interrupted: {exc}") from exc

        self.unsubscribe()
        raise StopAsyncIteration


class HttpBookmarkStore:
    """Bookmark store served by a running Smart Bookmark server."""

    def __init__(self, client: httpx.AsyncClient, session_provider: ClientSessionProvider | None = None) -> None:
        self._client = client
        self._session_provider = session_provider or ClientSessionProvider(client)

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise StoreError(str(exc)) from exc

        if response.is_success:
            return response
        detail = _error_detail(response)
        if response.status_code == 400:
            raise ValidationError(detail)
        if response.status_code == 401:
            raise AuthError(detail)
        raise StoreError(detail)

    async def current_user(self) -> CurrentUser | None:
        return await self._session_provider.get_session()

    async def fetch_by_owner(self, owner_id: str) -> list[BookmarkRecord]:
        response = await self._request("GET", API_BOOKMARKS)
        records = [BookmarkRecord.from_dict(item) for item in response.json()]
        return [r for r in records if r.user_id == str(owner_id)]

    async def insert(self, title: str, url: str, owner_id: str) -> BookmarkRecord:
        response = await self._request("POST", API_BOOKMARKS, json={"title": title, "url": url})
        return BookmarkRecord.from_dict(response.json())

    async def delete_by_id(self, bookmark_id: str) -> None:
        await self._request("DELETE", f"{API_BOOKMARKS}/{bookmark_id}")

    def subscribe_to_changes(self, table: str = BOOKMARKS_TABLE) -> EventStreamSubscription:
        if table != BOOKMARKS_TABLE:
            raise ValueError(f"No change stream for table {table}")
        return EventStreamSubscription(self._client)
