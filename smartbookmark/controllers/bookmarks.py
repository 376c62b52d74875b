"""JSON API and change stream for the signed-in user's bookmarks."""

import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Any
from uuid import UUID

from litestar import Controller, Request, delete, get, post
from litestar.exceptions import NotAuthorizedException, NotFoundException
from litestar.response.sse import ServerSentEvent, ServerSentEventMessage
from sqlalchemy.ext.asyncio import AsyncSession

from smartbookmark.auth.guards import login_required
from smartbookmark.auth.session import current_user_from_session
from smartbookmark.controllers.helpers import app_feed, app_settings, current_db_user
from smartbookmark.db.services import bookmark_service
from smartbookmark.lib.change_feed import BOOKMARKS_TABLE, ChangeFeed


async def stream_changes(
    feed: ChangeFeed, user_id: str, keepalive: float = 30.0
) -> AsyncGenerator[ServerSentEventMessage, None]:
    """Relay the user's change events, with keepalive comments while idle.

    The subscription is released when the client goes away.
    """
    subscription = feed.subscribe(BOOKMARKS_TABLE)
    try:
        yield ServerSentEventMessage(data="", event="sync")

        events = subscription.__aiter__()
        while True:
            try:
                event = await asyncio.wait_for(events.__anext__(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ServerSentEventMessage(comment="keepalive")
                continue
            except StopAsyncIteration:
                return

            if event.visible_to(user_id):
                yield ServerSentEventMessage(data=json.dumps(event.to_dict()), event="change")
    finally:
        subscription.unsubscribe()


async def _owner_id(request: Request, db_session: AsyncSession) -> UUID:
    user = await current_db_user(request, db_session)
    if user is None:
        raise NotAuthorizedException("Authentication required")
    return user.id


class BookmarksController(Controller):
    path = "/api"
    guards = [login_required]

    @get("/me")
    async def me(self, request: Request) -> dict[str, Any]:
        return current_user_from_session(request.session).to_dict()

    @get("/bookmarks")
    async def list_bookmarks(self, request: Request, db_session: AsyncSession) -> list[dict[str, Any]]:
        bookmarks = await bookmark_service.list_bookmarks(db_session, await _owner_id(request, db_session))
        return [b.to_dict() for b in bookmarks]

    @post("/bookmarks", status_code=201)
    async def create_bookmark(
        self, request: Request, db_session: AsyncSession, data: dict[str, Any]
    ) -> dict[str, Any]:
        bookmark = await bookmark_service.create_bookmark(
            db_session,
            await _owner_id(request, db_session),
            str(data.get("title") or ""),
            str(data.get("url") or ""),
            feed=app_feed(request),
        )
        return bookmark.to_dict()

    @delete("/bookmarks/{bookmark_id:uuid}", status_code=204)
    async def delete_bookmark(
        self, request: Request, db_session: AsyncSession, bookmark_id: UUID
    ) -> None:
        deleted = await bookmark_service.delete_bookmark(
            db_session, await _owner_id(request, db_session), bookmark_id, feed=app_feed(request)
        )
        if not deleted:
            raise NotFoundException("Bookmark not found")

    @get("/bookmarks/changes")
    async def changes(self, request: Request) -> ServerSentEvent:
        """Server-sent events for inserts and deletes on the user's bookmarks."""
        user = current_user_from_session(request.session)
        keepalive = app_settings(request).feed.keepalive_seconds
        return ServerSentEvent(stream_changes(app_feed(request), user.id, keepalive))
