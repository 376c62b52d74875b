"""Bookmark store interface and its in-process binding.

The synchronizer only talks to a ``BookmarkStore``. ``LocalBookmarkStore``
runs inside the application process against the database and the process
change feed; ``smartbookmark.client.HttpBookmarkStore`` talks to a running
server over its JSON and event-stream API.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from smartbookmark.auth.session import CurrentUser, SessionProvider
from smartbookmark.db.services import bookmark_service
from smartbookmark.lib.change_feed import BOOKMARKS_TABLE, ChangeEvent, ChangeFeed, change_feed
from smartbookmark.lib.exceptions import AuthError, StoreError
from smartbookmark.lib.urls import display_hostname, favicon_url, safe_link_url

if TYPE_CHECKING:
    from smartbookmark.db.models.bookmark import Bookmark

__all__ = [
    "BookmarkRecord",
    "BookmarkStore",
    "ChangeSubscription",
    "CurrentUser",
    "LocalBookmarkStore",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookmarkRecord:
    id: str
    user_id: str
    title: str
    url: str
    created_at: datetime

    @property
    def hostname(self) -> str:
        return display_hostname(self.url)

    @property
    def favicon_url(self) -> str | None:
        return favicon_url(self.url)

    @property
    def link_url(self) -> str:
        return safe_link_url(self.url)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "url": self.url,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BookmarkRecord:
        created_at = data["created_at"]
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            title=data["title"],
            url=data["url"],
            created_at=created_at,
        )

    @classmethod
    def from_model(cls, bookmark: Bookmark) -> BookmarkRecord:
        return cls(
            id=str(bookmark.id),
            user_id=str(bookmark.user_id),
            title=bookmark.title,
            url=bookmark.url,
            created_at=bookmark.created_at,
        )


@runtime_checkable
class ChangeSubscription(Protocol):
    """Async iterator of change events that can be released exactly once."""

    def __aiter__(self) -> AsyncIterator[ChangeEvent]: ...
    def unsubscribe(self) -> None: ...


@runtime_checkable
class BookmarkStore(Protocol):
    async def fetch_by_owner(self, owner_id: str) -> list[BookmarkRecord]: ...
    async def insert(self, title: str, url: str, owner_id: str) -> BookmarkRecord: ...
    async def delete_by_id(self, bookmark_id: str) -> None: ...
    def subscribe_to_changes(self, table: str = BOOKMARKS_TABLE) -> ChangeSubscription: ...
    async def current_user(self) -> CurrentUser | None: ...


def _as_uuid(value: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise StoreError(f"Invalid id: {value}") from exc


class LocalBookmarkStore:
    """Bookmark store backed by the application database.

    Every call runs in its own database session; committed changes are
    published on ``feed`` by the bookmark service.
    """

    def __init__(
        self,
        session_maker: Callable[[], AbstractAsyncContextManager[AsyncSession]],
        session_provider: SessionProvider,
        feed: ChangeFeed = change_feed,
    ) -> None:
        self._session_maker = session_maker
        self._session_provider = session_provider
        self._feed = feed

    async def current_user(self) -> CurrentUser | None:
        return await self._session_provider.get_session()

    async def fetch_by_owner(self, owner_id: str) -> list[BookmarkRecord]:
        try:
            async with self._session_maker() as db_session:
                bookmarks = await bookmark_service.list_bookmarks(db_session, _as_uuid(owner_id))
        except SQLAlchemyError as exc:
            logger.warning("Bookmark fetch failed", exc_info=True)
            raise StoreError(str(exc)) from exc
        return [BookmarkRecord.from_model(b) for b in bookmarks]

    async def insert(self, title: str, url: str, owner_id: str) -> BookmarkRecord:
        try:
            async with self._session_maker() as db_session:
                bookmark = await bookmark_service.create_bookmark(
                    db_session, _as_uuid(owner_id), title, url, feed=self._feed
                )
        except SQLAlchemyError as exc:
            logger.warning("Bookmark insert failed", exc_info=True)
            raise StoreError(str(exc)) from exc
        return BookmarkRecord.from_model(bookmark)

    async def delete_by_id(self, bookmark_id: str) -> None:
        user = await self.current_user()
        if user is None:
            raise AuthError("You must be logged in to delete bookmarks.")

        try:
            async with self._session_maker() as db_session:
                deleted = await bookmark_service.delete_bookmark(
                    db_session, user.uuid, _as_uuid(bookmark_id), feed=self._feed
                )
        except SQLAlchemyError as exc:
            logger.warning("Bookmark delete failed", exc_info=True)
            raise StoreError(str(exc)) from exc

        if not deleted:
            raise StoreError("Bookmark not found")

    def subscribe_to_changes(self, table: str = BOOKMARKS_TABLE) -> ChangeSubscription:
        return self._feed.subscribe(table)
