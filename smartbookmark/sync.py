"""Client-side bookmark synchronizer.

Keeps a local, newest-first list of the signed-in user's bookmarks in step
with the store: it loads the list once, merges realtime change events into
it, and applies the user's own adds and deletes optimistically.

Usage:
    async with BookmarkSynchronizer(store) as sync:
        sync.on_change(render)
        await sync.add("Python", "https://python.org")
        await sync.delete(sync.bookmarks[0].id)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from smartbookmark.auth.session import CurrentUser
from smartbookmark.lib.change_feed import BOOKMARKS_TABLE, ChangeEvent, ChangeKind
from smartbookmark.lib.exceptions import AuthError, SmartBookmarkError, ValidationError
from smartbookmark.store import BookmarkRecord, BookmarkStore, ChangeSubscription

logger = logging.getLogger(__name__)

Listener = Callable[["BookmarkSynchronizer"], None]


class BookmarkSynchronizer:
    """Local view of one user's bookmarks.

    Read model: ``bookmarks``, ``loading``, ``error``, ``submitting`` and the
    pending form fields ``title`` and ``url``. After ``close()`` every late
    completion is ignored and the read model no longer changes.
    """

    def __init__(self, store: BookmarkStore, *, table: str = BOOKMARKS_TABLE) -> None:
        self.store = store
        self.table = table

        self.bookmarks: list[BookmarkRecord] = []
        self.loading = False
        self.error: str | None = None
        self.submitting = False
        self.title = ""
        self.url = ""
        self.user: CurrentUser | None = None

        self._subscription: ChangeSubscription | None = None
        self._consumer: asyncio.Task | None = None
        self._listeners: list[Listener] = []
        self._closed = False

        # Feed changes seen while a fetch is in flight, replayed onto its result
        self._fetches_in_flight = 0
        self._created_in_flight: dict[str, BookmarkRecord] = {}
        self._deleted_in_flight: set[str] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    def on_change(self, callback: Listener) -> Listener:
        """Register a callback run after every state change."""
        self._listeners.append(callback)
        return callback

    def _notify(self) -> None:
        for callback in tuple(self._listeners):
            try:
                callback(self)
            except Exception:
                logger.warning("Synchronizer listener failed", exc_info=True)

    def _has(self, bookmark_id: str) -> bool:
        return any(b.id == bookmark_id for b in self.bookmarks)

    # -- lifecycle ---------------------------------------------------------

    async def activate(self) -> None:
        """Load the initial list and open the change subscription concurrently."""
        if self._closed:
            raise RuntimeError("Synchronizer has been closed")

        self.loading = True
        self._notify()
        await asyncio.gather(self._initial_load(), self._open_subscription())

    async def _initial_load(self) -> None:
        await self.refresh()

    async def _open_subscription(self) -> None:
        try:
            user = await self.store.current_user()
        except SmartBookmarkError:
            logger.warning("Could not resolve user for change subscription", exc_info=True)
            return
        if self._closed:
            return
        if user is not None:
            self.user = user

        self._subscription = self.store.subscribe_to_changes(self.table)
        self._consumer = asyncio.create_task(self._consume(self._subscription))

    async def _consume(self, subscription: ChangeSubscription) -> None:
        try:
            async for event in subscription:
                try:
                    self.apply_change(event)
                except (KeyError, ValueError, TypeError):
                    logger.warning("Dropping malformed change event: %r", event, exc_info=True)
        except SmartBookmarkError as exc:
            logger.warning("Change subscription ended: %s", exc.message)

    async def close(self) -> None:
        """Release the subscription and stop reacting to late completions."""
        if self._closed:
            return
        self._closed = True

        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.unsubscribe()

        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.warning("Change consumer failed", exc_info=True)
            self._consumer = None

        aclose = getattr(subscription, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> BookmarkSynchronizer:
        await self.activate()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # -- merging -----------------------------------------------------------

    def apply_change(self, event: ChangeEvent) -> None:
        """Merge one change event into the local list.

        Created rows are prepended only when they belong to the current user
        and are not listed yet. Deleted rows are dropped by id whoever owns
        them.
        """
        if self._closed or event.table != self.table:
            return

        if event.kind is ChangeKind.CREATED:
            if self.user is None or not event.visible_to(self.user.id):
                return
            record = BookmarkRecord.from_dict(event.record)
            if self._fetches_in_flight and record.id not in self._deleted_in_flight:
                self._created_in_flight[record.id] = record
            if self._has(record.id):
                return
            self.bookmarks.insert(0, record)
        else:
            record_id = event.record_id
            if record_id is None:
                return
            if self._fetches_in_flight:
                self._deleted_in_flight.add(record_id)
                self._created_in_flight.pop(record_id, None)
            remaining = [b for b in self.bookmarks if b.id != record_id]
            if len(remaining) == len(self.bookmarks):
                return
            self.bookmarks = remaining

        self._notify()

    # -- commands ----------------------------------------------------------

    async def refresh(self) -> None:
        """Replace the local list with the store's current one.

        The fetched rows may predate changes the feed delivered while the
        fetch was in flight, so those changes are applied again on top.
        """
        self._fetches_in_flight += 1
        try:
            try:
                user = await self.store.current_user()
                records = await self.store.fetch_by_owner(user.id) if user else []
            except SmartBookmarkError as exc:
                if self._closed:
                    return
                self.error = exc.message
                self.loading = False
                self._notify()
                return

            if self._closed:
                return
            if user is not None:
                self.user = user
            self.bookmarks = self._replay_in_flight(records)
            self.loading = False
            self._notify()
        finally:
            self._fetches_in_flight -= 1
            if not self._fetches_in_flight:
                self._created_in_flight.clear()
                self._deleted_in_flight.clear()

    def _replay_in_flight(self, records: list[BookmarkRecord]) -> list[BookmarkRecord]:
        merged = [r for r in records if r.id not in self._deleted_in_flight]
        listed = {r.id for r in merged}
        owner_id = self.user.id if self.user else None
        for record in self._created_in_flight.values():
            if record.id in listed or record.user_id != owner_id:
                continue
            merged.insert(0, record)
            listed.add(record.id)
        return merged

    async def add(self, title: str | None = None, url: str | None = None) -> BookmarkRecord:
        """Insert a bookmark; defaults to the pending form fields.

        Raises ValidationError, AuthError or StoreError after putting the
        message on ``error``. The list and form fields are left as they were
        on failure.
        """
        title = (self.title if title is None else title).strip()
        url = (self.url if url is None else url).strip()

        if not title or not url:
            exc = ValidationError("Both URL and title are required.")
            self.error = exc.message
            self._notify()
            raise exc

        self.submitting = True
        self._notify()
        try:
            user = await self.store.current_user()
            if user is None:
                raise AuthError("You must be logged in to add bookmarks.")
            record = await self.store.insert(title, url, user.id)
        except SmartBookmarkError as exc:
            self._finish_submit(error=exc.message)
            raise
        except (Exception, asyncio.CancelledError):
            self._finish_submit()
            raise

        if self._closed:
            return record

        # The change feed may have delivered this row already
        if not self._has(record.id):
            self.bookmarks.insert(0, record)
        self.title = ""
        self.url = ""
        self.error = None
        self.submitting = False
        self._notify()
        return record

    def _finish_submit(self, error: str | None = None) -> None:
        if self._closed:
            return
        if error is not None:
            self.error = error
        self.submitting = False
        self._notify()

    async def delete(self, bookmark_id: str) -> bool:
        """Remove a bookmark locally, then remotely.

        On remote failure the list is reloaded from the store. Returns
        whether the remote delete succeeded.
        """
        bookmark_id = str(bookmark_id)
        if not self._closed:
            self.bookmarks = [b for b in self.bookmarks if b.id != bookmark_id]
            self._notify()

        try:
            await self.store.delete_by_id(bookmark_id)
        except SmartBookmarkError as exc:
            logger.warning("Delete of %s failed, reloading: %s", bookmark_id, exc.message)
            if not self._closed:
                await self.refresh()
            return False
        return True
