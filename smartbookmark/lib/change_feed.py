"""Realtime change feed for bookmark rows.

Every committed insert or delete is published as a ``ChangeEvent`` on the
table it touched. Local listeners (SSE connections, in-process
synchronizers) each own an ``asyncio.Queue`` registered for that table;
other replicas receive the event through a pluggable backend
(see feed_backends.py).

Usage:
    from smartbookmark.lib.change_feed import change_feed

    subscription = change_feed.subscribe("bookmarks")
    async for event in subscription:
        ...
    subscription.unsubscribe()
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

if TYPE_CHECKING:
    from smartbookmark.lib.feed_backends import FeedBackend

logger = logging.getLogger(__name__)

BOOKMARKS_TABLE = "bookmarks"


class ChangeKind(str, Enum):
    CREATED = "created"
    DELETED = "deleted"


@dataclass
class ChangeEvent:
    """One row-level change.

    ``record`` holds the full row for ``created`` events and at least the
    ``id`` for ``deleted`` events. ``owner_id`` is the row owner when the
    publisher knows it; consumers must not require it on deletions.
    """

    kind: ChangeKind
    table: str
    record: dict[str, Any] = field(default_factory=dict)
    owner_id: str | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: float = field(default_factory=time.time)

    @property
    def record_id(self) -> str | None:
        record_id = self.record.get("id")
        return str(record_id) if record_id is not None else None

    def visible_to(self, user_id: str | None) -> bool:
        """Row-level access check used before delivering to a connection."""
        if user_id is None:
            return False
        if self.kind is ChangeKind.CREATED:
            return str(self.record.get("user_id")) == str(user_id)
        return self.owner_id is None or self.owner_id == str(user_id)

    def to_dict(self) -> dict[str, Any]:
        d = {
            "type": self.kind.value,
            "table": self.table,
            "id": str(self.id),
            "created_at": self.created_at,
            "record": self.record,
        }
        if self.owner_id is not None:
            d["owner_id"] = self.owner_id
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChangeEvent:
        event = cls(
            kind=ChangeKind(data["type"]),
            table=data.get("table", BOOKMARKS_TABLE),
            record=dict(data.get("record") or {}),
            owner_id=data.get("owner_id"),
        )
        if "id" in data:
            event.id = UUID(data["id"])
        if "created_at" in data:
            event.created_at = data["created_at"]
        return event

    @classmethod
    def created(cls, table: str, record: dict[str, Any]) -> ChangeEvent:
        owner = record.get("user_id")
        return cls(kind=ChangeKind.CREATED, table=table, record=record, owner_id=str(owner) if owner else None)

    @classmethod
    def deleted(cls, table: str, record_id: Any, owner_id: Any = None) -> ChangeEvent:
        return cls(
            kind=ChangeKind.DELETED,
            table=table,
            record={"id": str(record_id)},
            owner_id=str(owner_id) if owner_id is not None else None,
        )


class ListenerRegistry:
    """Per-table sets of listener queues.

    Pure synchronous data structure (no ``await``), safe under
    single-threaded asyncio.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, set[asyncio.Queue]] = {}

    def add_listener(self, table: str, queue: asyncio.Queue) -> None:
        self._listeners.setdefault(table, set()).add(queue)

    def remove_listener(self, table: str, queue: asyncio.Queue) -> None:
        listeners = self._listeners.get(table)
        if listeners:
            listeners.discard(queue)
            if not listeners:
                del self._listeners[table]

    def has_listeners(self, table: str) -> bool:
        return bool(self._listeners.get(table))

    def listener_count(self, table: str) -> int:
        return len(self._listeners.get(table, ()))

    def push(self, table: str, event: ChangeEvent) -> None:
        for q in tuple(self._listeners.get(table, ())):
            q.put_nowait(event)


_CLOSED = object()


class Subscription:
    """Cancellable stream of change events for one table.

    Iterating yields events as they arrive. ``unsubscribe()`` releases the
    listener; it is idempotent and ends any pending iteration.
    """

    def __init__(self, registry: ListenerRegistry, table: str) -> None:
        self.table = table
        self._registry = registry
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        registry.add_listener(table, self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._registry.remove_listener(self.table, self._queue)
        self._queue.put_nowait(_CLOSED)

    async def aclose(self) -> None:
        self.unsubscribe()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        return item

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


class ChangeFeed:
    """Local delivery of change events plus cross-replica fanout."""

    def __init__(self) -> None:
        self._registry = ListenerRegistry()
        self._backend: FeedBackend | None = None
        self._publisher_id: str = str(uuid4())

    def set_backend(self, backend: FeedBackend) -> None:
        self._backend = backend
        backend.on_remote_message(self._handle_remote)

    def _get_backend(self) -> FeedBackend:
        if self._backend is None:
            from smartbookmark.lib.feed_backends import InMemoryBackend
            self.set_backend(InMemoryBackend())
        return self._backend

    def subscribe(self, table: str = BOOKMARKS_TABLE) -> Subscription:
        return Subscription(self._registry, table)

    def listener_count(self, table: str = BOOKMARKS_TABLE) -> int:
        return self._registry.listener_count(table)

    async def publish(self, event: ChangeEvent) -> None:
        """Deliver to local listeners, then fan out to other replicas."""
        self._registry.push(event.table, event)
        await self._get_backend().publish({"pid": self._publisher_id, "e": event.to_dict()})

    async def _handle_remote(self, message: dict) -> None:
        """Process a message received from another replica via pub/sub."""
        # Self-echo prevention
        if message.get("pid") == self._publisher_id:
            return

        try:
            event = ChangeEvent.from_dict(message["e"])
        except (KeyError, ValueError):
            logger.warning("Dropping malformed change message: %r", message)
            return
        self._registry.push(event.table, event)


# Process-wide feed
change_feed = ChangeFeed()
