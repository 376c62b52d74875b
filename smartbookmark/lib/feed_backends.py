"""Pluggable change-feed backends for cross-replica fanout.

Built-in backends:
- InMemoryBackend: no fanout (single-process, default)
- RedisBackend: Redis pub/sub fanout
- PgNotifyBackend: PostgreSQL LISTEN/NOTIFY fanout
"""

from __future__ import annotations

import asyncio
import importlib
import json
import logging
from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from smartbookmark.config import Settings

logger = logging.getLogger(__name__)


def load_backend(spec: str) -> type:
    """Import a backend class from a 'module:ClassName' string."""
    if ":" not in spec:
        raise ValueError(
            f"Invalid backend spec '{spec}': must be in format 'module:ClassName'"
        )
    parts = spec.split(":")
    if len(parts) != 2:
        raise ValueError(
            f"Invalid backend spec '{spec}': must contain exactly one colon"
        )
    module_path, class_name = parts
    module = importlib.import_module(module_path)
    return getattr(module, class_name)


@runtime_checkable
class FeedBackend(Protocol):
    """Interface for cross-replica fanout of change events."""

    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    async def publish(self, message: dict) -> None: ...
    def on_remote_message(self, callback: Callable[[dict], Any]) -> None: ...


class InMemoryBackend:
    """No cross-replica fanout. Default backend."""

    def __init__(self, **kwargs: Any) -> None:
        self._callback: Callable[[dict], Any] | None = None

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def publish(self, message: dict) -> None:
        pass  # Local delivery already happened in ChangeFeed.publish

    def on_remote_message(self, callback: Callable[[dict], Any]) -> None:
        self._callback = callback


class RedisBackend:
    """Redis pub/sub for cross-replica fanout."""

    def __init__(self, *, settings: Settings, **kwargs: Any) -> None:
        self._redis_url = settings.redis.url
        self._channel = settings.redis.make_key("smartbookmark", "changes")
        self._client: Any = None
        self._pubsub: Any = None
        self._reader_task: asyncio.Task | None = None
        self._callback: Callable[[dict], Any] | None = None

    async def start(self) -> None:
        try:
            import redis.asyncio as aioredis
        except ImportError:
            raise ImportError(
                "redis package is required for RedisBackend. "
                "Install it with: pip install 'smart-bookmark[redis]'"
            )
        self._client = aioredis.Redis.from_url(self._redis_url)
        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(self._channel)
        self._reader_task = asyncio.create_task(self._reader_loop())

    async def stop(self) -> None:
        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        if self._pubsub:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
        if self._client:
            await self._client.aclose()

    async def publish(self, message: dict) -> None:
        if self._client:
            await self._client.publish(self._channel, json.dumps(message))

    def on_remote_message(self, callback: Callable[[dict], Any]) -> None:
        self._callback = callback

    async def _reader_loop(self) -> None:
        while True:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
                if message and message["type"] == "message":
                    data = json.loads(message["data"])
                    if self._callback:
                        await self._callback(data)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("Redis reader error", exc_info=True)
                await asyncio.sleep(1)


class PgNotifyBackend:
    """PostgreSQL LISTEN/NOTIFY for cross-replica fanout."""

    CHANNEL = "smartbookmark_changes"

    def __init__(self, *, settings: Settings, session_maker: Any, **kwargs: Any) -> None:
        self._session_maker = session_maker
        # Derive raw DSN from SQLAlchemy URL (strip +asyncpg suffix)
        self._dsn = settings.db.url.replace("+asyncpg", "")
        self._listener_conn: Any = None
        self._reader_task: asyncio.Task | None = None
        self._callback: Callable[[dict], Any] | None = None
        self._backoff = 1

    async def start(self) -> None:
        await self._connect_listener()

    async def stop(self) -> None:
        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        if self._listener_conn:
            try:
                await self._listener_conn.close()
            except Exception:
                logger.debug("PgNotify listener close failed", exc_info=True)

    async def _connect_listener(self) -> None:
        import asyncpg

        self._listener_conn = await asyncpg.connect(self._dsn)
        await self._listener_conn.add_listener(self.CHANNEL, self._on_notification)
        self._reader_task = asyncio.create_task(self._keepalive_loop())
        self._backoff = 1

    def _on_notification(self, connection: Any, pid: int, channel: str, payload: str) -> None:
        if self._callback:
            try:
                data = json.loads(payload)
                asyncio.get_running_loop().create_task(self._callback(data))
            except Exception:
                logger.warning("PgNotify parse error", exc_info=True)

    async def _keepalive_loop(self) -> None:
        """Keep the listener connection alive, reconnecting with backoff on failure."""
        while True:
            try:
                await asyncio.sleep(30)
                if self._listener_conn.is_closed():
                    raise ConnectionError("Listener connection closed")
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("PgNotify listener lost, reconnecting...", exc_info=True)
                await asyncio.sleep(self._backoff)
                self._backoff = min(self._backoff * 2, 60)
                try:
                    await self._connect_listener()
                    return
                except Exception:
                    logger.warning("PgNotify reconnect failed", exc_info=True)

    async def publish(self, message: dict) -> None:
        from sqlalchemy import text

        async with self._session_maker() as session:
            await session.execute(
                text("SELECT pg_notify(:channel, :payload)"),
                {"channel": self.CHANNEL, "payload": json.dumps(message)},
            )
            await session.commit()

    def on_remote_message(self, callback: Callable[[dict], Any]) -> None:
        self._callback = callback
