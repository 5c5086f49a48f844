import logging
import secrets
import time

import redis.asyncio as redis

from zomp.config import settings

logger = logging.getLogger(__name__)


class SessionStoreError(Exception):
    """The session backend could not be reached."""


class SessionStore:
    """
    Maps opaque session ids to principal ids with a sliding TTL.

    Subclasses implement the four storage primitives; ``create`` and
    ``resolve`` are shared.
    """

    key_prefix = "session:"

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def create(self, user_id: str) -> str:
        session_id = secrets.token_urlsafe(32)
        await self._set(self.key_prefix + session_id, user_id, settings.SESSION_TTL_SECONDS)
        return session_id

    async def resolve(self, session_id: str) -> str | None:
        """Return the principal id for *session_id*, refreshing its TTL."""
        key = self.key_prefix + session_id
        user_id = await self._get(key)
        if user_id is not None:
            await self._touch(key, settings.SESSION_TTL_SECONDS)
        return user_id

    async def destroy(self, session_id: str) -> None:
        await self._delete(self.key_prefix + session_id)

    async def _get(self, key: str) -> str | None:
        raise NotImplementedError

    async def _set(self, key: str, value: str, ttl: int) -> None:
        raise NotImplementedError

    async def _touch(self, key: str, ttl: int) -> None:
        raise NotImplementedError

    async def _delete(self, key: str) -> None:
        raise NotImplementedError


class RedisSessionStore(SessionStore):
    """Session store backed by Redis; the production backend."""

    def __init__(self, url: str) -> None:
        self._url = url
        self._redis: redis.Redis | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            self._url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await self._redis.ping()
            logger.info("Session store connected: %s", self._url)
        except redis.RedisError as exc:
            logger.warning("Session store ping failed, logins will fail until it recovers: %s", exc)

    async def disconnect(self) -> None:
        """Close the connection pool.  Called once at application shutdown."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    def _client(self) -> redis.Redis:
        if self._redis is None:
            raise SessionStoreError("session store is not connected")
        return self._redis

    async def _get(self, key: str) -> str | None:
        try:
            return await self._client().get(key)
        except redis.RedisError as exc:
            raise SessionStoreError(str(exc)) from exc

    async def _set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._client().set(key, value, ex=ttl)
        except redis.RedisError as exc:
            raise SessionStoreError(str(exc)) from exc

    async def _touch(self, key: str, ttl: int) -> None:
        try:
            await self._client().expire(key, ttl)
        except redis.RedisError as exc:
            raise SessionStoreError(str(exc)) from exc

    async def _delete(self, key: str) -> None:
        try:
            await self._client().delete(key)
        except redis.RedisError as exc:
            raise SessionStoreError(str(exc)) from exc


class MemorySessionStore(SessionStore):
    """
    Process-local session store for tests and single-process development.

    Entries live in a dict of ``key -> (value, expires_at)``; expired
    entries are dropped lazily on read.
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, float]] = {}

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    async def _get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= time.monotonic():
            del self._entries[key]
            return None
        return value

    async def _set(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (value, time.monotonic() + ttl)

    async def _touch(self, key: str, ttl: int) -> None:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries[key] = (entry[0], time.monotonic() + ttl)

    async def _delete(self, key: str) -> None:
        self._entries.pop(key, None)


def build_session_store() -> SessionStore:
    if settings.SESSION_BACKEND == "memory":
        return MemorySessionStore()
    if settings.SESSION_BACKEND == "redis":
        return RedisSessionStore(settings.REDIS_URL)
    raise ValueError(f"unknown SESSION_BACKEND {settings.SESSION_BACKEND!r}")


# Module-level singleton shared across all request handlers.
session_store = build_session_store()
