"""
RedisService - async Redis infrastructure for StudyQuest.

Purpose
-------
Provide connection management, JSON caching, and distributed locking.

Responsibilities
----------------
- Own a redis.asyncio client built from Config.REDIS_URL
- Observable GET/SET/DELETE and JSON helpers (achievement catalog cache)
- Distributed locks via SET NX + Lua compare-and-delete, so only one
  instance of a scheduled job runs at a time

Non-Responsibilities
--------------------
- Progression state; the database is the source of truth
- Retry/circuit breaking; callers treat Redis as optional for caching

Usage
-----
>>> redis_service = RedisService()
>>> await redis_service.initialize()
>>> async with redis_service.acquire_lock("job:update_streaks", timeout=600, wait_timeout=0):
...     await streak_service.update_all_streaks()
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from studyquest.core.config.config import Config
from studyquest.core.logging.logger import get_logger

logger = get_logger(__name__)


class RedisService:
    """
    Async Redis client wrapper with JSON and locking helpers.

    Pass `client` to reuse an existing connection (tests pass a mock).
    """

    # Atomic lock release (compare token + delete)
    _LUA_UNLOCK_SCRIPT = """
    if redis.call("GET", KEYS[1]) == ARGV[1] then
        return redis.call("DEL", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        client: Optional[AsyncRedis] = None,
        default_ttl_seconds: int = 300,
    ) -> None:
        self._url = url or Config.REDIS_URL
        self._client: Optional[AsyncRedis] = client
        self._default_ttl_seconds = default_ttl_seconds
        self._init_lock = asyncio.Lock()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """Connect and ping. Idempotent."""
        if self._client is not None:
            logger.debug("RedisService already initialized, skipping")
            return

        async with self._init_lock:
            if self._client is not None:
                return

            url_scheme = self._url.split("://")[0] if "://" in self._url else "unknown"
            start_time = time.monotonic()
            client: AsyncRedis = AsyncRedis.from_url(
                self._url,
                socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                encoding="utf-8",
                decode_responses=True,
                max_connections=Config.REDIS_MAX_CONNECTIONS,
                retry_on_timeout=False,
                health_check_interval=30,
            )

            try:
                await client.ping()
            except RedisError as exc:
                await client.aclose()
                logger.critical(
                    "Failed to initialize RedisService",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "url_scheme": url_scheme,
                    },
                    exc_info=True,
                )
                raise RuntimeError(f"Failed to initialize RedisService: {exc}") from exc

            self._client = client
            logger.info(
                "RedisService initialized successfully",
                extra={
                    "url_scheme": url_scheme,
                    "max_connections": Config.REDIS_MAX_CONNECTIONS,
                    "initialization_time_ms": round((time.monotonic() - start_time) * 1000, 2),
                },
            )

    async def shutdown(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
            logger.info("RedisService shutdown complete")
        finally:
            self._client = None

    async def health_check(self) -> bool:
        try:
            return bool(await self.client().ping())
        except (RedisError, RuntimeError) as exc:
            logger.warning(
                "Redis health check failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return False

    def client(self) -> AsyncRedis:
        if self._client is None:
            raise RuntimeError("RedisService is not initialized. Call initialize() first.")
        return self._client

    # =========================================================================
    # KEY/VALUE
    # =========================================================================

    async def get(self, key: str) -> Optional[str]:
        start_time = time.monotonic()
        try:
            result = await self.client().get(key)
        except RedisError as exc:
            logger.error(
                "Redis GET operation failed",
                extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            raise

        logger.debug(
            "Redis GET operation",
            extra={
                "key": key,
                "found": result is not None,
                "latency_ms": round((time.monotonic() - start_time) * 1000, 2),
            },
        )
        return result

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        if ttl_seconds is None:
            ttl_seconds = self._default_ttl_seconds

        try:
            result = await self.client().set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            logger.error(
                "Redis SET operation failed",
                extra={
                    "key": key,
                    "ttl_seconds": ttl_seconds,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            raise

        logger.debug("Redis SET operation", extra={"key": key, "ttl_seconds": ttl_seconds})
        return bool(result)

    async def delete(self, key: str) -> int:
        try:
            return int(await self.client().delete(key))
        except RedisError as exc:
            logger.error(
                "Redis DELETE operation failed",
                extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            raise

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding malformed cached JSON", extra={"key": key})
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        try:
            payload = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            logger.error(
                "Failed to serialize value as JSON",
                extra={
                    "key": key,
                    "value_type": type(value).__name__,
                    "error": str(exc),
                },
            )
            raise

        return await self.set(key, payload, ttl_seconds=ttl_seconds)

    # =========================================================================
    # DISTRIBUTED LOCKING
    # =========================================================================

    @asynccontextmanager
    async def acquire_lock(
        self,
        key: str,
        timeout: int = 5,
        wait_timeout: float = 5,
        retry_interval: float = 0.1,
        operation: Optional[str] = None,
    ) -> AsyncGenerator[None, None]:
        """
        Acquire a distributed lock using SET NX with a unique token.

        The lock expires after `timeout` seconds if never released. A
        `wait_timeout` of 0 makes a single attempt.

        Raises
        ------
        TimeoutError
            If the lock cannot be acquired within wait_timeout.
        """
        client = self.client()
        token = str(uuid.uuid4())
        deadline = time.monotonic() + max(0.0, wait_timeout)
        acquired = False
        hold_start: Optional[float] = None

        try:
            while True:
                try:
                    acquired = bool(await client.set(name=key, value=token, nx=True, ex=timeout))
                except (RedisConnectionError, RedisError) as exc:
                    logger.error(
                        "Redis lock acquisition error",
                        extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
                    )

                if acquired:
                    hold_start = time.monotonic()
                    logger.debug(
                        "Redis lock acquired",
                        extra={"lock_key": key, "timeout_seconds": timeout, "lock_operation": operation},
                    )
                    break

                if time.monotonic() >= deadline:
                    logger.warning(
                        "Failed to acquire Redis lock within timeout",
                        extra={"lock_key": key, "wait_timeout_seconds": wait_timeout},
                    )
                    raise TimeoutError(f"Failed to acquire Redis lock '{key}' within {wait_timeout}s")

                await asyncio.sleep(retry_interval)

            yield

        finally:
            if acquired:
                hold_ms = round((time.monotonic() - hold_start) * 1000, 2) if hold_start else None
                try:
                    released = await client.eval(self._LUA_UNLOCK_SCRIPT, 1, key, token)
                except RedisError as exc:
                    logger.warning(
                        "Failed to release Redis lock (will expire automatically)",
                        extra={"lock_key": key, "error": str(exc), "error_type": type(exc).__name__},
                    )
                else:
                    if released:
                        logger.debug("Redis lock released", extra={"lock_key": key, "hold_ms": hold_ms})
                    else:
                        logger.warning(
                            "Redis lock already expired or stolen",
                            extra={"lock_key": key, "hold_ms": hold_ms},
                        )
