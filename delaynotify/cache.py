"""Notification cache kept in Redis."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

import redis

from delaynotify.config import CacheConfig
from delaynotify.db import Database, Notification
from delaynotify.retry import RetryStrategy

logger = logging.getLogger(__name__)

MAX_MEMORY = "100mb"
EVICTION_POLICY = "allkeys-lru"
WARM_RETRY = RetryStrategy(attempts=3, delay=timedelta(milliseconds=100), backoff=2)


class Cache:
    """String values with expiry, stored through a Redis-compatible client."""

    def __init__(self, client: Any, retry: RetryStrategy = WARM_RETRY) -> None:
        self.client = client
        self.retry = retry

    def get(self, key: str) -> str | None:
        """Return the value under ``key`` or ``None`` when it is absent."""
        value = self.client.get(key)
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def set(self, key: str, value: str | Notification, ttl: timedelta) -> None:
        """Store ``value`` under ``key``; a non-positive ``ttl`` means no expiry."""
        if isinstance(value, Notification):
            value = value.to_json()
        milliseconds = int(ttl.total_seconds() * 1000)
        if milliseconds > 0:
            self.client.set(key, value, px=milliseconds)
        else:
            self.client.set(key, value)

    def set_with_retry(
        self, strategy: RetryStrategy, key: str, value: str | Notification, ttl: timedelta
    ) -> None:
        strategy.call(self.set, key, value, ttl)

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def warm(self, database: Database, period: timedelta, ttl: timedelta) -> int:
        """Load notifications created within ``period``; return how many were stored."""
        stored = 0
        for notification in database.get_notifications_last_period(period):
            key = str(notification.uid)
            try:
                self.set_with_retry(self.retry, key, notification, ttl)
            except Exception:
                logger.warning("failed to cache notification %s while warming", key)
                continue
            stored += 1
        return stored


def connect_cache(config: CacheConfig, database: Database) -> Cache:
    """Connect to Redis, configure eviction and warm the cache from the database."""
    client = redis.Redis(
        host=config.host_name,
        port=config.port,
        password=config.password or None,
        db=config.db,
        decode_responses=True,
    )
    client.ping()
    for name, value in (("maxmemory", MAX_MEMORY), ("maxmemory-policy", EVICTION_POLICY)):
        try:
            client.config_set(name, value)
        except redis.RedisError as exc:
            logger.warning("could not set %s on Redis: %s", name, exc)
    cache = Cache(client)
    try:
        stored = cache.warm(database, config.warming, config.ttl)
    except Exception:
        logger.exception("failed to warm the cache")
    else:
        logger.info("cache warmed with %d notifications", stored)
    return cache