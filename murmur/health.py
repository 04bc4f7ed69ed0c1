"""
Connectivity checks for the storage backends.

Redis is not used for data yet; the service only verifies it is reachable
when a URL is configured.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import redis
from redis import exceptions as redis_exceptions

from murmur.db import DbClient
from murmur.errors import StorageUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class RedisProbe:
    """Pings a Redis server with a short socket timeout."""

    url: str
    timeout_seconds: float = 5.0

    def __post_init__(self):
        self.client = redis.Redis.from_url(
            self.url,
            socket_connect_timeout=self.timeout_seconds,
            socket_timeout=self.timeout_seconds,
        )

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis_exceptions.RedisError as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False


def check_health(db: DbClient, redis_probe: Optional[RedisProbe] = None) -> dict:
    try:
        database_ok = db.ping()
    except StorageUnavailableError:
        database_ok = False
    checks = {"database": "ok" if database_ok else "unavailable"}
    if redis_probe is not None:
        checks["redis"] = "ok" if redis_probe.ping() else "unavailable"
    healthy = all(value == "ok" for value in checks.values())
    return {"status": "ok" if healthy else "degraded", "checks": checks}
