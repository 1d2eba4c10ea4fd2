"""
Current-state cache: latest known snapshot per car

Each service instance owns its own cache. The ingestion cache keeps entries
forever, the processing cache expires them after a day; the two are never
assumed to agree.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

import nats.js.errors
from pydantic import ValidationError

from .clock import Clock, SystemClock
from .errors import StateCacheError
from .models import TelemetrySnapshotV1
from .reliability import TimeoutCategory, get_timeout_manager

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "car.state."


class StateCache:
    """Interface for current-state caches"""

    key_prefix = DEFAULT_KEY_PREFIX

    def key_for(self, car_id: str) -> str:
        return f"{self.key_prefix}{car_id}"

    async def get(self, car_id: str) -> Optional[TelemetrySnapshotV1]:
        """Return the cached snapshot, or None when the car was never seen"""
        raise NotImplementedError

    async def set(self, car_id: str, snapshot: TelemetrySnapshotV1) -> None:
        raise NotImplementedError


class InMemoryStateCache(StateCache):
    """Process-local cache with optional per-entry expiry"""

    def __init__(
        self,
        ttl_seconds: float = 0,
        clock: Optional[Clock] = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock or SystemClock()
        self.key_prefix = key_prefix
        self._entries: Dict[str, Tuple[TelemetrySnapshotV1, Optional[datetime]]] = {}
        self._lock = asyncio.Lock()
        self.writes = 0

    async def get(self, car_id: str) -> Optional[TelemetrySnapshotV1]:
        key = self.key_for(car_id)
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            snapshot, expires_at = entry
            if expires_at is not None and self.clock.utc_now() >= expires_at:
                del self._entries[key]
                logger.debug(f"Cache entry {key} expired")
                return None
            return snapshot

    async def set(self, car_id: str, snapshot: TelemetrySnapshotV1) -> None:
        expires_at = None
        if self.ttl_seconds:
            expires_at = self.clock.utc_now() + timedelta(seconds=self.ttl_seconds)
        async with self._lock:
            self._entries[self.key_for(car_id)] = (snapshot, expires_at)
            self.writes += 1

    def __len__(self) -> int:
        return len(self._entries)


class JetStreamStateCache(StateCache):
    """Cache backed by a JetStream KV bucket; expiry is the bucket TTL"""

    def __init__(self, kv, key_prefix: str = DEFAULT_KEY_PREFIX):
        self.kv = kv
        self.key_prefix = key_prefix

    @classmethod
    async def open(cls, nats_client, bucket: str, ttl_seconds: float = 0,
                   key_prefix: str = DEFAULT_KEY_PREFIX) -> "JetStreamStateCache":
        kv = await nats_client.key_value(bucket, ttl=ttl_seconds)
        return cls(kv, key_prefix=key_prefix)

    async def get(self, car_id: str) -> Optional[TelemetrySnapshotV1]:
        key = self.key_for(car_id)
        try:
            entry = await get_timeout_manager().execute_with_timeout(
                category=TimeoutCategory.KV_GET,
                operation=f"KV get {key}",
                coro=self.kv.get(key),
            )
        except nats.js.errors.KeyNotFoundError:
            logger.info(f"No cached state for car {car_id}")
            return None
        except Exception as e:
            logger.error(f"Error getting car state {key}: {e}")
            raise StateCacheError(f"error getting car state for {car_id}: {e}") from e

        if entry is None or not entry.value:
            return None
        try:
            return TelemetrySnapshotV1.model_validate_json(entry.value)
        except ValidationError as e:
            logger.error(f"Corrupt cached state under {key}: {e}")
            raise StateCacheError(f"corrupt cached state for {car_id}") from e

    async def set(self, car_id: str, snapshot: TelemetrySnapshotV1) -> None:
        key = self.key_for(car_id)
        try:
            await get_timeout_manager().execute_with_timeout(
                category=TimeoutCategory.KV_PUT,
                operation=f"KV put {key}",
                coro=self.kv.put(key, snapshot.model_dump_json().encode()),
            )
        except Exception as e:
            logger.error(f"Error setting car state {key}: {e}")
            raise StateCacheError(f"failed to set car state for {car_id}: {e}") from e
        logger.debug(f"Cached state for car {car_id}")
