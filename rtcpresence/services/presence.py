"""Out-of-band viewer presence.

Web viewers that do not hold a WebSocket register themselves with periodic
heartbeats. Each viewer is one TTL'd record under ``viewer:{channel}:{viewerId}``;
expiry is left entirely to the store.
"""
import abc
import json
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis

from rtcpresence.core.errors import ValidationError
from rtcpresence.schemas.presence import ViewerRecord

logger = logging.getLogger(__name__)

VIEWER_KEY = "viewer:{channel}:{viewer_id}"
VIEWER_PREFIX = "viewer:{channel}:"


def _check_channel(channel: str) -> None:
    # ":" separates key parts; "a:b" would otherwise be counted under channel "a"
    if ":" in channel:
        raise ValidationError("channel must not contain ':'")


def viewer_key(channel: str, viewer_id: str) -> str:
    _check_channel(channel)
    return VIEWER_KEY.format(channel=channel, viewer_id=viewer_id)


def viewer_prefix(channel: str) -> str:
    _check_channel(channel)
    return VIEWER_PREFIX.format(channel=channel)


class PresenceStore(abc.ABC):
    """Key/value store whose entries expire after a TTL."""

    name = "abstract"

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abc.abstractmethod
    async def put(self, key: str, value: str, ttl_seconds: int) -> None: ...

    @abc.abstractmethod
    async def delete(self, key: str) -> None: ...

    @abc.abstractmethod
    async def list_prefix(self, prefix: str) -> List[str]:
        """Keys (not yet expired) starting with *prefix*."""


class RedisPresenceStore(PresenceStore):
    name = "redis"

    def __init__(self, client: redis.Redis):
        self.client = client

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.setex(key, ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def list_prefix(self, prefix: str) -> List[str]:
        # prefix comes from a channel name; escape glob metacharacters
        pattern = "".join("\\" + c if c in "*?[]\\" else c for c in prefix) + "*"
        return [k async for k in self.client.scan_iter(match=pattern)]


class MemoryPresenceStore(PresenceStore):
    """Single-process store used when REDIS_URL is not configured."""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}

    def _sweep(self) -> None:
        now = self._clock()
        for key in [k for k, (_, exp) in self._data.items() if exp <= now]:
            del self._data[key]

    async def get(self, key: str) -> Optional[str]:
        self._sweep()
        entry = self._data.get(key)
        return entry[0] if entry else None

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_prefix(self, prefix: str) -> List[str]:
        self._sweep()
        return [k for k in self._data if k.startswith(prefix)]


def _now_ms() -> int:
    return int(time.time() * 1000)


class ViewerPresence:
    """Viewer records on top of a PresenceStore."""

    def __init__(self, store: PresenceStore, ttl_seconds: int = 60,
                 clock_ms: Callable[[], int] = _now_ms):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock_ms = clock_ms

    async def register(self, channel: str, viewer_id: str) -> ViewerRecord:
        now = self._clock_ms()
        record = ViewerRecord(joinedAt=now, lastSeen=now)
        await self.store.put(viewer_key(channel, viewer_id), record.model_dump_json(), self.ttl_seconds)
        return record

    async def heartbeat(self, channel: str, viewer_id: str) -> bool:
        """Refresh (or create) the record. Returns True when it did not exist before."""
        key = viewer_key(channel, viewer_id)
        now = self._clock_ms()
        existing = await self._load(key)
        if existing is None:
            record = ViewerRecord(joinedAt=now, lastSeen=now)
        else:
            record = existing.model_copy(update={"lastSeen": now})
        await self.store.put(key, record.model_dump_json(), self.ttl_seconds)
        return existing is None

    async def leave(self, channel: str, viewer_id: str) -> None:
        await self.store.delete(viewer_key(channel, viewer_id))

    async def count(self, channel: str) -> int:
        return len(await self.store.list_prefix(viewer_prefix(channel)))

    async def _load(self, key: str) -> Optional[ViewerRecord]:
        raw = await self.store.get(key)
        if raw is None:
            return None
        try:
            return ViewerRecord.model_validate(json.loads(raw))
        except ValueError:
            # unreadable record: overwrite it as a fresh join
            logger.warning("Discarding unreadable presence record %s", key)
            return None
