from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from redis import asyncio as redis_asyncio
from redis.exceptions import RedisError

from civic_resolver.services.errors import CacheCorrupt
from civic_resolver.services.models import (
    Jurisdiction,
    Representative,
    jurisdiction_from_dict,
    jurisdiction_to_dict,
    representative_from_dict,
    representative_to_dict,
)

logger = logging.getLogger(__name__)


def zip_key(zip_code: str) -> str:
    return f"zip:{zip_code}"


def representatives_key(level: str, district_id: str) -> str:
    return f"reps:{level}:{district_id}"


@dataclass(slots=True, frozen=True)
class CacheEntry:
    key: str
    value: Any
    inserted_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    expired: int = 0
    corrupt: int = 0
    invalidations: int = 0

    def as_dict(self, *, size: int) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expired": self.expired,
            "corrupt": self.corrupt,
            "invalidations": self.invalidations,
            "size": size,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
        }


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_prefix(self, prefix: str) -> int: ...

    async def close(self) -> None: ...


class RedisCacheBackend:
    def __init__(self, client: redis_asyncio.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCacheBackend:
        return cls(redis_asyncio.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        value = await self.client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=max(1, int(ttl_seconds)))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def delete_prefix(self, prefix: str) -> int:
        removed = 0
        async for key in self.client.scan_iter(match=f"{prefix}*"):
            removed += await self.client.delete(key)
        return removed

    async def close(self) -> None:
        await self.client.aclose()


class ResolutionCache:
    """TTL cache for resolved jurisdictions and per-district representative sets.

    Entries are immutable and replaced whole by key, so concurrent writers are
    last-writer-wins. Expiry is checked lazily on read. When a backend is
    configured it is written through and consulted on a local miss; backend
    failures and undecodable values count as misses.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 86400,
        representative_ttl_seconds: float = 3600,
        backend: CacheBackend | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.representative_ttl_seconds = representative_ttl_seconds
        self.backend = backend
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._stats = CacheStats()

    async def get_jurisdiction(self, zip_code: str) -> Jurisdiction | None:
        return await self._get(zip_key(zip_code), _decode_jurisdiction, self.ttl_seconds)

    async def put_jurisdiction(self, jurisdiction: Jurisdiction) -> None:
        await self._put(
            zip_key(jurisdiction.zip_code),
            jurisdiction,
            json.dumps(jurisdiction_to_dict(jurisdiction), sort_keys=True),
            self.ttl_seconds,
        )

    async def get_representatives(self, level: str, district_id: str) -> tuple[Representative, ...] | None:
        return await self._get(
            representatives_key(level, district_id),
            _decode_representatives,
            self.representative_ttl_seconds,
        )

    async def put_representatives(
        self,
        level: str,
        district_id: str,
        representatives: tuple[Representative, ...],
    ) -> None:
        await self._put(
            representatives_key(level, district_id),
            tuple(representatives),
            json.dumps([representative_to_dict(row) for row in representatives], sort_keys=True),
            self.representative_ttl_seconds,
        )

    async def invalidate_zip(self, zip_code: str) -> bool:
        key = zip_key(zip_code)
        removed = self._entries.pop(key, None) is not None
        if self.backend is not None:
            try:
                await self.backend.delete(key)
            except RedisError as exc:
                logger.warning("cache backend delete failed key=%s: %s", key, exc)
        self._stats.invalidations += 1
        return removed

    async def invalidate_level(self, level: str) -> int:
        prefix = representatives_key(level, "")
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        if self.backend is not None:
            try:
                await self.backend.delete_prefix(prefix)
            except RedisError as exc:
                logger.warning("cache backend prefix delete failed prefix=%s: %s", prefix, exc)
        self._stats.invalidations += 1
        logger.info("cache level invalidated level=%s entries=%s", level, len(keys))
        return len(keys)

    def stats(self) -> dict[str, Any]:
        return self._stats.as_dict(size=len(self._entries))

    async def close(self) -> None:
        if self.backend is not None:
            await self.backend.close()

    async def _get(self, key: str, decode: Callable[[str, str], Any], ttl: float) -> Any:
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None:
            if not entry.expired(now):
                self._stats.hits += 1
                return entry.value
            self._entries.pop(key, None)
            self._stats.expired += 1

        value = await self._get_from_backend(key, decode)
        if value is None:
            self._stats.misses += 1
            return None
        self._entries[key] = CacheEntry(key=key, value=value, inserted_at=now, ttl=ttl)
        self._stats.hits += 1
        return value

    async def _get_from_backend(self, key: str, decode: Callable[[str, str], Any]) -> Any:
        if self.backend is None:
            return None
        try:
            raw = await self.backend.get(key)
        except RedisError as exc:
            logger.warning("cache backend read failed key=%s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return decode(key, raw)
        except CacheCorrupt as exc:
            self._stats.corrupt += 1
            logger.warning("%s; treating as miss", exc)
            try:
                await self.backend.delete(key)
            except RedisError as delete_exc:
                logger.warning("cache backend delete failed key=%s: %s", key, delete_exc)
            return None

    async def _put(self, key: str, value: Any, encoded: str, ttl: float) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, inserted_at=self._clock(), ttl=ttl)
        if self.backend is None:
            return
        try:
            await self.backend.set(key, encoded, int(ttl))
        except RedisError as exc:
            logger.warning("cache backend write failed key=%s: %s", key, exc)


def _decode_jurisdiction(key: str, raw: str) -> Jurisdiction:
    try:
        return jurisdiction_from_dict(json.loads(raw))
    except (KeyError, TypeError, ValueError) as exc:
        raise CacheCorrupt(key, str(exc)) from exc


def _decode_representatives(key: str, raw: str) -> tuple[Representative, ...]:
    try:
        payload = json.loads(raw)
        if not isinstance(payload, list):
            raise ValueError("representative set must be a list")
        return tuple(representative_from_dict(row) for row in payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise CacheCorrupt(key, str(exc)) from exc
