import asyncio
import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, Tuple, TypeVar

from iptvresolver.core.catalog import CatalogEntry, CatalogIndex, index_from_entries
from iptvresolver.core.episodes import Episode
from iptvresolver.utils.database import KeyValueStore
from iptvresolver.utils.logger import cache_logger

V = TypeVar("V")

# ===========================
# Persisted Layout
# ===========================
NAMESPACE = "iptv_resolver_v1"
RESOLVED_MAP_KEY = "resolved_episode_map"
BINDING_MAP_KEY = "series_binding_map"


# ===========================
# Cache Key Creation
# ===========================
def stable_hash(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:16]


def series_info_key(provider_key: str, series_id: int) -> str:
    return stable_hash(f"{provider_key}|{series_id}")


def resolved_key(provider_key: str, tmdb_id: Optional[str], imdb_id: Optional[str],
                 title_key: str, season: int, episode: int) -> str:
    return "|".join([provider_key, tmdb_id or "", imdb_id or "", title_key, str(season), str(episode)])


def binding_keys(provider_key: str, tmdb_id: Optional[str], imdb_id: Optional[str], title_key: str) -> List[str]:
    keys = []
    if tmdb_id:
        keys.append(f"{provider_key}|tmdb:{tmdb_id}")
    if imdb_id:
        keys.append(f"{provider_key}|imdb:{imdb_id}")
    if title_key:
        keys.append(f"{provider_key}|title:{title_key}")
    return list(dict.fromkeys(keys))


# ===========================
# Cached Records
# ===========================
@dataclass(frozen=True, slots=True)
class ResolvedEpisode:
    stream_id: int
    container_extension: Optional[str]
    series_id: int
    confidence: float
    method: str
    resolved_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stream_id": self.stream_id,
            "container_extension": self.container_extension,
            "series_id": self.series_id,
            "confidence": self.confidence,
            "method": self.method,
            "resolved_at": self.resolved_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResolvedEpisode":
        return cls(
            stream_id=int(data["stream_id"]),
            container_extension=data.get("container_extension"),
            series_id=int(data["series_id"]),
            confidence=float(data["confidence"]),
            method=str(data["method"]),
            resolved_at=float(data["resolved_at"]),
        )


@dataclass(frozen=True, slots=True)
class SeriesBinding:
    query_key: str
    series_id: int
    saved_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {"series_id": self.series_id, "saved_at": self.saved_at}


# ===========================
# Memory LRU
# ===========================
class MemoryLRU(Generic[V]):

    def __init__(self, capacity: int):
        self.capacity = max(1, capacity)
        self._items: "OrderedDict[str, Tuple[V, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Tuple[V, float]]:
        with self._lock:
            item = self._items.get(key)
            if item is not None:
                self._items.move_to_end(key)
            return item

    def put(self, key: str, value: V, stamp: float) -> None:
        with self._lock:
            self._items[key] = (value, stamp)
            self._items.move_to_end(key)
            while len(self._items) > self.capacity:
                self._items.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


# ===========================
# Keyed Tier
# ===========================
class KeyedTier(Generic[V]):
    """One persisted record per key, fronted by a memory LRU.

    ``get`` returns the best value it has together with its freshness, so the
    caller can decide whether a stale value is still worth serving.
    """

    def __init__(self, name: str, store: KeyValueStore, prefix: str, ttl: float, capacity: int,
                 stamp_field: str, payload_field: str,
                 encode: Callable[[V], Any], decode: Callable[[Any, float], V],
                 clock: Callable[[], float] = time.time):
        self.name = name
        self.store = store
        self.prefix = prefix
        self.ttl = ttl
        self.stamp_field = stamp_field
        self.payload_field = payload_field
        self.encode = encode
        self.decode = decode
        self.clock = clock
        self.memory: MemoryLRU[V] = MemoryLRU(capacity)

    def storage_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def stamp_key(self, key: str) -> str:
        return f"{self.prefix}:{key}:{self.stamp_field}"

    def is_fresh(self, stamp: float, now: Optional[float] = None) -> bool:
        return ((now if now is not None else self.clock()) - stamp) < self.ttl

    async def get(self, key: str) -> Tuple[Optional[V], bool]:
        now = self.clock()
        cached = self.memory.get(key)
        if cached is not None and self.is_fresh(cached[1], now):
            cache_logger.debug(f"Hit: {self.name} (memory)")
            return cached[0], True

        persisted_stamp = await self._read_stamp(key) if cached is not None else None
        if cached is None or persisted_stamp is None or persisted_stamp > cached[1]:
            persisted = await self._read(key)
            if persisted is not None and (cached is None or persisted[1] > cached[1]):
                self.memory.put(key, persisted[0], persisted[1])
                cached = persisted

        if cached is None:
            cache_logger.debug(f"Miss: {self.name}")
            return None, False

        fresh = self.is_fresh(cached[1], now)
        cache_logger.debug(f"Hit: {self.name} ({'fresh' if fresh else 'stale'})")
        return cached[0], fresh

    async def put(self, key: str, value: V, stamp: Optional[float] = None) -> None:
        stamp = self.clock() if stamp is None else stamp
        self.memory.put(key, value, stamp)

        try:
            content = await asyncio.to_thread(self._serialize, value, stamp)
            await self.store.set(NAMESPACE, self.storage_key(key), content)
            await self.store.set(NAMESPACE, self.stamp_key(key), repr(stamp))
            cache_logger.debug(f"Saved: {self.name} ({int(self.ttl)}s)")
        except Exception as e:
            cache_logger.error(f"Cache save failed: {self.name} {type(e).__name__}")

    def _serialize(self, value: V, stamp: float) -> str:
        return json.dumps({self.stamp_field: stamp, self.payload_field: self.encode(value)})

    def _deserialize(self, raw: str) -> Tuple[V, float]:
        data = json.loads(raw)
        stamp = float(data[self.stamp_field])
        return self.decode(data[self.payload_field], stamp), stamp

    async def _read_stamp(self, key: str) -> Optional[float]:
        try:
            raw = await self.store.get(NAMESPACE, self.stamp_key(key))
            return float(raw) if raw else None
        except Exception as e:
            cache_logger.debug(f"Stamp unavailable: {self.name} {type(e).__name__}")
            return None

    async def _read(self, key: str) -> Optional[Tuple[V, float]]:
        try:
            raw = await self.store.get(NAMESPACE, self.storage_key(key))
        except Exception as e:
            cache_logger.error(f"Cache read failed: {self.name} {type(e).__name__}")
            return None

        if not raw:
            return None

        try:
            return await asyncio.to_thread(self._deserialize, raw)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            cache_logger.error(f"Corrupted cache: {self.name} {type(e).__name__}")
            return None


# ===========================
# Shared Map Tier
# ===========================
class SharedMapTier(Generic[V]):
    """Bounded map of records persisted together under a single key.

    Writers read, merge and write the whole map under an ``asyncio.Lock``.
    When ``evict_by`` names a record field the record with the smallest value
    is evicted first, otherwise the oldest insertion goes.
    """

    def __init__(self, name: str, store: KeyValueStore, map_key: str, ttl: float, capacity: int,
                 stamp_field: str, encode: Callable[[V], Dict[str, Any]],
                 decode: Callable[[str, Mapping[str, Any]], V], evict_by: Optional[str] = None,
                 clock: Callable[[], float] = time.time):
        self.name = name
        self.store = store
        self.map_key = map_key
        self.ttl = ttl
        self.capacity = max(1, capacity)
        self.stamp_field = stamp_field
        self.encode = encode
        self.decode = decode
        self.evict_by = evict_by
        self.clock = clock
        self.memory: MemoryLRU[V] = MemoryLRU(capacity)
        self._write_lock = asyncio.Lock()

    def is_fresh(self, stamp: float, now: Optional[float] = None) -> bool:
        return ((now if now is not None else self.clock()) - stamp) < self.ttl

    async def get(self, key: str) -> Tuple[Optional[V], bool]:
        found = await self.get_any([key])
        if found is None:
            return None, False
        return found[1], found[2]

    async def get_any(self, keys: Iterable[str]) -> Optional[Tuple[str, V, bool]]:
        keys = list(keys)
        if not keys:
            return None

        now = self.clock()
        for key in keys:
            cached = self.memory.get(key)
            if cached is not None:
                return key, cached[0], self.is_fresh(cached[1], now)

        items = await self._read_items()
        for key in keys:
            record = items.get(key)
            if not isinstance(record, Mapping):
                continue
            try:
                value = self.decode(key, record)
                stamp = float(record[self.stamp_field])
            except (KeyError, TypeError, ValueError) as e:
                cache_logger.error(f"Corrupted cache: {self.name} {type(e).__name__}")
                continue
            self.memory.put(key, value, stamp)
            return key, value, self.is_fresh(stamp, now)

        cache_logger.debug(f"Miss: {self.name}")
        return None

    async def put(self, key: str, value: V) -> None:
        await self.put_many({key: value})

    async def put_many(self, values: Mapping[str, V]) -> None:
        if not values:
            return

        records = {}
        for key, value in values.items():
            record = self.encode(value)
            self.memory.put(key, value, float(record[self.stamp_field]))
            records[key] = record

        async with self._write_lock:
            items = await self._read_items()
            for key, record in records.items():
                items.pop(key, None)
                items[key] = record

            while len(items) > self.capacity:
                del items[self._eviction_key(items)]

            try:
                await self.store.set(NAMESPACE, self.map_key, json.dumps({"items": items}))
                cache_logger.debug(f"Saved: {self.name} ({len(items)} items)")
            except Exception as e:
                cache_logger.error(f"Cache save failed: {self.name} {type(e).__name__}")

    def _eviction_key(self, items: Dict[str, Any]) -> str:
        if self.evict_by is None:
            return next(iter(items))

        def stamp(key: str) -> float:
            try:
                return float(items[key][self.evict_by])
            except (KeyError, TypeError, ValueError):
                return float("-inf")

        return min(items, key=stamp)

    async def _read_items(self) -> Dict[str, Any]:
        try:
            raw = await self.store.get(NAMESPACE, self.map_key)
        except Exception as e:
            cache_logger.error(f"Cache read failed: {self.name} {type(e).__name__}")
            return {}

        if not raw:
            return {}

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            cache_logger.error(f"Corrupted cache: {self.name} {type(e).__name__}")
            return {}

        items = data.get("items") if isinstance(data, dict) else None
        return dict(items) if isinstance(items, dict) else {}


# ===========================
# Tier Codecs
# ===========================
def _encode_index(index: CatalogIndex) -> List[Dict[str, Any]]:
    return [entry.to_dict() for entry in index.entries]


def _decode_index(payload: Any, stamp: float) -> CatalogIndex:
    return index_from_entries((CatalogEntry.from_dict(item) for item in payload), built_at=stamp)


def _encode_episodes(episodes: List[Episode]) -> List[Dict[str, Any]]:
    return [episode.to_dict() for episode in episodes]


def _decode_episodes(payload: Any, stamp: float) -> List[Episode]:
    return [Episode.from_dict(item) for item in payload]


def _decode_resolved(key: str, record: Mapping[str, Any]) -> ResolvedEpisode:
    return ResolvedEpisode.from_dict(record)


def _decode_binding(key: str, record: Mapping[str, Any]) -> SeriesBinding:
    return SeriesBinding(query_key=key, series_id=int(record["series_id"]), saved_at=float(record["saved_at"]))


# ===========================
# Cache Store
# ===========================
class CacheStore:
    """All cache tiers used by the resolver, sharing one persisted store."""

    def __init__(self, store: KeyValueStore, *,
                 catalog_ttl: float = 86400, vod_catalog_ttl: float = 21600,
                 series_info_ttl: float = 86400, resolved_ttl: float = 86400,
                 binding_ttl: float = 2592000, resolved_capacity: int = 512,
                 binding_capacity: int = 2048, series_info_capacity: int = 50,
                 catalog_capacity: int = 8, clock: Callable[[], float] = time.time):
        self.store = store

        self.catalog: KeyedTier[CatalogIndex] = KeyedTier(
            "catalog", store, "catalog:series", catalog_ttl, catalog_capacity,
            "created_at", "entries", _encode_index, _decode_index, clock
        )
        self.vod_catalog: KeyedTier[CatalogIndex] = KeyedTier(
            "vod catalog", store, "catalog:vod", vod_catalog_ttl, catalog_capacity,
            "created_at", "entries", _encode_index, _decode_index, clock
        )
        self.series_info: KeyedTier[List[Episode]] = KeyedTier(
            "series info", store, "series_info", series_info_ttl, series_info_capacity,
            "saved_at", "episodes", _encode_episodes, _decode_episodes, clock
        )
        self.resolved: SharedMapTier[ResolvedEpisode] = SharedMapTier(
            "resolved episode", store, RESOLVED_MAP_KEY, resolved_ttl, resolved_capacity,
            "resolved_at", ResolvedEpisode.to_dict, _decode_resolved, evict_by="resolved_at", clock=clock
        )
        self.bindings: SharedMapTier[SeriesBinding] = SharedMapTier(
            "series binding", store, BINDING_MAP_KEY, binding_ttl, binding_capacity,
            "saved_at", SeriesBinding.to_dict, _decode_binding, clock=clock
        )

    @classmethod
    def from_settings(cls, store: KeyValueStore, settings) -> "CacheStore":
        return cls(
            store,
            catalog_ttl=settings.CATALOG_CACHE_TTL,
            vod_catalog_ttl=settings.VOD_CATALOG_CACHE_TTL,
            series_info_ttl=settings.SERIES_INFO_CACHE_TTL,
            resolved_ttl=settings.RESOLVED_CACHE_TTL,
            binding_ttl=settings.SERIES_BINDING_TTL,
            resolved_capacity=settings.RESOLVED_CACHE_CAPACITY,
            binding_capacity=settings.SERIES_BINDING_CAPACITY,
            series_info_capacity=settings.SERIES_INFO_MEMORY_CAPACITY,
        )
