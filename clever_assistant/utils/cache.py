"""
Cache module.

Provides a bounded LRU response cache with per-entry TTL, deterministic
request keys and a JSON snapshot on disk that survives restarts.
"""
import json
import logging
import os
import time
import hashlib
import threading
from typing import Optional, Dict, Any, List, Callable
from dataclasses import dataclass, field, asdict
from collections import OrderedDict

from ..agents.error_handling import PersistenceError

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
KEY_LENGTH = 16


@dataclass
class CacheEntry:
    """A cached response entry."""
    key: str
    value: str
    created_at: float = field(default_factory=time.time)
    ttl: float = 3600
    hit_count: int = 0

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if entry is expired at ``now`` (defaults to wall clock)."""
        now = time.time() if now is None else now
        return now - self.created_at >= self.ttl

    def touch(self) -> None:
        """Update hit count."""
        self.hit_count += 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            value=data["value"],
            created_at=float(data["created_at"]),
            ttl=float(data["ttl"]),
            hit_count=int(data.get("hit_count", 0))
        )


@dataclass
class CacheStats:
    """Cache performance counters."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheStats":
        return cls(**{
            name: int(data.get(name, 0))
            for name in ("hits", "misses", "sets", "deletes", "evictions")
        })


class ResponseCache:
    """
    In-memory LRU (Least Recently Used) response cache with persistence.

    Entries are kept in a single ordered mapping from least to most recently
    accessed, so the entry map and the recency order can never disagree.
    All operations hold a re-entrant lock, which makes one instance safe to
    share between sessions.
    """

    def __init__(
        self,
        max_size: int = 100,
        default_ttl: float = 3600,
        enabled: bool = True,
        persist_path: Optional[str] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize response cache.

        Args:
            max_size: Maximum number of entries.
            default_ttl: Default TTL in seconds.
            enabled: Feature flag; a disabled cache never hits or stores.
            persist_path: JSON snapshot path, or None for memory only.
            clock: Time source in seconds.
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.max_size = max_size
        self.default_ttl = default_ttl
        self.enabled = enabled
        self.persist_path = persist_path
        self._clock = clock

        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._stats = CacheStats()
        self._lock = threading.RLock()

        if self.persist_path:
            self.load()

        logger.info(f"ResponseCache initialized: max_size={max_size}, "
                   f"enabled={enabled}, persist={bool(persist_path)}")

    @classmethod
    def from_config(cls, config) -> "ResponseCache":
        """Create a cache from an AssistantConfig."""
        return cls(
            max_size=config.cache_max_size,
            default_ttl=config.cache_ttl_seconds,
            enabled=config.cache_enabled,
            persist_path=config.cache_file if config.cache_persist else None
        )

    @staticmethod
    def derive_key(
        message: str,
        model: str,
        max_tokens: int,
        temperature: Optional[float] = None,
        system_prompt: Optional[str] = None
    ) -> str:
        """
        Derive the cache key for a request.

        Absent optional fields are encoded as JSON null, numbers are
        normalized (int max tokens, float temperature) so that equal
        parameter sets always serialize identically.

        Returns:
            The first 16 hex characters of the SHA-256 digest.
        """
        key_data = {
            "message": message,
            "model": model,
            "max_tokens": int(max_tokens),
            "temperature": None if temperature is None else float(temperature),
            "system_prompt": system_prompt if system_prompt else None
        }
        canonical = json.dumps(
            key_data, sort_keys=True, ensure_ascii=False, separators=(",", ":")
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:KEY_LENGTH]

    def get(self, key: str) -> Optional[str]:
        """
        Get a cached value.

        Args:
            key: Cache key.

        Returns:
            The value if present and fresh, None otherwise.
        """
        if not self.enabled:
            return None

        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._stats.misses += 1
                return None

            if entry.is_expired(self._clock()):
                self._remove(key)
                self._persist()
                self._stats.misses += 1
                logger.debug(f"Cache entry expired: {key}")
                return None

            # Move to end (most recently used)
            self._cache.move_to_end(key)
            entry.touch()
            self._stats.hits += 1

        logger.info(f"Cache hit: {key}")
        return entry.value

    def set(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        """
        Set an entry in cache, evicting the LRU entry when full.

        Args:
            key: Cache key.
            value: Value to cache.
            ttl: Optional TTL override in seconds.

        Returns:
            False if the cache is disabled, True otherwise.
        """
        if not self.enabled:
            return False

        with self._lock:
            if key not in self._cache and len(self._cache) >= self.max_size:
                self._evict_lru()

            self._cache[key] = CacheEntry(
                key=key,
                value=value,
                created_at=self._clock(),
                ttl=self.default_ttl if ttl is None else ttl
            )
            self._cache.move_to_end(key)
            self._stats.sets += 1
            self._persist()

        return True

    def delete(self, key: str) -> bool:
        """Delete an entry from cache."""
        with self._lock:
            if not self._remove(key):
                return False
            self._persist()
        return True

    def clear(self) -> None:
        """Clear all entries and reset statistics."""
        with self._lock:
            size = len(self._cache)
            self._cache.clear()
            self._stats = CacheStats()
            self._persist()
        logger.info(f"Cache cleared: removed {size} entries")

    def cleanup_expired(self) -> int:
        """
        Delete every expired entry.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
            for key in expired:
                self._remove(key)
            if expired:
                self._persist()

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired cache entries")
        return len(expired)

    def get_or_set(
        self,
        key: str,
        factory: Callable[[], str],
        ttl: Optional[float] = None
    ) -> str:
        """Return the cached value, or compute, store and return it."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = factory()
        self.set(key, value, ttl)
        return value

    def keys(self) -> List[str]:
        """Keys ordered from least to most recently used."""
        with self._lock:
            return list(self._cache.keys())

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return an entry without touching recency or statistics."""
        with self._lock:
            return self._cache.get(key)

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            stats = asdict(self._stats)
            size = len(self._cache)

        lookups = stats["hits"] + stats["misses"]
        stats.update({
            "size": size,
            "max_size": self.max_size,
            "hit_rate": round(stats["hits"] / lookups * 100, 2) if lookups > 0 else 0.0,
            "utilization": round(size / self.max_size * 100, 2),
            "enabled": self.enabled
        })
        return stats

    def get_size_in_bytes(self) -> int:
        """Approximate memory held by keys and values."""
        with self._lock:
            return sum(
                len(key.encode("utf-8")) + len(json.dumps(entry.value).encode("utf-8"))
                for key, entry in self._cache.items()
            )

    def save(self) -> None:
        """
        Write the whole store to the snapshot file.

        Raises:
            PersistenceError: If the snapshot cannot be written.
        """
        if not self.persist_path:
            return

        with self._lock:
            data = {
                "version": SNAPSHOT_VERSION,
                "saved_at": self._clock(),
                "entries": [entry.to_dict() for entry in self._cache.values()],
                "stats": asdict(self._stats)
            }

        tmp_path = f"{self.persist_path}.tmp"
        try:
            directory = os.path.dirname(self.persist_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.persist_path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save cache to {self.persist_path}: {e}") from e

    def load(self) -> bool:
        """
        Replace the in-memory store with the snapshot file.

        Entries whose TTL has elapsed are dropped. Failures are logged and
        leave the store empty.

        Returns:
            True if a snapshot was loaded, False otherwise.
        """
        if not self.persist_path or not os.path.exists(self.persist_path):
            return False

        try:
            with open(self.persist_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if data.get("version") != SNAPSHOT_VERSION:
                raise PersistenceError(f"Unsupported cache snapshot version: {data.get('version')}")
            entries = [CacheEntry.from_dict(item) for item in data.get("entries", [])]
            stats = CacheStats.from_dict(data.get("stats", {}))
        except (OSError, ValueError, KeyError, TypeError, AttributeError, PersistenceError) as e:
            logger.error(f"Failed to load cache from {self.persist_path}: {e}")
            return False

        now = self._clock()
        with self._lock:
            self._cache.clear()
            for entry in entries:
                if not entry.is_expired(now):
                    self._cache[entry.key] = entry
            while len(self._cache) > self.max_size:
                self._cache.popitem(last=False)
            self._stats = stats

        logger.info(f"Cache loaded: {len(self._cache)} entries")
        return True

    def _remove(self, key: str) -> bool:
        """Drop one entry without saving; callers hold the lock."""
        if key not in self._cache:
            return False
        del self._cache[key]
        self._stats.deletes += 1
        return True

    def _evict_lru(self) -> None:
        """Evict the least recently used entry."""
        if not self._cache:
            return
        lru_key, _ = self._cache.popitem(last=False)
        self._stats.evictions += 1
        logger.warning(f"Cache evicted: {lru_key}")

    def _persist(self) -> None:
        """Save after a mutation; failures keep the in-memory state."""
        if not self.persist_path:
            return
        try:
            self.save()
        except PersistenceError as e:
            logger.error(f"{e}; continuing in memory")
