"""
Content-addressed result cache for PhotoRoute.

Stores provider results keyed by a SHA-256 fingerprint of the request
content, namespaced per user.  A hit is served before any credit check
or network call, so re-submitting an identical edit is never billed
twice.  Entries expire after a TTL and are evicted oldest-first when
the entry-count or byte-size limits are exceeded.  Eviction may also be
triggered from any thread (for example a memory-pressure signal).
Entries can be saved to and reloaded from a JSONL file so a cache
survives between processes.
"""

import hashlib
import logging
import math
import threading
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from photoroute.config import CacheSettings, get_settings
from photoroute.models.edit import EditOptions, EditTask, ProviderResult
from photoroute.providers.imaging import normalized_thumbnail

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
_Key = Tuple[str, str]


def fingerprint(
    image: bytes,
    task: EditTask,
    options: EditOptions,
    thumbnail_size: int = 256,
) -> str:
    """Deterministic cache key for an edit.

    Hashes a normalised thumbnail of the image (so re-encoding or EXIF
    rotation of the same pixels maps to the same key) together with the
    trimmed prompt, task, target size, quality and watermark flag.  The
    provider is deliberately not part of the key.

    Raises:
        ProviderError: ``invalid_input`` if the image cannot be decoded.
    """
    digest = hashlib.sha256()
    digest.update(normalized_thumbnail(image, thumbnail_size))
    prompt = (options.prompt or "").strip()
    target = str(options.target_size) if options.target_size else ""
    for part in (
        task.value,
        prompt,
        target,
        f"{options.quality:.3f}",
        "wm" if options.allow_watermark else "nowm",
    ):
        digest.update(b"\x1f")
        digest.update(part.encode("utf-8"))
    return digest.hexdigest()


class CacheEntry(BaseModel):
    """A single cached provider result.

    Attributes:
        user_id: Namespace the entry belongs to.
        fingerprint: Content fingerprint of the request.
        result: The provider output.
        created_at: UTC timestamp when the entry was stored.
        expires_at: UTC timestamp when the entry becomes stale.
        access_count: Number of times this entry has been served.
    """

    user_id: str
    fingerprint: str
    result: ProviderResult
    created_at: datetime
    expires_at: datetime
    access_count: int = 0

    @property
    def size_bytes(self) -> int:
        return self.result.size_bytes


class CacheStats(BaseModel):
    """Aggregate cache statistics.

    Attributes:
        hits: Total cache hit count.
        misses: Total cache miss count.
        hit_rate: Ratio of hits to total lookups (0.0 if no lookups).
        entry_count: Current number of entries.
        total_bytes: Sum of cached image sizes.
        evictions: Entries removed by expiry or size limits.
        credits_saved: Hits that would otherwise have spent a credit.
    """

    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    entry_count: int = 0
    total_bytes: int = 0
    evictions: int = 0
    credits_saved: int = 0
    by_provider: Dict[str, int] = Field(default_factory=dict)


class ResultCache:
    """Thread-safe in-memory result cache with TTL and size eviction.

    Args:
        settings: TTL and size limits.  Defaults to ``get_settings().cache``.
        clock: Returns the current UTC time; injectable for expiry tests.
    """

    def __init__(
        self,
        settings: Optional[CacheSettings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._settings = settings or get_settings().cache
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._store: "OrderedDict[_Key, CacheEntry]" = OrderedDict()
        self._bytes = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._credits_saved = 0

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self._settings.ttl_seconds)

    def fingerprint(self, image: bytes, task: EditTask, options: EditOptions) -> str:
        """Fingerprint using this cache's configured thumbnail size."""
        return fingerprint(image, task, options, self._settings.thumbnail_size)

    # ------------------------------------------------------------------
    # Lookup / store
    # ------------------------------------------------------------------

    def lookup(self, user_id: str, key: str) -> Optional[ProviderResult]:
        """Return the cached result for ``key``, or ``None``.

        An expired entry is removed and counted as a miss.
        """
        now = self._clock()
        with self._lock:
            entry = self._store.get((user_id, key))
            if entry is None:
                self._misses += 1
                return None
            if now >= entry.expires_at:
                self._remove((user_id, key))
                self._evictions += 1
                self._misses += 1
                logger.debug(
                    "Cache entry expired",
                    extra={"user_id": user_id, "fingerprint": key[:12]},
                )
                return None
            entry.access_count += 1
            self._hits += 1
            if entry.result.cost_class.consumes_credit:
                self._credits_saved += 1
            result = entry.result

        logger.debug(
            "Cache hit",
            extra={
                "user_id": user_id,
                "fingerprint": key[:12],
                "provider": result.provider_id.value,
            },
        )
        return result

    def store(self, user_id: str, key: str, result: ProviderResult) -> Optional[CacheEntry]:
        """Insert or replace the entry for ``key`` and enforce size limits.

        Returns:
            The stored entry, or ``None`` if the result alone exceeds the
            byte limit and was not cached.
        """
        if result.size_bytes > self._settings.max_bytes:
            logger.warning(
                "Result too large to cache",
                extra={"user_id": user_id, "bytes": result.size_bytes},
            )
            return None

        now = self._clock()
        entry = CacheEntry(
            user_id=user_id,
            fingerprint=key,
            result=result,
            created_at=now,
            expires_at=now + self.ttl,
        )
        with self._lock:
            self._remove((user_id, key))
            self._store[(user_id, key)] = entry
            self._bytes += entry.size_bytes
            evicted = self._enforce_limits()

        logger.debug(
            "Cache set",
            extra={
                "user_id": user_id,
                "fingerprint": key[:12],
                "provider": result.provider_id.value,
                "evicted": evicted,
            },
        )
        return entry

    def invalidate(self, user_id: str, key: str) -> bool:
        """Remove one entry.  Returns ``True`` if an entry was removed."""
        with self._lock:
            removed = self._remove((user_id, key))
        if removed:
            logger.info("Cache entry invalidated", extra={"user_id": user_id, "fingerprint": key[:12]})
        return removed

    def clear(self) -> int:
        """Remove all entries and reset statistics.

        Returns:
            Number of entries that were removed.
        """
        with self._lock:
            count = len(self._store)
            self._store.clear()
            self._bytes = 0
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._credits_saved = 0
        logger.info("Cache cleared", extra={"entries_removed": count})
        return count

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """Drop every expired entry.  Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._store.items() if now >= e.expires_at]
            for k in expired:
                self._remove(k)
            self._evictions += len(expired)
        if expired:
            logger.info("Expired cache entries purged", extra={"count": len(expired)})
        return len(expired)

    def trim(self) -> int:
        """Enforce the entry-count and byte limits.  Returns the number removed."""
        with self._lock:
            return self._enforce_limits()

    def handle_memory_pressure(self, fraction: float = 0.5) -> int:
        """Drop the oldest ``fraction`` of entries.

        Args:
            fraction: Share of entries to drop, in ``(0, 1]``.

        Returns:
            Number of entries removed.

        Raises:
            ValueError: If ``fraction`` is outside ``(0, 1]``.
        """
        if not 0.0 < fraction <= 1.0:
            raise ValueError("fraction must be in (0, 1]")
        with self._lock:
            count = math.ceil(len(self._store) * fraction)
            for _ in range(count):
                self._pop_oldest()
            self._evictions += count
        logger.info("Cache shrunk under memory pressure", extra={"count": count, "fraction": fraction})
        return count

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def migrate(self, from_user_id: str, to_user_id: str) -> int:
        """Move every entry of ``from_user_id`` under ``to_user_id``.

        When both users hold an entry for the same fingerprint the more
        recently created one is kept.

        Returns:
            Number of entries moved.
        """
        if from_user_id == to_user_id:
            return 0
        moved = 0
        with self._lock:
            for (user_id, key) in [k for k in self._store if k[0] == from_user_id]:
                entry = self._store[(user_id, key)]
                self._remove((user_id, key))
                existing = self._store.get((to_user_id, key))
                if existing is not None and existing.created_at >= entry.created_at:
                    continue
                self._remove((to_user_id, key))
                self._store[(to_user_id, key)] = entry.model_copy(update={"user_id": to_user_id})
                self._bytes += entry.size_bytes
                moved += 1
            # Keep insertion order equal to age order for oldest-first eviction
            ordered = sorted(self._store.items(), key=lambda item: item[1].created_at)
            self._store = OrderedDict(ordered)
        logger.info(
            "Cache entries migrated",
            extra={"from_user": from_user_id, "to_user": to_user_id, "moved": moved},
        )
        return moved

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_to_file(self, path: Path) -> int:
        """Write every live entry to a JSONL file, oldest first.

        The file is replaced atomically.  Expired entries are skipped.

        Returns:
            Number of entries written.
        """
        now = self._clock()
        with self._lock:
            lines = [e.model_dump_json() for e in self._store.values() if now < e.expires_at]
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            for line in lines:
                fh.write(line + "\n")
        tmp.replace(path)
        logger.info("Cache saved", extra={"path": str(path), "entries": len(lines)})
        return len(lines)

    def load_from_file(self, path: Path) -> int:
        """Load entries written by :meth:`save_to_file`.

        Corrupted lines and expired entries are skipped.  When an entry
        for the same user and fingerprint is already cached the newer one
        is kept.  Size limits are enforced afterwards.

        Returns:
            Number of entries loaded.
        """
        if not path.exists():
            logger.debug("No cache file to load", extra={"path": str(path)})
            return 0

        now = self._clock()
        entries: List[CacheEntry] = []
        with open(path, "r", encoding="utf-8") as fh:
            for line_num, line in enumerate(fh, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = CacheEntry.model_validate_json(line)
                except ValueError as exc:
                    logger.warning(
                        "Skipping corrupted cache line",
                        extra={"line": line_num, "error": str(exc)},
                    )
                    continue
                if now < entry.expires_at and entry.size_bytes <= self._settings.max_bytes:
                    entries.append(entry)

        loaded = 0
        with self._lock:
            for entry in entries:
                key = (entry.user_id, entry.fingerprint)
                existing = self._store.get(key)
                if existing is not None and existing.created_at >= entry.created_at:
                    continue
                self._remove(key)
                self._store[key] = entry
                self._bytes += entry.size_bytes
                loaded += 1
            ordered = sorted(self._store.items(), key=lambda item: item[1].created_at)
            self._store = OrderedDict(ordered)
            evicted = self._enforce_limits()

        logger.info(
            "Cache loaded",
            extra={"path": str(path), "entries": loaded, "evicted": evicted},
        )
        return loaded

    def keys(self, user_id: Optional[str] = None) -> List[str]:
        with self._lock:
            return [k for (u, k) in self._store if user_id is None or u == user_id]

    def stats(self) -> CacheStats:
        """Return current cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            by_provider: Dict[str, int] = {}
            for entry in self._store.values():
                pid = entry.result.provider_id.value
                by_provider[pid] = by_provider.get(pid, 0) + 1
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hits / total if total > 0 else 0.0,
                entry_count=len(self._store),
                total_bytes=self._bytes,
                evictions=self._evictions,
                credits_saved=self._credits_saved,
                by_provider=by_provider,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    # ------------------------------------------------------------------
    # Internal helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _remove(self, key: _Key) -> bool:
        entry = self._store.pop(key, None)
        if entry is None:
            return False
        self._bytes -= entry.size_bytes
        return True

    def _pop_oldest(self) -> None:
        _, entry = self._store.popitem(last=False)
        self._bytes -= entry.size_bytes

    def _enforce_limits(self) -> int:
        evicted = 0
        while self._store and (
            len(self._store) > self._settings.max_entries
            or self._bytes > self._settings.max_bytes
        ):
            self._pop_oldest()
            evicted += 1
        self._evictions += evicted
        if evicted:
            logger.debug("Cache evicted oldest entries", extra={"count": evicted})
        return evicted
