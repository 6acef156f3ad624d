"""
Metadata cache shared by every request in the process.

Entries expire after a fixed TTL and the cache is bounded by insertion
order: when full, the oldest-inserted identifier is dropped (FIFO, reads do
not refresh position). Concurrent misses for the same identifier are not
coalesced; each resolves and the last writer wins.
"""
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from backend.app.core.config import settings
from backend.app.models.schemas import VideoMetadata
from backend.app.services.resolver import SINGLE_ATTEMPT, RetryPolicy, SourceResolver, resolver

logger = logging.getLogger(__name__)

STATS_SAMPLE_SIZE = 10


@dataclass(frozen=True)
class CacheEntry:
    metadata: VideoMetadata
    timestamp: float


class MetadataCache:
    def __init__(
        self,
        source: SourceResolver,
        ttl: float = settings.CACHE_TTL_SECONDS,
        max_entries: int = settings.CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        self.source = source
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def get(self, video_id: str) -> Optional[VideoMetadata]:
        """Return fresh cached metadata, or None on a miss or expired entry."""
        with self._lock:
            entry = self._entries.get(video_id)
        if entry is None:
            return None
        if self._clock() - entry.timestamp < self.ttl:
            return entry.metadata
        logger.debug("Cache entry for %s expired", video_id)
        return None

    def put(self, video_id: str, metadata: VideoMetadata) -> None:
        entry = CacheEntry(metadata=metadata, timestamp=self._clock())
        with self._lock:
            if video_id not in self._entries:
                while len(self._entries) >= self.max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug("Evicted %s from metadata cache", evicted)
            self._entries[video_id] = entry

    def entry(self, video_id: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(video_id)

    async def lookup_or_resolve(
        self, video_id: str, policy: RetryPolicy = SINGLE_ATTEMPT
    ) -> Tuple[VideoMetadata, bool]:
        cached = self.get(video_id)
        if cached is not None:
            logger.info("Cache hit for %s", video_id)
            return cached, True
        logger.info("Cache miss for %s", video_id)
        metadata = await self.source.resolve(video_id, policy)
        self.put(video_id, metadata)
        return metadata, False

    async def get_or_resolve(self, video_id: str, policy: RetryPolicy = SINGLE_ATTEMPT) -> VideoMetadata:
        metadata, _ = await self.lookup_or_resolve(video_id, policy)
        return metadata

    def clear(self) -> int:
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        logger.info("Cleared %d metadata cache entries", removed)
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, object]:
        with self._lock:
            keys = list(self._entries)[:STATS_SAMPLE_SIZE]
            size = len(self._entries)
        return {
            "size": size,
            "maxSize": self.max_entries,
            "ttlSeconds": self.ttl,
            "keys": keys,
        }

metadata_cache = MetadataCache(resolver)
