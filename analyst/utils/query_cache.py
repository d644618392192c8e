from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from analyst.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    result: Any
    timestamp: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.timestamp >= self.ttl


def normalize_question(question: str) -> str:
    return " ".join(question.lower().split())


def dataset_prefix(dataset_id: str) -> str:
    # ":" separates the id from the digest, so it may not appear inside the id
    return dataset_id.replace("%", "%25").replace(":", "%3A") + ":"


class QueryCache:
    """In-process TTL cache for analysis results, evicting least recently used first.

    Keys keep the dataset id as a readable prefix, so every answer for a dataset
    can be dropped when that dataset changes.
    """

    def __init__(self, max_size: int = 1000, default_ttl: float = 3600, clock: Callable[[], float] = time.monotonic):
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def generate_key(dataset_id: str, question: str) -> str:
        digest = hashlib.sha256(normalize_question(question).encode("utf-8")).hexdigest()
        return f"{dataset_prefix(dataset_id)}{digest}"

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.result

    def set(self, key: str, result: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            if self.max_size <= 0:
                return
            while self._entries and len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("QueryCache evicted %s", evicted)
            self._entries[key] = CacheEntry(
                result=result,
                timestamp=self._clock(),
                ttl=self.default_ttl if ttl is None else ttl,
            )

    def invalidate_dataset(self, dataset_id: str) -> int:
        prefix = dataset_prefix(dataset_id)
        with self._lock:
            stale = [k for k in self._entries if k.startswith(prefix)]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.info("QueryCache invalidated %d entries for dataset %s", len(stale), dataset_id)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
            }


query_cache = QueryCache(max_size=get_settings().cache_max_size, default_ttl=get_settings().cache_ttl_sec)
