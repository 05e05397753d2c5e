"""
Semantic Analysis Cache

Size-bounded LRU with a TTL for LLM pair classifications, so the same pair is
never paid for twice within an hour. Negative ("none") results are cached too.

Eviction policy:
- Entries older than the TTL are dropped lazily on lookup (and by cleanup())
- At capacity, the least recently used 10% are evicted before an insert
"""

import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from config.constants import CACHE_EVICTION_FRACTION
from llm.prompt_templates import SemanticAnalysisResult
from utils.logger import get_logger


logger = get_logger(__name__)


@dataclass
class _CacheEntry:
    result: SemanticAnalysisResult
    cached_at: float
    access_count: int = 1


def pair_key(market1_id: str, market2_id: str) -> str:
    """Order-independent key for a market pair"""
    first, second = sorted((market1_id, market2_id))
    return f"{first}:{second}"


class SemanticCache:
    """LRU + TTL cache keyed by market pair"""

    def __init__(
        self,
        max_size: int = 10000,
        ttl_sec: float = 3600.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.max_size = max_size
        self.ttl_sec = ttl_sec
        self._clock = clock or time.time
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _lookup(self, key: str) -> Optional[_CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.cached_at > self.ttl_sec:
            del self._entries[key]
            return None
        return entry

    def get(self, market1_id: str, market2_id: str) -> Optional[SemanticAnalysisResult]:
        key = pair_key(market1_id, market2_id)
        entry = self._lookup(key)
        if entry is None:
            self.misses += 1
            return None

        entry.access_count += 1
        self._entries.move_to_end(key)
        self.hits += 1
        return entry.result

    def peek(self, market1_id: str, market2_id: str) -> Optional[SemanticAnalysisResult]:
        """Lookup without touching recency or hit/miss counters"""
        entry = self._lookup(pair_key(market1_id, market2_id))
        return entry.result if entry else None

    def has(self, market1_id: str, market2_id: str) -> bool:
        return self._lookup(pair_key(market1_id, market2_id)) is not None

    def set(self, result: SemanticAnalysisResult) -> None:
        key = pair_key(result.market1_id, result.market2_id)
        if key not in self._entries and len(self._entries) >= self.max_size:
            self._evict_lru()

        self._entries[key] = _CacheEntry(result=result, cached_at=self._clock())
        self._entries.move_to_end(key)

    def _evict_lru(self) -> None:
        count = max(1, math.floor(len(self._entries) * CACHE_EVICTION_FRACTION))
        for _ in range(count):
            self._entries.popitem(last=False)
        self.evictions += count
        logger.debug(f"Semantic cache evicted {count} least recently used entries")

    def cleanup(self) -> int:
        """Drop every expired entry; returns how many were removed"""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now - e.cached_at > self.ttl_sec]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            'size': len(self._entries),
            'max_size': self.max_size,
            'hits': self.hits,
            'misses': self.misses,
            'hit_rate': self.hits / total if total else 0.0,
            'evictions': self.evictions,
        }
