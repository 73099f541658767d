import time
from typing import Callable, List, Optional, Tuple

from cachetools import TTLCache

CACHE_TTL_SECONDS = 60
CACHE_MAX_SIZE = 1024


class SummaryCache:
    """Per-process cache of summary bullets keyed by (thread, intent filter).

    Entries expire a fixed ``ttl`` after insertion; reads do not extend them.
    The cache is shared by every caller in the process, so it only ever holds
    thread-scoped content. With several server instances each keeps its own
    copy; summaries are cheap to regenerate.
    """

    def __init__(self, ttl: float = CACHE_TTL_SECONDS, maxsize: int = CACHE_MAX_SIZE,
                 timer: Callable[[], float] = time.monotonic):
        self._entries: TTLCache[Tuple[str, str], List[str]] = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)

    @staticmethod
    def _key(thread_id, intent_filter: str) -> Tuple[str, str]:
        return (str(thread_id), intent_filter)

    def get(self, thread_id, intent_filter: str) -> Optional[List[str]]:
        # Purge anything past its TTL before looking up
        self._entries.expire()
        bullets = self._entries.get(self._key(thread_id, intent_filter))
        return list(bullets) if bullets is not None else None

    def put(self, thread_id, intent_filter: str, bullets: List[str]):
        self._entries[self._key(thread_id, intent_filter)] = list(bullets)

    def invalidate(self, thread_id, intent_filter: str):
        self._entries.pop(self._key(thread_id, intent_filter), None)

    def __contains__(self, key) -> bool:
        thread_id, intent_filter = key
        return self._key(thread_id, intent_filter) in self._entries

    def __len__(self) -> int:
        return len(self._entries)
