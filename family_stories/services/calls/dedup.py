"""In-process dedup gate for call-completion events."""
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Optional, Set

from family_stories.services.stories.models import utc_now

logger = logging.getLogger(__name__)


class DedupCache:
    """Remembers recently seen call ids for a bounded time and size.

    ``try_acquire`` is a plain check-then-set with no await in between, so on a
    single event loop two deliveries can never both acquire the same call id.
    The cache is not authoritative: the persisted ``updated`` flag is.

    A call id stays in flight from ``try_acquire`` until ``finish`` or
    ``release``. Capacity eviction only drops finished entries, so the size
    limit may be exceeded while every held entry is still in flight.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        max_entries: int = 10000,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, datetime]" = OrderedDict()
        self._in_flight: Set[str] = set()

    def _prune(self, now: datetime) -> None:
        # Entries are kept in insertion order, so expiries are ascending
        while self._entries:
            call_id, expires_at = next(iter(self._entries.items()))
            if expires_at > now:
                break
            del self._entries[call_id]
            self._in_flight.discard(call_id)

        excess = len(self._entries) - self.max_entries
        if excess <= 0:
            return
        evictable = [call_id for call_id in self._entries if call_id not in self._in_flight]
        for evicted in evictable[:excess]:
            del self._entries[evicted]
            logger.debug(f"[DEDUP] Evicted {evicted} (capacity {self.max_entries})")
        if len(self._entries) > self.max_entries:
            logger.warning(
                f"[DEDUP] {len(self._in_flight)} calls in flight, over capacity {self.max_entries}"
            )

    def try_acquire(self, call_id: str) -> bool:
        """Mark a call id as in flight. Returns False if it is already held."""
        now = self._clock()
        self._prune(now)
        if call_id in self._entries:
            return False
        self._entries[call_id] = now + self.ttl
        self._in_flight.add(call_id)
        self._prune(now)
        return True

    def finish(self, call_id: str) -> None:
        """Keep the marker until it expires, but let capacity eviction drop it."""
        self._in_flight.discard(call_id)

    def release(self, call_id: str) -> None:
        """Forget a call id so a redelivery can be processed."""
        self._entries.pop(call_id, None)
        self._in_flight.discard(call_id)

    def in_flight(self, call_id: str) -> bool:
        return call_id in self._in_flight

    def contains(self, call_id: str, now: Optional[datetime] = None) -> bool:
        self._prune(now or self._clock())
        return call_id in self._entries

    def clear(self) -> None:
        self._entries.clear()
        self._in_flight.clear()

    def __len__(self) -> int:
        return len(self._entries)
