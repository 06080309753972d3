"""Process-local idempotency cache for round-scoped profile writes.

Keys are ``user:round:knowledge_id``; values are the first-seen time. Every
``seen``/``mark`` call evicts first: entries past the TTL are dropped, then if
the cache is still above ``max_entries`` only the ``keep_entries`` most recent
survive. No lock: callers share it from a single event loop.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional

_log = logging.getLogger(__name__)

DEFAULT_TTL_SEC = 24 * 60 * 60
DEFAULT_MAX_ENTRIES = 4000
DEFAULT_KEEP_ENTRIES = 3000


def round_key(user_id: str, round_id: Optional[str], knowledge_id: str) -> Optional[str]:
    if not round_id:
        return None
    return f"{user_id}:{round_id}:{knowledge_id}"


class RoundIdempotencyCache:
    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        ttl_sec: float = DEFAULT_TTL_SEC,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        keep_entries: int = DEFAULT_KEEP_ENTRIES,
    ) -> None:
        self._clock = clock
        self._ttl_sec = float(ttl_sec)
        self._max_entries = max(1, int(max_entries))
        self._keep_entries = max(1, min(int(keep_entries), self._max_entries))
        self._entries: Dict[str, float] = {}

    @property
    def ttl_sec(self) -> float:
        return self._ttl_sec

    def __len__(self) -> int:
        return len(self._entries)

    def evict(self) -> None:
        now = self._clock()
        expired = [key for key, ts in self._entries.items() if now - ts > self._ttl_sec]
        for key in expired:
            del self._entries[key]
        if len(self._entries) > self._max_entries:
            newest = sorted(self._entries.items(), key=lambda item: item[1], reverse=True)[: self._keep_entries]
            _log.debug("round idempotency cache trimmed from %d to %d", len(self._entries), len(newest))
            self._entries = dict(newest)

    def seen(self, key: str) -> bool:
        self.evict()
        return key in self._entries

    def mark(self, key: str) -> None:
        self.evict()
        self._entries[key] = self._clock()
