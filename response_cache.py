import threading
import time
from typing import Any, Callable, Hashable, Optional

from periods import MonthPeriod, is_current_month

GROUPED_CURRENT_MONTH_TTL_SECS = 5 * 60
GROUPED_PAST_MONTH_TTL_SECS = 24 * 60 * 60
MONTHLY_SUMMARY_TTL_SECS = 2 * 60 * 60
TOP_EXPENSES_TTL_SECS = 60 * 60
MAX_ENTRIES = 4096

_WALLET_SCOPED = ("grouped", "summary")
_USER_SCOPED = ("top_expenses",)


def grouped_ttl(period: MonthPeriod) -> int:
    if is_current_month(period):
        return GROUPED_CURRENT_MONTH_TTL_SECS
    return GROUPED_PAST_MONTH_TTL_SECS


class ResponseCache:
    """
    TTL cache for aggregate responses served over HTTP.

    Keys are tuples whose first two items are a kind and the owning wallet
    or user id, so writes can drop exactly the entries they make stale.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = MAX_ENTRIES,
    ) -> None:
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[tuple, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: tuple[Hashable, ...]) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: tuple[Hashable, ...], value: Any, ttl_secs: float) -> None:
        with self._lock:
            now = self._clock()
            expired = [
                k for k, (expires_at, _) in self._entries.items() if now >= expires_at
            ]
            for stale_key in expired:
                del self._entries[stale_key]
            # re-inserting moves the key to the back of the eviction order
            self._entries.pop(key, None)
            while len(self._entries) >= self._max_entries:
                del self._entries[next(iter(self._entries))]
            self._entries[key] = (now + ttl_secs, value)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _drop(self, kinds: tuple[str, ...], owner_id: int) -> int:
        with self._lock:
            stale = [
                key
                for key in self._entries
                if key[0] in kinds and key[1] == owner_id
            ]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def invalidate_wallet(self, wallet_id: int) -> int:
        return self._drop(_WALLET_SCOPED, wallet_id)

    def invalidate_user(self, user_id: int) -> int:
        return self._drop(_USER_SCOPED, user_id)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
