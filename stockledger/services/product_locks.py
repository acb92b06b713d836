import threading
from collections.abc import Iterator
from contextlib import contextmanager

from stockledger.core.exceptions import StockBusyError


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # Holders plus waiters; the entry is dropped when this reaches zero.
        self.users = 0


class ProductLockRegistry:
    """
    One mutex per product id, guarding the read-compute-write section of a stock change.

    Locks for different products are independent, so writers on different
    products never wait on each other. An entry only lives while some thread
    holds or waits for it, so keys taken from requests (unknown product ids,
    SKU keys at creation) do not accumulate.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _LockEntry] = {}

    def _checkout(self, key: str) -> _LockEntry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _LockEntry()
                self._entries[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _LockEntry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    @contextmanager
    def hold(self, key: str, *, timeout: float) -> Iterator[None]:
        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(timeout=timeout):
                raise StockBusyError(key, reason="lock_timeout")
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    def is_held(self, key: str) -> bool:
        with self._guard:
            entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


product_locks = ProductLockRegistry()
