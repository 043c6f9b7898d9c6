from __future__ import annotations

"""In-memory TTL store with check-on-read expiry and per-key locking."""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

Clock = Callable[[], float]


@dataclass
class _Slot:
    value: Any
    expires_at: float


class KeyedLocks:
    """Registry of per-key locks that are dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._mutex = threading.Lock()
        self._locks: Dict[str, Tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Purpose: Serialize critical sections that share a key.
        Inputs/Outputs: Input is the key; yields while the key lock is held.
        Side Effects / State: Creates the lock on first use and removes it when the
            last holder or waiter leaves.
        Dependencies: threading.Lock.
        Failure Modes: Exceptions in the body propagate; the lock is always released.
        If Removed: Check-then-populate and check-then-refresh sequences race.
        Testing Notes: Two threads on the same key must not overlap; different keys may.
        """
        # Register as a waiter before blocking on the key lock.
        with self._mutex:
            lock, waiters = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, waiters + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._mutex:
                _, waiters = self._locks[key]
                if waiters <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, waiters - 1)

    def __len__(self) -> int:
        with self._mutex:
            return len(self._locks)


class TTLStore:
    """Process-wide keyed store shared by the knowledge cache and handover tracker."""

    def __init__(self, default_ttl: float, clock: Optional[Clock] = None) -> None:
        """Purpose: Create an empty store.
        Inputs/Outputs: Inputs are the default TTL in seconds and an optional clock
            returning seconds; no return value.
        Side Effects / State: None beyond allocation.
        Dependencies: time.monotonic when no clock is injected.
        Failure Modes: None.
        If Removed: Cache slots and handover records have nowhere to live.
        Testing Notes: Inject a fake clock to move time deterministically.
        """
        # Slots and key locks start empty.
        self._default_ttl = default_ttl
        self._clock = clock or time.monotonic
        self._mutex = threading.Lock()
        self._slots: Dict[str, _Slot] = {}
        self._locks = KeyedLocks()

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Optional[Any]:
        """Purpose: Return the live value for key, evicting it when expired.
        Inputs/Outputs: Input is the key; output is the value or None.
        Side Effects / State: Deletes the slot if its expiry has passed.
        Dependencies: Injected clock.
        Failure Modes: None; absent and expired keys both return None.
        If Removed: Callers would have to re-implement expiry checks.
        Testing Notes: A value must be gone at exactly expires_at.
        """
        # Expired slots are evicted on read.
        now = self._clock()
        with self._mutex:
            slot = self._slots.get(key)
            if slot is None:
                return None
            if now >= slot.expires_at:
                del self._slots[key]
                return None
            return slot.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> float:
        """Store value under key and return its expiry timestamp."""
        expires_at = self._clock() + (self._default_ttl if ttl is None else ttl)
        with self._mutex:
            self._slots[key] = _Slot(value=value, expires_at=expires_at)
        return expires_at

    def expires_at(self, key: str) -> Optional[float]:
        now = self._clock()
        with self._mutex:
            slot = self._slots.get(key)
            if slot is None or now >= slot.expires_at:
                return None
            return slot.expires_at

    def lock(self, key: str):
        """Return a context manager holding the per-key lock for read-modify-write use."""
        return self._locks.hold(key)
