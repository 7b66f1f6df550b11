import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    # Holders plus waiters. The entry is dropped when this reaches zero.
    refs: int = 0


@dataclass(frozen=True)
class LockGuard:
    key: Hashable
    entry: _Entry


class LockRegistry:
    """Serializes work per key while letting different keys run in parallel.

    A coarse lock protects the table; the per-key lock is held for the whole
    operation. Entries are reference counted and evicted once nobody holds or
    waits on them, so the table only contains keys that are in flight.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def acquire(self, key: Hashable) -> LockGuard:
        """Block until the lock for ``key`` is held."""
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.refs += 1
        entry.lock.acquire()
        return LockGuard(key, entry)

    def release(self, guard: LockGuard) -> None:
        with self._guard:
            guard.entry.refs -= 1
            if guard.entry.refs == 0 and self._entries.get(guard.key) is guard.entry:
                del self._entries[guard.key]
        guard.entry.lock.release()

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[LockGuard]:
        guard = self.acquire(key)
        try:
            yield guard
        finally:
            self.release(guard)
