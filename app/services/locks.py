from contextlib import contextmanager
import threading
from typing import Hashable, Iterator


class KeyedLocks:
    """Process-local mutual exclusion scoped to an arbitrary key.

    Entries are reference counted and dropped once no thread holds or waits
    on them.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[Hashable, ...], list] = {}

    @contextmanager
    def hold(self, *key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
