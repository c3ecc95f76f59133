"""
Thread-safe cache of zone names known to exist.
"""

import threading
from typing import Iterable, List


class ZoneCache:
    """Process-lifetime set of zone names, shared by whoever it is injected into.

    Entries are added when a zone is created or detected and removed when it is
    deleted. A stale entry self-corrects on the next miss-driven lookup after the
    owner invalidates it.
    """

    def __init__(self, names: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._names = set(names)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)

    def add(self, name: str) -> None:
        with self._lock:
            self._names.add(name)

    def discard(self, name: str) -> None:
        with self._lock:
            self._names.discard(name)

    def replace(self, names: Iterable[str]) -> None:
        """Swap the whole content, e.g. after listing every zone."""
        fresh = set(names)
        with self._lock:
            self._names = fresh

    def snapshot(self) -> List[str]:
        with self._lock:
            return sorted(self._names)
