# src/helpers/keyed_lock.py
"""Per-Key asyncio Locks für Read-Modify-Write auf geteiltem Zustand.

Updates auf verschiedene Keys laufen parallel, Updates auf denselben Key
werden serialisiert. Einträge verschwinden, sobald niemand mehr wartet.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable


class KeyedLock:
    """Registry von asyncio.Lock pro Key (z.B. user_id, sender, request_id)"""

    def __init__(self, name: str = "keyed"):
        self.name = name
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        """Hält den Lock für `key` im async with Block.

        Usage:
            async with locks.hold(("user-1", "header_analysis")):
                ...
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
