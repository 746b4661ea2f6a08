import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from typing import Dict, Hashable


class KeyedLock:
    """Отдельный asyncio.Lock на каждый ключ; неиспользуемые замки удаляются"""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Counter = Counter()

    @asynccontextmanager
    async def acquire(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] <= 0:
                del self._users[key]
                self._locks.pop(key, None)

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

