import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager


class KeyedLock:
    """Exclusión mutua por clave (p.ej. object_id) dentro de un event loop.

    Los locks se liberan del diccionario cuando nadie más los espera.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: defaultdict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)
