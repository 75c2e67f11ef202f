import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable, Tuple
from cardshop.config.settings import config_settings
from cardshop.db.utils import is_sqlite


class KeyedLocks:
    """One asyncio.Lock per key (product id).

    Every mutation of a product's ledger and of its orders runs inside
    ``async with locks.hold(product_id)``. With ``single_writer=True`` all keys
    share one lock, which matches sqlite's one-writer-at-a-time model.

    Locks are not reentrant: never call a locked operation from inside another one.
    """

    _GLOBAL = "__all__"

    def __init__(self, single_writer: bool = False):
        self.single_writer = single_writer
        # key -> (lock, holders+waiters); entries are dropped when nobody references them
        self._locks: Dict[Hashable, Tuple[asyncio.Lock, int]] = {}

    def _key(self, key: Hashable) -> Hashable:
        return self._GLOBAL if self.single_writer else key

    @asynccontextmanager
    async def hold(self, key: Hashable):
        k = self._key(key)
        lock, refs = self._locks.get(k, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[k] = (lock, refs + 1)
        try:
            async with lock:
                yield
        finally:
            lock, refs = self._locks[k]
            if refs <= 1:
                del self._locks[k]
            else:
                self._locks[k] = (lock, refs - 1)

    def locked(self, key: Hashable) -> bool:
        entry = self._locks.get(self._key(key))
        return bool(entry and entry[0].locked())

    def __len__(self) -> int:
        return len(self._locks)


write_locks = KeyedLocks(single_writer=is_sqlite(config_settings.DATABASE_URL))


def configure_write_locks(single_writer: bool) -> KeyedLocks:
    write_locks.single_writer = single_writer
    return write_locks
