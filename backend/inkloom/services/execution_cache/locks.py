"""按键加锁：同一签名的写操作串行，不同签名互不阻塞。"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class KeyedLockRegistry:
    """
    惰性创建的按键 asyncio.Lock 集合

    锁在最后一个持有/等待者离开后回收，避免签名数量增长导致内存膨胀。
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._refcounts: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._refcounts[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._refcounts[key] -= 1
            if self._refcounts[key] == 0:
                del self._refcounts[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)
