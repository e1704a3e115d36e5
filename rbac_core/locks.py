"""
rbac_core/locks.py

按键加锁 - 串行化同一角色/菜单上的"整体替换关联集合"操作
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.refs = 0


class KeyedLock:
    """
    每个键一把可重入锁，不再被持有或等待的锁会被回收

    Example:
        >>> locks = KeyedLock()
        >>> with locks.hold(("role", 1)):
        ...     pass
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.refs += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.refs -= 1
                if entry.refs == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


# 进程级实例：键为 ("role", id) / ("menu", id) / ("api", id)
resource_locks = KeyedLock()

__all__ = ["KeyedLock", "resource_locks"]
