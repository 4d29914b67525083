"""Single-writer-per-child serialization for ledger appends.

Events for one child run strictly one after another; events for
different children never wait on each other. This covers a single
process; across processes the SQL store additionally locks the child's
counter row for the length of the transaction.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class ChildLockRegistry:
    """Hands out one ``asyncio.Lock`` per child id.

    A child's lock lives only while some task holds or waits on it, so the
    registry stays as small as the set of children with events in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, child_id: str) -> AsyncIterator[None]:
        entry = self._locks.get(child_id)
        if entry is None:
            entry = self._locks[child_id] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(child_id) is entry:
                del self._locks[child_id]

    def clear(self) -> None:
        """Forget all locks (they bind to the event loop that first waits on them)."""
        self._locks.clear()


child_locks = ChildLockRegistry()
