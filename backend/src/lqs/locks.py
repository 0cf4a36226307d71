"""Keyed exclusive sections for batch rows.

Rows that touch the same household key, surname bucket or policy number
must run their read-score-decide-write sequence one at a time; rows with
disjoint keys run in parallel. Keys are always acquired in sorted order,
so two rows asking for overlapping key sets cannot deadlock.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable
from uuid import UUID


def household_lock_key(agency_id: str, household_key: str) -> str:
    return f"household:{agency_id}:{household_key}"


def surname_lock_key(agency_id: str, last_name_normalized: str) -> str:
    return f"surname:{agency_id}:{last_name_normalized}"


def policy_lock_key(agency_id: str, policy_number: str) -> str:
    return f"policy:{agency_id}:{policy_number}"


def case_lock_key(case_id: UUID) -> str:
    return f"case:{case_id}"


class KeyedLockArena:
    """A pool of asyncio locks created on demand and dropped when idle."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        remaining = self._waiters[key] - 1
        if remaining:
            self._waiters[key] = remaining
        else:
            del self._waiters[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, keys: Iterable[str | None]) -> AsyncIterator[list[str]]:
        """Hold every lock in ``keys`` for the duration of the block.

        None entries are ignored so callers can pass optional keys
        (e.g. a missing policy number) directly.

        Usage:
            async with arena.hold([household_lock_key(agency, key)]):
                ...
        """
        ordered = sorted({k for k in keys if k})
        acquired: list[str] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append(key)
            yield ordered
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)


_arena: KeyedLockArena | None = None


def get_lock_arena() -> KeyedLockArena:
    """Get the process-wide lock arena shared by batches and reviews."""
    global _arena
    if _arena is None:
        _arena = KeyedLockArena()
    return _arena
