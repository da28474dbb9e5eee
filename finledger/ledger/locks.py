"""
Keyed asyncio locks.

Serializes work on the same entity (a recurring definition, a ledger entry,
a goal, an account) while letting unrelated entities proceed concurrently.

Lock keys are namespaced strings, e.g. "account:<uuid>". When several keys
are needed they are acquired in sorted order, so two operations touching
the same accounts can never deadlock.
"""

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Iterable, Optional
from uuid import UUID


def account_key(account_id: UUID) -> str:
    return f"account:{account_id}"


def definition_key(definition_id: UUID) -> str:
    return f"recurring:{definition_id}"


def transaction_key(transaction_id: UUID) -> str:
    return f"transaction:{transaction_id}"


def investment_key(investment_id: UUID) -> str:
    return f"investment:{investment_id}"


def goal_key(goal_id: UUID) -> str:
    return f"goal:{goal_id}"


class KeyedLocks:
    """
    A registry of asyncio.Lock objects created on first use.

    Each key counts the tasks holding or waiting on its lock; the lock is
    dropped when the count returns to zero, so the registry only holds
    keys that are in use.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @property
    def active_count(self) -> int:
        """Keys currently held or waited on."""
        return len(self._locks)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    @asynccontextmanager
    async def hold_many(self, keys: Iterable[Optional[str]]) -> AsyncIterator[None]:
        """Hold every lock in keys. None entries are ignored."""
        ordered = sorted({k for k in keys if k})
        async with AsyncExitStack() as stack:
            for key in ordered:
                await stack.enter_async_context(self.hold(key))
            yield
