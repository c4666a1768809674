"""
Per-account submission queue.

Ledger transactions for one account must be sequenced strictly, so every
prepare/sign/submit sequence (offer create, offer cancel, account metadata)
runs under one shared asyncio.Lock per account. asyncio.Lock wakes waiters
in FIFO order, which gives arrival-order execution.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class SubmissionQueue:
    def __init__(self) -> None:
        # map account -> asyncio.Lock
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiting: Dict[str, int] = {}
        # guard for creating locks
        self._guard = asyncio.Lock()

    async def get_lock(self, account: str) -> asyncio.Lock:
        """Return the shared lock for `account`, creating it on first use."""
        async with self._guard:
            lock = self._locks.get(account)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[account] = lock
            return lock

    def pending(self, account: str) -> int:
        """Number of submissions waiting for or holding the account's slot."""
        return self._waiting.get(account, 0)

    @asynccontextmanager
    async def slot(self, account: str) -> AsyncIterator[float]:
        """
        Hold the account's submission slot for the duration of the block.

        Yields the seconds spent waiting in the queue.
        """
        lock = await self.get_lock(account)
        self._waiting[account] = self._waiting.get(account, 0) + 1
        started = time.monotonic()
        try:
            async with lock:
                yield time.monotonic() - started
        finally:
            self._waiting[account] -= 1
