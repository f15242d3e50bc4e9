"""Per-identity admission control for proving operations.

At most one proving operation per identity holds the slot at a time.
Concurrent proofs for one identity would race on the same artifact paths
and on ledger append order.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import bittensor as bt

from .errors import LockTimeout


class _Slot:
    __slots__ = ("lock", "waiters")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.waiters = 0


class AdmissionControl:
    """Single-slot queue per identity with a bounded wait."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self._slots: dict[str, _Slot] = {}

    def busy(self, identity: str) -> bool:
        slot = self._slots.get(identity)
        return slot is not None and slot.lock.locked()

    def __len__(self) -> int:
        return len(self._slots)

    @asynccontextmanager
    async def slot(self, identity: str, timeout: float | None = None) -> AsyncIterator[None]:
        """Hold the identity slot for the duration of the block.

        Raises:
            LockTimeout: if the slot is not acquired within ``timeout``.
        """
        wait = self.timeout if timeout is None else timeout
        slot = self._slots.setdefault(identity, _Slot())
        slot.waiters += 1
        try:
            try:
                await asyncio.wait_for(slot.lock.acquire(), timeout=wait)
            except asyncio.TimeoutError:
                bt.logging.warning({
                    "admission": {"event": "lock_timeout", "identity": identity[:16], "timeout": wait}
                })
                raise LockTimeout(identity, wait) from None
            try:
                yield
            finally:
                slot.lock.release()
        finally:
            slot.waiters -= 1
            if slot.waiters == 0 and not slot.lock.locked():
                self._slots.pop(identity, None)


__all__ = ["AdmissionControl"]
