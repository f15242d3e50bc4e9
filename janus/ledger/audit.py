"""Per-identity append-only audit ledger.

The ledger is the only mutable state shared between requests. It is
created at process start, passed explicitly to the orchestrator and
closed at shutdown.

Per-identity operations are serialised by an identity lock; readers get
tuple snapshots and never wait on writers.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator

import bittensor as bt

from janus.identity import short
from janus.oracle.models import SubmissionRecord

from .store.interface import LedgerStore


class _IdentityLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class AuditLedger:
    """Identity -> insertion-ordered SubmissionRecord history."""

    def __init__(self, store: LedgerStore | None = None):
        self.store = store
        self._histories: dict[str, tuple[SubmissionRecord, ...]] = {}
        self._locks: dict[str, _IdentityLock] = {}
        self._open = store is None

    # -- Lifecycle --

    async def open(self) -> None:
        """Load persisted history from the backing store."""
        if self.store is not None:
            loaded = await self.store.load()
            self._histories = {k: tuple(v) for k, v in loaded.items() if v}
            bt.logging.info({
                "audit_ledger": {
                    "status": "loaded",
                    "identities": len(self._histories),
                    "records": sum(len(h) for h in self._histories.values()),
                }
            })
        self._open = True

    async def close(self) -> None:
        self._open = False
        bt.logging.info({"audit_ledger": "closed"})

    async def __aenter__(self) -> AuditLedger:
        await self.open()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @asynccontextmanager
    async def _locked(self, identity: str) -> AsyncIterator[None]:
        # The entry lives only while someone holds or waits on it
        entry = self._locks.setdefault(identity, _IdentityLock())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(identity) is entry:
                del self._locks[identity]

    def _check_open(self) -> None:
        if not self._open:
            raise RuntimeError("audit ledger is not open")

    # -- Writes --

    async def append(self, record: SubmissionRecord) -> None:
        """Append to the end of the record's identity history."""
        self._check_open()
        identity = record.identity
        async with self._locked(identity):
            if self.store is not None:
                await self.store.append(record)
            history = self._histories.get(identity, ()) + (record,)
            self._histories[identity] = history
        bt.logging.debug({
            "audit_ledger": {
                "event": "append",
                "identity": short(identity),
                "accepted": record.accepted,
                "distance": record.distance,
                "count": len(history),
            }
        })

    async def evict(self, identity: str) -> None:
        """Remove all history for an identity."""
        self._check_open()
        async with self._locked(identity):
            if self.store is not None:
                await self.store.evict(identity)
            removed = len(self._histories.pop(identity, ()))
        bt.logging.info({"audit_ledger": {"event": "evict", "identity": short(identity), "removed": removed}})

    async def prune(self, retention: timedelta, now: datetime | None = None) -> list[str]:
        """Evict identities whose newest record is older than ``retention``.

        Returns:
            The evicted identities.
        """
        cutoff = (now or datetime.now(timezone.utc)) - retention
        stale = [
            identity for identity, records in self._histories.items()
            if records and records[-1].recorded_at < cutoff
        ]
        for identity in stale:
            await self.evict(identity)
        if stale:
            bt.logging.info({"audit_ledger": {"event": "prune", "evicted": len(stale)}})
        return stale

    # -- Reads --

    def history(self, identity: str) -> tuple[SubmissionRecord, ...]:
        """Snapshot of an identity's records, oldest first."""
        return self._histories.get(identity, ())

    def latest(self, identity: str, accepted_only: bool = False) -> SubmissionRecord | None:
        for record in reversed(self.history(identity)):
            if record.accepted or not accepted_only:
                return record
        return None

    def identities(self) -> list[str]:
        return list(self._histories.keys())

    def __len__(self) -> int:
        return sum(len(h) for h in self._histories.values())


__all__ = ["AuditLedger"]
