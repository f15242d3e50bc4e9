"""LedgerStore protocol - pluggable persistence for the audit ledger.

Implementations: FilesystemLedgerStore (JSON lines per identity).
The ledger runs purely in memory when no store is given.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from janus.oracle.models import SubmissionRecord


@runtime_checkable
class LedgerStore(Protocol):
    """Abstract interface for persisting submission history."""

    async def load(self) -> dict[str, list[SubmissionRecord]]:
        """Read every identity's history in insertion order."""
        ...

    async def append(self, record: SubmissionRecord) -> None:
        """Durably append one record to its identity's history."""
        ...

    async def evict(self, identity: str) -> None:
        """Remove all persisted history for an identity."""
        ...


__all__ = ["LedgerStore"]
