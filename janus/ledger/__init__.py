"""Audit ledger for oracle submissions.

Every completed proving attempt leaves one immutable SubmissionRecord in
its identity's history. Histories are append-only and only ever removed
wholesale (eviction / retention pruning).
"""

from .audit import AuditLedger
from .store import FilesystemLedgerStore, LedgerStore

__all__ = ["AuditLedger", "FilesystemLedgerStore", "LedgerStore"]
