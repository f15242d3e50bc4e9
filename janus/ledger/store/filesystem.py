"""Filesystem-based LedgerStore implementation.

Writes one JSON-lines file per identity:
  {data_dir}/ledger/identities/{digest}.jsonl

The digest is derived from the identity so arbitrary address strings are
safe as file names; each line carries the identity itself.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import bittensor as bt
from pydantic import ValidationError

from janus.identity import identity_digest
from janus.oracle.models import SubmissionRecord


def _append_line(path: Path, data: dict) -> None:
    """Append one JSON line and flush it to disk."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a") as f:
        f.write(json.dumps(data, default=str, sort_keys=True) + "\n")
        f.flush()
        os.fsync(f.fileno())


class FilesystemLedgerStore:
    """Local filesystem LedgerStore implementation."""

    def __init__(self, data_dir: str):
        self.base = Path(data_dir) / "ledger"
        self.identities_dir = self.base / "identities"
        self.identities_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, identity: str) -> Path:
        return self.identities_dir / f"{identity_digest(identity)}.jsonl"

    async def load(self) -> dict[str, list[SubmissionRecord]]:
        histories: dict[str, list[SubmissionRecord]] = {}
        for path in sorted(self.identities_dir.glob("*.jsonl")):
            skipped = 0
            with open(path) as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = SubmissionRecord.model_validate_json(line)
                    except ValidationError:
                        skipped += 1
                        continue
                    histories.setdefault(record.identity, []).append(record)
            if skipped:
                bt.logging.warning({"ledger_store": {"file": path.name, "corrupt_lines_skipped": skipped}})
        return histories

    async def append(self, record: SubmissionRecord) -> None:
        _append_line(self.path_for(record.identity), record.model_dump(mode="json"))

    async def evict(self, identity: str) -> None:
        path = self.path_for(identity)
        try:
            path.unlink()
        except FileNotFoundError:
            pass


__all__ = ["FilesystemLedgerStore"]
