"""Verification oracle core.

A claimed inference output is measured against a target output
(distance gate). Plausible claims are driven through the proving engine's
stages, and every completed proving attempt is recorded in the identity's
audit ledger.
"""

from .errors import (
    DecodingError,
    JanusError,
    LedgerInconsistency,
    LockTimeout,
    ShapeMismatch,
    StageExecutionError,
)
from .matcher import DistanceMatcher, MatchResult, distance, is_accepted
from .models import (
    Operation,
    ProofJob,
    RejectReason,
    SubmissionRecord,
    SubmissionState,
    Verdict,
)
from .orchestrator import VerificationOrchestrator

__all__ = [
    "DecodingError",
    "DistanceMatcher",
    "JanusError",
    "LedgerInconsistency",
    "LockTimeout",
    "MatchResult",
    "Operation",
    "ProofJob",
    "RejectReason",
    "ShapeMismatch",
    "StageExecutionError",
    "SubmissionRecord",
    "SubmissionState",
    "Verdict",
    "VerificationOrchestrator",
    "distance",
    "is_accepted",
]
