"""Pydantic models and state types for the verification oracle.

- SubmissionRecord: one immutable ledger entry per completed evaluation
- ProofJob: ephemeral per-call state machine
- Verdict: accept/reject outcome plus the reason it was reached
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Wire payloads (EZKL data-file layout)
# ---------------------------------------------------------------------------

FiniteFloat = Annotated[float, Field(strict=True, allow_inf_nan=False)]
Row = Annotated[list[FiniteFloat], Field(min_length=1)]
Rows = Annotated[list[Row], Field(min_length=1)]


class InferencePayload(BaseModel):
    """Model input plus the output the caller claims the model produced."""

    model_config = ConfigDict(extra="allow")

    input_data: Rows
    output_data: Rows | None = None

    @property
    def claimed_output(self) -> list[float] | None:
        return self.output_data[0] if self.output_data else None


class TargetPayload(BaseModel):
    """Output the claim is measured against."""

    target_output_data: Rows

    @property
    def target_output(self) -> list[float]:
        return self.target_output_data[0]


# ---------------------------------------------------------------------------
# Ledger record
# ---------------------------------------------------------------------------


class Operation(str, Enum):
    SUBMIT_PROOF = "submit_proof"
    VERIFY_ON_CHAIN = "verify_on_chain"


class RejectReason(str, Enum):
    """Why a submission ended in the Rejected state."""

    THRESHOLD = "threshold"
    STAGE_FAILURE = "stage_failure"
    STAGE_TIMEOUT = "stage_timeout"
    LEDGER_INCONSISTENCY = "ledger_inconsistency"


class SubmissionRecord(BaseModel):
    """Outcome of one completed proving attempt for an identity."""

    model_config = ConfigDict(frozen=True)

    identity: str = Field(min_length=1)
    distance: float
    accepted: bool
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    operation: Operation = Operation.SUBMIT_PROOF


# ---------------------------------------------------------------------------
# Submission state machine
# ---------------------------------------------------------------------------


class SubmissionState(str, Enum):
    RECEIVED = "received"
    MATCHED = "matched"
    PROVING = "proving"
    VERIFIED = "verified"
    FINALIZED = "finalized"
    REJECTED = "rejected"


TRANSITIONS: dict[SubmissionState, frozenset[SubmissionState]] = {
    SubmissionState.RECEIVED: frozenset({SubmissionState.MATCHED}),
    SubmissionState.MATCHED: frozenset({SubmissionState.PROVING, SubmissionState.REJECTED}),
    SubmissionState.PROVING: frozenset({SubmissionState.VERIFIED, SubmissionState.REJECTED}),
    SubmissionState.VERIFIED: frozenset({SubmissionState.FINALIZED, SubmissionState.REJECTED}),
    SubmissionState.FINALIZED: frozenset(),
    SubmissionState.REJECTED: frozenset(),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class ProofJob:
    """Per-call job. Owned by exactly one orchestrator invocation."""

    identity: str
    input_data: InferencePayload
    claimed_output: list[float]
    target_output: list[float]
    state: SubmissionState = SubmissionState.RECEIVED
    distance: float | None = None
    reason: RejectReason | None = None
    detail: str = ""
    history: list[SubmissionState] = field(default_factory=lambda: [SubmissionState.RECEIVED])

    def advance(self, state: SubmissionState) -> None:
        if state not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def reject(self, reason: RejectReason, detail: str = "") -> None:
        self.advance(SubmissionState.REJECTED)
        self.reason = reason
        self.detail = detail

    @property
    def terminal(self) -> bool:
        return not TRANSITIONS[self.state]


@dataclass(frozen=True)
class Verdict:
    """Final decision of an orchestrator operation.

    Truthy exactly when the claim was accepted; the reason is kept so the
    boolean wire result is never the only record of why a request failed.
    """

    accepted: bool
    state: SubmissionState
    reason: RejectReason | None = None
    distance: float | None = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.accepted

    @classmethod
    def from_job(cls, job: ProofJob) -> Verdict:
        return cls(
            accepted=job.state is SubmissionState.FINALIZED,
            state=job.state,
            reason=job.reason,
            distance=job.distance,
            detail=job.detail,
        )

    def as_log(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "state": self.state.value,
            "reason": self.reason.value if self.reason else None,
            "distance": self.distance,
            "detail": self.detail,
        }


__all__ = [
    "InferencePayload",
    "InvalidTransition",
    "Operation",
    "ProofJob",
    "RejectReason",
    "SubmissionRecord",
    "SubmissionState",
    "TargetPayload",
    "TRANSITIONS",
    "Verdict",
]
