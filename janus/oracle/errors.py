"""Error taxonomy for the verification oracle.

Input errors (ShapeMismatch, DecodingError) are raised before any proving
stage runs. Stage errors are caught at the orchestrator boundary and turned
into rejected verdicts. LockTimeout and LedgerInconsistency reach the caller.
"""

from __future__ import annotations


class JanusError(Exception):
    """Base class for oracle errors."""

    code: str = "janus_error"
    retryable: bool = False


class ShapeMismatch(JanusError, ValueError):
    """Claimed and target output vectors differ in length."""

    code = "shape_mismatch"

    def __init__(self, len_a: int, len_b: int):
        self.len_a = len_a
        self.len_b = len_b
        super().__init__(
            f"The lengths of a and b are {len_a} and {len_b}. "
            "They should be the same length."
        )


class DecodingError(JanusError, ValueError):
    """Wire payload could not be decoded into typed input."""

    code = "decoding_error"


class StageExecutionError(JanusError):
    """The external proving engine failed or timed out."""

    code = "stage_execution_error"
    retryable = True

    def __init__(self, kind: str, message: str, *, timed_out: bool = False, output: str = ""):
        self.kind = kind
        self.timed_out = timed_out
        self.output = output
        super().__init__(f"{kind}: {message}")


class LockTimeout(JanusError):
    """Another proving operation held the identity slot for too long."""

    code = "lock_timeout"
    retryable = True

    def __init__(self, identity: str, timeout: float):
        self.identity = identity
        self.timeout = timeout
        super().__init__(
            f"identity {identity[:16]} busy: slot not acquired within {timeout:.1f}s"
        )


class LedgerInconsistency(JanusError):
    """Settlement distance disagrees with the identity's recorded history."""

    code = "ledger_inconsistency"

    def __init__(self, identity: str, recorded: float, observed: float, tolerance: float):
        self.identity = identity
        self.recorded = recorded
        self.observed = observed
        self.tolerance = tolerance
        super().__init__(
            f"identity {identity[:16]} recorded distance {recorded!r} but settlement "
            f"computed {observed!r} (tolerance {tolerance!r})"
        )


__all__ = [
    "DecodingError",
    "JanusError",
    "LedgerInconsistency",
    "LockTimeout",
    "ShapeMismatch",
    "StageExecutionError",
]
