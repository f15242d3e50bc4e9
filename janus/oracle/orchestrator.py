"""Verification orchestrator.

Sequences, per submission:
  Received -> Matched -> Proving -> Verified -> Finalized
with Rejected reachable from Matched (distance gate) and from
Proving / Verified (engine failure, timeout, ledger inconsistency).

Proving operations hold the identity's admission slot. Engine failures
resolve to rejected verdicts; malformed input, busy identities and ledger
inconsistencies are raised to the caller.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from pathlib import Path
from typing import TYPE_CHECKING, Any

import bittensor as bt

from janus.identity import short
from janus.prover.artifacts import ArtifactStore
from janus.prover.stages import ProofStageRunner, RunArgs, StageKind, StageOutput, StageRequest

from .admission import AdmissionControl
from .decode import decode_claim, decode_identity, decode_input
from .errors import LedgerInconsistency, StageExecutionError
from .matcher import DistanceMatcher
from .models import (
    Operation,
    ProofJob,
    RejectReason,
    SubmissionRecord,
    SubmissionState,
    Verdict,
)

if TYPE_CHECKING:
    from janus.ledger.audit import AuditLedger


class VerificationOrchestrator:
    """Drives matcher evaluation, proof stages and ledger records."""

    def __init__(
        self,
        runner: ProofStageRunner,
        ledger: AuditLedger,
        artifacts: ArtifactStore,
        model_path: str | Path,
        threshold: float = 0.1,
        settlement_tolerance: float = 1e-6,
        lock_timeout: float = 30.0,
        stage_timeout: float = 600.0,
        run_args: RunArgs | None = None,
        verifier_address: str | None = None,
    ):
        self.runner = runner
        self.ledger = ledger
        self.artifacts = artifacts
        self.model_path = Path(model_path)
        self.matcher = DistanceMatcher(threshold)
        self.settlement_tolerance = settlement_tolerance
        self.stage_timeout = stage_timeout
        self.run_args = run_args or RunArgs()
        self.verifier_address = verifier_address
        self.admission = AdmissionControl(timeout=lock_timeout)
        self.outcomes: Counter[str] = Counter()
        self._background: set[asyncio.Task] = set()

    # -- Public operations --

    async def forward(self, identity: str, input_data: Any) -> Any:
        """Run the model on ``input_data`` without proving.

        Raises:
            StageExecutionError: if the engine fails or times out.
        """
        identity = decode_identity(identity)
        payload = decode_input(input_data, require_output=False)
        input_path = self.artifacts.write_input(identity, payload.model_dump(exclude_none=True))
        output_path = self.artifacts.output_path(input_path)
        result = await self._run_stage(
            identity,
            StageRequest(
                kind=StageKind.FORWARD,
                input_path=input_path,
                model_path=self.model_path,
                params=self.run_args,
                output_path=output_path,
            ),
            discard=(input_path, output_path),
        )
        bt.logging.info({"oracle_forward": {"identity": short(identity), "status": "ok"}})
        return result.output

    async def evaluate_mock(self, identity: str, input_data: Any, target_output: Any) -> Verdict:
        """Cheap mock check; an accepted claim continues straight into proving.

        Answers accepted once the mock stage passes. The chained proof is
        recorded and logged as a submit_proof decision of its own.
        """
        job = self._receive(identity, input_data, target_output)
        if not self._gate(job):
            return self._finish(job, "mock")

        input_path = self._write_input(job)
        try:
            await self._run_stage(
                job.identity,
                StageRequest(
                    kind=StageKind.MOCK,
                    input_path=input_path,
                    model_path=self.model_path,
                    params=self.run_args,
                ),
                discard=(input_path,),
            )
        except StageExecutionError as e:
            job.reject(self._stage_reason(e), str(e))
            return self._finish(job, "mock", error=e)

        bt.logging.info({"oracle_mock": {"identity": short(job.identity), "status": "passed", "distance": job.distance}})
        proof = await self._prove_and_record(job, "submit_proof")
        verdict = Verdict(
            accepted=True,
            state=job.state,
            reason=proof.reason,
            distance=job.distance,
            detail=proof.detail,
        )
        self.outcomes["mock:accepted"] += 1
        bt.logging.info({
            "oracle_decision": {
                "operation": "mock",
                "identity": short(job.identity),
                "proof_accepted": proof.accepted,
                **verdict.as_log(),
            }
        })
        return verdict

    async def submit_proof(self, identity: str, input_data: Any, target_output: Any) -> Verdict:
        """Gate the claim and, if accepted, generate its proof."""
        job = self._receive(identity, input_data, target_output)
        if not self._gate(job):
            return self._finish(job, "submit_proof")
        return await self._prove_and_record(job, "submit_proof")

    async def verify_aggregate(self, identity: str, input_data: Any, target_output: Any) -> Verdict:
        """Verify the identity's aggregate proof; requires the gate to pass too."""
        job = self._receive(identity, input_data, target_output)
        if not self._gate(job):
            return self._finish(job, "verify_aggregate")

        async with self.admission.slot(job.identity):
            job.advance(SubmissionState.PROVING)
            try:
                await self._run_stage(
                    job.identity,
                    StageRequest(
                        kind=StageKind.VERIFY_AGGREGATE,
                        artifacts=self.artifacts.paths_for(job.identity),
                        params=self.run_args,
                    ),
                )
            except StageExecutionError as e:
                job.reject(self._stage_reason(e), str(e))
                return self._finish(job, "verify_aggregate", error=e)
            job.advance(SubmissionState.VERIFIED)
            job.advance(SubmissionState.FINALIZED)
        return self._finish(job, "verify_aggregate")

    async def verify_on_chain(self, identity: str, input_data: Any, target_output: Any) -> Verdict:
        """Prove afresh and settle on chain, consistent with the identity's history.

        Raises:
            LedgerInconsistency: if the latest accepted record's distance
                differs from the fresh one by more than the settlement tolerance.
        """
        job = self._receive(identity, input_data, target_output)
        if not self._gate(job):
            return self._finish(job, "verify_on_chain")
        if not self.verifier_address:
            job.reject(RejectReason.STAGE_FAILURE, "no verifier contract configured")
            return self._finish(job, "verify_on_chain")

        async with self.admission.slot(job.identity):
            recorded = self.ledger.latest(job.identity, accepted_only=True)
            if recorded is not None and abs(recorded.distance - job.distance) > self.settlement_tolerance:
                error = LedgerInconsistency(
                    job.identity, recorded.distance, job.distance, self.settlement_tolerance,
                )
                job.reject(RejectReason.LEDGER_INCONSISTENCY, str(error))
                self._finish(job, "verify_on_chain", error=error)
                raise error

            job.advance(SubmissionState.PROVING)
            try:
                await self._prove(job)
                job.advance(SubmissionState.VERIFIED)
                await self._run_stage(
                    job.identity,
                    StageRequest(
                        kind=StageKind.VERIFY_ON_CHAIN,
                        artifacts=self.artifacts.paths_for(job.identity),
                        params=self.run_args,
                        verifier_address=self.verifier_address,
                    ),
                )
            except StageExecutionError as e:
                job.reject(self._stage_reason(e), str(e))
                return self._finish(job, "verify_on_chain", error=e)

            job.advance(SubmissionState.FINALIZED)
            await self._record(job, Operation.VERIFY_ON_CHAIN)
        return self._finish(job, "verify_on_chain")

    async def close(self, timeout: float | None = None) -> None:
        """Wait for detached stage tasks left behind by timeouts or disconnects."""
        if not self._background:
            return
        bt.logging.info({"oracle": {"event": "draining", "pending_stages": len(self._background)}})
        await asyncio.wait(set(self._background), timeout=timeout)

    # -- State machine steps --

    def _receive(self, identity: Any, input_data: Any, target_output: Any) -> ProofJob:
        identity = decode_identity(identity)
        payload, claimed, target = decode_claim(input_data, target_output)
        return ProofJob(
            identity=identity,
            input_data=payload,
            claimed_output=claimed,
            target_output=target,
        )

    def _gate(self, job: ProofJob) -> bool:
        match = self.matcher.evaluate(job.claimed_output, job.target_output)
        job.distance = match.distance
        job.advance(SubmissionState.MATCHED)
        if not match.accepted:
            job.reject(
                RejectReason.THRESHOLD,
                f"distance {match.distance:.6g} >= threshold {self.matcher.threshold:.6g}",
            )
        return match.accepted

    async def _prove_and_record(self, job: ProofJob, operation: str) -> Verdict:
        async with self.admission.slot(job.identity):
            job.advance(SubmissionState.PROVING)
            try:
                await self._prove(job)
            except StageExecutionError as e:
                job.reject(self._stage_reason(e), str(e))
                return self._finish(job, operation, error=e)
            job.advance(SubmissionState.VERIFIED)
            job.advance(SubmissionState.FINALIZED)
            await self._record(job, Operation.SUBMIT_PROOF)
        return self._finish(job, operation)

    async def _prove(self, job: ProofJob) -> StageOutput:
        input_path = self._write_input(job)
        return await self._run_stage(
            job.identity,
            StageRequest(
                kind=StageKind.PROVE,
                input_path=input_path,
                model_path=self.model_path,
                artifacts=self.artifacts.paths_for(job.identity),
                params=self.run_args,
            ),
            discard=(input_path,),
        )

    async def _record(self, job: ProofJob, operation: Operation) -> None:
        # Only finalized jobs reach the ledger
        await self.ledger.append(SubmissionRecord(
            identity=job.identity,
            distance=job.distance,
            accepted=True,
            operation=operation,
        ))

    def _write_input(self, job: ProofJob) -> Path:
        return self.artifacts.write_input(job.identity, job.input_data.model_dump(exclude_none=True))

    # -- Stage execution --

    async def _stage(self, request: StageRequest, discard: tuple[Path, ...]) -> StageOutput:
        try:
            return await self.runner.run(request)
        except StageExecutionError:
            raise
        except Exception as e:
            raise StageExecutionError(request.kind.value, f"engine crashed: {e!r}") from e
        finally:
            self.artifacts.discard(*discard)

    async def _run_stage(
        self,
        identity: str,
        request: StageRequest,
        discard: tuple[Path, ...] = (),
    ) -> StageOutput:
        """Run a stage with a bounded wait.

        The stage task is shielded: if the wait times out or the caller goes
        away, the task keeps running to completion in the background while the
        caller (and the identity slot) moves on.
        """
        task = asyncio.ensure_future(self._stage(request, discard))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.stage_timeout)
        except asyncio.TimeoutError:
            self._detach(identity, request.kind, task)
            raise StageExecutionError(
                request.kind.value,
                f"no result within {self.stage_timeout:.1f}s",
                timed_out=True,
            ) from None
        except asyncio.CancelledError:
            self._detach(identity, request.kind, task)
            raise

    def _detach(self, identity: str, kind: StageKind, task: asyncio.Task) -> None:
        if task.done():
            if not task.cancelled():
                task.exception()
            return
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if t.cancelled():
                status = "cancelled"
            elif t.exception() is not None:
                status = f"failed: {t.exception()}"
            else:
                status = "completed"
            bt.logging.info({
                "oracle_detached_stage": {"identity": short(identity), "kind": kind.value, "status": status}
            })

        task.add_done_callback(_done)

    @staticmethod
    def _stage_reason(error: StageExecutionError) -> RejectReason:
        return RejectReason.STAGE_TIMEOUT if error.timed_out else RejectReason.STAGE_FAILURE

    # -- Reporting --

    def _finish(self, job: ProofJob, operation: str, error: Exception | None = None) -> Verdict:
        verdict = Verdict.from_job(job)
        outcome = "accepted" if verdict.accepted else verdict.reason.value
        self.outcomes[f"{operation}:{outcome}"] += 1

        entry: dict[str, Any] = {"operation": operation, "identity": short(job.identity), **verdict.as_log()}
        if error is not None:
            entry["error"] = type(error).__name__
            if isinstance(error, StageExecutionError):
                entry["stage"] = error.kind
                entry["timed_out"] = error.timed_out
                if error.output:
                    entry["engine_output"] = error.output[-500:]

        if verdict.accepted:
            bt.logging.info({"oracle_decision": entry})
        elif isinstance(error, StageExecutionError):
            bt.logging.error({"oracle_decision": entry})
        else:
            bt.logging.warning({"oracle_decision": entry})
        return verdict


__all__ = ["VerificationOrchestrator"]
