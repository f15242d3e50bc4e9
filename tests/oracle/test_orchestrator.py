"""Orchestrator tests against a fake proving engine.

Covers the distance gate, the proving state machine, per-identity
serialisation, stage failures and timeouts, and settlement consistency
with the audit ledger.
"""

from __future__ import annotations

import asyncio

import pytest

from janus.ledger.audit import AuditLedger
from janus.oracle.errors import (
    DecodingError,
    LedgerInconsistency,
    LockTimeout,
    ShapeMismatch,
    StageExecutionError,
)
from janus.oracle.models import Operation, RejectReason, SubmissionState
from janus.oracle.orchestrator import VerificationOrchestrator
from janus.prover.artifacts import ArtifactStore
from janus.prover.stages import StageKind, StageOutput, StageRequest

VERIFIER = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


# ---------------------------------------------------------------------------
# Fake engine
# ---------------------------------------------------------------------------

class FakeRunner:
    """Records stage calls and tracks how many PROVE stages overlap."""

    def __init__(self, fail=(), crash=(), delay=0.0, forward_output=None):
        self.fail = set(fail)
        self.crash = set(crash)
        self.delay = delay
        self.forward_output = forward_output or [[0.25, 0.75]]
        self.calls: list[StageKind] = []
        self.requests: list[StageRequest] = []
        self.proving = 0
        self.peak_proving = 0

    async def run(self, request: StageRequest) -> StageOutput:
        self.calls.append(request.kind)
        self.requests.append(request)
        if request.kind is StageKind.PROVE:
            self.proving += 1
            self.peak_proving = max(self.peak_proving, self.proving)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            if request.kind is StageKind.PROVE:
                self.proving -= 1
        if request.kind in self.crash:
            raise RuntimeError("segfault")
        if request.kind in self.fail:
            raise StageExecutionError(request.kind.value, "ezkl exited with status 1", output="bad proof")
        if request.kind is StageKind.FORWARD:
            return StageOutput(kind=request.kind, output=self.forward_output)
        return StageOutput(kind=request.kind)


def _input(claimed):
    return {"input_data": [[1.0, 2.0, 3.0]], "output_data": [list(claimed)]}


NEAR_CLAIM = _input([0.5, 0.5])
NEAR_TARGET = [[0.5, 0.55]]
FAR_CLAIM = _input([0.0, 0.0])
FAR_TARGET = [[5.0, 5.0]]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def ledger():
    return AuditLedger()


@pytest.fixture
def make_orchestrator(tmp_path, ledger):
    def _make(runner, **kwargs):
        return VerificationOrchestrator(
            runner=runner,
            ledger=ledger,
            artifacts=ArtifactStore(str(tmp_path / "artifacts")),
            model_path=tmp_path / "network.ezkl",
            **kwargs,
        )
    return _make


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestMockAndSubmit:

    async def test_mock_within_threshold_records_one_accepted(self, make_orchestrator, ledger):
        runner = FakeRunner()
        orch = make_orchestrator(runner)

        verdict = await orch.evaluate_mock("u1", NEAR_CLAIM, NEAR_TARGET)

        assert verdict
        assert verdict.state is SubmissionState.FINALIZED
        assert runner.calls == [StageKind.MOCK, StageKind.PROVE]
        history = ledger.history("u1")
        assert len(history) == 1
        assert history[0].accepted
        assert history[0].distance == pytest.approx(0.05)
        assert history[0].operation is Operation.SUBMIT_PROOF

    async def test_submit_far_claim_never_proves(self, make_orchestrator, ledger):
        runner = FakeRunner()
        orch = make_orchestrator(runner)

        verdict = await orch.submit_proof("u2", FAR_CLAIM, FAR_TARGET)

        assert not verdict
        assert verdict.reason is RejectReason.THRESHOLD
        assert runner.calls == []
        assert not any(r.accepted for r in ledger.history("u2"))
        assert ledger.history("u2") == ()

    async def test_mock_far_claim_skips_engine(self, make_orchestrator, ledger):
        runner = FakeRunner()
        orch = make_orchestrator(runner)

        verdict = await orch.evaluate_mock("u2", FAR_CLAIM, FAR_TARGET)

        assert not verdict
        assert runner.calls == []
        assert orch.outcomes["mock:threshold"] == 1

    async def test_mock_stage_failure_does_not_prove(self, make_orchestrator, ledger):
        runner = FakeRunner(fail={StageKind.MOCK})
        orch = make_orchestrator(runner)

        verdict = await orch.evaluate_mock("u1", NEAR_CLAIM, NEAR_TARGET)

        assert not verdict
        assert verdict.reason is RejectReason.STAGE_FAILURE
        assert runner.calls == [StageKind.MOCK]
        assert ledger.history("u1") == ()

    async def test_mock_passes_when_chained_proof_fails(self, make_orchestrator, ledger):
        runner = FakeRunner(fail={StageKind.PROVE})
        orch = make_orchestrator(runner)

        verdict = await orch.evaluate_mock("u1", NEAR_CLAIM, NEAR_TARGET)

        assert verdict
        assert runner.calls == [StageKind.MOCK, StageKind.PROVE]
        assert verdict.reason is RejectReason.STAGE_FAILURE
        assert ledger.history("u1") == ()
        assert orch.outcomes["mock:accepted"] == 1
        assert orch.outcomes["submit_proof:stage_failure"] == 1

    async def test_prove_failure_is_not_recorded(self, make_orchestrator, ledger):
        runner = FakeRunner(fail={StageKind.PROVE})
        orch = make_orchestrator(runner)

        verdict = await orch.submit_proof("u1", NEAR_CLAIM, NEAR_TARGET)

        assert not verdict
        assert verdict.reason is RejectReason.STAGE_FAILURE
        assert verdict.state is SubmissionState.REJECTED
        assert ledger.history("u1") == ()
        assert orch.outcomes["submit_proof:stage_failure"] == 1

    async def test_engine_crash_is_stage_failure(self, make_orchestrator, ledger):
        runner = FakeRunner(crash={StageKind.PROVE})
        orch = make_orchestrator(runner)

        verdict = await orch.submit_proof("u1", NEAR_CLAIM, NEAR_TARGET)

        assert not verdict
        assert verdict.reason is RejectReason.STAGE_FAILURE
        assert "engine crashed" in verdict.detail

    async def test_stage_timeout_releases_slot(self, make_orchestrator, ledger):
        runner = FakeRunner(delay=0.3)
        orch = make_orchestrator(runner, stage_timeout=0.05)

        verdict = await orch.submit_proof("u1", NEAR_CLAIM, NEAR_TARGET)

        assert not verdict
        assert verdict.reason is RejectReason.STAGE_TIMEOUT
        assert not orch.admission.busy("u1")
        assert ledger.history("u1") == ()

        await orch.close(timeout=2.0)
        assert not orch._background
        assert ledger.history("u1") == ()

    async def test_cancelled_caller_releases_slot(self, make_orchestrator, ledger):
        runner = FakeRunner(delay=0.3)
        orch = make_orchestrator(runner)

        task = asyncio.create_task(orch.submit_proof("u1", NEAR_CLAIM, NEAR_TARGET))
        while runner.proving == 0:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not orch.admission.busy("u1")
        assert len(orch._background) == 1

        await orch.close(timeout=2.0)
        assert not orch._background
        assert runner.proving == 0
        assert ledger.history("u1") == ()

    async def test_input_files_are_discarded(self, make_orchestrator, tmp_path):
        orch = make_orchestrator(FakeRunner())

        await orch.submit_proof("u1", NEAR_CLAIM, NEAR_TARGET)

        assert list((tmp_path / "artifacts").rglob("input-*.json")) == []

    async def test_prove_request_uses_identity_artifacts(self, make_orchestrator):
        runner = FakeRunner()
        orch = make_orchestrator(runner)

        await orch.submit_proof("u1", NEAR_CLAIM, NEAR_TARGET)

        request = runner.requests[-1]
        assert request.kind is StageKind.PROVE
        assert request.artifacts == orch.artifacts.paths_for("u1")
        assert request.artifacts != orch.artifacts.paths_for("u2")


@pytest.mark.asyncio
class TestInputErrors:

    async def test_malformed_input_raises(self, make_orchestrator):
        runner = FakeRunner()
        orch = make_orchestrator(runner)

        with pytest.raises(DecodingError):
            await orch.submit_proof("u1", {"input_data": [[1.0]]}, NEAR_TARGET)
        with pytest.raises(DecodingError):
            await orch.submit_proof("", NEAR_CLAIM, NEAR_TARGET)
        assert runner.calls == []

    async def test_length_mismatch_raises(self, make_orchestrator):
        runner = FakeRunner()
        orch = make_orchestrator(runner)

        with pytest.raises(ShapeMismatch):
            await orch.evaluate_mock("u1", NEAR_CLAIM, [[0.5, 0.5, 0.5]])
        assert runner.calls == []


@pytest.mark.asyncio
class TestConcurrency:

    async def test_same_identity_never_overlaps(self, make_orchestrator, ledger):
        runner = FakeRunner(delay=0.02)
        orch = make_orchestrator(runner)

        verdicts = await asyncio.gather(
            *(orch.submit_proof("u1", NEAR_CLAIM, NEAR_TARGET) for _ in range(4))
        )

        assert all(verdicts)
        assert runner.peak_proving == 1
        assert len(ledger.history("u1")) == 4

    async def test_distinct_identities_each_get_one_record(self, make_orchestrator, ledger):
        runner = FakeRunner(delay=0.01)
        orch = make_orchestrator(runner)
        identities = [f"0x{i:040x}" for i in range(10)]

        await asyncio.gather(
            *(orch.submit_proof(identity, NEAR_CLAIM, NEAR_TARGET) for identity in identities)
        )

        assert len(ledger) == len(identities)
        for identity in identities:
            assert len(ledger.history(identity)) == 1
        assert runner.peak_proving > 1

    async def test_busy_identity_raises_lock_timeout(self, make_orchestrator):
        orch = make_orchestrator(FakeRunner(), lock_timeout=0.05)
        entered = asyncio.Event()
        release = asyncio.Event()

        async def hold():
            async with orch.admission.slot("u1"):
                entered.set()
                await release.wait()

        holder = asyncio.create_task(hold())
        await entered.wait()
        try:
            with pytest.raises(LockTimeout):
                await orch.submit_proof("u1", NEAR_CLAIM, NEAR_TARGET)
        finally:
            release.set()
            await holder


@pytest.mark.asyncio
class TestVerification:

    async def test_verify_aggregate(self, make_orchestrator, ledger):
        runner = FakeRunner()
        orch = make_orchestrator(runner)

        verdict = await orch.verify_aggregate("u1", NEAR_CLAIM, NEAR_TARGET)

        assert verdict
        assert runner.calls == [StageKind.VERIFY_AGGREGATE]
        assert ledger.history("u1") == ()

    async def test_verify_aggregate_failure(self, make_orchestrator):
        orch = make_orchestrator(FakeRunner(fail={StageKind.VERIFY_AGGREGATE}))

        verdict = await orch.verify_aggregate("u1", NEAR_CLAIM, NEAR_TARGET)

        assert not verdict
        assert verdict.reason is RejectReason.STAGE_FAILURE

    async def test_verify_aggregate_far_claim_rejected(self, make_orchestrator, ledger):
        runner = FakeRunner()
        orch = make_orchestrator(runner)

        verdict = await orch.verify_aggregate("u1", FAR_CLAIM, FAR_TARGET)

        assert not verdict
        assert verdict.reason is RejectReason.THRESHOLD
        assert runner.calls == []
        assert ledger.history("u1") == ()

    async def test_on_chain_without_verifier_rejects(self, make_orchestrator):
        runner = FakeRunner()
        orch = make_orchestrator(runner)

        verdict = await orch.verify_on_chain("u1", NEAR_CLAIM, NEAR_TARGET)

        assert not verdict
        assert runner.calls == []

    async def test_on_chain_without_history(self, make_orchestrator, ledger):
        runner = FakeRunner()
        orch = make_orchestrator(runner, verifier_address=VERIFIER)

        verdict = await orch.verify_on_chain("u1", NEAR_CLAIM, NEAR_TARGET)

        assert verdict
        assert runner.calls == [StageKind.PROVE, StageKind.VERIFY_ON_CHAIN]
        assert runner.requests[-1].verifier_address == VERIFIER
        record = ledger.latest("u1")
        assert record.accepted
        assert record.operation is Operation.VERIFY_ON_CHAIN

    async def test_on_chain_consistent_with_history(self, make_orchestrator, ledger):
        runner = FakeRunner()
        orch = make_orchestrator(runner, verifier_address=VERIFIER)

        assert await orch.submit_proof("u1", NEAR_CLAIM, NEAR_TARGET)
        assert await orch.verify_on_chain("u1", NEAR_CLAIM, NEAR_TARGET)
        assert len(ledger.history("u1")) == 2

    async def test_on_chain_inconsistent_with_history(self, make_orchestrator, ledger):
        runner = FakeRunner()
        orch = make_orchestrator(runner, verifier_address=VERIFIER)

        assert await orch.submit_proof("u1", NEAR_CLAIM, NEAR_TARGET)
        with pytest.raises(LedgerInconsistency) as exc:
            await orch.verify_on_chain("u1", NEAR_CLAIM, [[0.5, 0.52]])

        assert exc.value.recorded == pytest.approx(0.05)
        assert exc.value.observed == pytest.approx(0.02)
        assert runner.calls == [StageKind.PROVE]
        assert len(ledger.history("u1")) == 1
        assert not orch.admission.busy("u1")

    async def test_on_chain_settlement_failure(self, make_orchestrator, ledger):
        runner = FakeRunner(fail={StageKind.VERIFY_ON_CHAIN})
        orch = make_orchestrator(runner, verifier_address=VERIFIER)

        verdict = await orch.verify_on_chain("u1", NEAR_CLAIM, NEAR_TARGET)

        assert not verdict
        assert verdict.state is SubmissionState.REJECTED
        assert verdict.reason is RejectReason.STAGE_FAILURE
        assert runner.calls == [StageKind.PROVE, StageKind.VERIFY_ON_CHAIN]
        assert ledger.history("u1") == ()


@pytest.mark.asyncio
class TestForward:

    async def test_forward_returns_engine_output(self, make_orchestrator, tmp_path):
        runner = FakeRunner(forward_output=[[0.1, 0.9]])
        orch = make_orchestrator(runner)

        result = await orch.forward("anonymous", {"input_data": [[1.0, 2.0, 3.0]]})

        assert result == [[0.1, 0.9]]
        request = runner.requests[0]
        assert request.output_path is not None
        assert request.output_path.name.startswith("output-")
        assert list((tmp_path / "artifacts").rglob("*.json")) == []

    async def test_forward_failure_raises(self, make_orchestrator):
        orch = make_orchestrator(FakeRunner(fail={StageKind.FORWARD}))

        with pytest.raises(StageExecutionError):
            await orch.forward("u1", {"input_data": [[1.0]]})
