"""Tests for per-identity admission control."""

import asyncio

import pytest

from janus.oracle.admission import AdmissionControl
from janus.oracle.errors import LockTimeout


@pytest.mark.asyncio
class TestAdmissionControl:

    async def test_slot_is_exclusive_per_identity(self):
        admission = AdmissionControl(timeout=5.0)
        active = 0
        peak = 0

        async def work():
            nonlocal active, peak
            async with admission.slot("u1"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(work() for _ in range(5)))
        assert peak == 1
        assert len(admission) == 0

    async def test_distinct_identities_run_concurrently(self):
        admission = AdmissionControl(timeout=5.0)
        entered = asyncio.Event()
        release = asyncio.Event()

        async def hold():
            async with admission.slot("u1"):
                entered.set()
                await release.wait()

        holder = asyncio.create_task(hold())
        await entered.wait()
        assert admission.busy("u1")

        async with admission.slot("u2", timeout=0.5):
            assert admission.busy("u2")
        assert not admission.busy("u2")

        release.set()
        await holder
        assert not admission.busy("u1")

    async def test_timeout_raises_lock_timeout(self):
        admission = AdmissionControl(timeout=5.0)
        entered = asyncio.Event()
        release = asyncio.Event()

        async def hold():
            async with admission.slot("u1"):
                entered.set()
                await release.wait()

        holder = asyncio.create_task(hold())
        await entered.wait()

        with pytest.raises(LockTimeout) as exc:
            async with admission.slot("u1", timeout=0.05):
                pass
        assert exc.value.retryable
        assert exc.value.identity == "u1"

        release.set()
        await holder
        assert len(admission) == 0

    async def test_slot_released_on_error(self):
        admission = AdmissionControl(timeout=0.5)

        with pytest.raises(RuntimeError):
            async with admission.slot("u1"):
                raise RuntimeError("boom")

        async with admission.slot("u1"):
            assert admission.busy("u1")
        assert not admission.busy("u1")
