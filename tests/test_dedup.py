"""Tests for in-flight transfer deduplication."""

import asyncio

import pytest

from cacheprog.core.dedup import TransferDeduplicator


class Work:
    def __init__(self, result=None, error=None):
        self.calls = 0
        self.result = result
        self.error = error
        self.release = asyncio.Event()

    async def __call__(self):
        self.calls += 1
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_concurrent_starts_share_one_run():
    dedup = TransferDeduplicator("get")
    work = Work(result="done")

    waiters = [asyncio.create_task(dedup.start("k", work)) for _ in range(5)]
    await asyncio.sleep(0)
    assert dedup.in_flight() == ["k"]

    work.release.set()
    assert await asyncio.gather(*waiters) == ["done"] * 5
    assert work.calls == 1
    assert dedup.in_flight() == []


@pytest.mark.asyncio
async def test_errors_are_shared_and_not_remembered():
    dedup = TransferDeduplicator("put", keep_completed=True)
    failing = Work(error=RuntimeError("boom"))

    waiters = [asyncio.create_task(dedup.start("k", failing)) for _ in range(3)]
    await asyncio.sleep(0)
    failing.release.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)
    assert all(isinstance(r, RuntimeError) for r in results)
    assert failing.calls == 1

    retry = Work(result="ok")
    retry.release.set()
    assert await dedup.start("k", retry) == "ok"
    assert retry.calls == 1


@pytest.mark.asyncio
async def test_keep_completed_skips_repeat_work():
    dedup = TransferDeduplicator("put", keep_completed=True)
    work = Work(result="uploaded")
    work.release.set()

    assert await dedup.start("k", work) == "uploaded"
    assert await dedup.start("k", work) == "uploaded"
    assert work.calls == 1


@pytest.mark.asyncio
async def test_without_keep_completed_work_runs_again():
    dedup = TransferDeduplicator("get")
    work = Work(result=1)
    work.release.set()

    await dedup.start("k", work)
    await dedup.start("k", work)
    assert work.calls == 2


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_work():
    dedup = TransferDeduplicator("get")
    work = Work(result="value")

    impatient = asyncio.create_task(dedup.start("k", work))
    patient = asyncio.create_task(dedup.start("k", work))
    await asyncio.sleep(0)
    impatient.cancel()
    await asyncio.gather(impatient, return_exceptions=True)

    work.release.set()
    assert await patient == "value"
    assert work.calls == 1


@pytest.mark.asyncio
async def test_timeout_on_waiter_leaves_transfer_running():
    dedup = TransferDeduplicator("get")
    work = Work(result="late")

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(dedup.start("k", work), 0.01)
    assert dedup.in_flight() == ["k"]

    work.release.set()
    assert await dedup.start("k", work) == "late"
    assert work.calls == 1


@pytest.mark.asyncio
async def test_cancel_all():
    dedup = TransferDeduplicator("get")
    work = Work()
    waiter = asyncio.create_task(dedup.start("k", work))
    await asyncio.sleep(0)

    await dedup.cancel_all()
    assert dedup.in_flight() == []
    with pytest.raises(asyncio.CancelledError):
        await waiter


@pytest.mark.asyncio
async def test_distinct_keys_run_independently():
    dedup = TransferDeduplicator("get")
    a = Work(result="a")
    b = Work(result="b")
    a.release.set()
    b.release.set()

    assert await asyncio.gather(dedup.start("a", a), dedup.start("b", b)) == ["a", "b"]
    assert (a.calls, b.calls) == (1, 1)


@pytest.mark.asyncio
async def test_remembered_results_are_capped():
    dedup = TransferDeduplicator("put", keep_completed=True, max_completed=2)
    works = {key: Work(result=key) for key in ("a", "b", "c")}
    for work in works.values():
        work.release.set()

    for key, work in works.items():
        await dedup.start(key, work)
    # "a" was forgotten first and runs again; "c" is still remembered
    await dedup.start("a", works["a"])
    await dedup.start("c", works["c"])
    assert works["a"].calls == 2
    assert works["c"].calls == 1
