from __future__ import annotations

import asyncio
import threading
import time

import pytest

from edgeship.runner import ShipRunner


@pytest.mark.asyncio
async def test_run_returns_job_result() -> None:
    runner = ShipRunner(max_concurrent=2)

    def _job(value: int) -> int:
        return value * 2

    assert await runner.run("shop", _job, value=21) == 42


@pytest.mark.asyncio
async def test_job_exception_is_logged_not_raised() -> None:
    runner = ShipRunner(max_concurrent=1)

    async def _job() -> None:
        raise RuntimeError("deploy exploded")

    assert await runner.run("shop", _job) is None


@pytest.mark.asyncio
async def test_same_app_jobs_are_serialized() -> None:
    runner = ShipRunner(max_concurrent=4)
    active = 0
    peak = 0

    async def _job() -> None:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.02)
        active -= 1

    await asyncio.gather(*(runner.run("shop", _job) for _ in range(3)))
    assert peak == 1


@pytest.mark.asyncio
async def test_different_apps_run_concurrently() -> None:
    runner = ShipRunner(max_concurrent=4)
    both_started = asyncio.Event()
    started: set[str] = set()

    async def _job(app_id: str) -> str:
        started.add(app_id)
        if len(started) == 2:
            both_started.set()
        await asyncio.wait_for(both_started.wait(), timeout=1.0)
        return app_id

    results = await asyncio.gather(
        runner.run("shop", _job, app_id="shop"),
        runner.run("blog", _job, app_id="blog"),
    )
    assert results == ["shop", "blog"]


@pytest.mark.asyncio
async def test_submit_and_shutdown_drain_in_flight_jobs() -> None:
    runner = ShipRunner(max_concurrent=1)
    completed = asyncio.Event()

    async def _job() -> None:
        await asyncio.sleep(0.02)
        completed.set()

    assert runner.submit("shop", _job) is True
    assert runner.in_flight == 1
    await runner.shutdown(timeout_s=1)
    assert completed.is_set()
    assert runner.submit("shop", _job) is False


def test_submit_from_sync_code_uses_loop_thread() -> None:
    runner = ShipRunner(max_concurrent=1)
    done = threading.Event()

    def _job() -> None:
        done.set()

    assert runner.submit("shop", _job) is True
    assert done.wait(timeout=2.0)
    deadline = time.monotonic() + 1.0
    while runner.in_flight and time.monotonic() < deadline:
        time.sleep(0.01)
    asyncio.run(runner.shutdown(timeout_s=1))


def test_sync_submit_and_awaited_run_do_not_share_loop_locks() -> None:
    runner = ShipRunner(max_concurrent=1)
    started = threading.Event()
    release = threading.Event()

    def _slow() -> None:
        started.set()
        release.wait(timeout=2.0)

    def _fast() -> str:
        return "done"

    assert runner.submit("shop", _slow) is True
    assert started.wait(timeout=2.0)
    try:
        result = asyncio.run(asyncio.wait_for(runner.run("shop", _fast), timeout=1.0))
    finally:
        release.set()
    assert result == "done"
    deadline = time.monotonic() + 2.0
    while runner.in_flight and time.monotonic() < deadline:
        time.sleep(0.01)
    asyncio.run(runner.shutdown(timeout_s=1))
