import asyncio

import pytest

from site_auth.flow.scheduling import AsyncioScheduler


@pytest.mark.asyncio
async def test_interval_keeps_running_after_callback_error() -> None:
    calls: list[int] = []

    def flaky() -> None:
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("database is locked")

    task = AsyncioScheduler().call_every(0.01, flaky)
    for _ in range(100):
        if len(calls) >= 3:
            break
        await asyncio.sleep(0.01)
    task.cancel()

    assert len(calls) >= 3
    assert task.cancelled


@pytest.mark.asyncio
async def test_cancelled_timer_never_fires() -> None:
    fired: list[bool] = []
    task = AsyncioScheduler().call_later(0.01, lambda: fired.append(True))

    task.cancel()
    await asyncio.sleep(0.03)

    assert fired == []
    assert task.cancelled
