"""Tests for batch scheduling."""

import asyncio

import pytest

from lessoncards.scheduler import BatchPolicy, run_batched, run_with_policy


@pytest.mark.asyncio
async def test_results_follow_input_order(fake_sleep):
    async def job(value, delay):
        await asyncio.sleep(delay)
        return value

    tasks = [lambda v=v, d=d: job(v, d) for v, d in [(1, 0.02), (2, 0.0), (3, 0.01), (4, 0.0), (5, 0.0)]]
    outcomes = await run_batched(tasks, 2, 0.5, sleep=fake_sleep)

    assert [outcome.value for outcome in outcomes] == [1, 2, 3, 4, 5]
    assert [outcome.index for outcome in outcomes] == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_sleeps_only_between_batches(fake_sleep):
    async def job():
        return 'ok'

    await run_batched([job] * 5, 2, 0.5, sleep=fake_sleep)
    assert fake_sleep.calls == [0.5, 0.5]


@pytest.mark.asyncio
async def test_failure_does_not_abort_batch(fake_sleep):
    async def ok():
        return 'ok'

    async def boom():
        raise RuntimeError('boom')

    outcomes = await run_batched([ok, boom, ok, ok], 3, 0.1, sleep=fake_sleep)

    assert [outcome.ok for outcome in outcomes] == [True, False, True, True]
    assert isinstance(outcomes[1].error, RuntimeError)
    assert outcomes[2].value == 'ok'


@pytest.mark.asyncio
async def test_batch_members_run_concurrently(fake_sleep):
    running = 0
    peak = 0

    async def job():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    await run_batched([job] * 6, 3, 0, sleep=fake_sleep)

    assert peak == 3
    assert fake_sleep.calls == []


@pytest.mark.asyncio
async def test_empty_task_list(fake_sleep):
    assert await run_batched([], 3, 1.0, sleep=fake_sleep) == []
    assert fake_sleep.calls == []


@pytest.mark.asyncio
async def test_policy_wrapper(fake_sleep):
    async def job():
        return 1

    outcomes = await run_with_policy([job] * 3, BatchPolicy(batch_size=1, inter_batch_delay=2.0), sleep=fake_sleep)
    assert len(outcomes) == 3
    assert fake_sleep.calls == [2.0, 2.0]
