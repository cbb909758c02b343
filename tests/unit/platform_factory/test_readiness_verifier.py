"""Tests for bounded readiness polling."""

from __future__ import annotations

import pytest

from platform_factory.provisioning.readiness import (
    MISSING,
    ProbeResult,
    ProbeState,
    fail_after_consecutive,
)
from platform_factory.settings import ReadinessBudget


def _scripted(*results):
    """Probe returning ``results`` in order, repeating the last one."""
    calls = []

    async def probe():
        index = min(len(calls), len(results) - 1)
        calls.append(index)
        result = results[index]
        if isinstance(result, Exception):
            raise result
        return result

    probe.calls = calls
    return probe


@pytest.mark.asyncio
async def test_ready_on_first_probe(verifier, clock):
    outcome = await verifier.verify(
        _scripted(ProbeResult.ready('healthy')),
        timeout_seconds=10,
        poll_interval_seconds=1,
    )
    assert outcome.verified is True
    assert outcome.detail == 'healthy'
    assert outcome.attempts == 1
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_polls_until_ready(verifier, clock):
    probe = _scripted(
        ProbeResult.not_ready('starting'),
        ProbeResult.not_ready('starting'),
        ProbeResult.ready(),
    )
    outcome = await verifier.verify(probe, timeout_seconds=30, poll_interval_seconds=2)

    assert outcome.verified is True
    assert outcome.detail == 'ready'
    assert outcome.attempts == 3
    assert clock.sleeps == [2, 2]


@pytest.mark.asyncio
async def test_times_out_with_last_detail(verifier, clock):
    outcome = await verifier.verify(
        _scripted(ProbeResult.not_ready('status COMING_UP')),
        timeout_seconds=10,
        poll_interval_seconds=2,
    )
    assert outcome.verified is False
    assert outcome.terminal_state is None
    assert outcome.attempts == 6
    assert outcome.detail == 'timed out after 10.0s: status COMING_UP'
    assert sum(clock.sleeps) == pytest.approx(10)


@pytest.mark.asyncio
async def test_last_sleep_is_clamped_to_deadline(verifier, clock):
    await verifier.verify(
        _scripted(ProbeResult.not_ready()),
        timeout_seconds=5,
        poll_interval_seconds=2,
    )
    assert clock.sleeps == [2, 2, 1]


@pytest.mark.asyncio
async def test_linear_backoff_is_capped(verifier, clock):
    await verifier.verify(
        _scripted(ProbeResult.not_ready()),
        timeout_seconds=15,
        poll_interval_seconds=1,
        backoff_step_seconds=1,
        max_interval_seconds=3,
    )
    assert clock.sleeps[:5] == [1, 2, 3, 3, 3]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ('result', 'state'),
    [
        (ProbeResult.failed('deployment ERROR'), ProbeState.FAILED),
        (ProbeResult.canceled('deployment CANCELED'), ProbeState.CANCELED),
    ],
)
async def test_terminal_state_stops_polling_early(verifier, clock, result, state):
    probe = _scripted(ProbeResult.not_ready('building'), result)
    outcome = await verifier.verify(probe, timeout_seconds=600, poll_interval_seconds=10)

    assert outcome.verified is False
    assert outcome.terminal_state is state
    assert outcome.detail == result.detail
    assert outcome.attempts == 2
    assert clock.sleeps == [10]


@pytest.mark.asyncio
async def test_probe_exception_counts_as_not_ready(verifier):
    probe = _scripted(RuntimeError('connection reset'), ProbeResult.ready())
    outcome = await verifier.verify(probe, timeout_seconds=10, poll_interval_seconds=1)
    assert outcome.verified is True
    assert outcome.attempts == 2


@pytest.mark.asyncio
async def test_erroring_probe_never_verifies(verifier):
    outcome = await verifier.verify(
        _scripted(RuntimeError('boom')),
        timeout_seconds=3,
        poll_interval_seconds=1,
    )
    assert outcome.verified is False
    assert 'probe error: boom' in outcome.detail


@pytest.mark.asyncio
async def test_zero_budget_still_probes_once(verifier, clock):
    outcome = await verifier.verify(
        _scripted(ProbeResult.not_ready('nope')),
        timeout_seconds=0,
        poll_interval_seconds=1,
    )
    assert outcome.attempts == 1
    assert outcome.verified is False
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_invalid_poll_interval_rejected(verifier):
    with pytest.raises(ValueError):
        await verifier.verify(
            _scripted(ProbeResult.ready()), timeout_seconds=1, poll_interval_seconds=0,
        )


@pytest.mark.asyncio
async def test_verify_with_budget(verifier, clock):
    budget = ReadinessBudget(6.0, 1.0, 1.0, 2.0)
    outcome = await verifier.verify_with_budget(
        _scripted(ProbeResult.not_ready()), budget, label='db',
    )
    assert outcome.verified is False
    assert clock.sleeps == [1, 2, 2, 1]


@pytest.mark.asyncio
async def test_fail_after_consecutive_misses(verifier):
    missing = ProbeResult.not_ready("relation 'pitch_decks' not found", reason=MISSING)
    probe = fail_after_consecutive(_scripted(missing), 3)
    outcome = await verifier.verify(probe, timeout_seconds=100, poll_interval_seconds=1)

    assert outcome.verified is False
    assert outcome.terminal_state is ProbeState.FAILED
    assert outcome.attempts == 3
    assert 'after 3 consecutive checks' in outcome.detail


@pytest.mark.asyncio
async def test_fail_after_consecutive_resets_on_other_results(verifier):
    missing = ProbeResult.not_ready('missing', reason=MISSING)
    other = ProbeResult.not_ready('cache reload')
    inner = _scripted(missing, other, missing, other, ProbeResult.ready())
    outcome = await verifier.verify(
        fail_after_consecutive(inner, 2), timeout_seconds=100, poll_interval_seconds=1,
    )
    assert outcome.verified is True
    assert outcome.attempts == 5


def test_fail_after_consecutive_rejects_zero_limit():
    with pytest.raises(ValueError):
        fail_after_consecutive(_scripted(ProbeResult.ready()), 0)
