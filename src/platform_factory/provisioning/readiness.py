"""Bounded readiness polling for freshly created resources.

A probe is an async callable returning a ``ProbeResult``. The verifier
polls it until it reports ``ready``, reports a terminal state (``failed``
or ``canceled``), or the time budget is spent. A resource is never
reported verified on the strength of an empty or erroring probe.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from ..observability import get_logger
from ..settings import ReadinessBudget

logger = get_logger(__name__)


class ProbeState(str, Enum):
    NOT_READY = 'not_ready'
    READY = 'ready'
    FAILED = 'failed'
    CANCELED = 'canceled'


TERMINAL_PROBE_STATES = frozenset({ProbeState.FAILED, ProbeState.CANCELED})


@dataclass(frozen=True, slots=True)
class ProbeResult:
    state: ProbeState
    detail: str = ''
    reason: str = ''

    @classmethod
    def ready(cls, detail: str = '') -> ProbeResult:
        return cls(ProbeState.READY, detail)

    @classmethod
    def not_ready(cls, detail: str = '', *, reason: str = '') -> ProbeResult:
        return cls(ProbeState.NOT_READY, detail, reason)

    @classmethod
    def failed(cls, detail: str = '') -> ProbeResult:
        return cls(ProbeState.FAILED, detail)

    @classmethod
    def canceled(cls, detail: str = '') -> ProbeResult:
        return cls(ProbeState.CANCELED, detail)


@dataclass(frozen=True, slots=True)
class VerificationOutcome:
    verified: bool
    detail: str
    terminal_state: ProbeState | None = None
    attempts: int = 0
    elapsed_seconds: float = 0.0


Probe = Callable[[], Awaitable[ProbeResult]]


class ReadinessVerifier:
    """Poll a probe under a time budget.

    ``clock`` and ``sleep`` are injectable so tests can drive the loop
    without real waiting.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep

    async def verify_with_budget(
        self, probe: Probe, budget: ReadinessBudget, *, label: str = '',
    ) -> VerificationOutcome:
        return await self.verify(
            probe,
            timeout_seconds=budget.timeout_seconds,
            poll_interval_seconds=budget.poll_interval_seconds,
            backoff_step_seconds=budget.backoff_step_seconds,
            max_interval_seconds=budget.max_interval_seconds,
            label=label,
        )

    async def verify(
        self,
        probe: Probe,
        *,
        timeout_seconds: float,
        poll_interval_seconds: float,
        backoff_step_seconds: float = 0.0,
        max_interval_seconds: float | None = None,
        label: str = '',
    ) -> VerificationOutcome:
        if poll_interval_seconds <= 0:
            raise ValueError('poll_interval_seconds must be > 0')

        started = self._clock()
        deadline = started + max(timeout_seconds, 0.0)
        interval = poll_interval_seconds
        attempts = 0
        last_detail = 'no probe result'

        while True:
            attempts += 1
            remaining = deadline - self._clock()
            # A probe at (or past) the deadline still gets one interval to answer.
            probe_timeout = remaining if remaining > 0 else poll_interval_seconds
            result = await self._call_probe(probe, probe_timeout)
            elapsed = self._clock() - started

            if result.state is ProbeState.READY:
                return VerificationOutcome(
                    verified=True,
                    detail=result.detail or 'ready',
                    attempts=attempts,
                    elapsed_seconds=elapsed,
                )
            if result.state in TERMINAL_PROBE_STATES:
                return VerificationOutcome(
                    verified=False,
                    detail=result.detail or result.state.value,
                    terminal_state=result.state,
                    attempts=attempts,
                    elapsed_seconds=elapsed,
                )

            last_detail = result.detail or last_detail
            remaining = deadline - self._clock()
            if remaining <= 0:
                break

            logger.debug(
                'readiness_not_ready',
                probe=label,
                attempt=attempts,
                detail=last_detail,
            )
            await self._sleep(min(interval, remaining))
            interval += backoff_step_seconds
            if max_interval_seconds is not None:
                interval = min(interval, max_interval_seconds)

        elapsed = self._clock() - started
        logger.info(
            'readiness_timed_out',
            probe=label,
            attempts=attempts,
            elapsed_seconds=round(elapsed, 3),
        )
        return VerificationOutcome(
            verified=False,
            detail=f'timed out after {elapsed:.1f}s: {last_detail}',
            attempts=attempts,
            elapsed_seconds=elapsed,
        )

    async def _call_probe(self, probe: Probe, timeout: float) -> ProbeResult:
        try:
            return await asyncio.wait_for(probe(), timeout=timeout)
        except asyncio.TimeoutError:
            return ProbeResult.not_ready('probe exceeded remaining budget')
        except Exception as exc:
            logger.debug('readiness_probe_error', error=str(exc))
            return ProbeResult.not_ready(f'probe error: {exc}')


MISSING = 'missing'


def fail_after_consecutive(
    probe: Probe, limit: int, *, reason: str = MISSING,
) -> Probe:
    """Wrap ``probe`` so ``limit`` consecutive ``reason`` misses become ``failed``.

    Any other result resets the count.
    """
    if limit < 1:
        raise ValueError('limit must be >= 1')
    misses = 0

    async def limited() -> ProbeResult:
        nonlocal misses
        result = await probe()
        if result.state is ProbeState.NOT_READY and result.reason == reason:
            misses += 1
            if misses >= limit:
                return ProbeResult.failed(
                    f'{result.detail} (after {misses} consecutive checks)'
                )
            return result
        misses = 0
        return result

    return limited
