"""Step ledger: per-step state machine and append-only transition log.

Each declared step moves forward only:

  pending -> running -> (verifying) -> success | warning | error
  pending -> skipped
  running -> skipped

Terminal states (success, warning, error, skipped) have no outgoing
transitions. ``verified`` is only ever set while a step is ``verifying``,
so ``verified=True`` cannot appear on a step whose action did not return.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Sequence

from .models import StepKind


class StepStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    VERIFYING = 'verifying'
    SUCCESS = 'success'
    ERROR = 'error'
    SKIPPED = 'skipped'
    WARNING = 'warning'


TERMINAL_STATUSES = frozenset({
    StepStatus.SUCCESS,
    StepStatus.WARNING,
    StepStatus.ERROR,
    StepStatus.SKIPPED,
})

ALLOWED_TRANSITIONS = MappingProxyType(
    {
        StepStatus.PENDING: frozenset({StepStatus.RUNNING, StepStatus.SKIPPED}),
        StepStatus.RUNNING: frozenset({
            StepStatus.VERIFYING,
            StepStatus.SUCCESS,
            StepStatus.WARNING,
            StepStatus.ERROR,
            StepStatus.SKIPPED,
        }),
        StepStatus.VERIFYING: frozenset({
            StepStatus.SUCCESS,
            StepStatus.WARNING,
            StepStatus.ERROR,
        }),
        StepStatus.SUCCESS: frozenset(),
        StepStatus.WARNING: frozenset(),
        StepStatus.ERROR: frozenset(),
        StepStatus.SKIPPED: frozenset(),
    }
)


@dataclass(frozen=True, slots=True)
class StepDefinition:
    """Declared step: identity, error class, and whether it verifies."""

    id: str
    kind: StepKind
    fatal: bool
    verifies: bool = False


@dataclass(frozen=True, slots=True)
class StepRecord:
    """Ledger snapshot for one step."""

    id: str
    kind: StepKind
    fatal: bool
    status: StepStatus = StepStatus.PENDING
    message: str = ''
    error: str | None = None
    duration_ms: int = 0
    verified: bool | None = None
    verification_detail: str | None = None
    output: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True, slots=True)
class StepEvent:
    """One recorded transition."""

    step_id: str
    from_status: StepStatus
    to_status: StepStatus
    elapsed_ms: int
    detail: str = ''


class InvalidStepTransition(ValueError):
    """Raised for transitions outside ``ALLOWED_TRANSITIONS``."""

    def __init__(
        self, step_id: str, from_status: StepStatus, to_status: StepStatus,
    ) -> None:
        self.step_id = step_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f'invalid step transition for {step_id!r}: '
            f'{from_status.value!r} -> {to_status.value!r}'
        )


class StepLedger:
    """Ordered step records for one run plus the log of every transition."""

    def __init__(
        self,
        definitions: Sequence[StepDefinition],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        ids = [d.id for d in definitions]
        if len(set(ids)) != len(ids):
            raise ValueError('step ids must be unique')
        self._clock = clock
        self._origin = clock()
        self._order = ids
        self._records: dict[str, StepRecord] = {
            d.id: StepRecord(id=d.id, kind=d.kind, fatal=d.fatal)
            for d in definitions
        }
        self._started_at: dict[str, float] = {}
        self._events: list[StepEvent] = []

    # ── Queries ──────────────────────────────────────────────────────

    def get(self, step_id: str) -> StepRecord:
        try:
            return self._records[step_id]
        except KeyError:
            raise KeyError(f'unknown step {step_id!r}') from None

    def records(self) -> list[StepRecord]:
        return [self._records[step_id] for step_id in self._order]

    @property
    def events(self) -> tuple[StepEvent, ...]:
        return tuple(self._events)

    def is_complete(self) -> bool:
        return all(r.is_terminal for r in self._records.values())

    def with_status(self, *statuses: StepStatus) -> list[StepRecord]:
        wanted = set(statuses)
        return [r for r in self.records() if r.status in wanted]

    # ── Transitions ──────────────────────────────────────────────────

    def start(self, step_id: str, *, message: str = '') -> StepRecord:
        record = self._transition(step_id, StepStatus.RUNNING, message=message)
        self._started_at[step_id] = self._clock()
        return record

    def begin_verification(self, step_id: str, *, message: str = '') -> StepRecord:
        return self._transition(step_id, StepStatus.VERIFYING, message=message)

    def record_verification(
        self, step_id: str, *, verified: bool, detail: str,
    ) -> StepRecord:
        record = self.get(step_id)
        if record.status is not StepStatus.VERIFYING:
            raise InvalidStepTransition(step_id, record.status, StepStatus.VERIFYING)
        updated = replace(record, verified=verified, verification_detail=detail)
        self._records[step_id] = updated
        return updated

    def complete(
        self, step_id: str, *, message: str = '', output: Any = None,
    ) -> StepRecord:
        return self._transition(
            step_id, StepStatus.SUCCESS, message=message, output=output,
        )

    def warn(
        self,
        step_id: str,
        *,
        message: str,
        error: str | None = None,
        output: Any = None,
    ) -> StepRecord:
        return self._transition(
            step_id, StepStatus.WARNING, message=message, error=error, output=output,
        )

    def fail(self, step_id: str, *, error: str, message: str = '') -> StepRecord:
        return self._transition(
            step_id, StepStatus.ERROR, message=message or error, error=error,
        )

    def skip(self, step_id: str, *, message: str) -> StepRecord:
        return self._transition(step_id, StepStatus.SKIPPED, message=message)

    def skip_remaining(self, *, message: str) -> list[StepRecord]:
        """Mark every still-pending step ``skipped``; returns those records."""
        skipped = []
        for record in self.records():
            if record.status is StepStatus.PENDING:
                skipped.append(self.skip(record.id, message=message))
        return skipped

    def _transition(
        self,
        step_id: str,
        to_status: StepStatus,
        *,
        message: str = '',
        error: str | None = None,
        output: Any = None,
    ) -> StepRecord:
        record = self.get(step_id)
        allowed = ALLOWED_TRANSITIONS.get(record.status, frozenset())
        if to_status not in allowed:
            raise InvalidStepTransition(step_id, record.status, to_status)

        now = self._clock()
        changes: dict[str, Any] = {'status': to_status}
        if message:
            changes['message'] = message
        if error is not None:
            changes['error'] = error
        if output is not None:
            changes['output'] = output
        if to_status in TERMINAL_STATUSES and step_id in self._started_at:
            changes['duration_ms'] = _millis(now - self._started_at[step_id])

        updated = replace(record, **changes)
        self._records[step_id] = updated
        self._events.append(StepEvent(
            step_id=step_id,
            from_status=record.status,
            to_status=to_status,
            elapsed_ms=_millis(now - self._origin),
            detail=message or (error or ''),
        ))
        return updated


def _millis(seconds: float) -> int:
    return max(int(round(seconds * 1000)), 0)
