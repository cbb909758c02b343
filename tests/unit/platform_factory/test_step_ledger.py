"""Tests for the step ledger state machine."""

from __future__ import annotations

import pytest

from platform_factory.provisioning.models import StepKind
from platform_factory.provisioning.steps import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    InvalidStepTransition,
    StepDefinition,
    StepLedger,
    StepStatus,
)

DEFINITIONS = (
    StepDefinition('create-database', StepKind.DATABASE, fatal=True, verifies=True),
    StepDefinition('configure-auth', StepKind.AUTH_CONFIG, fatal=False),
    StepDefinition('send-notification', StepKind.NOTIFY, fatal=False),
)


def _ledger(clock=None) -> StepLedger:
    if clock is None:
        return StepLedger(DEFINITIONS)
    return StepLedger(DEFINITIONS, clock=clock)


def test_new_ledger_has_every_step_pending_in_order():
    ledger = _ledger()
    records = ledger.records()
    assert [r.id for r in records] == [
        'create-database', 'configure-auth', 'send-notification',
    ]
    assert all(r.status is StepStatus.PENDING for r in records)
    assert not ledger.is_complete()


def test_duplicate_step_ids_rejected():
    with pytest.raises(ValueError, match='unique'):
        StepLedger(DEFINITIONS + (DEFINITIONS[0],))


def test_unknown_step_raises_key_error():
    with pytest.raises(KeyError):
        _ledger().get('nope')


def test_terminal_states_have_no_outgoing_transitions():
    for status in TERMINAL_STATUSES:
        assert ALLOWED_TRANSITIONS[status] == frozenset()


def test_happy_path_with_verification(clock):
    ledger = _ledger(clock)
    ledger.start('create-database')
    clock.now += 1.5
    ledger.begin_verification('create-database')
    ledger.record_verification('create-database', verified=True, detail='healthy')
    clock.now += 0.5
    record = ledger.complete('create-database', message='ready', output='db')

    assert record.status is StepStatus.SUCCESS
    assert record.verified is True
    assert record.verification_detail == 'healthy'
    assert record.duration_ms == 2000
    assert record.output == 'db'
    assert [(e.from_status, e.to_status) for e in ledger.events] == [
        (StepStatus.PENDING, StepStatus.RUNNING),
        (StepStatus.RUNNING, StepStatus.VERIFYING),
        (StepStatus.VERIFYING, StepStatus.SUCCESS),
    ]


def test_events_record_elapsed_time_from_ledger_creation(clock):
    ledger = _ledger(clock)
    clock.now += 0.25
    ledger.start('configure-auth')
    assert ledger.events[0].elapsed_ms == 250


def test_verification_flag_requires_verifying_state():
    ledger = _ledger()
    with pytest.raises(InvalidStepTransition):
        ledger.record_verification('create-database', verified=True, detail='x')
    ledger.start('create-database')
    with pytest.raises(InvalidStepTransition):
        ledger.record_verification('create-database', verified=True, detail='x')
    assert ledger.get('create-database').verified is None


@pytest.mark.parametrize(
    'move',
    [
        lambda ledger: ledger.complete('configure-auth'),
        lambda ledger: ledger.fail('configure-auth', error='boom'),
        lambda ledger: ledger.warn('configure-auth', message='meh'),
        lambda ledger: ledger.begin_verification('configure-auth'),
    ],
)
def test_pending_step_cannot_jump_to_terminal(move):
    ledger = _ledger()
    with pytest.raises(InvalidStepTransition) as exc_info:
        move(ledger)
    assert exc_info.value.step_id == 'configure-auth'
    assert exc_info.value.from_status is StepStatus.PENDING


def test_terminal_step_never_moves_again():
    ledger = _ledger()
    ledger.start('configure-auth')
    ledger.fail('configure-auth', error='boom')
    with pytest.raises(InvalidStepTransition):
        ledger.start('configure-auth')
    with pytest.raises(InvalidStepTransition):
        ledger.complete('configure-auth')
    with pytest.raises(InvalidStepTransition):
        ledger.skip('configure-auth', message='late')


def test_verifying_step_cannot_be_skipped():
    ledger = _ledger()
    ledger.start('create-database')
    ledger.begin_verification('create-database')
    with pytest.raises(InvalidStepTransition):
        ledger.skip('create-database', message='no')


def test_fail_uses_error_as_default_message():
    ledger = _ledger()
    ledger.start('create-database')
    record = ledger.fail('create-database', error='quota exceeded')
    assert record.status is StepStatus.ERROR
    assert record.error == 'quota exceeded'
    assert record.message == 'quota exceeded'


def test_skip_remaining_only_touches_pending_steps():
    ledger = _ledger()
    ledger.start('create-database')
    ledger.fail('create-database', error='boom')
    skipped = ledger.skip_remaining(message='not attempted')

    assert [r.id for r in skipped] == ['configure-auth', 'send-notification']
    assert ledger.get('create-database').status is StepStatus.ERROR
    assert all(
        r.message == 'not attempted'
        for r in ledger.with_status(StepStatus.SKIPPED)
    )
    assert ledger.is_complete()


def test_skipped_step_has_zero_duration():
    ledger = _ledger()
    record = ledger.skip('send-notification', message='not configured')
    assert record.duration_ms == 0
    assert record.verified is None
