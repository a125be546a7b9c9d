"""Transfer state reducer."""

import datetime
from decimal import Decimal

import pytest

from eth_cctp.attestation import AttestationRecord
from eth_cctp.state import (
    AllowanceConfirmed,
    AttestationReceived,
    BalanceConfirmed,
    BurnConfirmed,
    InvalidTransition,
    LogAppended,
    LogSeverity,
    MintConfirmed,
    TransferErrorKind,
    TransferFailed,
    TransferLogEntry,
    TransferReset,
    TransferStarted,
    TransferState,
    TransferStep,
    reduce_transfer_state,
)
from eth_cctp.transfer import TransferRequest

NOW = datetime.datetime(2025, 1, 1, 12, 0)


@pytest.fixture()
def transfer_request() -> TransferRequest:
    return TransferRequest(84532, 421614, "10", "0xbD35322AA7c7842bfE36a8CF49d0F063bf83a100")


def _run(state: TransferState, *events) -> TransferState:
    for event in events:
        state = reduce_transfer_state(state, event)
    return state


def test_happy_path(transfer_request):
    record = AttestationRecord(b"\x01", b"\x02", "complete")
    state = _run(
        TransferState(),
        TransferStarted(transfer_request),
        BalanceConfirmed(Decimal(50)),
        AllowanceConfirmed("0xaa"),
        BurnConfirmed("0xbb"),
        AttestationReceived(record),
        MintConfirmed("0xcc"),
    )
    assert state.step == TransferStep.completed
    assert state.is_complete
    assert state.request == transfer_request
    assert state.balance == Decimal(50)
    assert state.approval_tx_id == "0xaa"
    assert state.burn_tx_id == "0xbb"
    assert state.attestation == record
    assert state.mint_tx_id == "0xcc"


def test_reducer_does_not_mutate(transfer_request):
    initial = TransferState()
    started = reduce_transfer_state(initial, TransferStarted(transfer_request))
    assert initial.step == TransferStep.idle
    assert started.step == TransferStep.checking_balance
    assert started is not initial


def test_out_of_order_event_rejected(transfer_request):
    state = _run(TransferState(), TransferStarted(transfer_request))
    with pytest.raises(InvalidTransition):
        reduce_transfer_state(state, BurnConfirmed("0xbb"))


def test_cannot_start_twice(transfer_request):
    state = _run(TransferState(), TransferStarted(transfer_request))
    with pytest.raises(InvalidTransition):
        reduce_transfer_state(state, TransferStarted(transfer_request))


def test_failure_records_step(transfer_request):
    state = _run(
        TransferState(),
        TransferStarted(transfer_request),
        BalanceConfirmed(Decimal(50)),
        TransferFailed(TransferErrorKind.approval_failure, "USDC approval failed", NOW),
    )
    assert state.step == TransferStep.error
    assert state.failed_step == TransferStep.approving
    assert state.error_kind == TransferErrorKind.approval_failure
    assert state.error == "USDC approval failed"
    assert state.logs[-1] == TransferLogEntry(NOW, "USDC approval failed", LogSeverity.error)
    assert not state.is_complete


def test_cannot_fail_idle_or_terminal(transfer_request):
    failed = TransferFailed(TransferErrorKind.unexpected, "boom", NOW)
    with pytest.raises(InvalidTransition):
        reduce_transfer_state(TransferState(), failed)

    state = _run(TransferState(), TransferStarted(transfer_request), failed)
    with pytest.raises(InvalidTransition):
        reduce_transfer_state(state, failed)


def test_completed_requires_both_tx_ids():
    state = TransferState(step=TransferStep.completed, burn_tx_id="0xbb")
    assert not state.is_complete


def test_logs_append_in_order(transfer_request):
    first = TransferLogEntry(NOW, "first")
    second = TransferLogEntry(NOW, "second", LogSeverity.success)
    state = _run(TransferState(), LogAppended(first), TransferStarted(transfer_request), LogAppended(second))
    assert state.logs == (first, second)


def test_reset(transfer_request):
    state = _run(
        TransferState(),
        TransferStarted(transfer_request),
        LogAppended(TransferLogEntry(NOW, "hello")),
        TransferFailed(TransferErrorKind.insufficient_funds, "no money", NOW),
        TransferReset(),
    )
    assert state == TransferState()


def test_reset_in_flight_rejected(transfer_request):
    state = _run(TransferState(), TransferStarted(transfer_request))
    with pytest.raises(InvalidTransition):
        reduce_transfer_state(state, TransferReset())


def test_step_values():
    assert TransferStep.checking_balance.value == "checking-balance"
    assert TransferStep.waiting_attestation.value == "waiting-attestation"
    assert TransferStep.burning.is_in_flight()
    assert not TransferStep.error.is_in_flight()
    assert TransferStep.completed.is_terminal()
