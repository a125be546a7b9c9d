"""Cross-chain transfer state machine.

A transfer moves through these steps:

.. code-block:: text

    idle -> checking-balance -> approving -> burning -> waiting-attestation -> minting -> completed
                  \\               \\            \\              \\                  \\
                   +---------------+------------+--------------+-------------------+--> error

:py:class:`TransferState` is an immutable snapshot. The only way to get the next
snapshot is :py:func:`reduce_transfer_state`, a pure function of the current
snapshot and one event. Events not allowed in the current step raise
:py:class:`InvalidTransition`.
"""

import datetime
import enum
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Optional, TypeAlias

from eth_cctp.attestation import AttestationRecord
from eth_cctp.transfer import TransferRequest


class InvalidTransition(Exception):
    """Event is not allowed in the current step."""


class TransferStep(enum.Enum):
    """Where a transfer is."""

    idle = "idle"
    checking_balance = "checking-balance"
    approving = "approving"
    burning = "burning"
    waiting_attestation = "waiting-attestation"
    minting = "minting"
    completed = "completed"
    error = "error"

    def is_terminal(self) -> bool:
        return self in (TransferStep.completed, TransferStep.error)

    def is_in_flight(self) -> bool:
        """A transfer is running and owns the orchestrator."""
        return self not in (TransferStep.idle, TransferStep.completed, TransferStep.error)


class LogSeverity(enum.Enum):
    info = "info"
    success = "success"
    warning = "warning"
    error = "error"


class TransferErrorKind(enum.Enum):
    """Why a transfer ended in ``error``."""

    insufficient_funds = "insufficient_funds"
    approval_failure = "approval_failure"
    burn_failure = "burn_failure"

    #: Attestation did not complete within the poll budget
    attestation_timeout = "attestation_timeout"

    #: Attestation service failed with something else than 404 or 429
    attestation_transport_error = "attestation_transport_error"

    mint_failure = "mint_failure"
    cancelled = "cancelled"
    unexpected = "unexpected"


@dataclass(slots=True, frozen=True)
class TransferLogEntry:
    """One line in the transfer audit trail."""

    #: Naive UTC
    timestamp: datetime.datetime

    message: str

    severity: LogSeverity = LogSeverity.info

    def __str__(self):
        return f"{self.timestamp:%H:%M:%S} [{self.severity.value}] {self.message}"


@dataclass(slots=True, frozen=True)
class TransferState:
    """Snapshot of one transfer.

    Only ever replaced by :py:func:`reduce_transfer_state`, never changed in place.
    """

    step: TransferStep = TransferStep.idle

    #: Append-only audit trail
    logs: tuple[TransferLogEntry, ...] = field(default_factory=tuple)

    #: Human-readable failure cause when ``step`` is ``error``
    error: Optional[str] = None

    error_kind: Optional[TransferErrorKind] = None

    #: The step that was running when the transfer failed
    failed_step: Optional[TransferStep] = None

    request: Optional[TransferRequest] = None

    #: Source chain balance read at the start of the transfer
    balance: Optional[Decimal] = None

    #: ``None`` if the existing allowance was sufficient
    approval_tx_id: Optional[str] = None

    burn_tx_id: Optional[str] = None

    attestation: Optional[AttestationRecord] = None

    mint_tx_id: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.step == TransferStep.completed and self.burn_tx_id is not None and self.mint_tx_id is not None

    @property
    def is_failed(self) -> bool:
        return self.step == TransferStep.error


@dataclass(slots=True, frozen=True)
class TransferStarted:
    request: TransferRequest


@dataclass(slots=True, frozen=True)
class BalanceConfirmed:
    balance: Decimal


@dataclass(slots=True, frozen=True)
class AllowanceConfirmed:
    #: ``None`` when no approval was needed
    approval_tx_id: Optional[str] = None


@dataclass(slots=True, frozen=True)
class BurnConfirmed:
    burn_tx_id: str


@dataclass(slots=True, frozen=True)
class AttestationReceived:
    attestation: AttestationRecord


@dataclass(slots=True, frozen=True)
class MintConfirmed:
    mint_tx_id: str


@dataclass(slots=True, frozen=True)
class TransferFailed:
    kind: TransferErrorKind
    message: str
    timestamp: datetime.datetime


@dataclass(slots=True, frozen=True)
class LogAppended:
    entry: TransferLogEntry


@dataclass(slots=True, frozen=True)
class TransferReset:
    pass


TransferEvent: TypeAlias = TransferStarted | BalanceConfirmed | AllowanceConfirmed | BurnConfirmed | AttestationReceived | MintConfirmed | TransferFailed | LogAppended | TransferReset


#: Forward transitions: event type -> (required step, next step)
TRANSITIONS: dict[type, tuple[TransferStep, TransferStep]] = {
    TransferStarted: (TransferStep.idle, TransferStep.checking_balance),
    BalanceConfirmed: (TransferStep.checking_balance, TransferStep.approving),
    AllowanceConfirmed: (TransferStep.approving, TransferStep.burning),
    BurnConfirmed: (TransferStep.burning, TransferStep.waiting_attestation),
    AttestationReceived: (TransferStep.waiting_attestation, TransferStep.minting),
    MintConfirmed: (TransferStep.minting, TransferStep.completed),
}


def _check_forward(state: TransferState, event: TransferEvent) -> TransferStep:
    required, next_step = TRANSITIONS[type(event)]
    if state.step != required:
        raise InvalidTransition(f"{type(event).__name__} requires step {required.value}, transfer is at {state.step.value}")
    return next_step


def reduce_transfer_state(state: TransferState, event: TransferEvent) -> TransferState:
    """Compute the next transfer snapshot.

    Pure function, no I/O and no clock.

    :param state:
        Current snapshot

    :param event:
        What happened

    :return:
        New snapshot. ``state`` itself is not modified.

    :raise InvalidTransition:
        ``event`` is not allowed in ``state.step``
    """
    match event:
        case LogAppended(entry=entry):
            return replace(state, logs=state.logs + (entry,))

        case TransferReset():
            if state.step.is_in_flight():
                raise InvalidTransition(f"Cannot reset a transfer at step {state.step.value}")
            return TransferState()

        case TransferFailed(kind=kind, message=message, timestamp=timestamp):
            if not state.step.is_in_flight():
                raise InvalidTransition(f"Cannot fail a transfer at step {state.step.value}")
            return replace(
                state,
                step=TransferStep.error,
                error=message,
                error_kind=kind,
                failed_step=state.step,
                logs=state.logs + (TransferLogEntry(timestamp, message, LogSeverity.error),),
            )

        case TransferStarted(request=request):
            _check_forward(state, event)
            # Start from a clean slate but keep the log lines written while idle
            return TransferState(step=TransferStep.checking_balance, logs=state.logs, request=request)

        case BalanceConfirmed(balance=balance):
            return replace(state, step=_check_forward(state, event), balance=balance)

        case AllowanceConfirmed(approval_tx_id=approval_tx_id):
            return replace(state, step=_check_forward(state, event), approval_tx_id=approval_tx_id)

        case BurnConfirmed(burn_tx_id=burn_tx_id):
            return replace(state, step=_check_forward(state, event), burn_tx_id=burn_tx_id)

        case AttestationReceived(attestation=attestation):
            return replace(state, step=_check_forward(state, event), attestation=attestation)

        case MintConfirmed(mint_tx_id=mint_tx_id):
            return replace(state, step=_check_forward(state, event), mint_tx_id=mint_tx_id)

        case _:
            raise InvalidTransition(f"Unknown transfer event: {event!r}")
