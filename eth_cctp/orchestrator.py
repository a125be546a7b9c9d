"""Cross-chain USDC transfer orchestration.

:py:class:`TransferOrchestrator` runs one CCTP V2 transfer at a time:

1. Read the sender's USDC balance on the source chain
2. Approve the burn bridge, unless the allowance already covers the amount
3. ``depositForBurn()`` on the source chain
4. Poll Circle's Iris API for the attestation
5. ``receiveMessage()`` on the destination chain

Every step change goes through :py:func:`eth_cctp.state.reduce_transfer_state`
and is published to subscribers. Failures end the transfer in the ``error`` step
with a :py:class:`eth_cctp.state.TransferErrorKind`. Nothing is retried:
a resubmitted approval or burn could move funds twice, so the caller decides.

Example::

    orchestrator = TransferOrchestrator(
        registry=DEFAULT_CHAIN_REGISTRY,
        ledgers={84532: base_ledger, 421614: arbitrum_ledger},
        attestation_client=AttestationClient(IRIS_API_SANDBOX_URL),
        sender=signer.address,
    )
    unsubscribe = orchestrator.subscribe(lambda state: print(state.step.value))
    state = await orchestrator.execute_transfer(
        TransferRequest(84532, 421614, "10.000000", signer.address, TransferSpeed.fast)
    )
    assert state.is_complete
"""

import asyncio
import logging
from collections import deque
from decimal import Decimal
from typing import Awaitable, Callable

from eth_typing import HexAddress

from eth_cctp.attestation import AttestationClient, AttestationOutcome, AttestationPolicy, AttestationRecord
from eth_cctp.ledger import LedgerClient, LedgerError
from eth_cctp.registry import ChainDescriptor, ChainRegistry
from eth_cctp.state import (
    AllowanceConfirmed,
    AttestationReceived,
    BalanceConfirmed,
    BurnConfirmed,
    LogAppended,
    LogSeverity,
    MintConfirmed,
    TransferErrorKind,
    TransferEvent,
    TransferFailed,
    TransferLogEntry,
    TransferReset,
    TransferStarted,
    TransferState,
    TransferStep,
    reduce_transfer_state,
)
from eth_cctp.transfer import TransferRequest
from eth_cctp.utils import native_datetime_utc_now

logger = logging.getLogger(__name__)

#: Python log level for each transfer log severity
LOG_LEVELS = {
    LogSeverity.info: logging.INFO,
    LogSeverity.success: logging.INFO,
    LogSeverity.warning: logging.WARNING,
    LogSeverity.error: logging.ERROR,
}

#: Receives every new state snapshot
StateCallback = Callable[[TransferState], None]


class TransferInProgress(Exception):
    """Orchestrator is already running a transfer."""


class StepFailed(Exception):
    """A transfer step failed in a way we know how to report."""

    def __init__(self, kind: TransferErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class TransferOrchestrator:
    """Drive one CCTP transfer from balance check to mint.

    - One in-flight transfer per instance. Create several instances for
      concurrent transfers. They may share ledger and attestation clients.

    - Blocking waits are awaited, so other coroutines keep running
      while we wait for confirmations and attestations.
    """

    def __init__(
        self,
        registry: ChainRegistry,
        ledgers: dict[int, LedgerClient],
        attestation_client: AttestationClient,
        sender: HexAddress | str,
        policy: AttestationPolicy = AttestationPolicy(),
        confirmations: int = 1,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        """Create an orchestrator.

        :param registry:
            Chains we can transfer between

        :param ledgers:
            Chain id -> ledger client. Needs at least the source and destination chain of each transfer.

        :param attestation_client:
            Iris API client

        :param sender:
            Address whose USDC is burned. Must be the address the ledgers' signer signs with.

        :param policy:
            Attestation poll budget

        :param confirmations:
            Confirmations to wait for each transaction

        :param sleep:
            Coroutine function used to wait between attestation polls
        """
        assert confirmations >= 1, f"Need at least one confirmation, got {confirmations}"
        self.registry = registry
        self.ledgers = ledgers
        self.attestation_client = attestation_client
        self.sender = sender
        self.policy = policy
        self.confirmations = confirmations
        self.sleep = sleep

        self._state = TransferState()
        self._subscribers: list[StateCallback] = []
        self._undelivered: deque[TransferState] = deque()
        self._notifying = False
        self._cancel_requested = False

        #: A transaction was broadcast and cancelling now would leave it dangling
        self._tx_outstanding = False

    def __repr__(self):
        return f"<TransferOrchestrator step:{self._state.step.value}>"

    @property
    def state(self) -> TransferState:
        """Latest snapshot."""
        return self._state

    @property
    def can_close(self) -> bool:
        """Whether the transfer can be abandoned without leaving a transaction half way."""
        return not self._tx_outstanding

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """Get notified of every new state snapshot.

        :return:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _dispatch(self, event: TransferEvent) -> TransferState:
        """Apply an event and notify subscribers.

        Subscribers may call back into the orchestrator, e.g. :py:meth:`cancel`.
        Snapshots produced by such nested calls are queued and delivered
        after the current notification round, in order.
        """
        self._state = reduce_transfer_state(self._state, event)
        self._undelivered.append(self._state)
        if self._notifying:
            return self._state

        self._notifying = True
        try:
            while self._undelivered:
                snapshot = self._undelivered.popleft()
                for callback in list(self._subscribers):
                    try:
                        callback(snapshot)
                    except Exception:
                        # A broken subscriber must not abort a transfer with funds in flight
                        logger.exception("State subscriber %s failed", callback)
        finally:
            self._notifying = False
        return self._state

    def _log(self, message: str, severity: LogSeverity = LogSeverity.info):
        logger.log(LOG_LEVELS[severity], "%s", message)
        self._dispatch(LogAppended(TransferLogEntry(native_datetime_utc_now(), message, severity)))

    def _fail(self, kind: TransferErrorKind, message: str):
        logger.error("Transfer failed at %s (%s): %s", self._state.step.value, kind.value, message)
        self._dispatch(TransferFailed(kind, message, native_datetime_utc_now()))

    def reset(self):
        """Return to a pristine ``idle`` state.

        :raise TransferInProgress:
            A transfer is running
        """
        if self._state.step.is_in_flight():
            raise TransferInProgress(f"Cannot reset while transfer is at {self._state.step.value}")
        self._cancel_requested = False
        self._tx_outstanding = False
        self._dispatch(TransferReset())

    def cancel(self) -> bool:
        """Ask the running transfer to stop at the next step boundary.

        Only possible before any transaction is waiting for confirmation
        and before the burn is submitted.

        :return:
            ``True`` if the transfer will stop
        """
        if not self._state.step.is_in_flight():
            return False

        if self._tx_outstanding or self._state.step not in (TransferStep.checking_balance, TransferStep.approving):
            self._log("Cannot cancel, a transaction is already in flight", LogSeverity.warning)
            return False

        self._cancel_requested = True
        self._log("Cancellation requested", LogSeverity.warning)
        return True

    def _check_cancelled(self):
        if self._cancel_requested:
            raise StepFailed(TransferErrorKind.cancelled, "Transfer cancelled by user")

    def get_ledger(self, chain_id: int) -> LedgerClient:
        try:
            return self.ledgers[chain_id]
        except KeyError:
            raise ValueError(f"No ledger client configured for chain {chain_id}") from None

    async def check_balance(self, chain_id: int, address: HexAddress | str) -> Decimal:
        """Read USDC balance of any address on any configured chain.

        :return:
            Balance in human units, zero if the read fails
        """
        chain = self.registry.get(chain_id)
        return await self.get_ledger(chain_id).read_balance(chain.token_address, address)

    async def execute_transfer(self, request: TransferRequest) -> TransferState:
        """Run a transfer to the end.

        Starting from ``completed`` or ``error`` resets first.

        :return:
            Final snapshot, ``completed`` or ``error``

        :raise TransferInProgress:
            Another transfer is running on this instance

        :raise UnsupportedChain:
            Source or destination chain is not in the registry

        :raise ValueError:
            Source and destination are on different networks, or a chain has no ledger client

        :raise asyncio.CancelledError:
            Hosting task was cancelled. The state is moved to ``error`` first.
        """
        if self._state.step.is_in_flight():
            raise TransferInProgress(f"Transfer already in progress at {self._state.step.value}")

        source = self.registry.get(request.source_chain)
        destination = self.registry.get(request.destination_chain)
        if source.testnet != destination.testnet:
            raise ValueError(f"Cannot transfer between a testnet and a mainnet: {source.name} -> {destination.name}")
        source_ledger = self.get_ledger(source.chain_id)
        destination_ledger = self.get_ledger(destination.chain_id)

        if self._state.step.is_terminal():
            self.reset()

        self._cancel_requested = False
        self._tx_outstanding = False
        self._dispatch(TransferStarted(request))
        self._log(f"Starting transfer of {request.decimal_amount} USDC from {source.name} to {destination.name}")

        try:
            await self._check_balance_step(request, source, source_ledger)
            self._check_cancelled()
            await self._approve_step(request, source, source_ledger)
            self._check_cancelled()
            await self._burn_step(request, source, destination, source_ledger)
            attestation = await self._wait_attestation_step(source)
            await self._mint_step(attestation, destination, destination_ledger)
        except StepFailed as e:
            self._fail(e.kind, e.message)
        except asyncio.CancelledError:
            self._fail(TransferErrorKind.cancelled, "Transfer task was cancelled")
            raise
        except Exception as e:
            logger.exception("Unexpected error during transfer at step %s", self._state.step.value)
            self._fail(TransferErrorKind.unexpected, f"Unexpected error: {e.__class__.__name__}: {e}")
        else:
            self._log("Cross-chain transfer completed successfully!", LogSeverity.success)
            self._log(f"Amount: {request.decimal_amount} USDC")
            self._log(f"From: {source.name}")
            self._log(f"To: {destination.name}")
        finally:
            self._tx_outstanding = False

        return self._state

    async def _check_balance_step(self, request: TransferRequest, source: ChainDescriptor, ledger: LedgerClient):
        self._log(f"Checking USDC balance on {source.name}...")
        balance = await ledger.read_balance(source.token_address, self.sender)
        if balance < request.decimal_amount:
            raise StepFailed(
                TransferErrorKind.insufficient_funds,
                f"Insufficient balance on {source.name}: {balance} USDC available, {request.decimal_amount} USDC needed",
            )
        self._log(f"Balance check passed: {balance} USDC available", LogSeverity.success)
        self._dispatch(BalanceConfirmed(balance))

    async def _confirm(self, ledger: LedgerClient, tx_id: str):
        self._log(f"Waiting for transaction confirmation: {tx_id}")
        await ledger.await_confirmation(tx_id, confirmations=self.confirmations)
        self._log(f"Transaction confirmed: {tx_id}", LogSeverity.success)

    async def _approve_step(self, request: TransferRequest, source: ChainDescriptor, ledger: LedgerClient):
        amount = request.raw_amount
        allowance = await ledger.read_allowance(source.token_address, self.sender, source.burn_bridge_address)
        if allowance >= amount:
            self._log("Sufficient allowance already exists")
            self._dispatch(AllowanceConfirmed(None))
            return

        # cancel() may have been called while we read the allowance
        self._check_cancelled()
        self._log("Approving USDC for cross-chain transfer...")
        try:
            self._tx_outstanding = True
            tx_id = await ledger.submit_approval(source.token_address, source.burn_bridge_address, amount)
            self._log(f"Approval transaction sent: {tx_id}", LogSeverity.success)
            await self._confirm(ledger, tx_id)
        except LedgerError as e:
            raise StepFailed(TransferErrorKind.approval_failure, f"USDC approval failed: {e}") from e
        finally:
            self._tx_outstanding = False

        self._log("USDC approval confirmed", LogSeverity.success)
        self._dispatch(AllowanceConfirmed(tx_id))

    async def _burn_step(self, request: TransferRequest, source: ChainDescriptor, destination: ChainDescriptor, ledger: LedgerClient):
        self._log(f"Burning USDC on {source.name}...")
        # From here on the funds are committed, cancel() refuses
        self._tx_outstanding = True
        try:
            tx_id = await ledger.submit_burn(
                amount=request.raw_amount,
                destination_domain=destination.protocol_domain,
                mint_recipient=request.mint_recipient,
                burn_token=source.token_address,
                max_fee=request.max_fee,
                min_finality_threshold=request.finality_threshold,
            )
            self._log(f"Burn transaction sent: {tx_id}", LogSeverity.success)
            await self._confirm(ledger, tx_id)
        except LedgerError as e:
            raise StepFailed(TransferErrorKind.burn_failure, f"USDC burn failed: {e}") from e

        self._log(f"USDC burn confirmed on {source.name}: {source.get_explorer_tx_link(tx_id)}", LogSeverity.success)
        self._dispatch(BurnConfirmed(tx_id))

    async def _wait_attestation_step(self, source: ChainDescriptor) -> AttestationRecord:
        burn_tx_id = self._state.burn_tx_id
        max_attempts = self.policy.max_attempts
        self._log("Retrieving attestation from Circle...")

        for attempt in range(1, max_attempts + 1):
            poll = await self.attestation_client.poll_attestation(burn_tx_id, source.protocol_domain)

            match poll.outcome:
                case AttestationOutcome.complete:
                    self._log("Attestation retrieved successfully!", LogSeverity.success)
                    self._dispatch(AttestationReceived(poll.record))
                    return poll.record

                case AttestationOutcome.fatal:
                    raise StepFailed(
                        TransferErrorKind.attestation_transport_error,
                        f"Error fetching attestation: {poll.error}",
                    )

                case AttestationOutcome.rate_limited:
                    self._log(f"Rate limited, waiting longer... ({attempt}/{max_attempts})", LogSeverity.warning)
                    delay = self.policy.rate_limit_interval

                case _:
                    self._log(self._describe_pending(poll.status, attempt, max_attempts))
                    delay = self.policy.poll_interval

            # No point waiting after the last attempt
            if attempt < max_attempts:
                await self.sleep(delay)

        raise StepFailed(
            TransferErrorKind.attestation_timeout,
            f"Attestation timed out: not complete after {max_attempts} attempts (~{self.policy.max_wait:.0f} seconds)",
        )

    @staticmethod
    def _describe_pending(status: str | None, attempt: int, max_attempts: int) -> str:
        match status:
            case "not_found":
                return f"Transaction not found yet, waiting... ({attempt}/{max_attempts})"
            case "pending_confirmations":
                return f"Attestation pending block confirmations... ({attempt}/{max_attempts})"
            case None:
                return f"Waiting for transaction to be processed... ({attempt}/{max_attempts})"
            case _:
                return f"Message found with status {status}, waiting for attestation... ({attempt}/{max_attempts})"

    async def _mint_step(self, attestation: AttestationRecord, destination: ChainDescriptor, ledger: LedgerClient):
        self._log(f"Minting USDC on {destination.name}...")
        try:
            tx_id = await ledger.submit_mint(attestation.message, attestation.attestation)
            self._log(f"Mint transaction sent: {tx_id}", LogSeverity.success)
            await self._confirm(ledger, tx_id)
        except LedgerError as e:
            raise StepFailed(TransferErrorKind.mint_failure, f"USDC mint failed: {e}") from e

        self._log(f"USDC minted successfully on {destination.name}: {destination.get_explorer_tx_link(tx_id)}", LogSeverity.success)
        self._dispatch(MintConfirmed(tx_id))
