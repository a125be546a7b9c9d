"""Shared fixtures for CCTP transfer tests.

The orchestrator is tested against in-memory fakes of the ledger and
attestation clients, so no chain or HTTP access is needed.
"""

import asyncio
from decimal import Decimal

import pytest
from eth_typing import HexAddress, HexStr

from eth_cctp.attestation import AttestationPoll, AttestationPolicy, AttestationRecord
from eth_cctp.orchestrator import TransferOrchestrator
from eth_cctp.registry import DEFAULT_CHAIN_REGISTRY, ChainDescriptor
from eth_cctp.transfer import TransferRequest, TransferSpeed

#: Base Sepolia
SOURCE_CHAIN_ID = 84532

#: Arbitrum Sepolia
DESTINATION_CHAIN_ID = 421614

SENDER = HexAddress(HexStr("0xa7208b5c92d4862b3f11c0047b57a00Dc304c0f8"))

RECEIVER = HexAddress(HexStr("0xbD35322AA7c7842bfE36a8CF49d0F063bf83a100"))

ATTESTED_MESSAGE = bytes.fromhex("00000001" + "ab" * 60)

ATTESTATION_SIGNATURE = bytes.fromhex("cd" * 65)


class FakeLedgerClient:
    """In-memory stand-in for :py:class:`eth_cctp.ledger.LedgerClient`.

    Records every call in ``calls`` as ``(method name, args)``.
    """

    def __init__(self, chain: ChainDescriptor, balance: Decimal = Decimal(0), allowance: int = 0):
        self.chain = chain
        self.balance = balance
        self.allowance = allowance
        self.calls: list[tuple[str, tuple]] = []

        #: Method name -> exception to raise
        self.failures: dict[str, Exception] = {}

        #: Method name -> (entered, release) events for pausing a call
        self.gates: dict[str, tuple[asyncio.Event, asyncio.Event]] = {}

        self._tx_counter = 0

    @property
    def chain_id(self) -> int:
        return self.chain.chain_id

    def pause(self, method: str) -> tuple[asyncio.Event, asyncio.Event]:
        """Make ``method`` block until the returned release event is set."""
        gate = (asyncio.Event(), asyncio.Event())
        self.gates[method] = gate
        return gate

    def fail(self, method: str, exception: Exception):
        self.failures[method] = exception

    def get_calls(self, method: str) -> list[tuple]:
        return [args for name, args in self.calls if name == method]

    async def _enter(self, method: str, *args):
        self.calls.append((method, args))
        if method in self.gates:
            entered, release = self.gates[method]
            entered.set()
            await release.wait()
        if method in self.failures:
            raise self.failures[method]

    def _next_tx_id(self) -> str:
        self._tx_counter += 1
        return f"0x{self.chain_id:08x}{self._tx_counter:056x}"

    async def read_balance(self, token_address, account) -> Decimal:
        await self._enter("read_balance", token_address, account)
        return self.balance

    async def read_allowance(self, token_address, owner, spender) -> int:
        await self._enter("read_allowance", token_address, owner, spender)
        return self.allowance

    async def submit_approval(self, token_address, spender, amount) -> str:
        await self._enter("submit_approval", token_address, spender, amount)
        return self._next_tx_id()

    async def submit_burn(self, **kwargs) -> str:
        await self._enter("submit_burn", kwargs)
        return self._next_tx_id()

    async def submit_mint(self, message: bytes, attestation: bytes) -> str:
        await self._enter("submit_mint", message, attestation)
        return self._next_tx_id()

    async def await_confirmation(self, tx_hash, confirmations: int = 1) -> dict:
        await self._enter("await_confirmation", tx_hash, confirmations)
        return {"status": 1, "transactionHash": tx_hash}


class FakeAttestationClient:
    """Replays scripted poll results.

    Keeps returning pending once the script runs out.
    """

    def __init__(self, script: list[AttestationPoll] | None = None):
        self.script = list(script or [])
        self.probes: list[tuple[str, int]] = []

    async def poll_attestation(self, transaction_hash: str, source_domain: int) -> AttestationPoll:
        self.probes.append((transaction_hash, source_domain))
        if self.script:
            return self.script.pop(0)
        return AttestationPoll.pending("pending_confirmations")

    async def close(self):
        pass


class RecordingSleep:
    """Replaces :py:func:`asyncio.sleep` and remembers the delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)
        # Still yield to the event loop like a real sleep
        await asyncio.sleep(0)


def make_complete_poll() -> AttestationPoll:
    return AttestationPoll.complete(AttestationRecord(ATTESTED_MESSAGE, ATTESTATION_SIGNATURE, "complete"))


@pytest.fixture()
def source_ledger() -> FakeLedgerClient:
    """Base Sepolia with 50 USDC and no allowance."""
    return FakeLedgerClient(DEFAULT_CHAIN_REGISTRY.get(SOURCE_CHAIN_ID), balance=Decimal("50.000000"), allowance=0)


@pytest.fixture()
def destination_ledger() -> FakeLedgerClient:
    return FakeLedgerClient(DEFAULT_CHAIN_REGISTRY.get(DESTINATION_CHAIN_ID))


@pytest.fixture()
def attestation_client() -> FakeAttestationClient:
    """Attestation completes on the first probe."""
    return FakeAttestationClient([make_complete_poll()])


@pytest.fixture()
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def orchestrator(source_ledger, destination_ledger, attestation_client, sleep) -> TransferOrchestrator:
    return TransferOrchestrator(
        registry=DEFAULT_CHAIN_REGISTRY,
        ledgers={
            SOURCE_CHAIN_ID: source_ledger,
            DESTINATION_CHAIN_ID: destination_ledger,
        },
        attestation_client=attestation_client,
        sender=SENDER,
        policy=AttestationPolicy(),
        sleep=sleep,
    )


@pytest.fixture()
def request_10_usdc() -> TransferRequest:
    return TransferRequest(
        source_chain=SOURCE_CHAIN_ID,
        destination_chain=DESTINATION_CHAIN_ID,
        amount="10.000000",
        destination_address=RECEIVER,
        speed=TransferSpeed.standard,
    )
