"""Read and write access to a single chain.

:py:class:`LedgerClient` is bound to one chain and holds no per-transfer state:

- Reads (balance, allowance) are idempotent and never raise. A failed read
  counts as zero, which sends the transfer flow to its insufficient funds or
  approval path instead of crashing it.

- Writes (approve, burn, mint) encode call data and pass it to a
  :py:class:`eth_cctp.signer.TransactionSigner`. They are never retried.

- :py:meth:`LedgerClient.await_confirmation` polls the receipt until the
  transaction has enough confirmations, without blocking the event loop.
"""

import asyncio
import datetime
import logging
from decimal import Decimal

import aiohttp
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound, Web3Exception

from eth_cctp.abi import (
    ERC20_ABI_FILE,
    MESSAGE_TRANSMITTER_V2_ABI_FILE,
    TOKEN_MESSENGER_V2_ABI_FILE,
    get_deployed_contract,
)
from eth_cctp.constants import ANY_DESTINATION_CALLER
from eth_cctp.registry import ChainDescriptor
from eth_cctp.signer import TransactionSigner
from eth_cctp.transfer import format_usdc_amount
from eth_cctp.utils import native_datetime_utc_now

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for failed chain writes."""


class BroadcastFailure(LedgerError):
    """Could not broadcast a transaction for some reason."""


class ConfirmationTimedOut(LedgerError):
    """We exceeded the transaction confirmation timeout."""


class Reverted(LedgerError):
    """Transaction reverted on-chain."""


def format_tx_hash(tx_hash: HexBytes | bytes | str) -> str:
    """Transaction hash as a 0x-prefixed hex string."""
    if isinstance(tx_hash, str):
        return tx_hash if tx_hash.startswith("0x") else f"0x{tx_hash}"
    return Web3.to_hex(tx_hash)


class LedgerClient:
    """One chain, one client.

    Example::

        ledger = LedgerClient(web3, DEFAULT_CHAIN_REGISTRY.get(84532), signer)
        balance = await ledger.read_balance(ledger.chain.token_address, signer.address)
        tx_hash = await ledger.submit_approval(ledger.chain.token_address, ledger.chain.burn_bridge_address, 1_000_000)
        await ledger.await_confirmation(tx_hash)
    """

    def __init__(
        self,
        web3: AsyncWeb3,
        chain: ChainDescriptor,
        signer: TransactionSigner,
        confirmation_timeout=datetime.timedelta(minutes=5),
        poll_delay=datetime.timedelta(seconds=1),
    ):
        """Create a ledger client.

        :param web3:
            Async connection to the chain described by ``chain``

        :param chain:
            Contract addresses for this chain

        :param signer:
            Signs and broadcasts our writes

        :param confirmation_timeout:
            How long :py:meth:`await_confirmation` waits for a receipt

        :param poll_delay:
            Receipt poll interval
        """
        assert isinstance(confirmation_timeout, datetime.timedelta)
        assert isinstance(poll_delay, datetime.timedelta)
        self.web3 = web3
        self.chain = chain
        self.signer = signer
        self.confirmation_timeout = confirmation_timeout
        self.poll_delay = poll_delay

    def __repr__(self):
        return f"<LedgerClient {self.chain.name}>"

    @property
    def chain_id(self) -> int:
        return self.chain.chain_id

    async def read_balance(self, token_address: HexAddress | str, account: HexAddress | str) -> Decimal:
        """Read USDC balance of an account.

        :return:
            Balance in human units. Zero if the read fails.
        """
        try:
            token = get_deployed_contract(self.web3, ERC20_ABI_FILE, token_address)
            raw_balance = await token.functions.balanceOf(Web3.to_checksum_address(account)).call()
        except Exception:
            logger.warning(
                "Failed to read balance of %s for %s on %s, assuming zero",
                token_address,
                account,
                self.chain.name,
                exc_info=True,
            )
            return Decimal(0)
        return format_usdc_amount(raw_balance)

    async def read_allowance(self, token_address: HexAddress | str, owner: HexAddress | str, spender: HexAddress | str) -> int:
        """Read ERC-20 allowance.

        :return:
            Allowance in raw units. Zero if the read fails.
        """
        try:
            token = get_deployed_contract(self.web3, ERC20_ABI_FILE, token_address)
            return await token.functions.allowance(
                Web3.to_checksum_address(owner),
                Web3.to_checksum_address(spender),
            ).call()
        except Exception:
            logger.warning(
                "Failed to read allowance of %s for %s -> %s on %s, assuming zero",
                token_address,
                owner,
                spender,
                self.chain.name,
                exc_info=True,
            )
            return 0

    async def _submit(self, to: HexAddress | str, data: str, description: str) -> str:
        try:
            tx_hash = await self.signer.sign_and_broadcast(self.chain_id, to, data)
        except Exception as e:
            raise BroadcastFailure(f"Could not broadcast {description} on {self.chain.name}: {e}") from e
        return format_tx_hash(tx_hash)

    async def submit_approval(self, token_address: HexAddress | str, spender: HexAddress | str, amount: int) -> str:
        """Approve exactly ``amount`` raw units to ``spender``.

        :return:
            Transaction hash
        """
        token = get_deployed_contract(self.web3, ERC20_ABI_FILE, token_address)
        data = token.encode_abi("approve", args=[Web3.to_checksum_address(spender), amount])
        logger.info("Approving %d raw USDC to %s on %s", amount, spender, self.chain.name)
        return await self._submit(token.address, data, "approve()")

    async def submit_burn(
        self,
        amount: int,
        destination_domain: int,
        mint_recipient: bytes,
        burn_token: HexAddress | str,
        max_fee: int,
        min_finality_threshold: int,
        destination_caller: bytes = ANY_DESTINATION_CALLER,
    ) -> str:
        """Call ``depositForBurn()`` on the burn bridge of this chain.

        USDC must be approved to the burn bridge before calling this.

        :param amount:
            Raw USDC units

        :param destination_domain:
            CCTP domain of the destination chain

        :param mint_recipient:
            Receiver as bytes32, see :py:func:`eth_cctp.transfer.encode_mint_recipient`

        :param burn_token:
            USDC on this chain

        :param max_fee:
            Relayer fee ceiling in raw units

        :param min_finality_threshold:
            1000 for fast, 2000 for standard

        :param destination_caller:
            Who may call ``receiveMessage()``. Zero bytes means anyone.

        :return:
            Transaction hash
        """
        assert len(mint_recipient) == 32, f"mintRecipient must be bytes32, got {len(mint_recipient)} bytes"
        assert len(destination_caller) == 32, f"destinationCaller must be bytes32, got {len(destination_caller)} bytes"

        token_messenger = get_deployed_contract(self.web3, TOKEN_MESSENGER_V2_ABI_FILE, self.chain.burn_bridge_address)
        data = token_messenger.encode_abi(
            "depositForBurn",
            args=[
                amount,
                destination_domain,
                mint_recipient,
                Web3.to_checksum_address(burn_token),
                destination_caller,
                max_fee,
                min_finality_threshold,
            ],
        )
        logger.info(
            "Preparing CCTP depositForBurn on %s: amount=%d, destination_domain=%d, max_fee=%d, finality=%d",
            self.chain.name,
            amount,
            destination_domain,
            max_fee,
            min_finality_threshold,
        )
        return await self._submit(token_messenger.address, data, "depositForBurn()")

    async def submit_mint(self, message: bytes, attestation: bytes) -> str:
        """Call ``receiveMessage()`` on the mint bridge of this chain.

        :param message:
            CCTP message bytes, exactly as returned by the attestation service

        :param attestation:
            Signed attestation bytes, exactly as returned by the attestation service

        :return:
            Transaction hash
        """
        message_transmitter = get_deployed_contract(self.web3, MESSAGE_TRANSMITTER_V2_ABI_FILE, self.chain.mint_bridge_address)
        data = message_transmitter.encode_abi("receiveMessage", args=[message, attestation])
        logger.info(
            "Preparing CCTP receiveMessage on %s: message_len=%d, attestation_len=%d",
            self.chain.name,
            len(message),
            len(attestation),
        )
        return await self._submit(message_transmitter.address, data, "receiveMessage()")

    async def await_confirmation(self, tx_hash: HexBytes | str, confirmations: int = 1) -> dict:
        """Wait until a transaction is included with enough confirmations.

        Polls the receipt every ``poll_delay`` until ``confirmation_timeout``.
        Only this coroutine waits, the event loop keeps running.
        RPC errors while polling are logged and polling goes on until the deadline.

        :param tx_hash:
            Transaction to watch

        :param confirmations:
            1 means included in a block

        :return:
            Transaction receipt

        :raise Reverted:
            Transaction was included but failed

        :raise ConfirmationTimedOut:
            No receipt with enough confirmations within the timeout,
            including when the RPC kept failing
        """
        assert confirmations >= 1, f"Need at least one confirmation, got {confirmations}"

        tx_hash = HexBytes(tx_hash)
        started_at = native_datetime_utc_now()
        deadline = started_at + self.confirmation_timeout

        logger.info("Waiting tx %s to confirm in %d blocks on %s, timeout is %s", tx_hash.hex(), confirmations, self.chain.name, self.confirmation_timeout)

        last_error = None
        while True:
            try:
                receipt = await self.web3.eth.get_transaction_receipt(tx_hash)
                if receipt and receipt["status"] == 1:
                    block_number = await self.web3.eth.block_number
            except TransactionNotFound:
                receipt = None
            except (aiohttp.ClientError, asyncio.TimeoutError, Web3Exception) as e:
                # Flaky RPC, keep polling until the deadline
                logger.warning("Could not read receipt of tx %s on %s: %s: %s", tx_hash.hex(), self.chain.name, e.__class__.__name__, e)
                last_error = e
                receipt = None

            if receipt:
                if receipt["status"] != 1:
                    raise Reverted(f"Transaction {format_tx_hash(tx_hash)} reverted on {self.chain.name}")

                tx_confirmations = block_number - receipt["blockNumber"] + 1
                if tx_confirmations >= confirmations:
                    logger.info("Confirmed tx %s with %d confirmations", tx_hash.hex(), tx_confirmations)
                    return receipt

                logger.debug("Still waiting more confirmations. Tx %s with %d confirmations, %d needed", tx_hash.hex(), tx_confirmations, confirmations)

            if native_datetime_utc_now() >= deadline:
                reason = f", last RPC error: {last_error.__class__.__name__}: {last_error}" if last_error else ""
                raise ConfirmationTimedOut(f"Transaction {format_tx_hash(tx_hash)} confirmation failed on {self.chain.name}. Started: {started_at}, timed out after {self.confirmation_timeout}{reason}")

            await asyncio.sleep(self.poll_delay.total_seconds())
