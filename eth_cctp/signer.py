"""Transaction signing and broadcasting.

The transfer flow never touches private keys. It hands a destination address,
call data and a chain id to a :py:class:`TransactionSigner` and gets
a transaction hash back.

- :py:class:`HotWalletSigner` keeps a plain text private key in the process memory
  using :py:class:`eth_account.signers.local.LocalAccount` and a nonce counter per chain.

Example::

    from eth_account import Account
    from web3 import AsyncWeb3

    account = Account.from_key(os.environ["PRIVATE_KEY"])
    signer = HotWalletSigner(
        account,
        {
            84532: AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(os.environ["JSON_RPC_BASE_SEPOLIA"])),
        },
    )
    tx_hash = await signer.sign_and_broadcast(84532, usdc_address, call_data)
"""

import asyncio
import logging
from typing import Protocol, runtime_checkable

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import AsyncWeb3

from eth_cctp.gas import apply_gas, estimate_gas_price

logger = logging.getLogger(__name__)


@runtime_checkable
class TransactionSigner(Protocol):
    """Signs and broadcasts transactions on behalf of the transfer flow."""

    @property
    def address(self) -> HexAddress:
        """Address that signs and pays gas."""

    async def sign_and_broadcast(self, chain_id: int, to: HexAddress | str, data: bytes | str) -> HexBytes:
        """Sign a contract call and send it to the chain.

        :return:
            Transaction hash
        """


class HotWalletSigner:
    """Sign transactions with a local private key.

    - One nonce counter per chain. Nonces are read from the chain on first use
      and then allocated locally, see :py:meth:`sync_nonce` and :py:meth:`allocate_nonce`.

    - Nonce allocation is serialised per chain with an :py:class:`asyncio.Lock`,
      so several transfers can share one signer.

    - If a broadcast fails the local nonce is forgotten and re-read from the chain
      for the next transaction.

    - Nothing is ever retried. A resubmitted burn would move the funds twice.
    """

    def __init__(
        self,
        account: LocalAccount,
        web3_by_chain: dict[int, AsyncWeb3],
        gas_limit_multiplier: float = 1.2,
    ):
        """Create a signer.

        :param account:
            Local account with the private key

        :param web3_by_chain:
            Async web3 connection for each chain id we may broadcast on

        :param gas_limit_multiplier:
            Safety margin on top of ``eth_estimateGas``
        """
        assert gas_limit_multiplier >= 1, f"Bad gas limit multiplier: {gas_limit_multiplier}"
        self.account = account
        self.web3_by_chain = web3_by_chain
        self.gas_limit_multiplier = gas_limit_multiplier
        self.current_nonce: dict[int, int] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    def __repr__(self):
        return f"<HotWalletSigner {self.account.address} chains:{list(self.web3_by_chain.keys())}>"

    @property
    def address(self) -> HexAddress:
        """Ethereum address of the wallet."""
        return self.account.address

    def get_web3(self, chain_id: int) -> AsyncWeb3:
        try:
            return self.web3_by_chain[chain_id]
        except KeyError:
            raise ValueError(f"{self} has no connection for chain {chain_id}") from None

    def _get_lock(self, chain_id: int) -> asyncio.Lock:
        lock = self._locks.get(chain_id)
        if lock is None:
            lock = self._locks[chain_id] = asyncio.Lock()
        return lock

    async def sync_nonce(self, chain_id: int):
        """Initialise the current nonce from the on-chain data."""
        web3 = self.get_web3(chain_id)
        new_nonce = await web3.eth.get_transaction_count(self.address, "pending")
        current = self.current_nonce.get(chain_id)
        if current is not None and new_nonce < current:
            logger.warning(
                "Nonce sync failed on chain %d, read onchain nonce %d that is older than our current nonce %d. Keeping ours.",
                chain_id,
                new_nonce,
                current,
            )
            return
        self.current_nonce[chain_id] = new_nonce
        logger.info("Synced nonce for %s on chain %d to %d", self.address, chain_id, new_nonce)

    def allocate_nonce(self, chain_id: int) -> int:
        """Get the next free available nonce to be used with a transaction.

        Ethereum tx nonces are a counter.

        Increase the nonce counter
        """
        assert chain_id in self.current_nonce, f"Nonce is not yet synced from the blockchain for chain {chain_id}: {self}"
        nonce = self.current_nonce[chain_id]
        self.current_nonce[chain_id] += 1
        return nonce

    async def sign_and_broadcast(self, chain_id: int, to: HexAddress | str, data: bytes | str) -> HexBytes:
        """Sign a contract call with a fresh nonce and broadcast it.

        :param chain_id:
            Target chain id

        :param to:
            Contract address

        :param data:
            ABI encoded call data

        :return:
            Transaction hash

        :raise Exception:
            Whatever the node or gas estimation raises. The transaction may not be retried.
        """
        web3 = self.get_web3(chain_id)

        tx = {
            "from": self.address,
            "to": AsyncWeb3.to_checksum_address(to),
            "data": HexBytes(data),
            "value": 0,
            "chainId": chain_id,
        }

        async with self._get_lock(chain_id):
            if chain_id not in self.current_nonce:
                await self.sync_nonce(chain_id)

            try:
                # Reverting calls fail here, before anything is broadcast
                gas_estimate = await web3.eth.estimate_gas(tx)
                tx["gas"] = int(gas_estimate * self.gas_limit_multiplier)
                apply_gas(tx, await estimate_gas_price(web3, chain_id))

                tx["nonce"] = self.allocate_nonce(chain_id)
                signed = self.account.sign_transaction(tx)
                tx_hash = await web3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception:
                # Next transaction re-reads the nonce from the chain
                self.current_nonce.pop(chain_id, None)
                raise

        logger.info(
            "Broadcasted tx %s on chain %d, to:%s nonce:%d gas:%d",
            tx_hash.hex(),
            chain_id,
            tx["to"],
            tx["nonce"],
            tx["gas"],
        )
        return HexBytes(tx_hash)
