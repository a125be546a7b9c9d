"""Gas price estimation for async web3 connections.

`Web3.py no longer support gas price strategies post London hard work <https://web3py.readthedocs.io/en/stable/gas_price.html>`_.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from web3 import AsyncWeb3

#: Polygon PoS rejects priority fees below 30 gwei
POLYGON_MIN_PRIORITY_FEE = 30_000_000_000


class GasPriceMethod(enum.Enum):
    """What method we did use for setting the gas price."""

    #: Legacy chains
    legacy = "legacy"

    #: Post London hard work
    london = "london"


@dataclass
class GasPriceSuggestion:
    """Gas price details.

    - EIP-1559 London hard fork chains (Ethereumm mainnet)

    - Legacy EVM
    """

    #: How the gas price was determined
    method: GasPriceMethod

    #: Non London hard fork chains
    legacy_gas_price: Optional[int] = None

    #: London hard fork chains
    base_fee: Optional[int] = None

    #: London hard fork chains
    max_priority_fee_per_gas: Optional[int] = None

    #: London hard fork chains
    max_fee_per_gas: Optional[int] = None

    def __repr__(self):
        return f"<Gas pricing method:{self.method.name} base:{self.base_fee} priority:{self.max_priority_fee_per_gas} max:{self.max_fee_per_gas} legacy:{self.legacy_gas_price}>"


async def estimate_gas_price(web3: AsyncWeb3, chain_id: int | None = None) -> GasPriceSuggestion:
    """Get a good gas price for a transaction.

    :param chain_id:
        Pass if already known, saves one RPC call
    """
    last_block = await web3.eth.get_block("latest")
    base_fee = last_block.get("baseFeePerGas")

    if base_fee is None:
        return GasPriceSuggestion(method=GasPriceMethod.legacy, legacy_gas_price=await web3.eth.gas_price)

    if chain_id is None:
        chain_id = await web3.eth.chain_id

    max_priority_fee_per_gas = await web3.eth.max_priority_fee
    max_fee_per_gas = max_priority_fee_per_gas + (2 * base_fee)

    if chain_id in (137, 80002):
        max_priority_fee_per_gas = max(POLYGON_MIN_PRIORITY_FEE, max_priority_fee_per_gas)

    # https://github.com/ethereum/go-ethereum/blob/2e478aab98c13577c66b4531ba240a601dbc1516/core/error.go#L87
    if max_priority_fee_per_gas > max_fee_per_gas:
        max_fee_per_gas = max_priority_fee_per_gas

    return GasPriceSuggestion(
        method=GasPriceMethod.london,
        base_fee=base_fee,
        max_priority_fee_per_gas=max_priority_fee_per_gas,
        max_fee_per_gas=max_fee_per_gas,
    )


def apply_gas(tx: dict, suggestion: GasPriceSuggestion) -> dict:
    """Apply gas fees to a raw transaction dict.

    :return:
        Mutated dict
    """
    assert isinstance(tx, dict), f"Expected tx to be dict, got {type(tx)}"

    if suggestion.method == GasPriceMethod.london:
        tx["maxFeePerGas"] = suggestion.max_fee_per_gas
        tx["maxPriorityFeePerGas"] = suggestion.max_priority_fee_per_gas
        if "gasPrice" in tx:
            # Cannot have both maxFeePerGas + maxPriorityFeePerGas and gasPrice
            del tx["gasPrice"]
    else:
        tx["gasPrice"] = suggestion.legacy_gas_price

    return tx
