"""ABI loading from the bundled ABI files.

Provides functions to load ABI files and construct contract proxies
for the handful of CCTP and ERC-20 functions a transfer calls.
The results are cached for the speedup.

ABI files live in the ``abi/`` folder next to this module.
"""

import json
from functools import lru_cache
from pathlib import Path

from eth_typing import HexAddress
from web3 import AsyncWeb3, Web3
from web3.contract import AsyncContract

# How big are our ABI caches
_CACHE_SIZE = 64

#: ERC-20 token ABI file
ERC20_ABI_FILE = "ERC20.json"

#: CCTP V2 burn bridge ABI file
TOKEN_MESSENGER_V2_ABI_FILE = "cctp/TokenMessengerV2.json"

#: CCTP V2 mint bridge ABI file
MESSAGE_TRANSMITTER_V2_ABI_FILE = "cctp/MessageTransmitterV2.json"


@lru_cache(maxsize=_CACHE_SIZE)
def get_abi_by_filename(fname: str) -> dict:
    """Reads a embedded ABI file and returns it.

    Example::

        abi = get_abi_by_filename("ERC20.json")

    Loaded ABI files are cache in in-process memory to speed up future loading.

    :param fname:
        Path relative to the bundled ``abi`` folder.

    :return:
        Full contract interface, with the key ``abi``.
    """
    here = Path(__file__).resolve().parent
    abi_path = here / "abi" / Path(fname)
    with open(abi_path, "rt", encoding="utf-8") as f:
        abi = json.load(f)
    return abi


def get_deployed_contract(
    web3: AsyncWeb3,
    fname: str,
    address: HexAddress | str,
) -> AsyncContract:
    """Get a contract proxy object for a contract deployed at a specific address.

    :param web3:
        Async web3 connection to the chain where the contract lives

    :param fname:
        ABI file name, see :py:func:`get_abi_by_filename`

    :param address:
        Address of the deployed contract

    :return:
        Async contract proxy
    """
    assert address, "get_deployed_contract() address was None"

    contract_interface = get_abi_by_filename(fname)
    if type(contract_interface) == list:
        # Etherscan copy-paste
        abi = contract_interface
    else:
        abi = contract_interface["abi"]

    return web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
