"""Bridge USDC between two chains using Circle CCTP V2.

- Burn USDC on the source chain
- Wait for Circle's attestation
- Mint USDC on the destination chain

Chains can be given as chain ids or slugs like ``base_sepolia``.

To run:

.. code-block:: shell

    export PRIVATE_KEY=...
    export JSON_RPC_BASE_SEPOLIA=...
    export JSON_RPC_ARBITRUM_SEPOLIA=...
    SOURCE_CHAIN=base_sepolia DESTINATION_CHAIN=arbitrum_sepolia AMOUNT=1.0 SPEED=fast \\
        python scripts/cctp/bridge-usdc.py
"""

import asyncio
import os
import sys

from eth_account import Account

from eth_cctp.bridge import bridge_usdc
from eth_cctp.config import create_config_from_env
from eth_cctp.registry import DEFAULT_CHAIN_REGISTRY, ChainDescriptor
from eth_cctp.transfer import TransferRequest
from eth_cctp.utils import setup_console_logging


def resolve_chain(value: str) -> ChainDescriptor:
    if value.isdigit():
        return DEFAULT_CHAIN_REGISTRY.get(int(value))
    return DEFAULT_CHAIN_REGISTRY.get_by_slug(value)


def main():
    setup_console_logging(default_log_level="info")

    PRIVATE_KEY = os.environ["PRIVATE_KEY"]
    SOURCE_CHAIN = os.environ["SOURCE_CHAIN"]
    DESTINATION_CHAIN = os.environ["DESTINATION_CHAIN"]
    AMOUNT = os.environ["AMOUNT"]
    DESTINATION_ADDRESS = os.environ.get("DESTINATION_ADDRESS")
    SPEED = os.environ.get("SPEED", "standard")

    account = Account.from_key(PRIVATE_KEY)
    config = create_config_from_env()
    source = resolve_chain(SOURCE_CHAIN)
    destination = resolve_chain(DESTINATION_CHAIN)

    request = TransferRequest(
        source_chain=source.chain_id,
        destination_chain=destination.chain_id,
        amount=AMOUNT,
        # Send to ourselves by default
        destination_address=DESTINATION_ADDRESS or account.address,
        speed=SPEED,
    )

    print(f"Bridging {request.decimal_amount} USDC from {source.name} to {destination.name}")
    print(f"Sender: {account.address}, receiver: {request.destination_address}, speed: {request.speed.value}")

    state = asyncio.run(bridge_usdc(config, account, request))

    print("Transfer log:")
    for entry in state.logs:
        print(f"  {entry}")

    if state.approval_tx_id:
        print(f"Approval: {source.get_explorer_tx_link(state.approval_tx_id)}")
    if state.burn_tx_id:
        print(f"Burn: {source.get_explorer_tx_link(state.burn_tx_id)}")
    if state.mint_tx_id:
        print(f"Mint: {destination.get_explorer_tx_link(state.mint_tx_id)}")

    if not state.is_complete:
        print(f"Transfer failed at {state.failed_step.value if state.failed_step else '?'}: {state.error}")
        sys.exit(1)

    print("All ok")


if __name__ == "__main__":
    main()
