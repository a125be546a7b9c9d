"""Wire up a ready-to-use transfer orchestrator.

Example::

    from eth_account import Account

    from eth_cctp.bridge import bridge_usdc
    from eth_cctp.config import create_config_from_env
    from eth_cctp.transfer import TransferRequest, TransferSpeed

    account = Account.from_key(os.environ["PRIVATE_KEY"])
    state = await bridge_usdc(
        create_config_from_env(),
        account,
        TransferRequest(84532, 421614, "1.000000", account.address, TransferSpeed.fast),
    )
"""

import datetime
import logging

from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3

from eth_cctp.attestation import AttestationClient
from eth_cctp.config import CCTPConfig
from eth_cctp.ledger import LedgerClient
from eth_cctp.orchestrator import StateCallback, TransferOrchestrator
from eth_cctp.registry import DEFAULT_CHAIN_REGISTRY, ChainRegistry
from eth_cctp.signer import HotWalletSigner
from eth_cctp.state import TransferState
from eth_cctp.transfer import TransferRequest

logger = logging.getLogger(__name__)


def create_transfer_orchestrator(
    config: CCTPConfig,
    account: LocalAccount,
    registry: ChainRegistry = DEFAULT_CHAIN_REGISTRY,
) -> TransferOrchestrator:
    """Create an orchestrator with a hot wallet signer and a ledger per configured chain.

    The orchestrator's attestation client owns an HTTP session,
    close it with ``await orchestrator.attestation_client.close()``.

    :param config:
        RPC URLs and poll budgets

    :param account:
        Private key that pays gas and owns the USDC

    :param registry:
        Chain data

    :raise ValueError:
        No RPC URL is configured for any chain on the selected network
    """
    chains = config.get_chains(registry)
    if not chains:
        network = "testnet" if config.testnet else "mainnet"
        raise ValueError(f"No JSON-RPC URLs configured for any CCTP {network} chain")

    web3_by_chain = {c.chain_id: AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(config.rpc_urls[c.chain_id])) for c in chains}
    signer = HotWalletSigner(account, web3_by_chain)

    ledgers = {
        c.chain_id: LedgerClient(
            web3_by_chain[c.chain_id],
            c,
            signer,
            confirmation_timeout=datetime.timedelta(seconds=config.confirmation_timeout),
        )
        for c in chains
    }

    logger.info("Created transfer orchestrator for %s on %s", account.address, [c.name for c in chains])

    return TransferOrchestrator(
        registry=registry,
        ledgers=ledgers,
        attestation_client=AttestationClient(config.get_iris_api_url()),
        sender=account.address,
        policy=config.attestation_policy,
        confirmations=config.confirmations,
    )


async def bridge_usdc(
    config: CCTPConfig,
    account: LocalAccount,
    request: TransferRequest,
    registry: ChainRegistry = DEFAULT_CHAIN_REGISTRY,
    on_state: StateCallback | None = None,
) -> TransferState:
    """Run one transfer end-to-end and release the HTTP session.

    :param on_state:
        Receives every state snapshot, e.g. to print log lines as they come

    :return:
        Final state, check :py:attr:`TransferState.is_complete`
    """
    orchestrator = create_transfer_orchestrator(config, account, registry)
    if on_state:
        orchestrator.subscribe(on_state)

    async with orchestrator.attestation_client:
        return await orchestrator.execute_transfer(request)
