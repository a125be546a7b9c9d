"""Transfer configuration from environment variables.

Example::

    export JSON_RPC_BASE_SEPOLIA=https://sepolia.base.org
    export JSON_RPC_ARBITRUM_SEPOLIA=https://sepolia-rollup.arbitrum.io/rpc
    export CCTP_TESTNET=true

.. code-block:: python

    from eth_cctp.config import create_config_from_env

    config = create_config_from_env()
    print(config.rpc_urls)
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from eth_cctp.attestation import AttestationPolicy
from eth_cctp.constants import (
    DEFAULT_ATTESTATION_MAX_ATTEMPTS,
    DEFAULT_ATTESTATION_POLL_INTERVAL,
    DEFAULT_ATTESTATION_RATE_LIMIT_INTERVAL,
    IRIS_API_BASE_URL,
    IRIS_API_SANDBOX_URL,
)
from eth_cctp.registry import DEFAULT_CHAIN_REGISTRY, ChainDescriptor, ChainRegistry

logger = logging.getLogger(__name__)

#: Seconds we wait for each transaction to confirm
DEFAULT_CONFIRMATION_TIMEOUT = 300.0


@dataclass(slots=True, frozen=True)
class CCTPConfig:
    """Everything needed to wire up a :py:class:`eth_cctp.orchestrator.TransferOrchestrator`.

    :param rpc_urls: Chain id -> JSON-RPC URL. Chains without an URL cannot be used.
    :param testnet: Use testnet chains and the Iris sandbox
    :param iris_api_url: Override the Iris API base URL
    :param attestation_policy: Attestation poll budget
    :param confirmations: Confirmations to wait for each transaction
    :param confirmation_timeout: Seconds to wait for each confirmation
    """

    rpc_urls: dict[int, str] = field(default_factory=dict)
    testnet: bool = True
    iris_api_url: Optional[str] = None
    attestation_policy: AttestationPolicy = field(default_factory=AttestationPolicy)
    confirmations: int = 1
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT

    def __post_init__(self):
        if self.confirmations < 1:
            raise ValueError(f"confirmations must be at least 1, got {self.confirmations}")
        if self.confirmation_timeout <= 0:
            raise ValueError(f"confirmation_timeout must be positive, got {self.confirmation_timeout}")

    def get_iris_api_url(self) -> str:
        """Iris endpoint for the configured network."""
        if self.iris_api_url:
            return self.iris_api_url
        return IRIS_API_SANDBOX_URL if self.testnet else IRIS_API_BASE_URL

    def get_chains(self, registry: ChainRegistry = DEFAULT_CHAIN_REGISTRY) -> list[ChainDescriptor]:
        """Chains on the configured network that have an RPC URL."""
        return [c for c in registry.get_supported_chains(testnet=self.testnet) if c.chain_id in self.rpc_urls]


def get_rpc_environment_variable(chain: ChainDescriptor) -> str:
    """Name of the environment variable holding the RPC URL, e.g. ``JSON_RPC_BASE_SEPOLIA``."""
    return f"JSON_RPC_{chain.slug.upper()}"


def create_config_from_env(
    registry: ChainRegistry = DEFAULT_CHAIN_REGISTRY,
    environ: Mapping[str, str] | None = None,
) -> CCTPConfig:
    """Create CCTPConfig from environment variables.

    Environment variables:
    - JSON_RPC_<CHAIN SLUG>: RPC URL per chain, e.g. JSON_RPC_BASE_SEPOLIA
    - CCTP_TESTNET: Use testnets and the Iris sandbox (default: true)
    - CCTP_IRIS_API_URL: Override Iris API base URL
    - CCTP_ATTESTATION_MAX_ATTEMPTS: Attestation poll attempts (default: 120)
    - CCTP_ATTESTATION_POLL_INTERVAL: Seconds between polls (default: 5)
    - CCTP_ATTESTATION_RATE_LIMIT_INTERVAL: Seconds to wait after HTTP 429 (default: 15)
    - CCTP_CONFIRMATIONS: Confirmations per transaction (default: 1)
    - CCTP_CONFIRMATION_TIMEOUT: Seconds per confirmation wait (default: 300)

    :param environ:
        Use this instead of ``os.environ``

    :return: Configured CCTPConfig instance

    :raise ValueError: A numeric variable does not parse
    """
    if environ is None:
        environ = os.environ

    def get_float(key: str, default: float) -> float:
        value = environ.get(key)
        if not value:
            return default
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"Environment variable {key} must be a number, got {value!r}") from None

    def get_int(key: str, default: int) -> int:
        value = environ.get(key)
        if not value:
            return default
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"Environment variable {key} must be an integer, got {value!r}") from None

    def get_bool(key: str, default: bool) -> bool:
        value = environ.get(key, "").lower()
        if value in ("true", "1", "yes"):
            return True
        elif value in ("false", "0", "no"):
            return False
        return default

    rpc_urls = {}
    for chain in registry:
        url = environ.get(get_rpc_environment_variable(chain))
        if url:
            rpc_urls[chain.chain_id] = url

    config = CCTPConfig(
        rpc_urls=rpc_urls,
        testnet=get_bool("CCTP_TESTNET", True),
        iris_api_url=environ.get("CCTP_IRIS_API_URL") or None,
        attestation_policy=AttestationPolicy(
            max_attempts=get_int("CCTP_ATTESTATION_MAX_ATTEMPTS", DEFAULT_ATTESTATION_MAX_ATTEMPTS),
            poll_interval=get_float("CCTP_ATTESTATION_POLL_INTERVAL", DEFAULT_ATTESTATION_POLL_INTERVAL),
            rate_limit_interval=get_float("CCTP_ATTESTATION_RATE_LIMIT_INTERVAL", DEFAULT_ATTESTATION_RATE_LIMIT_INTERVAL),
        ),
        confirmations=get_int("CCTP_CONFIRMATIONS", 1),
        confirmation_timeout=get_float("CCTP_CONFIRMATION_TIMEOUT", DEFAULT_CONFIRMATION_TIMEOUT),
    )
    logger.info("Loaded CCTP config, testnet:%s, chains with RPC: %s", config.testnet, list(rpc_urls.keys()))
    return config
