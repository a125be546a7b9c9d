"""Chain registry for CCTP V2 transfers.

Static lookup table from an EVM chain id to the contracts and metadata
a cross-chain transfer needs on that chain.

- The registry is validated when it is constructed. A descriptor with a missing
  or malformed field is a startup error, see :py:class:`ChainRegistryError`.

- :py:data:`DEFAULT_CHAIN_REGISTRY` carries CCTP V2 testnets and their mainnet
  counterparts.

Example::

    from eth_cctp.registry import DEFAULT_CHAIN_REGISTRY

    base_sepolia = DEFAULT_CHAIN_REGISTRY.get(84532)
    print(base_sepolia.name, base_sepolia.protocol_domain)
"""

import logging
from dataclasses import dataclass, fields
from typing import Iterable, Iterator

from eth_typing import HexAddress
from web3 import Web3

from eth_cctp.constants import (
    CCTP_DOMAIN_ARBITRUM,
    CCTP_DOMAIN_AVALANCHE,
    CCTP_DOMAIN_BASE,
    CCTP_DOMAIN_ETHEREUM,
    CCTP_DOMAIN_OPTIMISM,
    CCTP_DOMAIN_POLYGON,
    MESSAGE_TRANSMITTER_V2,
    MESSAGE_TRANSMITTER_V2_TESTNET,
    TOKEN_MESSENGER_V2,
    TOKEN_MESSENGER_V2_TESTNET,
)

logger = logging.getLogger(__name__)


class ChainRegistryError(Exception):
    """Chain descriptor data is incomplete or malformed."""


class UnsupportedChain(ValueError):
    """Chain id is not in the registry."""


@dataclass(slots=True, frozen=True)
class ChainDescriptor:
    """Everything we need to know about one CCTP-enabled chain.

    Addresses are normalised to their checksummed form on construction.
    """

    #: EVM chain id, e.g. 84532 for Base Sepolia
    chain_id: int

    #: Human readable name, e.g. "Base Sepolia"
    name: str

    #: Machine name, used for environment variables like ``JSON_RPC_BASE_SEPOLIA``
    slug: str

    #: Native USDC on this chain
    token_address: HexAddress

    #: TokenMessengerV2, the burn bridge
    burn_bridge_address: HexAddress

    #: MessageTransmitterV2, the mint bridge
    mint_bridge_address: HexAddress

    #: CCTP domain id of this chain. Not the same as the chain id.
    protocol_domain: int

    #: Block explorer base URL, without trailing slash
    explorer_url: str

    #: Is this a testnet.
    #:
    #: Testnet burns are attested by the Iris sandbox.
    testnet: bool = False

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == "":
                raise ChainRegistryError(f"Chain descriptor for chain {self.chain_id} is missing {f.name}")

        if type(self.chain_id) != int or self.chain_id <= 0:
            raise ChainRegistryError(f"Bad chain id: {self.chain_id}")

        if type(self.protocol_domain) != int or self.protocol_domain < 0:
            raise ChainRegistryError(f"Bad CCTP domain {self.protocol_domain} for chain {self.chain_id}")

        for name in ("token_address", "burn_bridge_address", "mint_bridge_address"):
            address = getattr(self, name)
            if not Web3.is_address(address):
                raise ChainRegistryError(f"Chain {self.chain_id} has malformed {name}: {address}")
            # Frozen dataclass, so bypass our own setattr guard
            object.__setattr__(self, name, Web3.to_checksum_address(address))

        object.__setattr__(self, "explorer_url", self.explorer_url.rstrip("/"))

    def __repr__(self):
        return f"<Chain {self.name} id:{self.chain_id} domain:{self.protocol_domain}>"

    def get_explorer_tx_link(self, tx_hash: str) -> str:
        """Link to a transaction on the block explorer of this chain."""
        return f"{self.explorer_url}/tx/{tx_hash}"

    def get_explorer_address_link(self, address: HexAddress | str) -> str:
        """Link to an address on the block explorer of this chain."""
        return f"{self.explorer_url}/address/{address}"


class ChainRegistry:
    """Chain id -> :py:class:`ChainDescriptor` lookup.

    Immutable after construction.
    """

    def __init__(self, descriptors: Iterable[ChainDescriptor]):
        self._descriptors: dict[int, ChainDescriptor] = {}
        for descriptor in descriptors:
            if not isinstance(descriptor, ChainDescriptor):
                raise ChainRegistryError(f"Expected ChainDescriptor, got {type(descriptor)}")
            if descriptor.chain_id in self._descriptors:
                raise ChainRegistryError(f"Duplicate chain id {descriptor.chain_id}: {descriptor.name}")
            self._descriptors[descriptor.chain_id] = descriptor

        slugs = [d.slug for d in self._descriptors.values()]
        if len(set(slugs)) != len(slugs):
            raise ChainRegistryError(f"Duplicate chain slugs in {slugs}")

    def __repr__(self):
        return f"<ChainRegistry with {len(self._descriptors)} chains>"

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[ChainDescriptor]:
        return iter(self._descriptors.values())

    def __contains__(self, chain_id: int) -> bool:
        return chain_id in self._descriptors

    def get(self, chain_id: int) -> ChainDescriptor:
        """Get descriptor for a chain.

        :raise UnsupportedChain:
            If the chain is not known
        """
        try:
            return self._descriptors[chain_id]
        except KeyError:
            raise UnsupportedChain(f"Chain {chain_id} is not supported by CCTP. Supported chains: {list(self._descriptors.keys())}") from None

    def get_by_slug(self, slug: str) -> ChainDescriptor:
        """Get descriptor by its machine name, e.g. ``base_sepolia``."""
        for descriptor in self._descriptors.values():
            if descriptor.slug == slug.lower():
                return descriptor
        raise UnsupportedChain(f"Chain {slug} is not supported by CCTP")

    def get_supported_chains(self, testnet: bool | None = None) -> list[ChainDescriptor]:
        """List chains, optionally only testnets or mainnets."""
        return [d for d in self._descriptors.values() if testnet is None or d.testnet == testnet]


#: CCTP V2 testnets
TESTNET_CHAINS = [
    ChainDescriptor(
        chain_id=11155111,
        name="Ethereum Sepolia",
        slug="ethereum_sepolia",
        token_address="0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
        burn_bridge_address=TOKEN_MESSENGER_V2_TESTNET,
        mint_bridge_address=MESSAGE_TRANSMITTER_V2_TESTNET,
        protocol_domain=CCTP_DOMAIN_ETHEREUM,
        explorer_url="https://sepolia.etherscan.io",
        testnet=True,
    ),
    ChainDescriptor(
        chain_id=421614,
        name="Arbitrum Sepolia",
        slug="arbitrum_sepolia",
        token_address="0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d",
        burn_bridge_address=TOKEN_MESSENGER_V2_TESTNET,
        mint_bridge_address=MESSAGE_TRANSMITTER_V2_TESTNET,
        protocol_domain=CCTP_DOMAIN_ARBITRUM,
        explorer_url="https://sepolia.arbiscan.io",
        testnet=True,
    ),
    ChainDescriptor(
        chain_id=84532,
        name="Base Sepolia",
        slug="base_sepolia",
        token_address="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        burn_bridge_address=TOKEN_MESSENGER_V2_TESTNET,
        mint_bridge_address=MESSAGE_TRANSMITTER_V2_TESTNET,
        protocol_domain=CCTP_DOMAIN_BASE,
        explorer_url="https://sepolia.basescan.org",
        testnet=True,
    ),
    ChainDescriptor(
        chain_id=11155420,
        name="Optimism Sepolia",
        slug="optimism_sepolia",
        token_address="0x5fd84259d66Cd46123540766Be93DFE6D43130D7",
        burn_bridge_address=TOKEN_MESSENGER_V2_TESTNET,
        mint_bridge_address=MESSAGE_TRANSMITTER_V2_TESTNET,
        protocol_domain=CCTP_DOMAIN_OPTIMISM,
        explorer_url="https://sepolia-optimism.etherscan.io",
        testnet=True,
    ),
    ChainDescriptor(
        chain_id=43113,
        name="Avalanche Fuji",
        slug="avalanche_fuji",
        token_address="0x5425890298aed601595a70AB815c96711a31Bc65",
        burn_bridge_address=TOKEN_MESSENGER_V2_TESTNET,
        mint_bridge_address=MESSAGE_TRANSMITTER_V2_TESTNET,
        protocol_domain=CCTP_DOMAIN_AVALANCHE,
        explorer_url="https://testnet.snowtrace.io",
        testnet=True,
    ),
    ChainDescriptor(
        chain_id=80002,
        name="Polygon Amoy",
        slug="polygon_amoy",
        token_address="0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582",
        burn_bridge_address=TOKEN_MESSENGER_V2_TESTNET,
        mint_bridge_address=MESSAGE_TRANSMITTER_V2_TESTNET,
        protocol_domain=CCTP_DOMAIN_POLYGON,
        explorer_url="https://amoy.polygonscan.com",
        testnet=True,
    ),
]

#: CCTP V2 mainnets
MAINNET_CHAINS = [
    ChainDescriptor(
        chain_id=1,
        name="Ethereum",
        slug="ethereum",
        token_address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        burn_bridge_address=TOKEN_MESSENGER_V2,
        mint_bridge_address=MESSAGE_TRANSMITTER_V2,
        protocol_domain=CCTP_DOMAIN_ETHEREUM,
        explorer_url="https://etherscan.io",
    ),
    ChainDescriptor(
        chain_id=42161,
        name="Arbitrum",
        slug="arbitrum",
        token_address="0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
        burn_bridge_address=TOKEN_MESSENGER_V2,
        mint_bridge_address=MESSAGE_TRANSMITTER_V2,
        protocol_domain=CCTP_DOMAIN_ARBITRUM,
        explorer_url="https://arbiscan.io",
    ),
    ChainDescriptor(
        chain_id=8453,
        name="Base",
        slug="base",
        token_address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        burn_bridge_address=TOKEN_MESSENGER_V2,
        mint_bridge_address=MESSAGE_TRANSMITTER_V2,
        protocol_domain=CCTP_DOMAIN_BASE,
        explorer_url="https://basescan.org",
    ),
    ChainDescriptor(
        chain_id=10,
        name="Optimism",
        slug="optimism",
        token_address="0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",
        burn_bridge_address=TOKEN_MESSENGER_V2,
        mint_bridge_address=MESSAGE_TRANSMITTER_V2,
        protocol_domain=CCTP_DOMAIN_OPTIMISM,
        explorer_url="https://optimistic.etherscan.io",
    ),
    ChainDescriptor(
        chain_id=43114,
        name="Avalanche",
        slug="avalanche",
        token_address="0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E",
        burn_bridge_address=TOKEN_MESSENGER_V2,
        mint_bridge_address=MESSAGE_TRANSMITTER_V2,
        protocol_domain=CCTP_DOMAIN_AVALANCHE,
        explorer_url="https://snowtrace.io",
    ),
    ChainDescriptor(
        chain_id=137,
        name="Polygon",
        slug="polygon",
        token_address="0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
        burn_bridge_address=TOKEN_MESSENGER_V2,
        mint_bridge_address=MESSAGE_TRANSMITTER_V2,
        protocol_domain=CCTP_DOMAIN_POLYGON,
        explorer_url="https://polygonscan.com",
    ),
]

#: All chains we know how to bridge between
DEFAULT_CHAIN_REGISTRY = ChainRegistry(TESTNET_CHAINS + MAINNET_CHAINS)
