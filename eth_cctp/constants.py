"""Circle CCTP V2 constants.

Cross-Chain Transfer Protocol V2 deployment addresses, domain ids and
transfer parameters.

CCTP moves USDC across chains with burn-and-mint:

1. Source chain: call ``depositForBurn()`` on TokenMessengerV2 to burn USDC
2. Circle's Iris attestation service signs the burn event
3. Destination chain: call ``receiveMessage()`` on MessageTransmitterV2 to mint USDC

All CCTP V2 contracts share the same address across EVM chains (CREATE2),
one set for mainnets and one set for testnets.

- `CCTP V2 documentation <https://developers.circle.com/cctp>`_
- `EVM contract addresses <https://developers.circle.com/cctp/evm-smart-contracts>`_
"""

from eth_typing import HexAddress


#: CCTP V2 TokenMessengerV2 on mainnets - the burn bridge.
TOKEN_MESSENGER_V2: HexAddress = HexAddress("0x28b5a0e9C621a5BadaA536219b3a228C8168cf5d")

#: CCTP V2 MessageTransmitterV2 on mainnets - the mint bridge.
MESSAGE_TRANSMITTER_V2: HexAddress = HexAddress("0x81D40F21F12A8F0E3252Bccb954D722d4c464B64")

#: CCTP V2 TokenMessengerV2 on testnets.
TOKEN_MESSENGER_V2_TESTNET: HexAddress = HexAddress("0x8FE6B999Dc680CcFDD5Bf7EB0974218be2542DAA")

#: CCTP V2 MessageTransmitterV2 on testnets.
MESSAGE_TRANSMITTER_V2_TESTNET: HexAddress = HexAddress("0xE737e5cEBEEBa77EFE34D4aa090756590b1CE275")

#: CCTP domain ID for Ethereum and Ethereum Sepolia
CCTP_DOMAIN_ETHEREUM = 0

#: CCTP domain ID for Avalanche C-chain and Fuji
CCTP_DOMAIN_AVALANCHE = 1

#: CCTP domain ID for Optimism and Optimism Sepolia
CCTP_DOMAIN_OPTIMISM = 2

#: CCTP domain ID for Arbitrum One and Arbitrum Sepolia
CCTP_DOMAIN_ARBITRUM = 3

#: CCTP domain ID for Base and Base Sepolia
CCTP_DOMAIN_BASE = 6

#: CCTP domain ID for Polygon PoS and Polygon Amoy
CCTP_DOMAIN_POLYGON = 7

#: Circle Iris attestation API base URL (mainnet).
IRIS_API_BASE_URL = "https://iris-api.circle.com"

#: Circle Iris attestation API base URL (testnets).
IRIS_API_SANDBOX_URL = "https://iris-api-sandbox.circle.com"

#: Minimum finality threshold for standard (finalized) transfers.
FINALITY_THRESHOLD_STANDARD = 2000

#: Minimum finality threshold for fast (confirmed) transfers.
#: Uses lower block confirmation, may incur fees.
FINALITY_THRESHOLD_FAST = 1000

#: USDC has 6 decimals on every CCTP chain
USDC_DECIMALS = 6

#: Relayer fee ceiling is amount / 1000, i.e. 0.1%
MAX_FEE_DIVISOR = 1000

#: ``destinationCaller`` value allowing any relayer to call ``receiveMessage()``
ANY_DESTINATION_CALLER = b"\x00" * 32

#: Default poll count for the Iris API, 10 minutes with 5 second intervals
DEFAULT_ATTESTATION_MAX_ATTEMPTS = 120

#: Seconds between Iris API polls
DEFAULT_ATTESTATION_POLL_INTERVAL = 5.0

#: Seconds to wait after Iris API answers HTTP 429
DEFAULT_ATTESTATION_RATE_LIMIT_INTERVAL = 15.0
