"""Circle CCTP V2 cross-chain transfer parameters.

What goes into a ``depositForBurn()`` call, computed from a
:py:class:`TransferRequest`:

- Raw USDC amount from a decimal string, see :py:func:`parse_usdc_amount`
- Relayer fee ceiling, see :py:func:`calculate_max_fee`
- Finality threshold by speed, see :py:func:`get_finality_threshold`
- ``bytes32`` recipient, see :py:func:`encode_mint_recipient`

Example::

    from eth_cctp.transfer import TransferRequest, TransferSpeed

    request = TransferRequest(
        source_chain=84532,  # Base Sepolia
        destination_chain=421614,  # Arbitrum Sepolia
        amount="10.000000",
        destination_address="0x...",
        speed=TransferSpeed.fast,
    )
    assert request.raw_amount == 10_000_000
"""

import enum
import re
from dataclasses import dataclass
from decimal import Decimal

from eth_typing import HexAddress
from web3 import Web3

from eth_cctp.constants import (
    FINALITY_THRESHOLD_FAST,
    FINALITY_THRESHOLD_STANDARD,
    MAX_FEE_DIVISOR,
    USDC_DECIMALS,
)

#: Plain positive decimal number, no sign or exponent
_AMOUNT_PATTERN = re.compile(r"^\d+(\.\d+)?$")


class TransferSpeed(enum.Enum):
    """How fast the burn gets attested."""

    #: Attest on confirmed blocks, may incur a fee
    fast = "fast"

    #: Attest on finalized blocks
    standard = "standard"


def parse_usdc_amount(amount: str) -> int:
    """Convert a human USDC amount to raw token units.

    >>> parse_usdc_amount("10.5")
    10500000

    :param amount:
        Decimal string with at most 6 fractional digits, e.g. ``"10.000000"``

    :return:
        Amount in raw units (6 decimals)

    :raise ValueError:
        Malformed, zero or too precise amount
    """
    if not isinstance(amount, str):
        raise ValueError(f"Amount must be given as a decimal string, got {type(amount)}: {amount}")

    amount = amount.strip()
    if not _AMOUNT_PATTERN.match(amount):
        raise ValueError(f"Not a valid USDC amount: {amount!r}")

    _, _, fraction = amount.partition(".")
    if len(fraction) > USDC_DECIMALS:
        raise ValueError(f"USDC supports {USDC_DECIMALS} decimals, got {amount}")

    raw = int(Decimal(amount).scaleb(USDC_DECIMALS))
    if raw <= 0:
        raise ValueError(f"Transfer amount must be positive, got {amount}")
    return raw


def format_usdc_amount(raw_amount: int) -> Decimal:
    """Convert raw USDC units to a decimal with 6 fractional digits."""
    return Decimal(raw_amount).scaleb(-USDC_DECIMALS).quantize(Decimal(1).scaleb(-USDC_DECIMALS))


def calculate_max_fee(raw_amount: int) -> int:
    """Maximum relayer fee we allow for a burn.

    0.1% of the amount, rounded down. Sub-unit remainder is not charged.

    >>> calculate_max_fee(1_000_000)
    1000
    >>> calculate_max_fee(999)
    0
    """
    assert raw_amount >= 0, f"Negative amount: {raw_amount}"
    return raw_amount // MAX_FEE_DIVISOR


def get_finality_threshold(speed: TransferSpeed) -> int:
    """Minimum finality threshold for the burn.

    Fast transfers use the lower threshold.
    """
    match speed:
        case TransferSpeed.fast:
            return FINALITY_THRESHOLD_FAST
        case TransferSpeed.standard:
            return FINALITY_THRESHOLD_STANDARD
        case _:
            raise ValueError(f"Unknown transfer speed: {speed}")


def encode_mint_recipient(address: HexAddress | str) -> bytes:
    """Convert an Ethereum address to bytes32 format for the ``mintRecipient`` parameter.

    CCTP uses bytes32 for recipient addresses to support non-EVM chains.
    For EVM chains, the 20 address bytes sit at the end and the rest is zero padding.

    :param address:
        Ethereum address (0x-prefixed hex string)

    :return:
        32-byte representation of the address
    """
    address = Web3.to_checksum_address(address)
    return bytes.fromhex(address[2:].lower().zfill(64))


@dataclass(slots=True, frozen=True)
class TransferRequest:
    """One cross-chain USDC transfer a caller asks for.

    Validated on construction, immutable afterwards.
    """

    #: EVM chain id where USDC is burned
    source_chain: int

    #: EVM chain id where USDC is minted
    destination_chain: int

    #: Human amount as a decimal string, e.g. ``"10.000000"``
    amount: str

    #: Receiver on the destination chain
    destination_address: HexAddress | str

    #: Attestation speed
    speed: TransferSpeed = TransferSpeed.standard

    def __post_init__(self):
        # Raises on bad input
        parse_usdc_amount(self.amount)

        if not Web3.is_address(self.destination_address):
            raise ValueError(f"Not a valid destination address: {self.destination_address}")

        if self.source_chain == self.destination_chain:
            raise ValueError(f"Source and destination chain are the same: {self.source_chain}")

        if not isinstance(self.speed, TransferSpeed):
            # Allow "fast" / "standard" strings from config and CLI
            object.__setattr__(self, "speed", TransferSpeed(self.speed))

    @property
    def raw_amount(self) -> int:
        """Amount in raw USDC units."""
        return parse_usdc_amount(self.amount)

    @property
    def decimal_amount(self) -> Decimal:
        """Amount as a decimal with 6 fractional digits."""
        return format_usdc_amount(self.raw_amount)

    @property
    def max_fee(self) -> int:
        """Relayer fee ceiling in raw units."""
        return calculate_max_fee(self.raw_amount)

    @property
    def finality_threshold(self) -> int:
        return get_finality_threshold(self.speed)

    @property
    def mint_recipient(self) -> bytes:
        """Destination address as bytes32."""
        return encode_mint_recipient(self.destination_address)
