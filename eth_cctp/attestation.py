"""Circle CCTP V2 attestation service client.

After ``depositForBurn()`` confirms on the source chain, Circle's Iris
service observes the burn and signs it. :py:meth:`AttestationClient.poll_attestation`
asks the service once and classifies the answer. It never sleeps or retries:
the poll loop and its back-off live in :py:class:`eth_cctp.orchestrator.TransferOrchestrator`,
driven by an :py:class:`AttestationPolicy`.

Example::

    from eth_cctp.attestation import AttestationClient, AttestationOutcome
    from eth_cctp.constants import CCTP_DOMAIN_BASE, IRIS_API_SANDBOX_URL

    async with AttestationClient(IRIS_API_SANDBOX_URL) as client:
        poll = await client.poll_attestation("0x...", CCTP_DOMAIN_BASE)
        if poll.outcome == AttestationOutcome.complete:
            message, attestation = poll.record.message, poll.record.attestation
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

from eth_cctp.constants import (
    DEFAULT_ATTESTATION_MAX_ATTEMPTS,
    DEFAULT_ATTESTATION_POLL_INTERVAL,
    DEFAULT_ATTESTATION_RATE_LIMIT_INTERVAL,
    IRIS_API_BASE_URL,
)

logger = logging.getLogger(__name__)

#: HTTP 404 status code indicating the burn is not yet indexed
HTTP_NOT_FOUND = 404

#: HTTP 429 status code indicating we are polling too fast
HTTP_TOO_MANY_REQUESTS = 429

#: Status we report for 404 responses
STATUS_NOT_FOUND = "not_found"


@dataclass(slots=True)
class AttestationRecord:
    """Attestation data for a CCTP burn event.

    Contains the signed message and attestation needed to call
    ``receiveMessage()`` on the destination chain's MessageTransmitterV2.
    """

    #: The CCTP message bytes to relay to the destination chain
    message: bytes

    #: The signed attestation bytes from Circle's Iris service
    attestation: bytes

    #: Status from Iris API (e.g. "complete")
    status: str


class AttestationOutcome(enum.Enum):
    """How a single attestation probe ended."""

    #: Attestation is signed and available
    complete = "complete"

    #: Burn not indexed yet, or not yet attested
    pending = "pending"

    #: Iris asked us to slow down
    rate_limited = "rate_limited"

    #: Anything else: server errors, broken JSON, network failures
    fatal = "fatal"


@dataclass(slots=True, frozen=True)
class AttestationPoll:
    """Result of :py:meth:`AttestationClient.poll_attestation`."""

    outcome: AttestationOutcome

    #: Set when ``outcome`` is ``complete``
    record: Optional[AttestationRecord] = None

    #: Iris message status, or ``not_found`` for 404
    status: Optional[str] = None

    #: Human-readable cause when ``outcome`` is ``fatal``
    error: Optional[str] = None

    @classmethod
    def complete(cls, record: AttestationRecord) -> "AttestationPoll":
        return cls(AttestationOutcome.complete, record=record, status=record.status)

    @classmethod
    def pending(cls, status: Optional[str] = None) -> "AttestationPoll":
        return cls(AttestationOutcome.pending, status=status)

    @classmethod
    def rate_limited(cls) -> "AttestationPoll":
        return cls(AttestationOutcome.rate_limited)

    @classmethod
    def fatal(cls, error: str) -> "AttestationPoll":
        return cls(AttestationOutcome.fatal, error=error)


@dataclass(slots=True, frozen=True)
class AttestationPolicy:
    """How long and how often we poll for an attestation.

    A rate-limited probe counts as one attempt, it only waits longer
    before the next one.
    """

    #: Probes before giving up
    max_attempts: int = DEFAULT_ATTESTATION_MAX_ATTEMPTS

    #: Seconds between probes
    poll_interval: float = DEFAULT_ATTESTATION_POLL_INTERVAL

    #: Seconds to wait after a 429 response
    rate_limit_interval: float = DEFAULT_ATTESTATION_RATE_LIMIT_INTERVAL

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.poll_interval < 0 or self.rate_limit_interval < 0:
            raise ValueError(f"Poll intervals cannot be negative: {self}")

    @property
    def max_wait(self) -> float:
        """Nominal ceiling in seconds, not counting rate limit waits."""
        return self.max_attempts * self.poll_interval


def _decode_hex(value: str) -> bytes:
    if not isinstance(value, str):
        raise ValueError(f"Expected a hex string, got {value!r:.50}")
    return bytes.fromhex(value.removeprefix("0x"))


class AttestationClient:
    """Query Circle's Iris API for burn attestations.

    Owns an :py:class:`aiohttp.ClientSession`, created on first use unless one is given.
    Use as an async context manager or call :py:meth:`close` when done.
    """

    def __init__(
        self,
        api_base_url: str = IRIS_API_BASE_URL,
        session: aiohttp.ClientSession | None = None,
        request_timeout: float = 30.0,
    ):
        """Create a client.

        :param api_base_url:
            Iris API base URL. Use the sandbox URL for testnets.

        :param session:
            Shared HTTP session. Not closed by us if given.

        :param request_timeout:
            Seconds per HTTP request
        """
        self.api_base_url = api_base_url.rstrip("/")
        self.request_timeout = request_timeout
        self._session = session
        self._owns_session = session is None

    def __repr__(self):
        return f"<AttestationClient {self.api_base_url}>"

    async def __aenter__(self) -> "AttestationClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.request_timeout))
            self._owns_session = True
        return self._session

    async def close(self):
        """Release the HTTP session if we created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def get_message_url(self, transaction_hash: str, source_domain: int) -> str:
        # Iris API requires 0x-prefixed transaction hash
        if not transaction_hash.startswith("0x"):
            transaction_hash = f"0x{transaction_hash}"
        return f"{self.api_base_url}/v2/messages/{source_domain}?transactionHash={transaction_hash}"

    async def poll_attestation(self, transaction_hash: str, source_domain: int) -> AttestationPoll:
        """Ask Iris once whether the burn has been attested.

        :param transaction_hash:
            Transaction hash of the ``depositForBurn()`` call on the source chain.

        :param source_domain:
            CCTP domain ID of the source chain.

        :return:
            Classified probe result. Never raises for HTTP, network or payload errors,
            those come back as ``fatal``.
        """
        url = self.get_message_url(transaction_hash, source_domain)
        session = self._get_session()

        try:
            async with session.get(url) as response:
                # Iris API returns 404 when the transaction is not yet indexed
                if response.status == HTTP_NOT_FOUND:
                    logger.info("Attestation not yet indexed (404) for %s", transaction_hash)
                    return AttestationPoll.pending(STATUS_NOT_FOUND)

                if response.status == HTTP_TOO_MANY_REQUESTS:
                    logger.warning("Iris API rate limited us (429) for %s", transaction_hash)
                    return AttestationPoll.rate_limited()

                if not 200 <= response.status < 300:
                    body = await response.text()
                    return AttestationPoll.fatal(f"Attestation service returned HTTP {response.status}: {body[:200]}")

                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return AttestationPoll.fatal(f"Attestation service request failed: {e.__class__.__name__}: {e}")
        except ValueError as e:
            return AttestationPoll.fatal(f"Attestation service returned malformed JSON: {e}")

        if not isinstance(data, dict):
            return AttestationPoll.fatal(f"Attestation service returned unexpected payload: {data!r:.200}")

        messages = data.get("messages") or []
        if not isinstance(messages, list):
            return AttestationPoll.fatal(f"Attestation service returned unexpected messages: {messages!r:.200}")

        if not messages:
            return AttestationPoll.pending()

        msg = messages[0]
        if not isinstance(msg, dict):
            return AttestationPoll.fatal(f"Attestation service returned unexpected message entry: {msg!r:.200}")

        status = msg.get("status")
        attestation_hex = msg.get("attestation")

        if status == "complete" and attestation_hex and attestation_hex != "PENDING":
            message_hex = msg.get("message")
            if not message_hex or message_hex == "0x":
                return AttestationPoll.fatal("Attestation service returned an attestation without a message")

            try:
                record = AttestationRecord(
                    message=_decode_hex(message_hex),
                    attestation=_decode_hex(attestation_hex),
                    status=status,
                )
            except ValueError as e:
                return AttestationPoll.fatal(f"Attestation service returned undecodable bytes: {e}")
            logger.info("Attestation complete for %s, message_len=%d", transaction_hash, len(record.message))
            return AttestationPoll.complete(record)

        logger.info("Attestation status: %s (waiting for 'complete')", status)
        return AttestationPoll.pending(status)
