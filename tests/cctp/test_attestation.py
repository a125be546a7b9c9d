"""Attestation client against a local Iris API stand-in."""

import pytest
from aiohttp import web
from aiohttp import test_utils

from eth_cctp.attestation import AttestationClient, AttestationOutcome, AttestationPolicy

TX_HASH = "0x" + "11" * 32

MESSAGE_HEX = "0x" + "00000001" + "ab" * 60

ATTESTATION_HEX = "0x" + "cd" * 65


def _make_app(responses: dict[str, web.Response | dict], requests: list):
    """Serve canned answers keyed by transaction hash."""

    async def get_messages(request: web.Request):
        tx_hash = request.query.get("transactionHash")
        requests.append((request.match_info["domain"], tx_hash))
        answer = responses.get(tx_hash)
        if answer is None:
            return web.json_response({"error": "Message not found"}, status=404)
        if isinstance(answer, web.Response):
            return answer
        return web.json_response(answer)

    app = web.Application()
    app.router.add_get("/v2/messages/{domain}", get_messages)
    return app


async def _poll(responses, tx_hash=TX_HASH, domain=6):
    requests = []
    async with test_utils.TestServer(_make_app(responses, requests)) as server:
        async with AttestationClient(str(server.make_url("/"))) as client:
            poll = await client.poll_attestation(tx_hash, domain)
    return poll, requests


@pytest.mark.asyncio
async def test_complete():
    poll, requests = await _poll(
        {
            TX_HASH: {
                "messages": [
                    {
                        "status": "complete",
                        "message": MESSAGE_HEX,
                        "attestation": ATTESTATION_HEX,
                    }
                ]
            }
        }
    )
    assert poll.outcome == AttestationOutcome.complete
    assert poll.record.message == bytes.fromhex(MESSAGE_HEX[2:])
    assert poll.record.attestation == bytes.fromhex(ATTESTATION_HEX[2:])
    assert poll.status == "complete"
    assert requests == [("6", TX_HASH)]


@pytest.mark.asyncio
async def test_hash_gets_0x_prefix():
    _, requests = await _poll({}, tx_hash=TX_HASH[2:], domain=3)
    assert requests == [("3", TX_HASH)]


@pytest.mark.asyncio
async def test_not_found_is_pending():
    poll, _ = await _poll({})
    assert poll.outcome == AttestationOutcome.pending
    assert poll.status == "not_found"


@pytest.mark.asyncio
async def test_rate_limited():
    poll, _ = await _poll({TX_HASH: web.json_response({"error": "slow down"}, status=429)})
    assert poll.outcome == AttestationOutcome.rate_limited


@pytest.mark.asyncio
async def test_server_error_is_fatal():
    poll, _ = await _poll({TX_HASH: web.Response(text="upstream down", status=503)})
    assert poll.outcome == AttestationOutcome.fatal
    assert "503" in poll.error


@pytest.mark.asyncio
async def test_malformed_json_is_fatal():
    poll, _ = await _poll({TX_HASH: web.Response(text="<html>", content_type="application/json")})
    assert poll.outcome == AttestationOutcome.fatal
    assert "JSON" in poll.error


@pytest.mark.asyncio
async def test_no_messages_is_pending():
    poll, _ = await _poll({TX_HASH: {"messages": []}})
    assert poll.outcome == AttestationOutcome.pending
    assert poll.status is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "message",
    [
        {"status": "pending_confirmations", "message": MESSAGE_HEX, "attestation": "PENDING"},
        {"status": "complete", "message": MESSAGE_HEX, "attestation": "PENDING"},
        {"status": "something_new", "message": MESSAGE_HEX, "attestation": None},
    ],
)
async def test_not_yet_attested_is_pending(message):
    poll, _ = await _poll({TX_HASH: {"messages": [message]}})
    assert poll.outcome == AttestationOutcome.pending
    assert poll.status == message["status"]

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"messages": ["oops"]},
        {"messages": {"status": "complete"}},
        {"messages": [None]},
        ["not", "a", "dict"],
    ],
)
async def test_unexpected_payload_is_fatal(payload):
    poll, _ = await _poll({TX_HASH: payload})
    assert poll.outcome == AttestationOutcome.fatal
    assert "unexpected" in poll.error


@pytest.mark.asyncio
@pytest.mark.parametrize("message_hex", [None, "", "0x"])
async def test_complete_without_message_is_fatal(message_hex):
    message = {"status": "complete", "message": message_hex, "attestation": ATTESTATION_HEX}
    poll, _ = await _poll({TX_HASH: {"messages": [message]}})
    assert poll.outcome == AttestationOutcome.fatal
    assert "without a message" in poll.error


@pytest.mark.asyncio
async def test_complete_with_non_hex_attestation_is_fatal():
    message = {"status": "complete", "message": MESSAGE_HEX, "attestation": 12345}
    poll, _ = await _poll({TX_HASH: {"messages": [message]}})
    assert poll.outcome == AttestationOutcome.fatal
    assert "undecodable" in poll.error


@pytest.mark.asyncio
async def test_connection_error_is_fatal():
    # Nothing listens on port 9 on localhost
    async with AttestationClient("http://127.0.0.1:9", request_timeout=5) as client:
        poll = await client.poll_attestation(TX_HASH, 6)
    assert poll.outcome == AttestationOutcome.fatal
    assert "request failed" in poll.error


def test_policy_defaults():
    policy = AttestationPolicy()
    assert policy.max_attempts == 120
    assert policy.poll_interval == 5.0
    assert policy.rate_limit_interval == 15.0
    assert policy.max_wait == 600.0


def test_policy_validation():
    with pytest.raises(ValueError):
        AttestationPolicy(max_attempts=0)

    with pytest.raises(ValueError):
        AttestationPolicy(poll_interval=-1)
