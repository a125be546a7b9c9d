"""Configuration from environment variables, orchestrator wiring and logging setup."""

import logging

import pytest
from eth_account import Account

from eth_cctp.attestation import AttestationPolicy
from eth_cctp.bridge import create_transfer_orchestrator
from eth_cctp.config import CCTPConfig, create_config_from_env
from eth_cctp.constants import IRIS_API_BASE_URL, IRIS_API_SANDBOX_URL
from eth_cctp.utils import setup_console_logging


def test_defaults():
    config = create_config_from_env(environ={})
    assert config.testnet
    assert config.rpc_urls == {}
    assert config.attestation_policy == AttestationPolicy()
    assert config.confirmations == 1
    assert config.confirmation_timeout == 300
    assert config.get_iris_api_url() == IRIS_API_SANDBOX_URL


def test_from_env():
    config = create_config_from_env(
        environ={
            "JSON_RPC_BASE_SEPOLIA": "http://localhost:8545",
            "JSON_RPC_ARBITRUM": "http://localhost:8546",
            "CCTP_TESTNET": "false",
            "CCTP_ATTESTATION_MAX_ATTEMPTS": "10",
            "CCTP_ATTESTATION_POLL_INTERVAL": "1.5",
            "CCTP_ATTESTATION_RATE_LIMIT_INTERVAL": "30",
            "CCTP_CONFIRMATIONS": "2",
            "CCTP_CONFIRMATION_TIMEOUT": "60",
        }
    )
    assert config.rpc_urls == {84532: "http://localhost:8545", 42161: "http://localhost:8546"}
    assert not config.testnet
    assert config.attestation_policy == AttestationPolicy(max_attempts=10, poll_interval=1.5, rate_limit_interval=30.0)
    assert config.confirmations == 2
    assert config.confirmation_timeout == 60.0
    assert config.get_iris_api_url() == IRIS_API_BASE_URL
    # Only mainnet chains are used on mainnet
    assert [c.chain_id for c in config.get_chains()] == [42161]


def test_iris_override():
    config = create_config_from_env(environ={"CCTP_IRIS_API_URL": "http://localhost:9999"})
    assert config.get_iris_api_url() == "http://localhost:9999"


@pytest.mark.parametrize(
    "key, value",
    [
        ("CCTP_ATTESTATION_MAX_ATTEMPTS", "many"),
        ("CCTP_ATTESTATION_MAX_ATTEMPTS", "0"),
        ("CCTP_ATTESTATION_POLL_INTERVAL", "fast"),
        ("CCTP_CONFIRMATIONS", "1.5"),
        ("CCTP_CONFIRMATION_TIMEOUT", "-1"),
    ],
)
def test_bad_numbers(key, value):
    with pytest.raises(ValueError):
        create_config_from_env(environ={key: value})


def test_create_orchestrator():
    account = Account.create()
    config = CCTPConfig(
        rpc_urls={84532: "http://localhost:8545", 421614: "http://localhost:8546"},
        attestation_policy=AttestationPolicy(max_attempts=3),
    )
    orchestrator = create_transfer_orchestrator(config, account)
    assert set(orchestrator.ledgers.keys()) == {84532, 421614}
    assert orchestrator.sender == account.address
    assert orchestrator.policy.max_attempts == 3
    assert orchestrator.attestation_client.api_base_url == IRIS_API_SANDBOX_URL
    assert orchestrator.ledgers[84532].signer is orchestrator.ledgers[421614].signer


def test_create_orchestrator_without_rpc():
    with pytest.raises(ValueError):
        create_transfer_orchestrator(CCTPConfig(), Account.create())


def test_console_logging(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_LEVEL", "info")
    log_file = tmp_path / "logs" / "bridge.log"
    root = setup_console_logging(log_file=log_file)
    try:
        logging.getLogger("eth_cctp.test").info("Hello file")
        assert "Hello file" in log_file.read_text()
    finally:
        for handler in list(root.handlers):
            if isinstance(handler, logging.FileHandler):
                root.removeHandler(handler)
                handler.close()


def test_console_logging_bad_level(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    with pytest.raises(ValueError):
        setup_console_logging()
