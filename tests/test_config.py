"""Server configuration and environment overrides."""

import pytest

from conftest import TEST_IDENTITY, TEST_UUID
from wsrelay.models.enums import LogLevel
from wsrelay.server.config import ServerConfig


def test_defaults():
    cfg = ServerConfig()

    assert cfg.PORT == 8080
    assert cfg.CONNECT_TIMEOUT_SECONDS == 10.0
    assert cfg.IDLE_TIMEOUT_SECONDS == 300.0
    assert cfg.SESSION_QUOTA_BYTES == 0
    assert cfg.identity() is None
    assert cfg.accepted_versions() == frozenset({0})


def test_uuid_and_port_env():
    cfg = ServerConfig().load_env({"UUID": TEST_UUID, "PORT": "9000"})

    assert cfg.USER_ID == TEST_UUID
    assert cfg.identity() == TEST_IDENTITY
    assert cfg.PORT == 9000


def test_prefixed_env_takes_precedence():
    cfg = ServerConfig().load_env(
        {
            "PORT": "9000",
            "WSRELAY_PORT": "9100",
            "WSRELAY_SESSION_QUOTA_BYTES": "5242880",
            "WSRELAY_IDLE_TIMEOUT_SECONDS": "30.5",
            "WSRELAY_ACCEPTED_VERSIONS": "0,1",
            "WSRELAY_LOG_LEVEL": "DEBUG",
        }
    )

    assert cfg.PORT == 9100
    assert cfg.SESSION_QUOTA_BYTES == 5 * 1024 * 1024
    assert cfg.IDLE_TIMEOUT_SECONDS == 30.5
    assert cfg.accepted_versions() == frozenset({0, 1})
    assert cfg.LOG_LEVEL == LogLevel.DEBUG


def test_empty_versions_accept_everything():
    cfg = ServerConfig(ACCEPTED_VERSIONS=[])
    assert cfg.accepted_versions() is None


def test_invalid_env_value():
    with pytest.raises(ValueError, match="WSRELAY_PORT"):
        ServerConfig().load_env({"WSRELAY_PORT": "eighty"})


def test_invalid_uuid_rejects_all():
    cfg = ServerConfig(USER_ID="not-a-uuid")
    assert cfg.identity() is None
