"""Tests for configuration loading and validation."""

import pytest
from pydantic import ValidationError

from webhook_bridge.config import AccountConfig, AppConfig, DmConfig, load_config
from webhook_bridge.core.accounts import resolve_account
from webhook_bridge.core.types import DmPolicy


def test_account_defaults():
    cfg = AccountConfig()
    assert cfg.inbound.port == 5000
    assert cfg.inbound.path == "/"
    assert cfg.outbound.timeout_seconds == 30
    assert cfg.dm.policy == DmPolicy.PAIRING
    assert cfg.media_max_mb == 20
    assert cfg.media_max_bytes == 20 * 1024 * 1024
    assert cfg.text_chunk_limit == 4000


def test_camel_case_keys_accepted():
    cfg = AccountConfig.model_validate(
        {
            "outbound": {"url": "https://x", "token": "t", "timeoutSeconds": 5},
            "dm": {"policy": "allowlist", "allowFrom": ["u1"]},
            "mediaMaxMb": 2,
            "textChunkLimit": 100,
        }
    )
    assert cfg.outbound.timeout_seconds == 5
    assert cfg.dm.allow_from == ["u1"]
    assert cfg.media_max_bytes == 2 * 1024 * 1024
    assert cfg.text_chunk_limit == 100


def test_open_policy_requires_wildcard():
    with pytest.raises(ValidationError, match="allowFrom"):
        DmConfig(policy="open", allow_from=["u1"])
    assert DmConfig(policy="open", allow_from=["*"]).policy == DmPolicy.OPEN


@pytest.mark.parametrize(
    "data",
    [
        {"inbound": {"port": 0}},
        {"inbound": {"port": 70000}},
        {"outbound": {"timeoutSeconds": 0}},
        {"dm": {"policy": "everyone"}},
        {"textChunkLimit": 0},
        {"unknownKey": True},
    ],
)
def test_invalid_account_config_rejected(data):
    with pytest.raises(ValidationError):
        AccountConfig.model_validate(data)


def test_anthropic_backend_requires_section():
    with pytest.raises(ValidationError, match="anthropic"):
        AppConfig(backend={"kind": "anthropic"})


def test_load_config_interpolates_env(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_INBOUND_TOKEN", "from-env")
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "data_dir: ./state\n"
        "webhook:\n"
        "  inbound:\n"
        "    token: ${TEST_INBOUND_TOKEN}\n"
        "storage:\n"
        "  db_path: ${data_dir}/bridge.db\n",
        encoding="utf-8",
    )
    config = load_config(config_file, tmp_path / "missing.env")
    assert config.webhook.inbound.token == "from-env"
    assert config.storage.db_path == "./state/bridge.db"


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", tmp_path / ".env")


def test_load_config_rejects_open_without_wildcard(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "webhook:\n  dm:\n    policy: open\n    allowFrom: [u1]\n", encoding="utf-8"
    )
    with pytest.raises(ValidationError):
        load_config(config_file, tmp_path / ".env")


def test_credential_source_requires_all_three():
    full = resolve_account(
        AccountConfig.model_validate(
            {"inbound": {"token": "a"}, "outbound": {"url": "https://x", "token": "b"}}
        )
    )
    assert full.credential_source == "config"
    assert full.configured

    partial = resolve_account(AccountConfig.model_validate({"inbound": {"token": "a"}}))
    assert partial.credential_source == "none"
    assert not partial.configured
    assert partial.account_id == "default"
