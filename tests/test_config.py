"""Settings loading and startup validation tests."""

import pytest

from asset_registry.core.config import Settings


def test_missing_chain_settings_fail_fast(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.delenv("RPC_URL", raising=False)
    monkeypatch.delenv("CONTRACT_ADDRESS", raising=False)

    with pytest.raises(ValueError) as exc_info:
        Settings()  # type: ignore[call-arg]

    assert "RPC_URL" in str(exc_info.value)
    assert "CONTRACT_ADDRESS" in str(exc_info.value)


def test_sync_settings_from_environment(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("RPC_URL", "https://rpc.example")
    monkeypatch.setenv("CONTRACT_ADDRESS", "0x5fbdb2315678afecb367f032d93f642f64180aa3")
    monkeypatch.setenv("SYNC_INTERVAL_SECONDS", "2.5")
    monkeypatch.setenv("SYNC_CONFIRMATIONS", "3")
    monkeypatch.setenv("SYNC_RESUME_FROM_CHECKPOINT", "true")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test")

    settings = Settings()  # type: ignore[call-arg]

    assert settings.sync_interval_seconds == 2.5
    assert settings.sync_confirmations == 3
    assert settings.sync_resume_from_checkpoint is True
    assert settings.rpc_timeout_seconds == 30.0
    assert settings.cors_origins_list == ["http://a.test", "http://b.test"]
    assert settings.live_path_enabled is False


def test_live_path_enabled_with_ws_url(monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("WS_RPC_URL", "wss://rpc.example/ws")

    assert Settings().live_path_enabled  # type: ignore[call-arg]
