"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from scriptpilot.services.settings import SecretVault, Settings, SettingsStore, redact_secret


def _store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "key"))


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    settings = _store(tmp_path).load()

    assert settings == Settings()
    assert settings.max_turns == 10
    assert settings.max_tool_iterations == 8


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    store = _store(tmp_path)
    original = Settings(
        base_url="https://example.com/v1",
        api_key="super-secret",
        model="claude-sonnet-4-5",
        organization="acme",
        max_turns=4,
        session_idle_timeout=600.0,
        store_url="https://platform.example.com",
        model_headers={"X-Test": "1"},
        store_headers={"Authorization": "Bearer store"},
    )

    store.save(original)
    reloaded = _store(tmp_path).load()

    assert reloaded == original


def test_api_key_is_encrypted_on_disk(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Settings(api_key="super-secret"))

    payload = json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))

    assert "api_key" not in payload
    assert payload["api_key_ciphertext"].startswith("fernet:")
    assert "super-secret" not in payload["api_key_ciphertext"]
    assert payload["version"] == 1
    assert payload["secret_backend"] == "fernet"


def test_load_legacy_plaintext_api_key_migrates(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(json.dumps({"api_key": "legacy", "model": "m"}), encoding="utf-8")

    settings = _store(tmp_path).load()

    assert settings.api_key == "legacy"
    migrated = json.loads(target.read_text(encoding="utf-8"))
    assert "api_key" not in migrated
    assert migrated["api_key_ciphertext"]


def test_invalid_json_falls_back_to_defaults(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text("{not json", encoding="utf-8")

    assert _store(tmp_path).load() == Settings()


def test_unknown_fields_are_ignored(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text(
        json.dumps({"model": "m", "theme": "dark", "version": 1}), encoding="utf-8"
    )

    settings = _store(tmp_path).load()

    assert settings.model == "m"


def test_cli_overrides_replace_fields(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Settings(store_headers={"Authorization": "Bearer old"}))

    settings = store.load(
        overrides={"max_turns": 3, "store_headers": {"X-Team": "web"}, "bogus": 1}
    )

    assert settings.max_turns == 3
    assert settings.store_headers == {"X-Team": "web"}
    assert settings.backend_headers == {}


def test_non_mapping_headers_are_ignored(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text(
        json.dumps({"model": "m", "store_headers": "Bearer x", "backend_headers": {"A": "1"}}),
        encoding="utf-8",
    )

    settings = _store(tmp_path).load()

    assert settings.store_headers == {}
    assert settings.backend_headers == {"A": "1"}


def test_environment_overrides_win(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SCRIPTPILOT_API_KEY", "from-env")
    monkeypatch.setenv("SCRIPTPILOT_MAX_TURNS", "5")
    monkeypatch.setenv("SCRIPTPILOT_DEBUG_EVENT_LOGGING", "yes")
    monkeypatch.setenv("SCRIPTPILOT_SESSION_IDLE_TIMEOUT", "120")

    settings = _store(tmp_path).load(overrides={"max_turns": 2})

    assert settings.api_key == "from-env"
    assert settings.max_turns == 5
    assert settings.debug_event_logging is True
    assert settings.session_idle_timeout == 120.0


def test_invalid_numeric_environment_override_is_ignored(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("SCRIPTPILOT_MAX_TOOL_ITERATIONS", "lots")

    settings = _store(tmp_path).load()

    assert settings.max_tool_iterations == 8


def test_vault_rejects_tampered_tokens(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "key")
    token = vault.encrypt("secret")

    assert vault.decrypt(token) == "secret"
    with pytest.raises(ValueError):
        vault.decrypt(token[:-4] + "AAAA")


def test_redact_secret() -> None:
    assert redact_secret("") == ""
    assert redact_secret("abc") == "***"
    assert redact_secret("sk-123456") == "sk*****56"
