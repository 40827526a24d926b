from __future__ import annotations

import json
from pathlib import Path

import pytest

from cidvault.runtime.registry_config import (
    default_registry_config,
    genesis_params,
    load_registry_config,
    validate_registry_config,
    with_overrides,
)

_ENV = (
    "CIDVAULT_CONFIG_PATH",
    "CIDVAULT_REGISTRY_ID",
    "CIDVAULT_ADMIN",
    "CIDVAULT_MODE",
    "CIDVAULT_DB_PATH",
    "CIDVAULT_MIN_FEE",
    "CIDVAULT_MESSAGE_SIZE_ESTIMATE",
    "CIDVAULT_DEFAULT_QUOTA",
    "CIDVAULT_AUTHORIZED_CALLERS",
    "CIDVAULT_API_HOST",
    "CIDVAULT_API_PORT",
    "CIDVAULT_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for k in _ENV:
        monkeypatch.delenv(k, raising=False)


def test_defaults_are_production_safe() -> None:
    cfg = default_registry_config()
    assert cfg.mode == "prod"
    assert cfg.min_fee == 1_000
    assert cfg.message_size_estimate == 1024
    assert cfg.default_quota == 100 * 1024 * 1024
    assert cfg.authorized_callers == ()
    # No implicit administrator.
    with pytest.raises(ValueError):
        validate_registry_config(cfg)


def test_load_requires_admin() -> None:
    with pytest.raises(ValueError):
        load_registry_config()


def test_file_then_env_precedence(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    p = tmp_path / "registry.json"
    p.write_text(
        json.dumps(
            {
                "registry_id": "from-file",
                "admin": "file-admin",
                "mode": "testnet",
                "min_fee": 50,
                "authorized_callers": ["svc-b", "svc-a", "svc-a"],
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("CIDVAULT_CONFIG_PATH", str(p))
    monkeypatch.setenv("CIDVAULT_ADMIN", "env-admin")
    monkeypatch.setenv("CIDVAULT_API_PORT", "9100")

    cfg = load_registry_config()
    assert cfg.registry_id == "from-file"
    assert cfg.admin == "env-admin"
    assert cfg.mode == "testnet"
    assert cfg.min_fee == 50
    assert cfg.authorized_callers == ("svc-a", "svc-b")
    assert cfg.api_port == 9100


def test_env_callers_are_comma_separated(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CIDVAULT_ADMIN", "root")
    monkeypatch.setenv("CIDVAULT_AUTHORIZED_CALLERS", " gw-1, gw-2 ,,gw-1")
    monkeypatch.setenv("CIDVAULT_LOG_LEVEL", "debug")
    cfg = load_registry_config()
    assert cfg.authorized_callers == ("gw-1", "gw-2")
    assert cfg.log_level == "DEBUG"


def test_explicit_config_path_argument(tmp_path: Path) -> None:
    p = tmp_path / "c.json"
    p.write_text(json.dumps({"admin": "root", "db_path": "/var/lib/cidvault/r.db"}), encoding="utf-8")
    cfg = load_registry_config(config_path=str(p))
    assert cfg.db_path == "/var/lib/cidvault/r.db"


def test_config_file_must_be_an_object(tmp_path: Path) -> None:
    p = tmp_path / "bad.json"
    p.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        load_registry_config(config_path=str(p))


@pytest.mark.parametrize(
    "changes",
    [
        {"mode": "staging"},
        {"registry_id": " "},
        {"min_fee": -1},
        {"message_size_estimate": 0},
        {"default_quota": 0},
        {"api_port": 70000},
        {"db_path": ""},
    ],
)
def test_validation_rejects(changes: dict) -> None:
    base = with_overrides(default_registry_config(), admin="root")
    with pytest.raises(ValueError):
        with_overrides(base, **changes)


def test_zero_min_fee_is_allowed() -> None:
    cfg = with_overrides(default_registry_config(), admin="root", min_fee=0)
    assert genesis_params(cfg) == {"min_fee": 0, "message_size_estimate": 1024, "default_quota": 100 * 1024 * 1024}
