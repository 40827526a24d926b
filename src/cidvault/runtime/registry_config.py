# src/cidvault/runtime/registry_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_callers(v: Any, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if v is None:
        return tuple(default)
    if isinstance(v, str):
        items = v.split(",")
    elif isinstance(v, (list, tuple)):
        items = [str(x) for x in v]
    else:
        return tuple(default)
    return tuple(sorted({s.strip() for s in items if s.strip()}))


@dataclass(frozen=True)
class RegistryConfig:
    registry_id: str
    admin: str
    mode: str  # "dev" | "testnet" | "prod"

    # Single SQLite DB file for snapshot + events.
    db_path: str

    # Genesis params (written into the ledger on first boot only).
    min_fee: int
    message_size_estimate: int
    default_quota: int
    authorized_callers: Tuple[str, ...]

    api_host: str
    api_port: int

    log_level: str


_ALLOWED_MODES = {"dev", "testnet", "prod"}


def validate_registry_config(cfg: RegistryConfig) -> None:
    """Fail-fast validation for operator config."""

    if not isinstance(cfg.registry_id, str) or not cfg.registry_id.strip():
        raise ValueError("registry_id must be a non-empty string")

    if not isinstance(cfg.admin, str) or not cfg.admin.strip():
        raise ValueError("admin must be a non-empty string (set CIDVAULT_ADMIN or 'admin' in the config file)")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if not isinstance(cfg.db_path, str) or not cfg.db_path.strip():
        raise ValueError("db_path must be a non-empty string")

    if int(cfg.min_fee) < 0:
        raise ValueError(f"min_fee must be >= 0; got: {cfg.min_fee}")

    if int(cfg.message_size_estimate) <= 0:
        raise ValueError(f"message_size_estimate must be > 0; got: {cfg.message_size_estimate}")

    if int(cfg.default_quota) <= 0:
        raise ValueError(f"default_quota must be > 0; got: {cfg.default_quota}")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")


def default_registry_config() -> RegistryConfig:
    return RegistryConfig(
        registry_id="cidvault-dev",
        admin="",
        # If an operator runs without explicit config we must NOT silently drop
        # into a permissive development posture.
        mode="prod",
        db_path="./data/cidvault.db",
        min_fee=1_000,
        message_size_estimate=1024,
        default_quota=100 * 1024 * 1024,
        authorized_callers=(),
        api_host="0.0.0.0",
        api_port=8000,
        log_level="INFO",
    )


def _merge(raw: Json, d: RegistryConfig) -> RegistryConfig:
    return RegistryConfig(
        registry_id=_as_str(raw.get("registry_id"), d.registry_id),
        admin=_as_str(raw.get("admin"), d.admin).strip(),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        min_fee=_as_int(raw.get("min_fee"), d.min_fee),
        message_size_estimate=_as_int(raw.get("message_size_estimate"), d.message_size_estimate),
        default_quota=_as_int(raw.get("default_quota"), d.default_quota),
        authorized_callers=_as_callers(raw.get("authorized_callers"), d.authorized_callers),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level).strip().upper(),
    )


def read_registry_config_file(path: str, *, base: Optional[RegistryConfig] = None) -> RegistryConfig:
    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("registry config must be a JSON object")
    return _merge(raw, base or default_registry_config())


_ENV_KEYS = {
    "registry_id": "CIDVAULT_REGISTRY_ID",
    "admin": "CIDVAULT_ADMIN",
    "mode": "CIDVAULT_MODE",
    "db_path": "CIDVAULT_DB_PATH",
    "min_fee": "CIDVAULT_MIN_FEE",
    "message_size_estimate": "CIDVAULT_MESSAGE_SIZE_ESTIMATE",
    "default_quota": "CIDVAULT_DEFAULT_QUOTA",
    "authorized_callers": "CIDVAULT_AUTHORIZED_CALLERS",
    "api_host": "CIDVAULT_API_HOST",
    "api_port": "CIDVAULT_API_PORT",
    "log_level": "CIDVAULT_LOG_LEVEL",
}


def registry_config_from_env(base: RegistryConfig) -> RegistryConfig:
    raw: Json = {}
    for key, env_name in _ENV_KEYS.items():
        v = os.environ.get(env_name)
        if v is not None and v.strip():
            raw[key] = v.strip()
    return _merge(raw, base)


def load_registry_config(*, config_path: Optional[str] = None) -> RegistryConfig:
    """Defaults <- JSON file (CIDVAULT_CONFIG_PATH) <- CIDVAULT_* env vars, then validate."""
    cfg = default_registry_config()
    p = config_path or os.environ.get("CIDVAULT_CONFIG_PATH")
    if p:
        cfg = read_registry_config_file(p, base=cfg)
    cfg = registry_config_from_env(cfg)
    validate_registry_config(cfg)
    return cfg


def with_overrides(cfg: RegistryConfig, **changes: Any) -> RegistryConfig:
    out = replace(cfg, **changes)
    validate_registry_config(out)
    return out


def genesis_params(cfg: RegistryConfig) -> Json:
    return {
        "min_fee": int(cfg.min_fee),
        "message_size_estimate": int(cfg.message_size_estimate),
        "default_quota": int(cfg.default_quota),
    }
