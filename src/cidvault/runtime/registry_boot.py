# src/cidvault/runtime/registry_boot.py

from __future__ import annotations

from typing import Optional

from cidvault.runtime.payout import PayoutChannel, payout_channel_from_env
from cidvault.runtime.registry import RegistryExecutor
from cidvault.runtime.registry_config import RegistryConfig, genesis_params, load_registry_config


def build_executor(cfg: Optional[RegistryConfig] = None, *, payout: Optional[PayoutChannel] = None) -> RegistryExecutor:
    """
    Build a RegistryExecutor from an explicit config or, if omitted, from
    CIDVAULT_CONFIG_PATH / CIDVAULT_* environment variables.

    `cidvault.api.app` calls build_executor() with no args in production.
    """
    c = cfg or load_registry_config()
    return RegistryExecutor(
        db_path=c.db_path,
        registry_id=c.registry_id,
        admin=c.admin,
        params=genesis_params(c),
        authorized_callers=c.authorized_callers,
        payout=payout if payout is not None else payout_channel_from_env(registry_id=c.registry_id),
    )
