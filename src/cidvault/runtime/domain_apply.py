# src/cidvault/runtime/domain_apply.py
# ---------------------------------------------------------------------------
# Public, stable import path for applying tx envelopes.
# ---------------------------------------------------------------------------

from __future__ import annotations

import copy
from typing import Any, Dict, Tuple

from cidvault.runtime.domain_dispatch import apply_tx
from cidvault.runtime.errors import ApplyError
from cidvault.runtime.tx_types import TxEnvelope

Json = Dict[str, Any]


def apply_tx_on_copy(state: Json, env: Any) -> Tuple[Json, Json]:
    """Apply a tx to a deep copy of `state`.

    Returns (working_state, meta). `state` itself is never touched, so a
    rejected tx cannot leave a partial mutation behind.
    """
    env_norm: Any = env
    if isinstance(env, dict):
        env_norm = TxEnvelope.from_json(env)

    working = copy.deepcopy(state)
    meta = apply_tx(working, env_norm)
    return working, meta


def apply_tx_atomic(state: Json, env: Any) -> Json:
    """Apply a tx with fail-atomic semantics.

    On success:
      - state is updated as if apply_tx() ran directly.

    On ApplyError:
      - state remains unchanged.
    """
    working, meta = apply_tx_on_copy(state, env)

    # Commit by replacing contents in-place so callers holding references
    # to `state` see the updated view.
    state.clear()
    state.update(working)
    return meta


__all__ = ["ApplyError", "apply_tx", "apply_tx_atomic", "apply_tx_on_copy", "Json"]
