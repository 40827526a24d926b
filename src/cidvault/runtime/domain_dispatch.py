# src/cidvault/runtime/domain_dispatch.py

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from cidvault.runtime.errors import INVALID_TX, TX_UNIMPLEMENTED, ApplyError
from cidvault.runtime.state_invariants import ensure_state
from cidvault.runtime.tx_types import TxEnvelope

# Domain appliers (each returns Optional[Json]; returning None means "not claimed")
from cidvault.runtime.apply.auth import apply_auth
from cidvault.runtime.apply.fees import apply_fees
from cidvault.runtime.apply.messages import apply_messages
from cidvault.runtime.apply.quota import apply_quota

Json = Dict[str, Any]
ApplyFn = Callable[[Json, Any], Optional[Json]]


def _get(env: Any, key: str, default: Any = None) -> Any:
    """Read a field from either a TxEnvelope or a dict.

    Tests and tools pass raw dict envelopes directly into apply_tx(); the
    executor passes TxEnvelope objects.
    """

    if isinstance(env, dict):
        return env.get(key, default)
    return getattr(env, key, default)


def _tx_type(env: Any) -> str:
    return str(_get(env, "tx_type", "") or "").strip().upper()


_APPLIERS: tuple[ApplyFn, ...] = (
    apply_auth,
    apply_quota,
    apply_messages,
    apply_fees,
)


def apply_tx(state: Json, env: Any) -> Json:
    """Dispatch a TxEnvelope to the first domain applier that claims it.

    Mutates `state` in place; callers that need all-or-nothing semantics use
    domain_apply.apply_tx_atomic().
    """

    ensure_state(state)

    env_norm: Any = env
    if isinstance(env, dict):
        env_norm = TxEnvelope.from_json(env)

    t = _tx_type(env_norm)
    if not t:
        raise ApplyError(INVALID_TX, "missing_tx_type", {"tx_type": t})
    if not str(_get(env_norm, "signer", "") or "").strip():
        raise ApplyError(INVALID_TX, "missing_signer", {"tx_type": t})

    if t != env_norm.tx_type:
        env_norm = TxEnvelope(
            tx_type=t,
            signer=env_norm.signer,
            payload=env_norm.payload,
            value=env_norm.value,
            ts_ms=env_norm.ts_ms,
        )

    for fn in _APPLIERS:
        try:
            out = fn(state, env_norm)
        except ApplyError:
            raise
        except Exception as e:
            raise ApplyError(
                "domain_error",
                type(e).__name__,
                {"tx_type": t, "domain": fn.__name__, "error": str(e)},
            ) from e

        if out is not None:
            return out

    raise ApplyError(TX_UNIMPLEMENTED, "tx_type_not_implemented", {"tx_type": t})
