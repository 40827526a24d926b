from __future__ import annotations

import os
import threading
import time
from typing import Dict, Optional

# Process-local registry metrics. Counters only grow; gauges are overwritten.
# Nothing here touches the ledger, so it is safe to call from any thread.

_lock = threading.Lock()
_counters: Dict[str, int] = {}
_gauges: Dict[str, int] = {}
_started_ms = int(time.time() * 1000)


def metrics_enabled() -> bool:
    v = (os.environ.get("CIDVAULT_METRICS_ENABLED") or "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def _name(raw: str) -> str:
    return "".join(ch if ch.isalnum() or ch == "_" else "_" for ch in str(raw or "").strip().lower())


def inc_counter(name: str, value: int = 1) -> None:
    n = _name(name)
    if not n:
        return
    with _lock:
        _counters[n] = _counters.get(n, 0) + int(value)


def set_gauge(name: str, value: int) -> None:
    n = _name(name)
    if not n:
        return
    with _lock:
        _gauges[n] = int(value)


def record_op(tx_type: str, *, error_code: Optional[str] = None, event_kind: Optional[str] = None) -> None:
    """Account one executor outcome: committed (error_code None) or rejected."""
    t = _name(tx_type) or "unknown"
    with _lock:
        if error_code is None:
            _counters["registry_ops_total"] = _counters.get("registry_ops_total", 0) + 1
            key = f"ops_{t}_total"
        else:
            _counters["registry_rejects_total"] = _counters.get("registry_rejects_total", 0) + 1
            key = f"rejects_{_name(error_code) or 'unknown'}_total"
        _counters[key] = _counters.get(key, 0) + 1
        if event_kind:
            ek = f"events_{_name(event_kind)}_total"
            _counters[ek] = _counters.get(ek, 0) + 1


def snapshot() -> dict:
    now = int(time.time() * 1000)
    with _lock:
        return {
            "ts_ms": now,
            "uptime_ms": now - _started_ms,
            "counters": dict(_counters),
            "gauges": dict(_gauges),
        }


def reset() -> None:
    """Clear counters and gauges (tests)."""
    with _lock:
        _counters.clear()
        _gauges.clear()


def format_prometheus(prefix: str = "cidvault_") -> str:
    """Prometheus exposition text: uptime, then counters, then gauges, each sorted by name."""
    pre = _name(prefix) or "cidvault_"
    snap = snapshot()
    lines = [f"{pre}uptime_ms {snap['uptime_ms']}"]
    lines.extend(f"{pre}{k} {v}" for k, v in sorted(snap["counters"].items()))
    lines.extend(f"{pre}{k} {v}" for k, v in sorted(snap["gauges"].items()))
    return "\n".join(lines) + "\n"
