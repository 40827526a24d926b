from __future__ import annotations

import pytest

from cidvault.runtime import metrics
from cidvault.runtime.errors import ApplyError


@pytest.fixture(autouse=True)
def _fresh_metrics():
    metrics.reset()
    yield
    metrics.reset()


def test_executor_counts_ops_rejects_and_events(executor) -> None:
    executor.store("alice", "QmM1", payment=1_000)
    executor.store("alice", "QmM2", payment=1_000)
    executor.remove(1, "alice")
    with pytest.raises(ApplyError):
        executor.store("mallory", "QmM3", payment=1_000)

    snap = metrics.snapshot()
    assert snap["counters"]["registry_ops_total"] == 3
    assert snap["counters"]["registry_rejects_total"] == 1
    assert snap["counters"]["events_stored_total"] == 2
    assert snap["counters"]["events_deleted_total"] == 1
    assert snap["counters"]["ops_message_store_total"] == 2
    assert snap["counters"]["rejects_unauthorized_total"] == 1
    # Allocated ids, deleted included.
    assert snap["gauges"]["messages_total"] == 2


def test_prometheus_text() -> None:
    metrics.inc_counter("registry_ops_total", 2)
    metrics.set_gauge("messages_total", 7)
    text = metrics.format_prometheus()
    assert "cidvault_registry_ops_total 2\n" in text
    assert "cidvault_messages_total 7\n" in text
    assert text.startswith("cidvault_uptime_ms ")


def test_enabled_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CIDVAULT_METRICS_ENABLED", raising=False)
    assert metrics.metrics_enabled() is False
    monkeypatch.setenv("CIDVAULT_METRICS_ENABLED", "yes")
    assert metrics.metrics_enabled() is True
