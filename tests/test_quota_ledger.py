from __future__ import annotations

import pytest

from cidvault.ledger.state import AccountInfo
from cidvault.runtime.errors import ApplyError

ESTIMATE = 1024


@pytest.mark.parametrize("n,m", [(1, 0), (3, 1), (5, 5), (7, 3)])
def test_usage_after_n_stores_and_m_deletes(executor, n: int, m: int) -> None:
    ids = [executor.store("alice", f"QmQuota{i}", payment=1_000) for i in range(n)]
    for mid in ids[:m]:
        executor.remove(mid, "alice")

    info = executor.info("alice")
    assert info.used_storage == (n - m) * ESTIMATE
    assert info.message_count == n - m


def test_unknown_user_reads_as_empty(executor) -> None:
    assert executor.info("ghost") == AccountInfo(0, 0, 0, False)


def test_initialize_sets_default_quota_once(executor) -> None:
    executor.initialize("bob", "alice")
    info = executor.info("bob")
    assert info.active is True
    assert info.storage_quota == 10 * 1024

    executor.set_quota("bob", 4096, "admin")
    # Re-initializing an active account leaves it untouched.
    executor.initialize("bob", "admin")
    assert executor.info("bob").storage_quota == 4096


def test_initialize_requires_authorized_caller(executor) -> None:
    with pytest.raises(ApplyError) as ei:
        executor.initialize("bob", "mallory")
    assert ei.value.code == "unauthorized"
    assert executor.info("bob").active is False


def test_set_quota_is_admin_only(executor) -> None:
    with pytest.raises(ApplyError) as ei:
        executor.set_quota("bob", 4096, "alice")
    assert ei.value.code == "unauthorized"


@pytest.mark.parametrize("quota", [0, -1])
def test_set_quota_rejects_non_positive(executor, quota: int) -> None:
    with pytest.raises(ApplyError) as ei:
        executor.set_quota("bob", quota, "admin")
    assert ei.value.code == "invalid_quota"


def test_quota_is_advisory(executor) -> None:
    executor.initialize("alice", "admin")
    executor.set_quota("alice", 1, "admin")

    # Tightening below current usage is accepted, and later stores still succeed.
    for i in range(3):
        executor.store("alice", f"QmOver{i}", payment=1_000)
    info = executor.info("alice")
    assert info.storage_quota == 1
    assert info.used_storage == 3 * ESTIMATE


def test_store_without_initialized_account_tracks_usage(executor) -> None:
    executor.store("alice", "QmNoInit", payment=1_000)
    info = executor.info("alice")
    assert info.active is False
    assert info.message_count == 1
    assert info.used_storage == ESTIMATE
