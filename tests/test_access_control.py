from __future__ import annotations

import pytest

from cidvault.runtime.errors import ApplyError


@pytest.fixture
def message(executor) -> int:
    return executor.store("alice", "QmShared", "text", payment=1_000)


def _retrieve_code(ex, mid: int, who: str) -> str:
    try:
        ex.retrieve(mid, who)
    except ApplyError as e:
        return e.code
    return "ok"


def test_retrieve_matrix_over_lifecycle(executor, message) -> None:
    mid = message
    assert _retrieve_code(executor, mid, "alice") == "ok"
    assert _retrieve_code(executor, mid, "admin") == "ok"
    assert _retrieve_code(executor, mid, "bob") == "access_denied"
    assert _retrieve_code(executor, mid, "carol") == "access_denied"

    executor.grant_access(mid, "bob", "alice")
    assert _retrieve_code(executor, mid, "bob") == "ok"
    assert _retrieve_code(executor, mid, "carol") == "access_denied"

    executor.revoke_access(mid, "bob", "alice")
    assert _retrieve_code(executor, mid, "bob") == "access_denied"

    executor.grant_access(mid, "bob", "alice")
    executor.remove(mid, "alice")
    for who in ("alice", "admin", "bob", "carol"):
        assert _retrieve_code(executor, mid, who) == "deleted"


def test_retrieve_returns_content_ref_without_persisting(executor, message) -> None:
    before = executor.read_state()
    assert executor.retrieve(message, "alice") == "QmShared"
    assert executor.read_state() == before


def test_grant_is_idempotent(executor, message) -> None:
    executor.grant_access(message, "bob", "alice")
    once = executor.get(message)["access"]
    executor.grant_access(message, "bob", "alice")
    assert executor.get(message)["access"] == once == ["alice", "bob"]


def test_revoke_of_non_member_is_noop(executor, message) -> None:
    executor.revoke_access(message, "nobody", "alice")
    assert executor.get(message)["access"] == ["alice"]


def test_sender_keeps_access_after_self_revoke(executor, message) -> None:
    executor.revoke_access(message, "alice", "alice")
    assert executor.get(message)["access"] == []
    assert executor.has_access(message, "alice") is True
    assert executor.retrieve(message, "alice") == "QmShared"


def test_grant_and_revoke_are_sender_only(executor, message) -> None:
    for op in (executor.grant_access, executor.revoke_access):
        with pytest.raises(ApplyError) as ei:
            op(message, "bob", "admin")
        assert ei.value.code == "not_sender"

        with pytest.raises(ApplyError) as ei:
            op(404, "bob", "alice")
        assert ei.value.code == "not_found"


def test_grant_on_deleted_fails_but_revoke_is_allowed(executor, message) -> None:
    executor.grant_access(message, "bob", "alice")
    executor.remove(message, "alice")

    with pytest.raises(ApplyError) as ei:
        executor.grant_access(message, "carol", "alice")
    assert ei.value.code == "deleted"

    executor.revoke_access(message, "bob", "alice")
    assert executor.get(message)["access"] == ["alice"]


def test_has_access_is_pure(executor, message) -> None:
    executor.grant_access(message, "bob", "alice")
    assert executor.has_access(message, "alice") is True
    assert executor.has_access(message, "bob") is True
    assert executor.has_access(message, "carol") is False
    # Administrator reads are a retrieve-time privilege, not an access-set entry.
    assert executor.has_access(message, "admin") is False
    assert executor.has_access(999, "alice") is False

    executor.remove(message, "alice")
    assert executor.has_access(message, "bob") is True
