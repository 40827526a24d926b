from __future__ import annotations

import pytest

from cidvault.runtime.errors import ApplyError


def _store(ex, ref: str, *, caller: str = "alice", payment: int = 1_000, **kw) -> int:
    return ex.store(caller, ref, "text", payment=payment, **kw)


def test_ids_are_sequential_from_one_and_never_reused(executor) -> None:
    ids = [_store(executor, f"Qm{i}") for i in range(5)]
    assert ids == [1, 2, 3, 4, 5]

    executor.remove(2, "alice")
    executor.remove(5, "alice")

    assert _store(executor, "QmAfterDelete") == 6
    assert executor.total_count() == 6


def test_qm123_delete_then_retrieve_and_restore(executor) -> None:
    executor.authorize("bob", "admin")

    mid = _store(executor, "Qm123")
    assert mid == 1

    executor.remove(1, "alice")

    with pytest.raises(ApplyError) as ei:
        executor.retrieve(1, "alice")
    assert ei.value.code == "deleted"

    for caller in ("alice", "bob"):
        with pytest.raises(ApplyError) as ei:
            _store(executor, "Qm123", caller=caller)
        assert ei.value.code == "duplicate_content"

    # Deleted records stay in place, flagged.
    rec = executor.get(1)
    assert rec is not None
    assert rec["deleted"] is True
    assert rec["content_ref"] == "Qm123"


def test_unauthorized_store_allocates_nothing(executor) -> None:
    _store(executor, "QmFirst")
    before = executor.total_count()

    with pytest.raises(ApplyError) as ei:
        _store(executor, "QmIntruder", caller="mallory")
    assert ei.value.code == "unauthorized"

    assert executor.total_count() == before
    assert executor.view().message_id_for_content_ref("QmIntruder") is None
    assert executor.list_by_submitter("mallory") == []
    # The next successful store still gets the next id.
    assert _store(executor, "QmSecond") == before + 1


def test_store_check_order(executor) -> None:
    # Unauthorized is reported before the fee and the content checks.
    with pytest.raises(ApplyError) as ei:
        executor.store("mallory", "", payment=0)
    assert ei.value.code == "unauthorized"

    with pytest.raises(ApplyError) as ei:
        executor.store("alice", "", payment=999)
    assert ei.value.code == "insufficient_fee"

    with pytest.raises(ApplyError) as ei:
        executor.store("alice", "", payment=1_000)
    assert ei.value.code == "empty_content_ref"

    assert executor.total_count() == 0


def test_admin_is_implicitly_authorized_to_store(executor) -> None:
    assert _store(executor, "QmAdmin", caller="admin") == 1


def test_store_on_behalf_of_submitter(executor) -> None:
    mid = _store(executor, "QmProxy", sender="carol")
    rec = executor.get(mid)
    assert rec["sender"] == "carol"
    assert rec["access"] == ["carol"]
    assert executor.list_by_submitter("carol") == [mid]
    assert executor.retrieve(mid, "carol") == "QmProxy"
    assert executor.info("carol").message_count == 1


def test_record_fields(executor) -> None:
    mid = executor.store("alice", "QmFields", "image/png", payment=2_500)
    rec = executor.get(mid)
    assert rec["id"] == mid
    assert rec["sender"] == "alice"
    assert rec["message_type"] == "image/png"
    assert rec["deleted"] is False
    assert rec["created_at_ms"] > 0
    assert executor.view().message_id_for_content_ref("QmFields") == mid


def test_get_unknown_id_returns_none(executor) -> None:
    assert executor.get(0) is None
    assert executor.get(42) is None


def test_delete_rules(executor) -> None:
    executor.authorize("bob", "admin")
    mid = _store(executor, "QmDel")

    with pytest.raises(ApplyError) as ei:
        executor.remove(99, "alice")
    assert ei.value.code == "not_found"

    # Not even the admin may delete someone else's message.
    for other in ("bob", "admin"):
        with pytest.raises(ApplyError) as ei:
            executor.remove(mid, other)
        assert ei.value.code == "not_sender"

    executor.remove(mid, "alice")
    with pytest.raises(ApplyError) as ei:
        executor.remove(mid, "alice")
    assert ei.value.code == "already_deleted"


def test_retrieve_unknown_ids(executor) -> None:
    for mid in (0, -1, 1, 1000):
        with pytest.raises(ApplyError) as ei:
            executor.retrieve(mid, "alice")
        assert ei.value.code == "not_found"


def test_list_by_submitter_pagination(executor) -> None:
    ids = [_store(executor, f"QmPage{i}") for i in range(5)]
    executor.remove(ids[1], "alice")

    # Deleted ids remain listed, creation order preserved.
    assert executor.list_by_submitter("alice", 0, 10) == ids
    assert executor.list_by_submitter("alice", 1, 2) == ids[1:3]
    # offset within range, offset+limit past the end: exactly the tail.
    assert executor.list_by_submitter("alice", 3, 10) == ids[3:]
    # offset at or past the end: empty.
    assert executor.list_by_submitter("alice", 5, 10) == []
    assert executor.list_by_submitter("alice", 50, 1) == []
    assert executor.list_by_submitter("alice", 0, 0) == []
    assert executor.list_by_submitter("nobody", 0, 10) == []


def test_state_survives_restart(tmp_path, executor) -> None:
    from cidvault.runtime.registry import RegistryExecutor

    mid = _store(executor, "QmDurable")
    executor.grant_access(mid, "dave", "alice")

    again = RegistryExecutor(db_path=executor.db_path, registry_id="cidvault-test", admin="someone-else")
    assert again.total_count() == 1
    assert again.retrieve(mid, "dave") == "QmDurable"
    # Genesis is not rewritten on a later boot.
    assert again.view().admin == "admin"


def test_content_ref_and_message_type_are_stored_verbatim(executor) -> None:
    mid = executor.store("alice", " Qm1 ", "  Text/Plain ", payment=1_000)
    assert executor.retrieve(mid, "alice") == " Qm1 "
    assert executor.get(mid)["message_type"] == "  Text/Plain "

    # Distinct byte strings are distinct references.
    other = _store(executor, "Qm1")
    assert other == mid + 1
    assert executor.view().message_id_for_content_ref("Qm1") == other

    with pytest.raises(ApplyError) as ei:
        _store(executor, " Qm1 ")
    assert ei.value.code == "duplicate_content"

    # Whitespace-only is a non-empty opaque reference.
    assert executor.retrieve(_store(executor, "   "), "alice") == "   "
