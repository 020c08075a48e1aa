import pytest

from juniorsavers.exceptions import PermissionDeniedError, StoreUnavailableError
from juniorsavers.store import InMemoryDocumentStore, curriculum_path, profile_path, sanitize_app_id


def test_paths_with_and_without_namespace() -> None:
    assert profile_path("abc") == "profile/abc"
    assert curriculum_path() == "curriculum/global"
    assert profile_path("abc", namespace="junior-savers v3") == "artifacts/junior_savers_v3/profile/abc"
    assert sanitize_app_id("a.b-c") == "a_b_c"
    with pytest.raises(ValueError):
        profile_path("")


def test_merge_write_updates_only_given_fields() -> None:
    store = InMemoryDocumentStore()
    store.merge_write("profile/u1", {"balance": 5, "xp": 5})

    store.merge_write("profile/u1", {"xp": 9})

    snapshot = store.get("profile/u1")
    assert snapshot.exists
    assert snapshot.data == {"balance": 5, "xp": 9}


def test_replace_write_drops_previous_fields() -> None:
    store = InMemoryDocumentStore()
    store.replace_write("curriculum/global", {"data": {"1": []}, "extra": True})

    store.replace_write("curriculum/global", {"data": {"2": []}})

    assert store.get("curriculum/global").data == {"data": {"2": []}}


def test_subscribe_delivers_current_snapshot_then_changes() -> None:
    store = InMemoryDocumentStore()
    seen = []

    unsubscribe = store.subscribe("profile/u1", seen.append)
    store.merge_write("profile/u1", {"balance": 1})
    unsubscribe()
    store.merge_write("profile/u1", {"balance": 2})

    assert [snapshot.exists for snapshot in seen] == [False, True]
    assert seen[1].data == {"balance": 1}
    assert store.subscriber_count("profile/u1") == 0


def test_snapshots_are_copies() -> None:
    store = InMemoryDocumentStore()
    store.merge_write("profile/u1", {"completedLessons": ["g1w1"]})

    store.get("profile/u1").data["completedLessons"].append("tampered")

    assert store.get("profile/u1").data == {"completedLessons": ["g1w1"]}


def test_manual_delivery_queues_snapshots() -> None:
    store = InMemoryDocumentStore(auto_deliver=False)
    seen = []
    store.subscribe("profile/u1", seen.append)
    store.merge_write("profile/u1", {"xp": 3})

    assert seen == []
    assert store.pending_deliveries == 2
    assert store.deliver_pending() == 2
    assert seen[-1].data == {"xp": 3}


def test_offline_store_raises_unavailable() -> None:
    store = InMemoryDocumentStore()
    store.set_online(False)

    with pytest.raises(StoreUnavailableError):
        store.get("profile/u1")
    with pytest.raises(StoreUnavailableError):
        store.merge_write("profile/u1", {"xp": 1})


def test_denied_path_raises_permission_error() -> None:
    store = InMemoryDocumentStore()
    store.deny("curriculum/global")

    with pytest.raises(PermissionDeniedError) as excinfo:
        store.replace_write("curriculum/global", {"data": {}})

    assert excinfo.value.path == "curriculum/global"
    store.allow("curriculum/global")
    store.replace_write("curriculum/global", {"data": {}})
    assert store.get("curriculum/global").exists
