import pytest

pytest.importorskip("sqlmodel")
from sqlmodel import Session

from juniorsavers.context import SyncContext
from juniorsavers.exceptions import StoreUnavailableError
from juniorsavers.ops import StructuredLogger
from juniorsavers.sync import SyncEngine
from juniorsavers.timers import ManualScheduler
from juniorsavers.webapp.persistence import SQLDocumentStore, StoredDocument, create_store_engine


@pytest.fixture()
def store(tmp_path) -> SQLDocumentStore:
    return SQLDocumentStore(create_store_engine(f"sqlite:///{tmp_path / 'documents.db'}"))


def test_tables_are_created(store: SQLDocumentStore) -> None:
    assert store.has_tables()


def test_missing_document_does_not_exist(store: SQLDocumentStore) -> None:
    snapshot = store.get("profile/nobody")

    assert not snapshot.exists
    assert snapshot.data is None


def test_merge_and_replace_writes(store: SQLDocumentStore) -> None:
    store.merge_write("profile/u1", {"balance": 10, "xp": 10})
    store.merge_write("profile/u1", {"xp": 25})
    store.replace_write("curriculum/global", {"data": {"1": []}})
    store.replace_write("curriculum/global", {"data": {"2": []}})

    assert store.get("profile/u1").data == {"balance": 10, "xp": 25}
    assert store.get("curriculum/global").data == {"data": {"2": []}}


def test_subscribers_hear_committed_writes(store: SQLDocumentStore) -> None:
    seen = []
    unsubscribe = store.subscribe("profile/u1", seen.append)

    store.merge_write("profile/u1", {"balance": 3})
    unsubscribe()
    store.merge_write("profile/u1", {"balance": 4})

    assert [snapshot.exists for snapshot in seen] == [False, True]
    assert seen[-1].data == {"balance": 3}


def test_undecodable_body_is_delivered_as_malformed(store: SQLDocumentStore) -> None:
    with Session(store.engine) as session:
        session.add(StoredDocument(path="curriculum/global", body="{not json"))
        session.commit()

    snapshot = store.get("curriculum/global")

    assert snapshot.exists
    assert snapshot.data is None


def test_engine_syncs_through_sql_store(store: SQLDocumentStore) -> None:
    engine = SyncEngine(SyncContext(store=store, scheduler=ManualScheduler()))
    engine.attach("kid-1")
    engine.complete_lesson("g1w1", 15)
    engine.edit_module(2, 0, title="Wants list")
    engine.publish_curriculum()

    other = SyncEngine(SyncContext(store=store, scheduler=ManualScheduler()))
    other.attach("kid-1")

    assert other.profile.balance == 15
    assert other.modules_for(2)[0].title == "Wants list"


def test_unreachable_database_raises_store_unavailable(tmp_path) -> None:
    missing_dir = tmp_path / "missing" / "nested" / "documents.db"
    with pytest.raises(StoreUnavailableError):
        SQLDocumentStore(create_store_engine(f"sqlite:///{missing_dir}"))


class FlakyReadStore(SQLDocumentStore):
    fail_reads = False

    def get(self, path: str):
        if self.fail_reads:
            raise StoreUnavailableError(f"Reading '{path}' failed.", path=path)
        return super().get(path)


def test_failed_read_after_commit_does_not_fail_the_publish(tmp_path) -> None:
    logger = StructuredLogger()
    store = FlakyReadStore(create_store_engine(f"sqlite:///{tmp_path / 'documents.db'}"), logger=logger)
    engine = SyncEngine(SyncContext(store=store, scheduler=ManualScheduler(), logger=logger))
    engine.attach("kid-1")
    engine.edit_module(3, 0, title="Market day")
    store.fail_reads = True

    assert engine.publish_curriculum() is True

    assert engine.unpublished_grades == frozenset()
    assert logger.tail(event="notify_failed")
    assert not logger.tail(event="curriculum_publish_failed")
    store.fail_reads = False
    assert store.get("curriculum/global").data["data"]["3"][0]["title"] == "Market day"
