from datetime import datetime, timezone

import pytest
from bson import ObjectId
from pymongo.errors import AutoReconnect, OperationFailure

from errors import ConditionFailed, DocumentNotFound
from store import SERVER_TIMESTAMP, MemoryStore, Query, to_serializable, translate_error


def test_server_timestamp_is_filled_in_and_increasing():
    fixed = datetime(2024, 1, 1, tzinfo=timezone.utc)
    store = MemoryStore(clock=lambda: fixed)
    a = store.add("things", {"n": 1, "createdAt": SERVER_TIMESTAMP})
    b = store.add("things", {"n": 2, "createdAt": SERVER_TIMESTAMP})
    assert a["createdAt"] == fixed
    assert b["createdAt"] > a["createdAt"]


def test_find_filters_and_orders(store):
    store.add("things", {"kind": "x", "rank": 2})
    store.add("things", {"kind": "y", "rank": 3})
    store.add("things", {"kind": "x", "rank": 1})
    store.add("things", {"kind": "x"})
    found = store.find(Query(collection="things", filters={"kind": "x"}, order_by="rank", descending=True))
    assert [d.get("rank") for d in found] == [2, 1, None]


def test_returned_documents_are_copies(store):
    doc = store.add("things", {"tags": ["a"]})
    doc["tags"].append("b")
    assert store.get("things", doc["id"])["tags"] == ["a"]


def test_update_missing_document_raises(store):
    with pytest.raises(DocumentNotFound):
        store.update("things", "nope", {"a": 1})


def test_batch_commits_once(store):
    doc = store.add("things", {"a": 1})
    batch = store.batch().delete("things", doc["id"])
    assert len(batch) == 1
    batch.commit()
    assert store.get("things", doc["id"]) is None
    with pytest.raises(RuntimeError):
        batch.commit()


def test_batch_failure_leaves_store_untouched(store, monkeypatch):
    ids = [store.add("things", {"n": i})["id"] for i in range(3)]

    def broken(staged, op):
        staged["things"].pop(op[2], None)
        if op[2] == ids[1]:
            raise IOError("disk full")

    monkeypatch.setattr(store, "_apply", broken)
    batch = store.batch()
    for doc_id in ids:
        batch.delete("things", doc_id)
    with pytest.raises(IOError):
        batch.commit()
    assert len(store.find(Query(collection="things"))) == 3


def test_watch_close_is_idempotent(store):
    snapshots = []
    watch = store.watch(Query(collection="things"), snapshots.append, pytest.fail)
    store.add("things", {"a": 1})
    assert watch.active
    watch.close()
    watch.close()
    assert not watch.active
    store.add("things", {"a": 2})
    assert [len(s) for s in snapshots] == [0, 1]


def test_collection_names(store):
    assert store.collection_names() == []
    store.add("hospitals", {"name": "x"})
    assert store.collection_names() == ["hospitals"]


def test_to_serializable():
    oid = ObjectId()
    assert to_serializable({"_id": oid, "name": "x"}) == {"id": str(oid), "name": "x"}
    assert to_serializable(None) is None


@pytest.mark.parametrize("code", [13, 27, 291])
def test_translate_index_and_permission_failures(code):
    err = translate_error(OperationFailure("planner returned error", code=code))
    assert err.index_required


def test_translate_other_failures():
    assert not translate_error(AutoReconnect("connection refused")).index_required
    assert not translate_error(OperationFailure("bad value", code=2)).index_required
    assert translate_error(OperationFailure("hint provided does not correspond to an existing index", code=2)).index_required


def test_raising_listener_does_not_break_other_listeners(store):
    def broken(snapshot):
        raise RuntimeError("listener bug")

    seen = []
    store.watch(Query(collection="things"), broken, pytest.fail)
    store.watch(Query(collection="things"), seen.append, pytest.fail)
    doc = store.add("things", {"a": 1})
    assert store.get("things", doc["id"]) is not None
    assert [len(s) for s in seen] == [0, 1]


def test_conditional_update(store):
    doc = store.add("things", {"status": "open", "n": 1})
    store.update("things", doc["id"], {"n": 2}, where={"status": "open"})
    assert store.get("things", doc["id"])["n"] == 2

    store.update("things", doc["id"], {"status": "closed"})
    with pytest.raises(ConditionFailed):
        store.update("things", doc["id"], {"n": 3}, where={"status": "open"})
    assert store.get("things", doc["id"])["n"] == 2

    with pytest.raises(DocumentNotFound):
        store.update("things", "nope", {"n": 3}, where={"status": "open"})
