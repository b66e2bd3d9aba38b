"""
Document store capability.

Everything the rest of the app needs from a database goes through
``DocumentStore``: point reads, equality-filtered queries ordered on one
field, inserts with a server-assigned timestamp, field updates, deletes,
atomic multi-document batches and live watches that redeliver the full
result set on every change.

Two backends implement it: ``MongoStore`` (pymongo) and ``MemoryStore``
(in-process dictionaries, used for local development and the test-suite).
"""
import copy
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from errors import ConditionFailed, DocumentNotFound, DuplicateDocument, TransientStoreError

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    def __repr__(self):
        return "SERVER_TIMESTAMP"


# Placeholder value replaced by the store's own clock when a document is written
SERVER_TIMESTAMP = _ServerTimestamp()

SnapshotCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]


class Query(BaseModel):
    """Equality filters on one collection plus an optional single-field order."""

    model_config = ConfigDict(frozen=True)

    collection: str
    filters: Dict[str, Any] = Field(default_factory=dict)
    order_by: Optional[str] = None
    descending: bool = False

    def matches(self, doc: Dict[str, Any]) -> bool:
        return all(doc.get(k) == v for k, v in self.filters.items())


class Watch:
    """Handle for a live subscription. ``close`` stops delivery and is safe to call twice."""

    def __init__(self, stop: Callable[[], None]):
        self._stop = stop
        self._closed = False
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return not self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._stop()


class WriteBatch:
    """Deletes queued here are applied all together by ``commit`` or not at all."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._ops: List[Tuple[str, str, str]] = []
        self._committed = False

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self._ops.append(("delete", collection, doc_id))
        return self

    def __len__(self):
        return len(self._ops)

    def commit(self) -> None:
        if self._committed:
            raise RuntimeError("Batch already committed")
        self._committed = True
        if self._ops:
            self._store._commit(list(self._ops))


class DocumentStore:
    name = "store"

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def find(self, query: Query) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def add(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any],
               where: Optional[Dict[str, Any]] = None) -> None:
        """Set ``fields`` on one document.

        With ``where``, the write only happens if the stored document still has
        those field values, checked in the same write; otherwise
        ``ConditionFailed`` is raised.
        """
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    def collection_names(self) -> List[str]:
        raise NotImplementedError

    def watch(self, query: Query, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> Watch:
        raise NotImplementedError

    def watch_document(self, collection: str, doc_id: str,
                       on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> Watch:
        raise NotImplementedError

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def _commit(self, ops: List[Tuple[str, str, str]]) -> None:
        raise NotImplementedError


def _sort_key(field: str):
    # Documents missing the field sort after every document that has it
    def key(doc):
        value = doc.get(field)
        return (value is not None, value if value is not None else 0)
    return key


# In-process backend

class _Listener:
    def __init__(self, collection, snapshot, on_snapshot, on_error):
        self.collection = collection
        self.snapshot = snapshot
        self.on_snapshot = on_snapshot
        self.on_error = on_error


class MemoryStore(DocumentStore):
    """Dictionary-backed store. Listeners are notified synchronously after each write."""

    name = "memory"

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._listeners: List[_Listener] = []
        self._lock = threading.RLock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_ts: Optional[datetime] = None

    def _now(self) -> datetime:
        ts = self._clock()
        # Keep server timestamps strictly increasing so insertion order is recoverable
        if self._last_ts is not None and ts <= self._last_ts:
            ts = self._last_ts + timedelta(microseconds=1)
        self._last_ts = ts
        return ts

    def _resolve(self, data: Dict[str, Any]) -> Dict[str, Any]:
        doc = copy.deepcopy({k: v for k, v in data.items() if v is not SERVER_TIMESTAMP})
        for k, v in data.items():
            if v is SERVER_TIMESTAMP:
                doc[k] = self._now()
        return doc

    def get(self, collection, doc_id):
        with self._lock:
            doc = self._data.get(collection, {}).get(doc_id)
            return self._export(doc_id, doc) if doc is not None else None

    def find(self, query):
        with self._lock:
            docs = [self._export(i, d) for i, d in self._data.get(query.collection, {}).items()
                    if query.matches(d)]
        if query.order_by:
            docs.sort(key=_sort_key(query.order_by), reverse=query.descending)
        return docs

    def add(self, collection, data):
        doc_id = uuid.uuid4().hex[:20]
        with self._lock:
            self._data.setdefault(collection, {})[doc_id] = self._resolve(data)
            doc = self._export(doc_id, self._data[collection][doc_id])
        self._notify({collection})
        return doc

    def update(self, collection, doc_id, fields, where=None):
        with self._lock:
            doc = self._data.get(collection, {}).get(doc_id)
            if doc is None:
                raise DocumentNotFound(collection, doc_id)
            if where and not all(doc.get(k) == v for k, v in where.items()):
                raise ConditionFailed(collection, doc_id)
            doc.update(self._resolve(fields))
        self._notify({collection})

    def delete(self, collection, doc_id):
        with self._lock:
            self._data.get(collection, {}).pop(doc_id, None)
        self._notify({collection})

    def collection_names(self):
        with self._lock:
            return sorted(c for c, docs in self._data.items() if docs)

    def _apply(self, staged, op):
        kind, collection, doc_id = op
        if kind == "delete":
            staged.get(collection, {}).pop(doc_id, None)
        else:
            raise ValueError(f"Unknown batch operation {kind!r}")

    def _commit(self, ops):
        with self._lock:
            staged = {c: dict(docs) for c, docs in self._data.items()}
            for op in ops:
                self._apply(staged, op)
            self._data = staged
        self._notify({op[1] for op in ops})

    @staticmethod
    def _export(doc_id, doc):
        out = copy.deepcopy(doc)
        out["id"] = doc_id
        return out

    def watch(self, query, on_snapshot, on_error):
        return self._listen(query.collection, lambda: self.find(query), on_snapshot, on_error)

    def watch_document(self, collection, doc_id, on_snapshot, on_error):
        return self._listen(collection, lambda: self.get(collection, doc_id), on_snapshot, on_error)

    def _listen(self, collection, snapshot, on_snapshot, on_error):
        listener = _Listener(collection, snapshot, on_snapshot, on_error)

        def stop():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        with self._lock:
            self._listeners.append(listener)
        handle = Watch(stop)
        self._deliver(listener)
        return handle

    def _notify(self, collections):
        with self._lock:
            targets = [l for l in self._listeners if l.collection in collections]
        for listener in targets:
            self._deliver(listener)

    def _deliver(self, listener):
        try:
            result = listener.snapshot()
        except Exception as e:
            logger.warning("Watch on %s failed: %s", listener.collection, e)
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
            listener.on_error(e)
            return
        # A failing subscriber must not fail the write or starve other listeners
        try:
            listener.on_snapshot(result)
        except Exception:
            logger.exception("Listener on %s raised while handling a snapshot", listener.collection)


# MongoDB backend

# Unauthorized, IndexNotFound, NoQueryExecutionPlans
_INDEX_OR_PERMISSION_CODES = {13, 27, 291}


def to_serializable(doc):
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def translate_error(exc: PyMongoError) -> TransientStoreError:
    if isinstance(exc, OperationFailure):
        message = str(exc)
        if exc.code in _INDEX_OR_PERMISSION_CODES or "index" in message.lower():
            return TransientStoreError(message, index_required=True)
    return TransientStoreError(str(exc))


def _object_id(doc_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(doc_id)
    except (InvalidId, TypeError):
        return None


def _split_timestamps(data: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, bool]]:
    fields = {k: v for k, v in data.items() if v is not SERVER_TIMESTAMP}
    stamps = {k: True for k, v in data.items() if v is SERVER_TIMESTAMP}
    return fields, stamps


class MongoStore(DocumentStore):
    """pymongo backend. Batches need a replica set (transactions), watches need change streams."""

    name = "mongodb"
    poll_ms = 500

    def __init__(self, client, database_name: str, unique_fields: Optional[Dict[str, str]] = None):
        self.client = client
        self.db = client[database_name]
        for collection, field in (unique_fields or {}).items():
            try:
                self.db[collection].create_index([(field, ASCENDING)], unique=True)
            except PyMongoError as e:
                logger.warning("Could not create unique index on %s.%s: %s", collection, field, e)

    def get(self, collection, doc_id):
        oid = _object_id(doc_id)
        if oid is None:
            return None
        try:
            return to_serializable(self.db[collection].find_one({"_id": oid}))
        except PyMongoError as e:
            raise translate_error(e)

    def find(self, query):
        try:
            cursor = self.db[query.collection].find(dict(query.filters))
            if query.order_by:
                cursor = cursor.sort(query.order_by, DESCENDING if query.descending else ASCENDING)
            return [to_serializable(d) for d in cursor]
        except PyMongoError as e:
            raise translate_error(e)

    def add(self, collection, data):
        fields, stamps = _split_timestamps(data)
        oid = ObjectId()
        update = {"$set": fields}
        if stamps:
            update["$currentDate"] = stamps
        try:
            # Upserting a fresh id lets the server fill in $currentDate in the same write
            self.db[collection].update_one({"_id": oid}, update, upsert=True)
            return to_serializable(self.db[collection].find_one({"_id": oid}))
        except DuplicateKeyError as e:
            raise DuplicateDocument(str(e))
        except PyMongoError as e:
            raise translate_error(e)

    def update(self, collection, doc_id, fields, where=None):
        oid = _object_id(doc_id)
        if oid is None:
            raise DocumentNotFound(collection, doc_id)
        values, stamps = _split_timestamps(fields)
        update = {"$set": values}
        if stamps:
            update["$currentDate"] = stamps
        try:
            res = self.db[collection].update_one({**(where or {}), "_id": oid}, update)
            if res.matched_count == 0 and where:
                if self.db[collection].find_one({"_id": oid}, {"_id": 1}) is not None:
                    raise ConditionFailed(collection, doc_id)
        except PyMongoError as e:
            raise translate_error(e)
        if res.matched_count == 0:
            raise DocumentNotFound(collection, doc_id)

    def delete(self, collection, doc_id):
        oid = _object_id(doc_id)
        if oid is None:
            return
        try:
            self.db[collection].delete_one({"_id": oid})
        except PyMongoError as e:
            raise translate_error(e)

    def collection_names(self):
        try:
            return self.db.list_collection_names()
        except PyMongoError as e:
            raise translate_error(e)

    def _commit(self, ops):
        def run(session):
            for kind, collection, doc_id in ops:
                oid = _object_id(doc_id)
                if kind != "delete":
                    raise ValueError(f"Unknown batch operation {kind!r}")
                if oid is not None:
                    self.db[collection].delete_one({"_id": oid}, session=session)

        try:
            with self.client.start_session() as session:
                session.with_transaction(run)
        except PyMongoError as e:
            raise translate_error(e)

    def watch(self, query, on_snapshot, on_error):
        return self._stream(query.collection, [], lambda: self.find(query), on_snapshot, on_error)

    def watch_document(self, collection, doc_id, on_snapshot, on_error):
        oid = _object_id(doc_id)
        pipeline = [{"$match": {"documentKey._id": oid}}]
        return self._stream(collection, pipeline, lambda: self.get(collection, doc_id), on_snapshot, on_error)

    def _stream(self, collection, pipeline, snapshot, on_snapshot, on_error):
        stopped = threading.Event()

        def run():
            try:
                with self.db[collection].watch(pipeline, max_await_time_ms=self.poll_ms) as stream:
                    on_snapshot(snapshot())
                    while not stopped.is_set() and stream.alive:
                        if stream.try_next() is not None and not stopped.is_set():
                            on_snapshot(snapshot())
            except (PyMongoError, TransientStoreError) as e:
                if stopped.is_set():
                    return
                err = translate_error(e) if isinstance(e, PyMongoError) else e
                logger.warning("Change stream on %s failed: %s", collection, err)
                on_error(err)
            except Exception as e:
                if stopped.is_set():
                    return
                logger.exception("Watch on %s stopped", collection)
                on_error(e)

        thread = threading.Thread(target=run, name=f"watch-{collection}", daemon=True)
        thread.start()
        return Watch(stopped.set)
