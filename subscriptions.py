"""
Live views over the store.

A ``LiveView`` owns one store watch and keeps the latest ``ViewState``. A
view that failed carries a persistent ``error`` and is never reported as an
empty result. ``close`` is the only teardown and may be called any number of
times; views are also context managers.
"""
import logging
import threading
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict

from errors import INDEX_REQUIRED_MESSAGE, TransientStoreError
from queries import hospital_requests_query, hospitals_query, open_only, public_requests_query, sort_newest_first
from schemas import BLOOD_REQUESTS, BloodRequest, Hospital
from store import DocumentStore, Watch

logger = logging.getLogger(__name__)

NO_DATABASE_MESSAGE = "Could not connect to the database."
REQUESTS_FAILED_MESSAGE = "Failed to fetch blood requests. Please check your network connection."
DASHBOARD_FAILED_MESSAGE = "Could not load requests. Check database permissions."
HOSPITALS_FAILED_MESSAGE = "Could not fetch hospitals."
REQUEST_NOT_FOUND_MESSAGE = "The request you are looking for could not be found or may have been deleted."
REQUEST_FAILED_MESSAGE = "An error occurred while fetching the request."


class ViewState(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    loading: bool = True
    data: Any = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class LiveView:
    def __init__(
        self,
        store: Optional[DocumentStore],
        start: Callable[[DocumentStore, Callable, Callable], Watch],
        transform: Callable[[Any], Any],
        error_message: str,
        missing_message: Optional[str] = None,
        on_change: Optional[Callable[[ViewState], None]] = None,
    ):
        self._store = store
        self._start = start
        self._transform = transform
        self._error_message = error_message
        self._missing_message = missing_message
        self._on_change = on_change
        self._watch: Optional[Watch] = None
        self._lock = threading.Lock()
        self._closed = False
        self.state = ViewState()

    def open(self) -> "LiveView":
        if self._store is None:
            self._set(ViewState(loading=False, error=NO_DATABASE_MESSAGE))
            return self
        self._watch = self._start(self._store, self._on_snapshot, self._on_error)
        if self._closed:
            self._watch.close()
        return self

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._watch is not None:
            self._watch.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _set(self, state: ViewState) -> None:
        with self._lock:
            if self._closed:
                return
            self.state = state
        if self._on_change is not None:
            try:
                self._on_change(state)
            except Exception:
                logger.exception("on_change handler failed")

    def _on_snapshot(self, result) -> None:
        if result is None and self._missing_message:
            self._set(ViewState(loading=False, error=self._missing_message))
            return
        try:
            data = self._transform(result)
        except Exception:
            logger.exception("Could not read snapshot")
            self._set(ViewState(loading=False, error=self._error_message))
            return
        self._set(ViewState(loading=False, data=data))

    def _on_error(self, exc: Exception) -> None:
        logger.error("Live view failed: %s", exc)
        if isinstance(exc, TransientStoreError) and exc.index_required:
            message = INDEX_REQUIRED_MESSAGE
        else:
            message = self._error_message
        with self._lock:
            data = self.state.data
        self._set(ViewState(loading=False, data=data, error=message))


def _requests(docs):
    return [BloodRequest.model_validate(d) for d in docs]


def open_public_requests(store, hospital_id=None, blood_group=None, on_change=None) -> LiveView:
    """Open requests, newest first, optionally filtered by hospital and blood group."""
    query = public_requests_query(hospital_id, blood_group)
    return LiveView(
        store,
        lambda s, snap, err: s.watch(query, snap, err),
        lambda docs: _requests(open_only(docs)),
        REQUESTS_FAILED_MESSAGE,
        on_change=on_change,
    ).open()


def open_hospital_requests(store, hospital_id, on_change=None) -> LiveView:
    """Every request of one hospital, closed ones included, newest first."""
    query = hospital_requests_query(hospital_id)
    return LiveView(
        store,
        lambda s, snap, err: s.watch(query, snap, err),
        lambda docs: _requests(sort_newest_first(docs)),
        DASHBOARD_FAILED_MESSAGE,
        on_change=on_change,
    ).open()


def open_hospitals(store, status=None, on_change=None) -> LiveView:
    query = hospitals_query(status)
    return LiveView(
        store,
        lambda s, snap, err: s.watch(query, snap, err),
        lambda docs: [Hospital.model_validate(d) for d in docs],
        HOSPITALS_FAILED_MESSAGE,
        on_change=on_change,
    ).open()


def open_request(store, request_id, on_change=None) -> LiveView:
    return LiveView(
        store,
        lambda s, snap, err: s.watch_document(BLOOD_REQUESTS, request_id, snap, err),
        BloodRequest.model_validate,
        REQUEST_FAILED_MESSAGE,
        missing_message=REQUEST_NOT_FOUND_MESSAGE,
        on_change=on_change,
    ).open()
