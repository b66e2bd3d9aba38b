"""
Mutations and one-shot reads over hospitals and blood requests.

Every function takes the store handle first (it may be ``None`` when the
database is not configured) and returns an ``ActionResult``. Nothing raised
below this module reaches the caller: domain errors become their own
message, store faults become a short per-operation message.
"""
import functools
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from errors import (
    INDEX_REQUIRED_MESSAGE,
    ConditionFailed,
    ConflictError,
    DocumentNotFound,
    DuplicateDocument,
    ReferenceNotFoundError,
    RequestClosedError,
    StoreError,
    StoreUnavailableError,
    TransientStoreError,
    ValidationError,
)
from queries import (
    hospital_requests_query,
    hospitals_query,
    open_only,
    public_requests_query,
    sort_newest_first,
)
from schemas import (
    BLOOD_REQUESTS,
    HOSPITALS,
    BloodRequest,
    BloodRequestCreate,
    BloodRequestUpdate,
    Hospital,
    HospitalCreate,
    HospitalStatusUpdate,
    validate_payload,
)
from store import SERVER_TIMESTAMP, DocumentStore, Query

logger = logging.getLogger(__name__)


class ActionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    success: bool
    error: Optional[str] = None
    code: Optional[str] = None
    field_errors: Dict[str, str] = Field(default_factory=dict, alias="fieldErrors")
    data: Optional[Any] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: StoreError, message: Optional[str] = None) -> "ActionResult":
        return cls(
            success=False,
            error=message or exc.message,
            code=exc.code,
            field_errors=getattr(exc, "field_errors", {}),
        )


def action(failure_message: str):
    """Translate anything raised by the wrapped operation into a failed ``ActionResult``."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except TransientStoreError as e:
                logger.error("%s: %s", func.__name__, e)
                return ActionResult.fail(e, INDEX_REQUIRED_MESSAGE if e.index_required else failure_message)
            except StoreError as e:
                logger.info("%s rejected: %s", func.__name__, e.message)
                return ActionResult.fail(e)
            except Exception:
                logger.exception("Unexpected error in %s", func.__name__)
                return ActionResult(success=False, error=failure_message, code="internal")

        return wrapper

    return decorator


def _require(store: Optional[DocumentStore]) -> DocumentStore:
    if store is None:
        raise StoreUnavailableError()
    return store


def _validated(model, payload, message):
    result = validate_payload(model, payload)
    if not result.success:
        raise ValidationError(message, result.errors)
    return result.data


# Hospitals

@action("Failed to add hospital.")
def create_hospital(store: Optional[DocumentStore], payload: Dict[str, Any]) -> ActionResult:
    data = _validated(HospitalCreate, payload, "Invalid hospital details provided.")
    store = _require(store)

    # Uniqueness is a pre-insert check; MongoStore also backs it with a unique index
    if store.find(Query(collection=HOSPITALS, filters={"name": data.name})):
        raise ConflictError("Hospital with this name already exists.")
    try:
        doc = store.add(HOSPITALS, {**data.model_dump(by_alias=True), "status": "inactive"})
    except DuplicateDocument:
        raise ConflictError("Hospital with this name already exists.")

    logger.info("Added hospital %s (%s)", doc["id"], data.name)
    return ActionResult.ok(Hospital.model_validate(doc))


@action("Failed to update hospital.")
def update_hospital_status(store: Optional[DocumentStore], hospital_id: str, status: str) -> ActionResult:
    data = _validated(HospitalStatusUpdate, {"status": status}, "Invalid hospital status.")
    store = _require(store)
    try:
        store.update(HOSPITALS, hospital_id, {"status": data.status})
    except DocumentNotFound:
        raise ReferenceNotFoundError("Hospital not found.")
    logger.info("Hospital %s is now %s", hospital_id, data.status)
    return ActionResult.ok()


@action("Failed to delete hospital.")
def delete_hospital(store: Optional[DocumentStore], hospital_id: str) -> ActionResult:
    """Delete a hospital together with every request that references it, atomically."""
    store = _require(store)

    batch = store.batch()
    batch.delete(HOSPITALS, hospital_id)
    requests = store.find(Query(collection=BLOOD_REQUESTS, filters={"hospitalId": hospital_id}))
    for req in requests:
        batch.delete(BLOOD_REQUESTS, req["id"])
    batch.commit()

    logger.info("Deleted hospital %s and %d request(s)", hospital_id, len(requests))
    return ActionResult.ok()


@action("Failed to load hospital.")
def get_hospital(store: Optional[DocumentStore], hospital_id: str) -> ActionResult:
    doc = _require(store).get(HOSPITALS, hospital_id)
    if doc is None:
        raise ReferenceNotFoundError("Hospital not found.")
    return ActionResult.ok(Hospital.model_validate(doc))


@action("Could not fetch hospitals.")
def list_hospitals(store: Optional[DocumentStore], status: Optional[str] = None) -> ActionResult:
    docs = _require(store).find(hospitals_query(status))
    return ActionResult.ok([Hospital.model_validate(d) for d in docs])


# Blood requests

@action("Failed to create blood request.")
def create_blood_request(store: Optional[DocumentStore], payload: Dict[str, Any]) -> ActionResult:
    data = _validated(BloodRequestCreate, payload, "Invalid data provided.")
    store = _require(store)

    hospital = store.get(HOSPITALS, data.hospital_id)
    if hospital is None:
        raise ReferenceNotFoundError("Selected hospital does not exist.")

    doc = store.add(BLOOD_REQUESTS, {
        **data.model_dump(by_alias=True),
        "hospitalName": hospital["name"],
        "hospitalLocality": hospital["locality"],
        "hospitalPhone": hospital["phone"],
        "hospitalMapLink": hospital.get("mapLink") or "",
        "status": "open",
        "createdAt": SERVER_TIMESTAMP,
    })
    logger.info("Blood request %s opened at %s for %s", doc["id"], hospital["name"], data.blood_group)
    return ActionResult.ok(BloodRequest.model_validate(doc))


@action("Failed to update blood request.")
def update_blood_request(store: Optional[DocumentStore], request_id: str, payload: Dict[str, Any]) -> ActionResult:
    data = _validated(BloodRequestUpdate, payload, "Invalid data provided.")
    store = _require(store)

    # Only open requests are written; the status check is part of the update itself
    try:
        store.update(BLOOD_REQUESTS, request_id, data.model_dump(by_alias=True), where={"status": "open"})
    except DocumentNotFound:
        raise ReferenceNotFoundError("Blood request not found.")
    except ConditionFailed:
        raise RequestClosedError("Closed requests cannot be edited.")
    return ActionResult.ok()


@action("Failed to close blood request.")
def close_blood_request(store: Optional[DocumentStore], request_id: str) -> ActionResult:
    store = _require(store)
    try:
        store.update(BLOOD_REQUESTS, request_id, {"status": "closed"})
    except DocumentNotFound:
        raise ReferenceNotFoundError("Blood request not found.")
    logger.info("Blood request %s closed", request_id)
    return ActionResult.ok()


@action("Failed to delete blood request.")
def delete_blood_request(store: Optional[DocumentStore], request_id: str) -> ActionResult:
    _require(store).delete(BLOOD_REQUESTS, request_id)
    return ActionResult.ok()


@action("Failed to load blood request.")
def get_blood_request(store: Optional[DocumentStore], request_id: str) -> ActionResult:
    doc = _require(store).get(BLOOD_REQUESTS, request_id)
    if doc is None:
        raise ReferenceNotFoundError(
            "The request you are looking for could not be found or may have been deleted."
        )
    return ActionResult.ok(BloodRequest.model_validate(doc))


@action("Failed to fetch blood requests. Please check your network connection.")
def list_public_requests(store: Optional[DocumentStore], hospital_id: Optional[str] = None,
                         blood_group: Optional[str] = None) -> ActionResult:
    docs = open_only(_require(store).find(public_requests_query(hospital_id, blood_group)))
    return ActionResult.ok([BloodRequest.model_validate(d) for d in docs])


@action("Could not load requests.")
def list_hospital_requests(store: Optional[DocumentStore], hospital_id: str) -> ActionResult:
    docs = sort_newest_first(_require(store).find(hospital_requests_query(hospital_id)))
    return ActionResult.ok([BloodRequest.model_validate(d) for d in docs])


# Admin

@action("Failed to reset database.")
def reset_database(store: Optional[DocumentStore]) -> ActionResult:
    store = _require(store)
    logger.info("Resetting database...")

    batch = store.batch()
    for collection in (BLOOD_REQUESTS, HOSPITALS):
        docs = store.find(Query(collection=collection))
        for doc in docs:
            batch.delete(collection, doc["id"])
        logger.info("Scheduled %d documents for deletion from %s.", len(docs), collection)
    batch.commit()

    logger.info("Database reset successfully.")
    return ActionResult.ok()
