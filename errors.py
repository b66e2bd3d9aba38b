"""
Error taxonomy for store-backed operations.

Mutations and queries never let these escape to their callers: they are
caught at the operation boundary and turned into an ``ActionResult`` (see
``actions.py``) or a persistent error state on a live view.
"""
from typing import Dict, Optional


DATABASE_NOT_INITIALIZED = "Database not initialized."

INDEX_REQUIRED_MESSAGE = (
    "The query is not supported by the database rules. This usually means a "
    "composite index is required. The database rules may need to be deployed "
    "and given a moment to propagate."
)


class StoreError(Exception):
    code = "store_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StoreError):
    code = "validation_error"
    status_code = 422

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.field_errors = field_errors or {}


class ReferenceNotFoundError(StoreError):
    code = "not_found"
    status_code = 404


class ConflictError(StoreError):
    code = "conflict"
    status_code = 409


class RequestClosedError(StoreError):
    code = "request_closed"
    status_code = 409


class StoreUnavailableError(StoreError):
    code = "store_unavailable"
    status_code = 503

    def __init__(self, message: str = DATABASE_NOT_INITIALIZED):
        super().__init__(message)


class TransientStoreError(StoreError):
    """Network, propagation or index failure reported by the store."""

    code = "store_transient"
    status_code = 502

    def __init__(self, message: str, index_required: bool = False):
        super().__init__(message)
        self.index_required = index_required


class DocumentNotFound(StoreError):
    """Raised by a store when an update targets a document that does not exist."""

    code = "document_not_found"
    status_code = 404

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"No document {doc_id!r} in {collection!r}")
        self.collection = collection
        self.doc_id = doc_id


class DuplicateDocument(StoreError):
    """Raised by a store when a unique constraint rejects a write."""

    code = "duplicate"
    status_code = 409


class ConditionFailed(StoreError):
    """Raised by a store when a conditional update finds the document in another state."""

    code = "condition_failed"
    status_code = 409

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document {doc_id!r} in {collection!r} no longer matches the update condition")
        self.collection = collection
        self.doc_id = doc_id
