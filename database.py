"""
Database configuration.

The store handle is created once at import time from the environment:

- ``DATABASE_URL=mongodb://...`` connects a ``MongoStore``
- ``DATABASE_URL=memory://``      uses an in-process ``MemoryStore``
- unset                           leaves ``store`` as ``None``

Operations receive the handle through ``get_store`` and must report
"Database not initialized." rather than touch a missing handle.
"""
import logging
import os
from typing import Annotated, Optional

from fastapi import Depends
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from schemas import HOSPITALS
from store import DocumentStore, MemoryStore, MongoStore

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "raktsetu")


def create_store(url: Optional[str], database_name: str = DATABASE_NAME) -> Optional[DocumentStore]:
    if not url:
        logger.error("DATABASE_URL is not set. Database features will be disabled.")
        return None
    if url.startswith("memory://"):
        logger.info("Using in-memory document store")
        return MemoryStore()
    try:
        client = MongoClient(url, serverSelectionTimeoutMS=5000)
        return MongoStore(client, database_name, unique_fields={HOSPITALS: "name"})
    except PyMongoError:
        logger.exception("Could not initialise MongoDB client")
        return None


store = create_store(DATABASE_URL, DATABASE_NAME)


def get_store() -> Optional[DocumentStore]:
    """Return the configured store handle, which may be ``None``."""
    return store


StoreDep = Annotated[Optional[DocumentStore], Depends(get_store)]
