"""
Query builders and client-side post-processing for request and hospital lists.
"""
from typing import Any, Dict, Iterable, List, Optional

from schemas import BLOOD_REQUESTS, HOSPITALS
from store import Query

CREATED_AT = "createdAt"

_BLANK = (None, "", "all")


def _filters(**values) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v not in _BLANK}


def public_requests_query(hospital_id: Optional[str] = None, blood_group: Optional[str] = None) -> Query:
    """Newest-first requests, optionally narrowed to one hospital and/or blood group.

    Status is not part of the store query; callers keep open requests with
    ``open_only`` so no composite index on status is needed.
    """
    return Query(
        collection=BLOOD_REQUESTS,
        filters=_filters(hospitalId=hospital_id, bloodGroup=blood_group),
        order_by=CREATED_AT,
        descending=True,
    )


def hospital_requests_query(hospital_id: str) -> Query:
    """All requests of one hospital, any status, for its dashboard."""
    return Query(
        collection=BLOOD_REQUESTS,
        filters={"hospitalId": hospital_id},
        order_by=CREATED_AT,
        descending=True,
    )


def hospitals_query(status: Optional[str] = None) -> Query:
    return Query(collection=HOSPITALS, filters=_filters(status=status), order_by="name")


def open_only(docs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [d for d in docs if d.get("status") == "open"]


def sort_newest_first(docs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Stable newest-first sort on ``createdAt``.

    Documents without a timestamp (e.g. a pending server write) go after all
    timestamped ones and keep their relative order.
    """
    docs = list(docs)
    stamped = [d for d in docs if d.get(CREATED_AT) is not None]
    missing = [d for d in docs if d.get(CREATED_AT) is None]
    stamped.sort(key=lambda d: d[CREATED_AT], reverse=True)
    return stamped + missing
