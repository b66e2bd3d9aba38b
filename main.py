import os
import logging
from fastapi import FastAPI, HTTPException, Body
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Any, Dict, List, Optional

import actions
from actions import ActionResult
from assistant import ChatMessage, continue_chat
from database import DATABASE_NAME, StoreDep
from errors import StoreError
from sharing import share_messages

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Rakt Setu Blood Request API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATUS_BY_CODE = {
    "validation_error": 422,
    "not_found": 404,
    "conflict": 409,
    "request_closed": 409,
    "store_unavailable": 503,
    "store_transient": 502,
}


def unwrap(result: ActionResult):
    if result.success:
        return result.data if result.data is not None else {"success": True}
    status = STATUS_BY_CODE.get(result.code, 500)
    if result.field_errors:
        raise HTTPException(status_code=status, detail={"message": result.error, "fieldErrors": result.field_errors})
    raise HTTPException(status_code=status, detail=result.error)


class StatusUpdate(BaseModel):
    status: str


class ChatRequest(BaseModel):
    messages: List[ChatMessage]


@app.get("/")
def read_root():
    return {"message": "Blood Request Backend Running"}


@app.get("/test")
def test_database(store: StoreDep):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    if store is None:
        return response
    response["database"] = "✅ Available"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = DATABASE_NAME if store.name == "mongodb" else store.name
    try:
        response["collections"] = store.collection_names()
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except StoreError as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


# Hospitals

@app.get("/hospitals")
def list_hospitals(store: StoreDep, status: Optional[str] = None):
    return unwrap(actions.list_hospitals(store, status))


@app.post("/hospitals", status_code=201)
def create_hospital(store: StoreDep, payload: Dict[str, Any] = Body(...)):
    return unwrap(actions.create_hospital(store, payload))


@app.get("/hospitals/{hospital_id}")
def get_hospital(hospital_id: str, store: StoreDep):
    return unwrap(actions.get_hospital(store, hospital_id))


@app.patch("/hospitals/{hospital_id}/status")
def update_hospital_status(hospital_id: str, payload: StatusUpdate, store: StoreDep):
    return unwrap(actions.update_hospital_status(store, hospital_id, payload.status))


@app.delete("/hospitals/{hospital_id}")
def delete_hospital(hospital_id: str, store: StoreDep):
    return unwrap(actions.delete_hospital(store, hospital_id))


@app.get("/hospitals/{hospital_id}/requests")
def hospital_requests(hospital_id: str, store: StoreDep):
    return unwrap(actions.list_hospital_requests(store, hospital_id))


# Blood requests

@app.get("/requests")
def list_requests(store: StoreDep, hospital_id: Optional[str] = None, blood_group: Optional[str] = None):
    return unwrap(actions.list_public_requests(store, hospital_id, blood_group))


@app.post("/requests", status_code=201)
def create_request(store: StoreDep, payload: Dict[str, Any] = Body(...)):
    return unwrap(actions.create_blood_request(store, payload))


@app.get("/requests/{request_id}")
def get_request(request_id: str, store: StoreDep):
    return unwrap(actions.get_blood_request(store, request_id))


@app.patch("/requests/{request_id}")
def update_request(request_id: str, store: StoreDep, payload: Dict[str, Any] = Body(...)):
    return unwrap(actions.update_blood_request(store, request_id, payload))


@app.post("/requests/{request_id}/close")
def close_request(request_id: str, store: StoreDep):
    return unwrap(actions.close_blood_request(store, request_id))


@app.delete("/requests/{request_id}")
def delete_request(request_id: str, store: StoreDep):
    return unwrap(actions.delete_blood_request(store, request_id))


@app.get("/requests/{request_id}/share")
def share_request(request_id: str, store: StoreDep, base_url: Optional[str] = None):
    request = unwrap(actions.get_blood_request(store, request_id))
    return share_messages(request, base_url)


# Admin

@app.post("/admin/reset")
def reset_database(store: StoreDep):
    return unwrap(actions.reset_database(store))


@app.post("/chat")
def chat(payload: ChatRequest):
    return {"reply": continue_chat(payload.messages)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
