import pytest
from fastapi.testclient import TestClient

import actions
from database import get_store
from main import app
from store import MemoryStore


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def apollo(store):
    result = actions.create_hospital(store, {
        "name": "Apollo Hospital",
        "locality": "Jubilee Hills",
        "phone": "9876543210",
        "mapLink": "https://maps.example.com/apollo",
    })
    assert result.success, result.error
    return result.data


@pytest.fixture
def make_request(store):
    def _make(hospital_id, blood_group="O-", units=2, urgency="critical", patient_name="Asha", **extra):
        result = actions.create_blood_request(store, {
            "hospitalId": hospital_id,
            "bloodGroup": blood_group,
            "units": units,
            "urgency": urgency,
            "patientName": patient_name,
            **extra,
        })
        assert result.success, result.error
        return result.data
    return _make
