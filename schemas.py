"""
Database Schemas for the blood request board

Each entity model corresponds to a collection:
- Hospital     -> "hospitals"
- BloodRequest -> "bloodRequests"

Documents are stored with camelCase keys; the models expose snake_case
attributes through aliases. The *Create / *Update models validate raw
payloads before anything is written.
"""
from pydantic import BaseModel, ConfigDict, Field, AnyUrl, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError
from typing import Any, Dict, Literal, Mapping, Optional, Type
from datetime import datetime


HOSPITALS = "hospitals"
BLOOD_REQUESTS = "bloodRequests"


BloodGroup = Literal["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]
Urgency = Literal["critical", "high", "normal"]
RequestStatus = Literal["open", "closed"]
HospitalStatus = Literal["active", "inactive"]

_url_adapter = TypeAdapter(AnyUrl)


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Entities

class Hospital(_Document):
    id: str = Field(..., description="Store-assigned document id")
    name: str = Field(..., description="Hospital name")
    locality: str = Field(..., description="Area or neighbourhood")
    phone: str = Field(..., description="Contact number, 10-12 digits")
    map_link: str = Field("", alias="mapLink", description="Link to a map location")
    status: HospitalStatus = Field("inactive", description="Only active hospitals can post requests")

    @field_validator("map_link", mode="before")
    @classmethod
    def blank_map_link(cls, v):
        return v or ""


class BloodRequest(_Document):
    id: str = Field(..., description="Store-assigned document id")
    hospital_id: str = Field(..., alias="hospitalId", description="Reference to hospitals id")
    # Snapshot of the hospital taken when the request was created
    hospital_name: str = Field(..., alias="hospitalName")
    hospital_locality: str = Field(..., alias="hospitalLocality")
    hospital_phone: str = Field(..., alias="hospitalPhone")
    hospital_map_link: str = Field("", alias="hospitalMapLink")
    blood_group: BloodGroup = Field(..., alias="bloodGroup")
    units: int = Field(..., ge=1, description="Units of blood required")
    urgency: Urgency
    patient_name: str = Field(..., alias="patientName")
    patient_story: Optional[str] = Field(None, alias="patientStory")
    status: RequestStatus = "open"
    created_at: Optional[datetime] = Field(None, alias="createdAt", description="Set by the store on insert")

    @field_validator("hospital_map_link", mode="before")
    @classmethod
    def blank_map_link(cls, v):
        return v or ""


# Payloads

class HospitalCreate(_Document):
    name: str = Field(..., min_length=3)
    locality: str = Field(..., min_length=3)
    phone: str = Field(..., pattern=r"^\d{10,12}$")
    map_link: str = Field("", alias="mapLink")

    @field_validator("map_link", mode="before")
    @classmethod
    def validate_map_link(cls, v):
        if v is None or v == "":
            return ""
        if not isinstance(v, str):
            raise ValueError("mapLink must be a string")
        try:
            _url_adapter.validate_python(v)
        except PydanticValidationError:
            raise ValueError("mapLink must be a valid URL")
        return v


class HospitalStatusUpdate(_Document):
    status: HospitalStatus


class BloodRequestUpdate(_Document):
    units: int = Field(..., ge=1)
    urgency: Urgency
    patient_name: str = Field(..., alias="patientName", min_length=1)
    patient_story: Optional[str] = Field(None, alias="patientStory")


class BloodRequestCreate(BloodRequestUpdate):
    hospital_id: str = Field(..., alias="hospitalId", min_length=1)
    blood_group: BloodGroup = Field(..., alias="bloodGroup")


FIELD_MESSAGES = {
    HospitalCreate: {
        "name": "Hospital name must be at least 3 characters.",
        "locality": "Locality must be at least 3 characters.",
        "phone": "Please enter a valid 10-12 digit phone number.",
        "mapLink": "Please enter a valid URL.",
    },
    BloodRequestCreate: {
        "hospitalId": "Please select a hospital.",
        "bloodGroup": "Please select a valid blood group.",
        "units": "At least one unit is required.",
        "urgency": "Please select an urgency level.",
        "patientName": "Patient name is required.",
    },
    BloodRequestUpdate: {
        "units": "At least one unit is required.",
        "urgency": "Please select an urgency level.",
        "patientName": "Patient name is required.",
    },
    HospitalStatusUpdate: {
        "status": "Status must be 'active' or 'inactive'.",
    },
}


class ValidationResult(BaseModel):
    """Tagged outcome of validating a raw payload: either ``data`` or ``errors``."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    data: Optional[Any] = None
    errors: Dict[str, str] = Field(default_factory=dict)


def validate_payload(model: Type[BaseModel], payload: Optional[Mapping[str, Any]]) -> ValidationResult:
    """Validate ``payload`` against ``model`` without raising.

    Field errors are keyed by the stored (camelCase) field name and keep only
    the first problem reported for each field.
    """
    messages = FIELD_MESSAGES.get(model, {})
    try:
        data = model.model_validate(dict(payload or {}))
    except PydanticValidationError as e:
        errors: Dict[str, str] = {}
        for err in e.errors():
            field = str(err["loc"][0]) if err["loc"] else "__root__"
            if field not in errors:
                errors[field] = messages.get(field, err["msg"])
        return ValidationResult(success=False, errors=errors)
    return ValidationResult(success=True, data=data)
