"""Scheduling domain schemas - Pydantic models for validation"""

import datetime as dt
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ...shared.validators import validate_email, validate_phone, validate_uuid
from .time_calculator import format_minutes, parse_time


def _normalize_time(value: str) -> str:
    try:
        return format_minutes(parse_time(value))
    except ValueError as e:
        raise ValueError("Time must be HH:MM or H:MM AM/PM") from e


def _check_uuid(value: Optional[str]) -> Optional[str]:
    if value is not None and not validate_uuid(value):
        raise ValueError("Must be a valid UUID")
    return value


class ReservationRequest(BaseModel):
    """Schema for a patient booking request"""

    date: dt.date
    time: str
    service_id: str
    provider_id: Optional[str] = None
    patient_name: str = Field(min_length=2, max_length=200)
    patient_email: str
    patient_phone: str = Field(min_length=10, max_length=32)
    date_of_birth: Optional[str] = Field(default=None, max_length=32)
    home_address: Optional[str] = Field(default=None, max_length=500)
    insurance_provider: Optional[str] = Field(default=None, max_length=200)
    emergency_contact: Optional[str] = Field(default=None, max_length=200)
    reason_for_visit: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("time")
    @classmethod
    def validate_time(cls, v):
        return _normalize_time(v)

    @field_validator("service_id", "provider_id")
    @classmethod
    def validate_ids(cls, v):
        return _check_uuid(v)

    @field_validator("patient_name")
    @classmethod
    def validate_name(cls, v):
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v

    @field_validator("patient_email")
    @classmethod
    def validate_patient_email(cls, v):
        if not v or not v.strip():
            raise ValueError("Email is required")
        return validate_email(v)

    @field_validator("patient_phone")
    @classmethod
    def validate_patient_phone(cls, v):
        return validate_phone(v)


class ReservationResponse(BaseModel):
    """Schema for a committed reservation"""

    appointment_id: str
    date: dt.date
    start_time: str
    end_time: str
    provider_id: Optional[str] = None
    status: str
    message: str = "Appointment created securely"


class VerifyReservationRequest(BaseModel):
    """Schema for re-checking a reservation whose outcome was unknown"""

    date: dt.date
    time: str
    provider_id: Optional[str] = None
    patient_email: str

    @field_validator("time")
    @classmethod
    def validate_time(cls, v):
        return _normalize_time(v)

    @field_validator("provider_id")
    @classmethod
    def validate_provider(cls, v):
        return _check_uuid(v)

    @field_validator("patient_email")
    @classmethod
    def validate_patient_email(cls, v):
        return validate_email(v)


class VerifyReservationResponse(BaseModel):
    status: Literal["confirmed", "not_found"]
    appointment_id: Optional[str] = None


class AvailabilityResponse(BaseModel):
    tenant_id: str
    date: dt.date
    service_id: str
    provider_id: Optional[str] = None
    slots: list[str]


class FirstAvailableResponse(BaseModel):
    """Either a date with slots, or an explicit "no availability" answer"""

    status: Literal["found", "exhausted"]
    date: Optional[dt.date] = None
    slots: list[str] = []
    weeks_searched: int
    message: Optional[str] = None


class BlockTimeRequest(BaseModel):
    """Schema for blocking a period on a provider's (or the whole practice's) calendar"""

    date: dt.date
    start_time: str
    end_time: str
    provider_id: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_times(cls, v):
        return _normalize_time(v)

    @field_validator("provider_id")
    @classmethod
    def validate_provider(cls, v):
        return _check_uuid(v)

    @model_validator(mode="after")
    def check_order(self):
        if parse_time(self.end_time) <= parse_time(self.start_time):
            raise ValueError("End time must be after start time")
        return self


class AppointmentSummary(BaseModel):
    """Lightweight schedule entry - no patient data"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    date: dt.date
    start_time: str
    end_time: str
    duration_minutes: int
    status: str
    service_type: Optional[str] = None
    provider_id: Optional[str] = None
    notes: Optional[str] = None
