"""Patient domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel


class PatientDetails(BaseModel):
    """Decrypted patient record, staff only"""

    id: str
    full_name: str
    email: str
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None
    address: Optional[str] = None
    insurance_provider: Optional[str] = None
    emergency_contact: Optional[str] = None
    created_at: Optional[datetime] = None


class AppointmentDetails(BaseModel):
    """Appointment with its patient's fields decrypted, staff only"""

    id: str
    date: date
    start_time: str
    end_time: str
    duration_minutes: int
    status: str
    service_type: Optional[str] = None
    provider_id: Optional[str] = None
    notes: Optional[str] = None
    reason_for_visit: Optional[str] = None
    patient: Optional[PatientDetails] = None
