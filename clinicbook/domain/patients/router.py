"""Patient router - Staff endpoints that return decrypted patient data"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import require_staff_key
from ...database import get_db
from .schemas import AppointmentDetails, PatientDetails
from .service import PatientService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/tenants/{tenant_id}",
    tags=["Patients"],
    dependencies=[Depends(require_staff_key)],
)


def get_patient_service(db: Session = Depends(get_db)) -> PatientService:
    """Dependency injection for PatientService"""
    return PatientService(db)


@router.get("/patients/lookup", response_model=PatientDetails)
def lookup_patient(
    tenant_id: str,
    email: str = Query(..., min_length=3),
    service: PatientService = Depends(get_patient_service),
):
    """Find a patient by email through the blind index"""
    return service.lookup_by_email(tenant_id, email)


@router.get("/appointments/{appointment_id}", response_model=AppointmentDetails)
def get_appointment_details(
    tenant_id: str,
    appointment_id: str,
    service: PatientService = Depends(get_patient_service),
):
    """Appointment with decrypted patient details"""
    return service.get_appointment_details(tenant_id, appointment_id)
