"""Patient service - Decryption and blind-index lookup for staff"""

import logging

from sqlalchemy.orm import Session

from ...crypto import decrypt_field, decrypt_optional, hash_for_search
from ...database import store_errors
from ...errors import CryptoError, NotFoundError, ValidationError
from ...models import Patient
from ...security_utils import log_security_event
from ...shared.validators import validate_email
from ..scheduling.repository import SchedulingRepository
from ..scheduling.time_calculator import format_minutes
from .repository import PatientRepository
from .schemas import AppointmentDetails, PatientDetails

logger = logging.getLogger(__name__)


def decrypt_patient(patient: Patient) -> PatientDetails:
    """
    Decrypt every protected field of ``patient``.

    Raises:
        CryptoError: a field fails authentication; never retried
    """
    try:
        return PatientDetails(
            id=patient.id,
            full_name=decrypt_field(patient.full_name),
            email=decrypt_field(patient.email),
            phone=decrypt_optional(patient.phone),
            date_of_birth=decrypt_optional(patient.date_of_birth),
            address=decrypt_optional(patient.address),
            insurance_provider=decrypt_optional(patient.insurance_provider),
            emergency_contact=decrypt_optional(patient.emergency_contact),
            created_at=patient.created_at,
        )
    except CryptoError:
        log_security_event("crypto_failure", user_id=patient.id, details={"record": "patient"})
        raise


class PatientService:
    """Service layer for patient records"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = PatientRepository()
        self.scheduling_repo = SchedulingRepository()

    def lookup_by_email(self, tenant_id: str, email: str) -> PatientDetails:
        """Find a patient by email without decrypting the whole table"""
        try:
            email = validate_email(email)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if not email:
            raise ValidationError("Email is required")

        with store_errors(self.db, "Patient lookup is temporarily unavailable"):
            patient = self.repo.find_by_email_hash(self.db, tenant_id, hash_for_search(email))
        if not patient:
            raise NotFoundError("Patient not found")
        return decrypt_patient(patient)

    def get_appointment_details(self, tenant_id: str, appointment_id: str) -> AppointmentDetails:
        with store_errors(self.db, "Appointment details are temporarily unavailable"):
            appointment = self.scheduling_repo.get_appointment(self.db, tenant_id, appointment_id)
            if not appointment:
                raise NotFoundError("Appointment not found", appointment_id=appointment_id)
            record = None
            if appointment.patient_id:
                record = self.repo.get_patient(self.db, tenant_id, appointment.patient_id)

        patient = decrypt_patient(record) if record else None

        try:
            reason = decrypt_optional(appointment.reason_for_visit)
        except CryptoError:
            log_security_event(
                "crypto_failure", user_id=appointment.id, details={"record": "appointment"}
            )
            raise

        logger.info(f"🔓 Decrypted details of appointment {appointment.id} for staff")
        return AppointmentDetails(
            id=appointment.id,
            date=appointment.date,
            start_time=appointment.start_time,
            end_time=format_minutes(appointment.end_minute),
            duration_minutes=appointment.duration_minutes,
            status=appointment.status,
            service_type=appointment.service_type,
            provider_id=appointment.provider_id,
            notes=appointment.notes,
            reason_for_visit=reason,
            patient=patient,
        )
