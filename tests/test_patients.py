"""Tests for patient lookup and decrypted appointment details."""

import pytest

from clinicbook.domain.patients.service import PatientService
from clinicbook.domain.scheduling.booking_service import BookingService
from clinicbook.errors import CryptoError, NotFoundError, StoreUnavailableError, ValidationError
from clinicbook.models import Patient


@pytest.fixture
def booked(db, clinic, clock, make_reservation):
    return BookingService(db, clock=clock).reserve(clinic.tenant_id, make_reservation(), "10.0.0.1")


class TestLookupByEmail:
    """Tests for PatientService.lookup_by_email."""

    def test_finds_patient_through_blind_index(self, db, clinic, booked) -> None:
        details = PatientService(db).lookup_by_email(clinic.tenant_id, "Jane.Patient@Example.com")

        assert details.full_name == "Jane Patient"
        assert details.email == "jane.patient@example.com"
        assert details.phone == "+15551234567"
        assert details.emergency_contact == "John Patient +15550001111"

    def test_unknown_email(self, db, clinic, booked) -> None:
        with pytest.raises(NotFoundError):
            PatientService(db).lookup_by_email(clinic.tenant_id, "nobody@example.com")

    def test_lookup_is_per_tenant(self, db, clinic, booked) -> None:
        with pytest.raises(NotFoundError):
            PatientService(db).lookup_by_email(
                "3f0c7a52-0000-4000-8000-000000000000", "jane.patient@example.com"
            )

    def test_invalid_email(self, db, clinic) -> None:
        with pytest.raises(ValidationError):
            PatientService(db).lookup_by_email(clinic.tenant_id, "not-an-email")


class TestAppointmentDetails:
    """Tests for PatientService.get_appointment_details."""

    def test_details_are_decrypted(self, db, clinic, booked) -> None:
        details = PatientService(db).get_appointment_details(clinic.tenant_id, booked.appointment_id)

        assert details.reason_for_visit == "Persistent cough"
        assert details.end_time == "11:00"
        assert details.patient.full_name == "Jane Patient"
        assert details.patient.date_of_birth == "1985-04-12"

    def test_tampered_record_raises(self, db, clinic, booked) -> None:
        """Corrupted ciphertext is an integrity failure, never silently skipped."""
        patient = db.query(Patient).one()
        iv, ciphertext = patient.full_name.split(":")
        patient.full_name = iv + ":" + ("A" if ciphertext[0] != "A" else "B") + ciphertext[1:]
        db.commit()

        with pytest.raises(CryptoError):
            PatientService(db).get_appointment_details(clinic.tenant_id, booked.appointment_id)

    def test_unknown_appointment(self, db, clinic) -> None:
        with pytest.raises(NotFoundError):
            PatientService(db).get_appointment_details(
                clinic.tenant_id, "3f0c7a52-0000-4000-8000-000000000000"
            )


class TestStoreFailures:
    def test_lookup(self, unreachable_db) -> None:
        with pytest.raises(StoreUnavailableError):
            PatientService(unreachable_db).lookup_by_email(
                "3f0c7a52-0000-4000-8000-000000000000", "jane.patient@example.com"
            )

    def test_appointment_details(self, unreachable_db) -> None:
        with pytest.raises(StoreUnavailableError):
            PatientService(unreachable_db).get_appointment_details(
                "3f0c7a52-0000-4000-8000-000000000000", "3f0c7a52-0000-4000-8000-000000000001"
            )
