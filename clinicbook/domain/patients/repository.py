"""Patient repository - Database operations for patients"""

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...database import dialect_insert
from ...models import Patient, generate_public_id

# Written on every booking: the latest contact details win
_IDENTITY_FIELDS = ("full_name", "email", "phone", "phone_hash")
# Kept when a later booking leaves them out
_INTAKE_FIELDS = ("date_of_birth", "address", "insurance_provider", "emergency_contact")


class PatientRepository:
    """Repository for patient database operations"""

    @staticmethod
    def upsert_patient(db: Session, tenant_id: str, **fields) -> str:
        """
        Insert a patient or update the one with the same (tenant_id, email_hash).

        One statement, no read-then-write. ``fields`` hold already encrypted
        values plus ``email_hash``/``phone_hash``. Does not commit.

        Returns:
            The patient id (new or existing)
        """
        values = {name: fields.get(name) for name in _IDENTITY_FIELDS + _INTAKE_FIELDS}
        values.update(
            id=generate_public_id(),
            tenant_id=tenant_id,
            email_hash=fields["email_hash"],
        )

        stmt = dialect_insert(db, Patient).values(**values)
        excluded = stmt.excluded
        updates = {name: getattr(excluded, name) for name in _IDENTITY_FIELDS}
        updates.update(
            {name: func.coalesce(getattr(excluded, name), getattr(Patient, name)) for name in _INTAKE_FIELDS}
        )
        updates["updated_at"] = func.now()

        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "email_hash"],
            set_=updates,
        ).returning(Patient.id)
        return db.execute(stmt).scalar_one()

    @staticmethod
    def get_patient(db: Session, tenant_id: str, patient_id: str) -> Optional[Patient]:
        return (
            db.query(Patient)
            .filter(Patient.id == patient_id, Patient.tenant_id == tenant_id)
            .first()
        )

    @staticmethod
    def find_by_email_hash(db: Session, tenant_id: str, email_hash: str) -> Optional[Patient]:
        """Look a patient up through the blind index"""
        return (
            db.query(Patient)
            .filter(Patient.tenant_id == tenant_id, Patient.email_hash == email_hash)
            .first()
        )
