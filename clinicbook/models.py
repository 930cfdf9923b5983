import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Appointment statuses
STATUS_CONFIRMED = "Confirmed"
STATUS_PENDING = "Pending"
STATUS_COMPLETED = "Completed"
STATUS_BLOCKED = "Blocked"
STATUS_MISSED = "Missed"
STATUS_CANCELLED = "Cancelled"

APPOINTMENT_STATUSES = (
    STATUS_CONFIRMED,
    STATUS_PENDING,
    STATUS_COMPLETED,
    STATUS_BLOCKED,
    STATUS_MISSED,
    STATUS_CANCELLED,
)

# Calendar used for appointments and blocks that are not tied to a provider.
# A practice-wide block closes the time for every provider.
PRACTICE_CALENDAR = "practice"

BLOCKED_SERVICE_TYPE = "Blocked Time"

# Unique index backing the atomic insert; its violations mean "slot taken"
LIVE_SLOT_INDEX = "uq_appointments_live_slot"


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class Tenant(Base):
    """Read-only snapshot of a practice; managed outside the booking engine"""

    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    slug = Column(String(100), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    # {"monday": {"enabled": true, "startHour": 9, "endHour": 17, "ranges": [...]}, ...}
    operating_hours = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    providers = relationship("Provider", back_populates="tenant")
    services = relationship("Service", back_populates="tenant")


class Provider(Base):
    __tablename__ = "providers"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    # Same shape as Tenant.operating_hours; overrides it for this provider when set
    working_hours = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    tenant = relationship("Tenant", back_populates="providers")


class Service(Base):
    __tablename__ = "services"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    tenant = relationship("Tenant", back_populates="services")


class Patient(Base):
    """
    Patient identity. Every PII column holds an "ivBase64:ciphertextBase64"
    value; email_hash / phone_hash are blind indexes used for lookup.
    """

    __tablename__ = "patients"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email_hash", name="uq_patients_tenant_email_hash"),
    )

    id = Column(String(36), primary_key=True, default=generate_public_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)
    full_name = Column(Text, nullable=False)  # Encrypted (AES-GCM)
    email = Column(Text, nullable=False)  # Encrypted (AES-GCM)
    email_hash = Column(String(64), nullable=False, index=True)  # HMAC-SHA256
    phone = Column(Text, nullable=True)  # Encrypted (AES-GCM)
    phone_hash = Column(String(64), nullable=True, index=True)  # HMAC-SHA256
    date_of_birth = Column(Text, nullable=True)  # Encrypted (AES-GCM)
    address = Column(Text, nullable=True)  # Encrypted (AES-GCM)
    insurance_provider = Column(Text, nullable=True)  # Encrypted (AES-GCM)
    emergency_contact = Column(Text, nullable=True)  # Encrypted (AES-GCM)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    appointments = relationship("Appointment", back_populates="patient")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Backstop for the atomic insert: one live record per calendar start time
        Index(
            LIVE_SLOT_INDEX,
            "tenant_id",
            "calendar_key",
            "date",
            "start_minute",
            unique=True,
            postgresql_where=text("status != 'Cancelled'"),
            sqlite_where=text("status != 'Cancelled'"),
        ),
        Index("idx_appointments_tenant_date", "tenant_id", "date"),
        CheckConstraint(
            "status IN (" + ", ".join(f"'{s}'" for s in APPOINTMENT_STATUSES) + ")",
            name="ck_appointments_status",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_public_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    provider_id = Column(String(36), ForeignKey("providers.id"), nullable=True)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=True)
    # provider_id, or PRACTICE_CALENDAR when no provider is assigned
    calendar_key = Column(String(36), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)  # HH:MM format
    start_minute = Column(Integer, nullable=False)  # minutes after midnight
    end_minute = Column(Integer, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=STATUS_CONFIRMED)
    service_type = Column(String(255), nullable=True)
    notes = Column(String(1000), nullable=True)
    reason_for_visit = Column(Text, nullable=True)  # Encrypted (AES-GCM)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient", back_populates="appointments")
    provider = relationship("Provider")


class RateLimitRecord(Base):
    __tablename__ = "rate_limits"
    __table_args__ = (
        UniqueConstraint("source_id", "endpoint", name="uq_rate_limits_source_endpoint"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_id = Column(String(255), nullable=False)
    endpoint = Column(String(100), nullable=False)
    count = Column(Integer, nullable=False, default=1)
    window_start = Column(DateTime, nullable=False, index=True)
