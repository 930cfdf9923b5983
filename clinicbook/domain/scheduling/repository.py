"""Scheduling repository - Database operations for appointments and blocked periods"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy import and_, func, insert, literal, or_, select, true
from sqlalchemy.orm import Session, aliased

from ...models import (
    PRACTICE_CALENDAR,
    STATUS_BLOCKED,
    STATUS_CANCELLED,
    Appointment,
    Provider,
    Service,
    Tenant,
)

logger = logging.getLogger(__name__)


def _calendar_filter(calendar_key: Optional[str], entity=Appointment):
    """
    Records that occupy time on ``calendar_key``.

    A provider calendar is occupied by its own records plus practice-wide
    blocks. ``None`` means every calendar of the tenant.
    """
    if calendar_key is None:
        return true()
    if calendar_key == PRACTICE_CALENDAR:
        return entity.calendar_key == PRACTICE_CALENDAR
    return or_(
        entity.calendar_key == calendar_key,
        and_(
            entity.calendar_key == PRACTICE_CALENDAR,
            entity.status == STATUS_BLOCKED,
        ),
    )


class SchedulingRepository:
    """Repository for scheduling database operations"""

    @staticmethod
    def get_tenant(db: Session, tenant_id: str) -> Optional[Tenant]:
        return db.query(Tenant).filter(Tenant.id == tenant_id, Tenant.is_active.is_(True)).first()

    @staticmethod
    def get_service(db: Session, tenant_id: str, service_id: str) -> Optional[Service]:
        return (
            db.query(Service)
            .filter(
                Service.id == service_id,
                Service.tenant_id == tenant_id,
                Service.is_active.is_(True),
            )
            .first()
        )

    @staticmethod
    def get_provider(db: Session, tenant_id: str, provider_id: str) -> Optional[Provider]:
        return (
            db.query(Provider)
            .filter(
                Provider.id == provider_id,
                Provider.tenant_id == tenant_id,
                Provider.is_active.is_(True),
            )
            .first()
        )

    @staticmethod
    def get_occupying(
        db: Session,
        tenant_id: str,
        calendar_key: Optional[str],
        start_date: date,
        end_date: date,
    ) -> list[Appointment]:
        """Non-cancelled records occupying ``calendar_key`` between two dates (inclusive)"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.tenant_id == tenant_id,
                Appointment.date >= start_date,
                Appointment.date <= end_date,
                Appointment.status != STATUS_CANCELLED,
                _calendar_filter(calendar_key),
            )
            .order_by(Appointment.date, Appointment.start_minute)
            .all()
        )

    @staticmethod
    def get_schedule(db: Session, tenant_id: str, start_date: date, end_date: date) -> list[Appointment]:
        """All records in a date range, cancelled included, ordered by date and time"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.tenant_id == tenant_id,
                Appointment.date >= start_date,
                Appointment.date <= end_date,
            )
            .order_by(Appointment.date, Appointment.start_minute)
            .all()
        )

    @staticmethod
    def get_appointment(db: Session, tenant_id: str, appointment_id: str) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.tenant_id == tenant_id)
            .first()
        )

    @staticmethod
    def find_live_appointment(
        db: Session, tenant_id: str, calendar_key: str, day: date, start_minute: int
    ) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .filter(
                Appointment.tenant_id == tenant_id,
                Appointment.calendar_key == calendar_key,
                Appointment.date == day,
                Appointment.start_minute == start_minute,
                Appointment.status != STATUS_CANCELLED,
            )
            .first()
        )

    @staticmethod
    def lock_day(db: Session, tenant_id: str, day: date) -> None:
        """
        Serialise writers for one tenant day until the transaction ends.

        PostgreSQL takes a transaction-scoped advisory lock. SQLite connections
        already hold the database write lock from BEGIN IMMEDIATE.
        """
        if db.get_bind().dialect.name != "postgresql":
            return
        db.execute(select(func.pg_advisory_xact_lock(func.hashtext(f"{tenant_id}:{day.isoformat()}"))))

    @staticmethod
    def insert_if_free(db: Session, values: dict, conflict_scope: Optional[str]) -> bool:
        """
        Insert an appointment only if nothing live overlaps it, as one statement.

        ``values`` must hold every column to write, including ``id``.
        ``conflict_scope`` is the calendar to check (None = whole tenant).
        Returns False when an overlapping record exists; nothing is written then.
        """
        existing = aliased(Appointment, name="existing")
        overlapping = (
            select(existing.id)
            .where(
                existing.tenant_id == values["tenant_id"],
                existing.date == values["date"],
                existing.status != STATUS_CANCELLED,
                existing.start_minute < values["end_minute"],
                existing.end_minute > values["start_minute"],
                _calendar_filter(conflict_scope, existing),
            )
            .exists()
        )

        columns = list(values.keys())
        row = select(
            *[literal(values[name], type_=Appointment.__table__.c[name].type) for name in columns]
        ).where(~overlapping)

        result = db.execute(insert(Appointment).from_select(columns, row))
        inserted = result.rowcount == 1
        if not inserted:
            logger.info(
                f"⛔ Slot taken for tenant {values['tenant_id']} on {values['date']} at {values['start_time']}"
            )
        return inserted

    @staticmethod
    def update_status(db: Session, appointment: Appointment, status: str) -> Appointment:
        appointment.status = status
        db.commit()
        db.refresh(appointment)
        return appointment
