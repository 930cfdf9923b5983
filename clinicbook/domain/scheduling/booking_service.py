"""Booking service - Reservation transaction, block time and cancellation"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import SLOT_GRANULARITY_MINUTES
from ...crypto import encrypt_field, encrypt_optional, hash_for_search
from ...database import store_errors
from ...errors import (
    BookingEngineError,
    ConflictError,
    NotFoundError,
    ReservationOutcomeUnknownError,
    StoreUnavailableError,
    ValidationError,
)
from ...models import (
    BLOCKED_SERVICE_TYPE,
    LIVE_SLOT_INDEX,
    PRACTICE_CALENDAR,
    STATUS_BLOCKED,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    Appointment,
    generate_public_id,
)
from ...rate_limiter import RateLimiter
from ...utils.sanitization import sanitize_string
from ..patients.repository import PatientRepository
from .availability_service import resolve_context
from .repository import SchedulingRepository
from .schemas import BlockTimeRequest, ReservationRequest, VerifyReservationRequest
from .time_calculator import format_minutes, is_on_schedule, minutes_to_time, parse_time, weekday_name

logger = logging.getLogger(__name__)


@dataclass
class ReservationResult:
    appointment_id: str
    date: date
    start_time: str
    end_time: str
    provider_id: Optional[str]
    status: str


def parse_payload(model, payload):
    """Validate a raw dict (or an already built model) into ``model``"""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        errors = [
            {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in e.errors()
        ]
        raise ValidationError("Invalid request", errors=errors) from e


def is_slot_collision(error: IntegrityError) -> bool:
    """True when ``error`` is a violation of the live slot index, not some other constraint"""
    diag = getattr(error.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        return constraint == LIVE_SLOT_INDEX
    # SQLite names the indexed columns instead of the index
    return "UNIQUE constraint failed: appointments.tenant_id, appointments.calendar_key" in str(
        error.orig
    )


class BookingService:
    """Service layer for the authoritative write path"""

    def __init__(
        self,
        db: Session,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], datetime] = datetime.now,
        granularity: int = SLOT_GRANULARITY_MINUTES,
    ):
        self.db = db
        self.repo = SchedulingRepository()
        self.patient_repo = PatientRepository()
        self.rate_limiter = rate_limiter
        self.clock = clock
        self.granularity = granularity

    # ========================================================================
    # RESERVATIONS
    # ========================================================================

    def reserve(
        self, tenant_id: str, payload: Union[ReservationRequest, dict], rate_limit_key: str
    ) -> ReservationResult:
        """
        Book one appointment for a patient.

        Order matters: the payload is validated and the source rate-limited
        before any patient data is encrypted or written. The patient upsert
        and the appointment insert commit together or not at all.

        Raises:
            ValidationError: malformed payload, closed day, off-grid or past time
            RateLimitedError: too many bookings from ``rate_limit_key``
            NotFoundError: unknown tenant, service or provider
            ConflictError: the slot was taken; pick another time
            StoreUnavailableError: the database failed before the insert
            ReservationOutcomeUnknownError: the insert or commit did not report back
        """
        request = parse_payload(ReservationRequest, payload)

        if self.rate_limiter is not None:
            self.rate_limiter.check(rate_limit_key)

        start_minute = parse_time(request.time)
        try:
            ctx = resolve_context(self.db, tenant_id, request.service_id, request.provider_id)
            self._check_bookable(request.date, start_minute, ctx.schedule, ctx.duration)
        except BookingEngineError:
            self._rollback()
            raise
        except SQLAlchemyError as e:
            self._rollback()
            raise StoreUnavailableError("Booking is temporarily unavailable") from e

        patient_fields = {
            "full_name": encrypt_field(request.patient_name),
            "email": encrypt_field(request.patient_email),
            "email_hash": hash_for_search(request.patient_email),
            "phone": encrypt_field(request.patient_phone),
            "phone_hash": hash_for_search(request.patient_phone),
            "date_of_birth": encrypt_optional(request.date_of_birth),
            "address": encrypt_optional(request.home_address),
            "insurance_provider": encrypt_optional(request.insurance_provider),
            "emergency_contact": encrypt_optional(request.emergency_contact),
        }

        try:
            patient_id = self.patient_repo.upsert_patient(self.db, tenant_id, **patient_fields)
            self.repo.lock_day(self.db, tenant_id, request.date)
        except SQLAlchemyError as e:
            self._rollback()
            logger.error(f"❌ Could not prepare reservation for tenant {tenant_id}: {e}")
            raise StoreUnavailableError("Booking is temporarily unavailable") from e

        values = {
            "id": generate_public_id(),
            "tenant_id": tenant_id,
            "provider_id": ctx.provider.id if ctx.provider else None,
            "patient_id": patient_id,
            "calendar_key": ctx.calendar_key,
            "date": request.date,
            "start_time": format_minutes(start_minute),
            "start_minute": start_minute,
            "end_minute": start_minute + ctx.duration,
            "duration_minutes": ctx.duration,
            "status": STATUS_CONFIRMED,
            "service_type": ctx.service.name,
            "notes": None,
            "reason_for_visit": encrypt_optional(request.reason_for_visit),
        }
        self._insert_atomically(values, ctx.calendar_key)

        logger.info(
            f"✅ Appointment {values['id']} booked for tenant {tenant_id} on "
            f"{request.date} at {values['start_time']}"
        )
        return ReservationResult(
            appointment_id=values["id"],
            date=request.date,
            start_time=values["start_time"],
            end_time=format_minutes(values["end_minute"]),
            provider_id=values["provider_id"],
            status=STATUS_CONFIRMED,
        )

    def find_reservation(
        self, tenant_id: str, payload: Union[VerifyReservationRequest, dict]
    ) -> Optional[Appointment]:
        """
        Re-check a reservation after ReservationOutcomeUnknownError.

        Returns the live appointment at that time when it belongs to the
        patient with this email, otherwise None.
        """
        request = parse_payload(VerifyReservationRequest, payload)
        calendar_key = request.provider_id or PRACTICE_CALENDAR

        email_hash = hash_for_search(request.patient_email)
        with store_errors(self.db, "Reservation lookup is temporarily unavailable"):
            appointment = self.repo.find_live_appointment(
                self.db, tenant_id, calendar_key, request.date, parse_time(request.time)
            )
            if not appointment or not appointment.patient:
                return None
            if appointment.patient.email_hash != email_hash:
                return None
        return appointment

    # ========================================================================
    # STAFF OPERATIONS
    # ========================================================================

    def block_time(self, tenant_id: str, payload: Union[BlockTimeRequest, dict]) -> Appointment:
        """
        Block a period on a provider's calendar, or on the whole practice
        when no provider is given.

        Raises:
            ConflictError: the period overlaps a live appointment or block
        """
        request = parse_payload(BlockTimeRequest, payload)

        with store_errors(self.db, "Scheduling is temporarily unavailable"):
            if not self.repo.get_tenant(self.db, tenant_id):
                self._rollback()
                raise NotFoundError("Tenant not found", tenant_id=tenant_id)

            if request.provider_id:
                provider = self.repo.get_provider(self.db, tenant_id, request.provider_id)
                if not provider:
                    self._rollback()
                    raise NotFoundError("Provider not found", provider_id=request.provider_id)
                calendar_key = provider.id
                conflict_scope = provider.id
            else:
                calendar_key = PRACTICE_CALENDAR
                conflict_scope = None  # closes the time for every provider

            self.repo.lock_day(self.db, tenant_id, request.date)

        start_minute = parse_time(request.start_time)
        end_minute = parse_time(request.end_time)

        values = {
            "id": generate_public_id(),
            "tenant_id": tenant_id,
            "provider_id": request.provider_id,
            "patient_id": None,
            "calendar_key": calendar_key,
            "date": request.date,
            "start_time": format_minutes(start_minute),
            "start_minute": start_minute,
            "end_minute": end_minute,
            "duration_minutes": end_minute - start_minute,
            "status": STATUS_BLOCKED,
            "service_type": BLOCKED_SERVICE_TYPE,
            "notes": sanitize_string(request.reason),
            "reason_for_visit": None,
        }
        self._insert_atomically(values, conflict_scope)

        logger.info(
            f"🚧 Blocked {values['start_time']}-{format_minutes(end_minute)} on {request.date} "
            f"for tenant {tenant_id} ({calendar_key})"
        )
        with store_errors(self.db, "Blocked period saved but could not be read back"):
            return self.repo.get_appointment(self.db, tenant_id, values["id"])

    def cancel_appointment(self, tenant_id: str, appointment_id: str) -> Appointment:
        """Mark an appointment (or block) Cancelled so its time is free again"""
        with store_errors(self.db, "Could not cancel appointment"):
            appointment = self.repo.get_appointment(self.db, tenant_id, appointment_id)
            if not appointment:
                raise NotFoundError("Appointment not found", appointment_id=appointment_id)
            if appointment.status == STATUS_CANCELLED:
                return appointment
            appointment = self.repo.update_status(self.db, appointment, STATUS_CANCELLED)

        logger.info(f"🗑️ Appointment {appointment_id} cancelled for tenant {tenant_id}")
        return appointment

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _check_bookable(self, day: date, start_minute: int, schedule, duration: int) -> None:
        """Cheap pre-check against the schedule; the atomic insert has the final word"""
        day_schedule = schedule[weekday_name(day)]
        if not day_schedule.enabled:
            raise ValidationError(f"The practice is closed on {weekday_name(day).capitalize()}")
        if not is_on_schedule(day_schedule, start_minute, duration, self.granularity):
            raise ValidationError("Requested time is outside operating hours")
        if datetime.combine(day, minutes_to_time(start_minute)) <= self.clock():
            raise ValidationError("Requested time is in the past")

    def _insert_atomically(self, values: dict, conflict_scope: Optional[str]) -> None:
        try:
            inserted = self.repo.insert_if_free(self.db, values, conflict_scope)
            if inserted:
                self.db.commit()
        except IntegrityError as e:
            self._rollback()
            if is_slot_collision(e):
                # Unique index caught a race the NOT EXISTS check could not see
                raise ConflictError() from None
            logger.error(f"❌ Appointment {values['id']} rejected by a constraint: {e}")
            raise StoreUnavailableError("Booking is temporarily unavailable") from e
        except SQLAlchemyError as e:
            self._rollback()
            logger.error(f"❌ Outcome of insert for appointment {values['id']} unknown: {e}")
            raise ReservationOutcomeUnknownError(
                "Reservation outcome unknown; verify before retrying",
                date=values["date"].isoformat(),
                time=values["start_time"],
            ) from e

        if not inserted:
            self._rollback()
            raise ConflictError()

    def _rollback(self) -> None:
        try:
            self.db.rollback()
        except SQLAlchemyError as e:
            logger.error(f"❌ Rollback failed: {e}")
