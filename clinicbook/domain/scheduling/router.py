"""Scheduling router - Public booking endpoints and staff schedule endpoints"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ...auth import require_staff_key
from ...database import SessionLocal, get_db
from ...rate_limiter import (
    RateLimiter,
    booking_rate_limiter,
    build_rate_limit_store,
    contact_rate_limiter,
    get_client_ip,
)
from .availability_service import AvailabilityService, Exhausted
from .booking_service import BookingService
from .schemas import (
    AppointmentSummary,
    AvailabilityResponse,
    BlockTimeRequest,
    FirstAvailableResponse,
    ReservationRequest,
    ReservationResponse,
    VerifyReservationRequest,
    VerifyReservationResponse,
)
from .time_calculator import format_minutes, time_to_minutes

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["Scheduling"])

# Counter store is shared by every request; built on first use
_rate_limit_store = None


def get_rate_limit_store():
    global _rate_limit_store
    if _rate_limit_store is None:
        _rate_limit_store = build_rate_limit_store(SessionLocal)
    return _rate_limit_store


def get_booking_rate_limiter(store=Depends(get_rate_limit_store)) -> RateLimiter:
    return booking_rate_limiter(store)


def get_contact_rate_limiter(store=Depends(get_rate_limit_store)) -> RateLimiter:
    return contact_rate_limiter(store)


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db)


def get_booking_service(
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_booking_rate_limiter),
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, rate_limiter=limiter)


def _summary(appointment) -> AppointmentSummary:
    return AppointmentSummary(
        id=appointment.id,
        date=appointment.date,
        start_time=appointment.start_time,
        end_time=format_minutes(appointment.end_minute),
        duration_minutes=appointment.duration_minutes,
        status=appointment.status,
        service_type=appointment.service_type,
        provider_id=appointment.provider_id,
        notes=appointment.notes,
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================


@router.get("/availability", response_model=AvailabilityResponse)
def get_availability(
    tenant_id: str,
    date: date,
    service_id: str,
    provider_id: Optional[str] = None,
    service: AvailabilityService = Depends(get_availability_service),
):
    """Open start times for one day"""
    slots = service.get_available_slots(tenant_id, date, service_id, provider_id)
    return AvailabilityResponse(
        tenant_id=tenant_id,
        date=date,
        service_id=service_id,
        provider_id=provider_id,
        slots=[format_minutes(time_to_minutes(s)) for s in slots],
    )


@router.get("/availability/first", response_model=FirstAvailableResponse)
def get_first_available(
    tenant_id: str,
    service_id: str,
    provider_id: Optional[str] = None,
    service: AvailabilityService = Depends(get_availability_service),
):
    """First date with at least one open slot, or an explicit "no availability" answer"""
    result = service.get_first_available_date(tenant_id, service_id, provider_id)
    if isinstance(result, Exhausted):
        return FirstAvailableResponse(
            status="exhausted",
            weeks_searched=result.weeks_searched,
            message=f"No availability in the next {result.weeks_searched} weeks",
        )
    return FirstAvailableResponse(
        status="found",
        date=result.day,
        slots=[format_minutes(time_to_minutes(s)) for s in result.slots],
        weeks_searched=result.weeks_searched,
    )


@router.post("/reservations", response_model=ReservationResponse, status_code=201)
def create_reservation(
    tenant_id: str,
    payload: dict,
    request: Request,
    service: BookingService = Depends(get_booking_service),
):
    """
    Book an appointment.

    The body is validated inside the service, before rate limiting and
    before any patient data is encrypted or stored.
    """
    result = service.reserve(tenant_id, payload, rate_limit_key=get_client_ip(request))
    return ReservationResponse(
        appointment_id=result.appointment_id,
        date=result.date,
        start_time=result.start_time,
        end_time=result.end_time,
        provider_id=result.provider_id,
        status=result.status,
    )


@router.post("/reservations/verify", response_model=VerifyReservationResponse)
def verify_reservation(
    tenant_id: str,
    payload: VerifyReservationRequest,
    request: Request,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_contact_rate_limiter),
):
    """Re-check a reservation whose outcome was reported as unknown"""
    limiter.check(get_client_ip(request))
    appointment = BookingService(db).find_reservation(tenant_id, payload)
    if not appointment:
        return VerifyReservationResponse(status="not_found")
    return VerifyReservationResponse(status="confirmed", appointment_id=appointment.id)


# ============================================================================
# STAFF ENDPOINTS
# ============================================================================


@router.post(
    "/blocked-periods",
    response_model=AppointmentSummary,
    status_code=201,
    dependencies=[Depends(require_staff_key)],
)
def create_blocked_period(
    tenant_id: str,
    payload: BlockTimeRequest,
    db: Session = Depends(get_db),
):
    """Block time on a provider's calendar, or practice-wide without a provider"""
    appointment = BookingService(db).block_time(tenant_id, payload)
    return _summary(appointment)


@router.post(
    "/appointments/{appointment_id}/cancel",
    response_model=AppointmentSummary,
    dependencies=[Depends(require_staff_key)],
)
def cancel_appointment(
    tenant_id: str,
    appointment_id: str,
    db: Session = Depends(get_db),
):
    appointment = BookingService(db).cancel_appointment(tenant_id, appointment_id)
    return _summary(appointment)


@router.get(
    "/schedule",
    response_model=list[AppointmentSummary],
    dependencies=[Depends(require_staff_key)],
)
def get_schedule(
    tenant_id: str,
    start: date = Query(...),
    end: date = Query(...),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Appointments and blocks in a date range, without patient data"""
    appointments = service.get_schedule(tenant_id, start, end)
    logger.debug(f"📋 Schedule for tenant {tenant_id}: {len(appointments)} entries")
    return [_summary(a) for a in appointments]
