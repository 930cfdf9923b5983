"""Availability service - Open slots for a day and the first bookable date"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional, Union

from sqlalchemy.orm import Session

from ...config import FIRST_AVAILABLE_MAX_WEEKS, SLOT_GRANULARITY_MINUTES
from ...database import store_errors
from ...errors import NotFoundError, ValidationError
from ...models import PRACTICE_CALENDAR, Appointment, Provider, Service, Tenant
from .repository import SchedulingRepository
from .time_calculator import (
    DaySchedule,
    available_slots,
    normalize_schedule,
    time_to_minutes,
    weekday_name,
)

logger = logging.getLogger(__name__)

DAYS_PER_WEEK = 7


@dataclass
class BookingContext:
    """Everything needed to compute slots for one service on one calendar"""

    tenant: Tenant
    service: Service
    provider: Optional[Provider]
    schedule: dict[str, DaySchedule]
    calendar_key: str

    @property
    def duration(self) -> int:
        return self.service.duration_minutes


@dataclass
class Found:
    day: date
    slots: list[time] = field(default_factory=list)
    weeks_searched: int = 1


@dataclass
class Exhausted:
    weeks_searched: int


FirstAvailableResult = Union[Found, Exhausted]


def resolve_context(
    db: Session, tenant_id: str, service_id: str, provider_id: Optional[str] = None
) -> BookingContext:
    """
    Load tenant, service and (optional) provider.

    A provider's own working hours replace the tenant's operating hours.

    Raises:
        NotFoundError: unknown or inactive tenant, service or provider
        ValidationError: the stored hours are inconsistent
    """
    repo = SchedulingRepository()

    tenant = repo.get_tenant(db, tenant_id)
    if not tenant:
        raise NotFoundError("Tenant not found", tenant_id=tenant_id)

    service = repo.get_service(db, tenant_id, service_id)
    if not service:
        raise NotFoundError("Service not found", service_id=service_id)

    provider = None
    hours = tenant.operating_hours
    calendar_key = PRACTICE_CALENDAR
    if provider_id:
        provider = repo.get_provider(db, tenant_id, provider_id)
        if not provider:
            raise NotFoundError("Provider not found", provider_id=provider_id)
        calendar_key = provider.id
        if provider.working_hours:
            hours = provider.working_hours

    return BookingContext(
        tenant=tenant,
        service=service,
        provider=provider,
        schedule=normalize_schedule(hours),
        calendar_key=calendar_key,
    )


def find_first_available_date(
    schedule: dict[str, DaySchedule],
    service_duration: int,
    load_occupied: Callable[[date, date], list],
    now: datetime,
    max_weeks: int = FIRST_AVAILABLE_MAX_WEEKS,
    granularity: int = SLOT_GRANULARITY_MINUTES,
) -> FirstAvailableResult:
    """
    Walk forward one Monday-Sunday week at a time from the week holding ``now``.

    ``load_occupied(week_start, week_end)`` is called once per searched week.
    Past days are skipped, and so is today once its last range has closed.
    The earliest day with at least one slot wins; after ``max_weeks`` weeks
    with nothing free the result is Exhausted. A fully-booked day is never
    offered.
    """
    today = now.date()
    week_start = today - timedelta(days=today.weekday())

    for week_offset in range(max_weeks):
        start = week_start + timedelta(weeks=week_offset)
        end = start + timedelta(days=DAYS_PER_WEEK - 1)

        days = []
        for i in range(DAYS_PER_WEEK):
            day = start + timedelta(days=i)
            if day < today:
                continue
            day_schedule = schedule[weekday_name(day)]
            if not day_schedule.enabled:
                continue
            if day == today and time_to_minutes(now.time()) >= day_schedule.closing_minute:
                continue
            days.append((day, day_schedule))

        if not days:
            continue

        occupied = load_occupied(start, end)
        for day, day_schedule in days:
            slots = available_slots(day, day_schedule, service_duration, occupied, now, granularity)
            if slots:
                return Found(day=day, slots=slots, weeks_searched=week_offset + 1)

    return Exhausted(weeks_searched=max_weeks)


class AvailabilityService:
    """Service layer for the read path: never writes, may be slightly stale"""

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = datetime.now,
        granularity: int = SLOT_GRANULARITY_MINUTES,
        max_weeks: int = FIRST_AVAILABLE_MAX_WEEKS,
    ):
        self.db = db
        self.repo = SchedulingRepository()
        self.clock = clock
        self.granularity = granularity
        self.max_weeks = max_weeks

    def get_available_slots(
        self, tenant_id: str, day: date, service_id: str, provider_id: Optional[str] = None
    ) -> list[time]:
        """Bookable start times for ``day``"""
        with store_errors(self.db, "Availability is temporarily unavailable"):
            ctx = resolve_context(self.db, tenant_id, service_id, provider_id)
            occupied = self.repo.get_occupying(self.db, tenant_id, ctx.calendar_key, day, day)
        slots = available_slots(
            day,
            ctx.schedule[weekday_name(day)],
            ctx.duration,
            occupied,
            self.clock(),
            self.granularity,
        )
        logger.debug(f"📅 {len(slots)} slots for tenant {tenant_id} on {day}")
        return slots

    def get_first_available_date(
        self, tenant_id: str, service_id: str, provider_id: Optional[str] = None
    ) -> FirstAvailableResult:
        with store_errors(self.db, "Availability is temporarily unavailable"):
            ctx = resolve_context(self.db, tenant_id, service_id, provider_id)

            def load_occupied(start: date, end: date) -> list[Appointment]:
                return self.repo.get_occupying(self.db, tenant_id, ctx.calendar_key, start, end)

            result = find_first_available_date(
                ctx.schedule,
                ctx.duration,
                load_occupied,
                self.clock(),
                self.max_weeks,
                self.granularity,
            )
        if isinstance(result, Exhausted):
            logger.info(
                f"🔍 No availability for tenant {tenant_id} in the next {result.weeks_searched} weeks"
            )
        return result

    def get_schedule(self, tenant_id: str, start: date, end: date) -> list[Appointment]:
        """All appointments and blocks in [start, end], cancelled ones included"""
        if end < start:
            raise ValidationError("End date must not be before start date")
        with store_errors(self.db, "Schedule is temporarily unavailable"):
            if not self.repo.get_tenant(self.db, tenant_id):
                raise NotFoundError("Tenant not found", tenant_id=tenant_id)
            return self.repo.get_schedule(self.db, tenant_id, start, end)
