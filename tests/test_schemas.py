"""Tests for scheduling request and response schemas."""

from datetime import date
from types import SimpleNamespace

import pytest

from clinicbook.domain.scheduling.schemas import AppointmentSummary, BlockTimeRequest


class TestAppointmentSummary:
    def test_built_from_orm_attributes(self) -> None:
        row = SimpleNamespace(
            id="3f0c7a52-0000-4000-8000-000000000000",
            date=date(2025, 6, 10),
            start_time="10:00",
            end_time="11:00",
            duration_minutes=60,
            status="Confirmed",
            service_type="Consultation",
            provider_id=None,
            notes=None,
            patient_id="never-exposed",
        )

        summary = AppointmentSummary.model_validate(row)

        assert AppointmentSummary.model_config["from_attributes"] is True
        assert summary.start_time == "10:00"
        assert "patient_id" not in summary.model_dump()


class TestBlockTimeRequest:
    def test_times_are_normalised(self) -> None:
        request = BlockTimeRequest(date="2025-06-10", start_time="1:30 PM", end_time="2:00 PM")
        assert (request.start_time, request.end_time) == ("13:30", "14:00")

    def test_end_must_follow_start(self) -> None:
        with pytest.raises(ValueError):
            BlockTimeRequest(date="2025-06-10", start_time="14:00", end_time="14:00")
