"""Validation of user-submitted tracker definitions."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import TrackerValidationError
from .models import (
    Flexibility,
    LuggageOption,
    ReportFrequency,
    Tracker,
    TrackerStatus,
    TravelClass,
)


class TrackerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    owner: str = Field(..., min_length=1)
    notify_email: Optional[str] = None
    departure_airports: List[str] = Field(..., min_length=1)
    departure_radius_km: int = Field(200, ge=50, le=300)
    destination_airports: List[str] = Field(..., min_length=1)
    date_range_start: date
    date_range_end: date
    trip_duration_days: int = Field(..., ge=1, le=90)
    flexibility: Flexibility = Flexibility.EXACT
    travel_class: TravelClass = TravelClass.ECONOMY
    luggage_option: LuggageOption = LuggageOption.BOTH
    report_frequency: ReportFrequency = ReportFrequency.WEEKLY
    alert_threshold_percent: Optional[Decimal] = Field(None, gt=0)
    alert_threshold_eur: Optional[Decimal] = Field(None, gt=0)

    @field_validator("departure_airports", "destination_airports")
    @classmethod
    def _iata_codes(cls, v: List[str]) -> List[str]:
        codes: List[str] = []
        for code in v:
            code = code.strip().upper()
            if len(code) != 3 or not code.isalpha():
                raise ValueError(f"invalid IATA code: {code!r}")
            if code not in codes:
                codes.append(code)
        return codes

    @field_validator("notify_email")
    @classmethod
    def _email(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and "@" not in v:
            raise ValueError("notify_email must be an e-mail address")
        return v

    @model_validator(mode="after")
    def _cross_field(self) -> "TrackerCreate":
        if self.date_range_end < self.date_range_start:
            raise ValueError("date_range_end must not be before date_range_start")
        if (
            self.alert_threshold_percent is not None
            and self.alert_threshold_eur is not None
        ):
            raise ValueError("set either a percent or a EUR alert threshold, not both")
        return self


def build_tracker(
    data: Mapping[str, Any],
    *,
    tracker_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tracker:
    """Validate *data* and return a new ``ACTIVE`` :class:`Tracker`.

    Raises :class:`TrackerValidationError` with pydantic's message on bad input.
    """
    try:
        form = TrackerCreate.model_validate(dict(data))
    except ValidationError as exc:
        raise TrackerValidationError(str(exc)) from exc

    return Tracker(
        id=tracker_id or uuid.uuid4().hex,
        owner=form.owner,
        name=form.name,
        departure_airports=form.departure_airports,
        destination_airports=form.destination_airports,
        date_range_start=form.date_range_start,
        date_range_end=form.date_range_end,
        trip_duration_days=form.trip_duration_days,
        flexibility=form.flexibility,
        travel_class=form.travel_class,
        luggage_option=form.luggage_option,
        report_frequency=form.report_frequency,
        departure_radius_km=form.departure_radius_km,
        alert_threshold_percent=form.alert_threshold_percent,
        alert_threshold_eur=form.alert_threshold_eur,
        status=TrackerStatus.ACTIVE,
        notify_email=form.notify_email,
        created_at=now or datetime.now(timezone.utc),
    )


__all__ = ["TrackerCreate", "build_tracker"]
