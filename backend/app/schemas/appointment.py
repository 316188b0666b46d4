# backend/app/schemas/appointment.py
"""
Appointment schemas.

Wire format is camelCase; ``date`` is YYYY-MM-DD and ``time`` is HH:MM in the
engine timezone.
"""

from datetime import date as date_type, datetime, time as time_type
import re
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field, field_serializer, field_validator

from ..models.appointment import Appointment
from ..services.appointment_rules import status_color
from .base import StandardizedModel, StrictRequestModel

DATE_ONLY_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_REGEX = re.compile(r"^\d{2}:\d{2}(:\d{2})?$")


def _ensure_date_only(value: object, field_name: str) -> object:
    if isinstance(value, str):
        candidate = value.strip()
        if not DATE_ONLY_REGEX.fullmatch(candidate):
            raise ValueError(f"{field_name} must be a YYYY-MM-DD date-only string")
        return candidate
    return value


def _ensure_clock_time(value: object, field_name: str) -> object:
    if isinstance(value, str):
        candidate = value.strip()
        if not TIME_REGEX.fullmatch(candidate):
            raise ValueError(f"{field_name} must be an HH:MM time")
        return candidate
    return value


class ScheduleFields(StrictRequestModel):
    date: date_type
    time: time_type

    @field_validator("date", mode="before")
    @classmethod
    def _date_only(cls, value: object) -> object:
        return _ensure_date_only(value, "date")

    @field_validator("time", mode="before")
    @classmethod
    def _clock_time(cls, value: object) -> object:
        return _ensure_clock_time(value, "time")


class AppointmentCreate(ScheduleFields):
    """Buyer books a viewing of a listing."""

    listing_id: str = Field(..., min_length=1)
    purpose: Literal["buy", "rent"]
    notes: Optional[str] = Field(None, max_length=2000, validation_alias=AliasChoices("notes", "message"))


class AdminAppointmentCreate(AppointmentCreate):
    """Administrator books on behalf of a buyer."""

    buyer_id: str = Field(..., min_length=1)


class AppointmentStatusUpdate(StrictRequestModel):
    status: str
    reason: Optional[str] = Field(None, max_length=2000)
    as_role: Optional[Literal["buyer", "seller", "admin"]] = None


class AppointmentReinitiate(ScheduleFields):
    pass


class AppointmentResponse(StandardizedModel):
    id: str
    buyer_id: str
    seller_id: str
    listing_id: str
    booked_by: Optional[str] = None
    date: date_type
    time: time_type
    purpose: str
    notes: Optional[str] = None
    status: str
    buyer_reinitiation_count: int
    cancel_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    is_outdated: bool
    status_color: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_serializer("time")
    def _serialize_time(self, value: time_type) -> str:
        return value.strftime("%H:%M")

    @classmethod
    def from_appointment(cls, appointment: Appointment, outdated: bool) -> "AppointmentResponse":
        return cls(
            id=appointment.id,
            buyer_id=appointment.buyer_id,
            seller_id=appointment.seller_id,
            listing_id=appointment.listing_id,
            booked_by=appointment.booked_by,
            date=appointment.scheduled_date,
            time=appointment.scheduled_time,
            purpose=appointment.purpose,
            notes=appointment.message,
            status=appointment.status,
            buyer_reinitiation_count=appointment.buyer_reinitiation_count or 0,
            cancel_reason=appointment.cancel_reason,
            cancelled_by=appointment.cancelled_by,
            is_outdated=outdated,
            status_color=status_color(appointment.status, outdated),
            created_at=appointment.created_at,
            updated_at=appointment.updated_at,
        )


class CanBookResponse(StandardizedModel):
    allowed: bool
    blocking_appointment: Optional[AppointmentResponse] = None


class AppointmentListResponse(StandardizedModel):
    items: List[AppointmentResponse]
    skip: int
    limit: int
