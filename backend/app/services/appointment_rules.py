"""
Pure appointment rules: outdated detection, the booking-blocking predicate,
the transition table and presentation colour.

Nothing here touches the database or the wall clock; callers pass ``now``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, Mapping, Optional, Protocol

from app.models.appointment import AppointmentStatus
from app.principal import ActorRole

DEFAULT_REINITIATION_LIMIT = 2


class Schedulable(Protocol):
    date: date
    time: time
    status: str
    buyer_reinitiation_count: int


@dataclass(frozen=True)
class TransitionRule:
    sources: frozenset[AppointmentStatus]
    roles: frozenset[ActorRole]


TRANSITIONS: Mapping[AppointmentStatus, TransitionRule] = {
    AppointmentStatus.ACCEPTED: TransitionRule(
        sources=frozenset({AppointmentStatus.PENDING}),
        roles=frozenset({ActorRole.SELLER, ActorRole.ADMIN}),
    ),
    AppointmentStatus.REJECTED: TransitionRule(
        sources=frozenset({AppointmentStatus.PENDING}),
        roles=frozenset({ActorRole.SELLER, ActorRole.ADMIN}),
    ),
    AppointmentStatus.CANCELLED_BY_BUYER: TransitionRule(
        sources=frozenset({AppointmentStatus.PENDING, AppointmentStatus.ACCEPTED}),
        roles=frozenset({ActorRole.BUYER}),
    ),
    AppointmentStatus.CANCELLED_BY_SELLER: TransitionRule(
        sources=frozenset({AppointmentStatus.PENDING, AppointmentStatus.ACCEPTED}),
        roles=frozenset({ActorRole.SELLER, ActorRole.ADMIN}),
    ),
    AppointmentStatus.COMPLETED: TransitionRule(
        sources=frozenset({AppointmentStatus.ACCEPTED}),
        roles=frozenset({ActorRole.SELLER, ActorRole.ADMIN, ActorRole.SYSTEM}),
    ),
}

BLOCKING_STATUSES = frozenset({AppointmentStatus.PENDING.value, AppointmentStatus.ACCEPTED.value})

STATUS_COLORS: Mapping[str, str] = {
    AppointmentStatus.PENDING.value: "yellow",
    AppointmentStatus.ACCEPTED.value: "green",
    AppointmentStatus.REJECTED.value: "red",
    AppointmentStatus.CANCELLED_BY_BUYER.value: "orange",
    AppointmentStatus.CANCELLED_BY_SELLER.value: "purple",
    AppointmentStatus.COMPLETED.value: "blue",
}
OUTDATED_COLOR = "gray"


def is_outdated(appointment_date: date, appointment_time: time, now: datetime) -> bool:
    """
    True once the scheduled date/time lies in the past.

    ``now`` must already be in the engine timezone; stored date/time values are
    wall-clock values in that same timezone.
    """
    today = now.date()
    if appointment_date < today:
        return True
    current = now.time().replace(tzinfo=None)
    return appointment_date == today and appointment_time.replace(tzinfo=None) < current


def blocks_booking(
    appointment: Schedulable,
    now: datetime,
    reinitiation_limit: int = DEFAULT_REINITIATION_LIMIT,
) -> bool:
    """Whether an existing appointment prevents the same buyer from booking the listing again."""
    if is_outdated(appointment.date, appointment.time, now):
        return False
    if appointment.status in BLOCKING_STATUSES:
        return True
    return (
        appointment.status == AppointmentStatus.CANCELLED_BY_BUYER.value
        and (appointment.buyer_reinitiation_count or 0) < reinitiation_limit
    )


def first_blocking(
    appointments: Iterable[Schedulable],
    now: datetime,
    reinitiation_limit: int = DEFAULT_REINITIATION_LIMIT,
) -> Optional[Schedulable]:
    for appointment in appointments:
        if blocks_booking(appointment, now, reinitiation_limit):
            return appointment
    return None


def status_color(status: str, outdated: bool) -> str:
    if outdated and status in BLOCKING_STATUSES:
        return OUTDATED_COLOR
    return STATUS_COLORS.get(status, OUTDATED_COLOR)


def rule_for(target: AppointmentStatus) -> Optional[TransitionRule]:
    return TRANSITIONS.get(target)
