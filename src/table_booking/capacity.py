"""Capacity accounting for time slots.

Two distinct measures live here and are deliberately kept apart:

- ``window_capacity``: confirmed reservations whose time lies within
  ``turnover_minutes`` of the requested time (used by admission).
- ``slot_covers``: guests confirmed for the exact same time (used by
  waitlist promotion).
"""
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List

from .clock import add_minutes, to_minutes
from .models import Reservation, ReservationStatus
from .settings_service import SettingsSnapshot
from .stores import ReservationStore


@dataclass(frozen=True)
class SlotCapacity:
    """Occupancy of the turnover window around a requested time."""
    utilization: float
    reservation_count: int
    total_guests: int

    @classmethod
    def empty(cls) -> "SlotCapacity":
        return cls(utilization=0.0, reservation_count=0, total_guests=0)


@dataclass(frozen=True)
class SlotAvailability:
    """One row of the per-day availability listing."""
    time: str
    utilization: float
    reservation_count: int
    max_reservations: int
    is_available: bool
    status: str  # full, limited, available


def window_capacity(
    reservations: Iterable[Reservation],
    time: str,
    turnover_minutes: int,
    total_capacity: int,
) -> SlotCapacity:
    """
    Sum confirmed reservations within ``turnover_minutes`` (inclusive) of ``time``.

    ``total_capacity`` must be positive; settings validation guarantees it.
    """
    requested = to_minutes(time)
    in_window = [
        r for r in reservations
        if r.status == ReservationStatus.CONFIRMED
        and abs(to_minutes(r.time) - requested) <= turnover_minutes
    ]
    total_guests = sum(r.party_size for r in in_window)
    return SlotCapacity(
        utilization=total_guests / total_capacity,
        reservation_count=len(in_window),
        total_guests=total_guests,
    )


def slot_covers(reservations: Iterable[Reservation], time: str) -> int:
    """Guests confirmed for exactly ``time``."""
    return sum(
        r.party_size for r in reservations
        if r.status == ReservationStatus.CONFIRMED and r.time == time
    )


def slot_status(capacity: SlotCapacity, max_reservations: int, pending_threshold: float) -> str:
    if capacity.reservation_count >= max_reservations:
        return "full"
    if capacity.utilization >= pending_threshold:
        return "limited"
    return "available"


def day_slots(
    snapshot: SettingsSnapshot,
    day: date,
    reservations: List[Reservation],
    interval_minutes: int = 15,
) -> List[SlotAvailability]:
    """Availability for every bookable start time of ``day``; empty when closed."""
    hours = snapshot.hours_for(day)
    if hours.is_closed:
        return []

    s = snapshot.settings
    rules = snapshot.rules_for(day)
    slots = []
    current = hours.open_time
    while to_minutes(current) < to_minutes(hours.close_time):
        capacity = window_capacity(reservations, current, s.turnover_minutes, snapshot.total_capacity)
        slots.append(SlotAvailability(
            time=current,
            utilization=capacity.utilization,
            reservation_count=capacity.reservation_count,
            max_reservations=s.max_reservations_per_slot,
            is_available=capacity.reservation_count < s.max_reservations_per_slot,
            status=slot_status(capacity, s.max_reservations_per_slot, rules.auto_pending_threshold),
        ))
        current = add_minutes(current, interval_minutes)
    return slots


class CapacityCalculator:
    """Reads confirmed reservations and reports capacity. No side effects."""

    def __init__(self, reservations: ReservationStore):
        self.reservations = reservations

    async def calculate_capacity(self, day: date, time: str, snapshot: SettingsSnapshot) -> SlotCapacity:
        confirmed = await self.reservations.find_confirmed_by_date(day)
        return window_capacity(
            confirmed, time, snapshot.settings.turnover_minutes, snapshot.total_capacity
        )

    async def covers_for_slot(self, day: date, time: str) -> int:
        confirmed = await self.reservations.find_confirmed_by_date(day)
        return slot_covers(confirmed, time)

    async def list_slots(
        self, day: date, snapshot: SettingsSnapshot, interval_minutes: int = 15
    ) -> List[SlotAvailability]:
        confirmed = await self.reservations.find_confirmed_by_date(day)
        return day_slots(snapshot, day, confirmed, interval_minutes)
