"""Staff dashboard figures: today's book, the days ahead and recent activity."""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from .capacity import SlotAvailability
from .models import ChangeType, Reservation, ReservationHistory, ReservationStatus

# Statuses that still hold a table
ACTIVE_STATUSES = (ReservationStatus.CONFIRMED, ReservationStatus.PENDING)


@dataclass(frozen=True)
class TodayStats:
    total_reservations: int
    confirmed: int
    pending: int
    cancelled: int
    total_guests: int
    average_party_size: float


@dataclass(frozen=True)
class UpcomingStats:
    next_7_days: int
    next_30_days: int
    waitlist_count: int


@dataclass(frozen=True)
class CapacityStatus:
    current_occupancy: int
    max_capacity: int
    utilization_percent: float
    peak_hour_today: Optional[str]
    available_slots: int


@dataclass(frozen=True)
class ActivityItem:
    id: int
    type: str
    message: str
    timestamp: datetime
    reservation_id: int


@dataclass(frozen=True)
class DashboardStats:
    today: TodayStats
    upcoming: UpcomingStats
    capacity: CapacityStatus
    recent_activity: List[ActivityItem]


def today_stats(reservations: Sequence[Reservation]) -> TodayStats:
    guests = sum(r.party_size for r in reservations)
    return TodayStats(
        total_reservations=len(reservations),
        confirmed=sum(1 for r in reservations if r.status == ReservationStatus.CONFIRMED),
        pending=sum(1 for r in reservations if r.status == ReservationStatus.PENDING),
        cancelled=sum(1 for r in reservations if r.status == ReservationStatus.CANCELLED),
        total_guests=guests,
        average_party_size=round(guests / len(reservations), 2) if reservations else 0.0,
    )


def peak_hour(confirmed: Iterable[Reservation]) -> Optional[str]:
    """Hour with the most confirmed guests, as "HH:00". Ties go to the earlier hour."""
    guests_by_hour: Dict[str, int] = {}
    for r in confirmed:
        hour = r.time.split(":")[0]
        guests_by_hour[hour] = guests_by_hour.get(hour, 0) + r.party_size
    if not guests_by_hour:
        return None
    busiest = max(sorted(guests_by_hour), key=lambda h: guests_by_hour[h])
    return f"{busiest}:00"


def capacity_status(
    confirmed: Sequence[Reservation],
    max_capacity: int,
    slots: Sequence[SlotAvailability],
) -> CapacityStatus:
    occupancy = sum(r.party_size for r in confirmed)
    return CapacityStatus(
        current_occupancy=occupancy,
        max_capacity=max_capacity,
        utilization_percent=round(occupancy / max_capacity * 100, 2) if max_capacity else 0.0,
        peak_hour_today=peak_hour(confirmed),
        available_slots=sum(1 for s in slots if s.is_available),
    )


def activity_message(entry: ReservationHistory, guest_name: Optional[str]) -> str:
    guest = guest_name or "Guest"
    actor = entry.actor.value
    if entry.change_type == ChangeType.SEATED:
        return f"{guest} seated"
    if entry.change_type == ChangeType.NO_SHOW:
        return f"{guest} marked as no-show"
    return f"{guest}'s reservation {entry.change_type.value} by {actor}"
