"""SQLModel definitions for the table booking service."""
import datetime as dt
import re
import secrets
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import StringConstraints, field_validator
from sqlalchemy import JSON, Column, DateTime, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

# "HH:MM", 24-hour clock
TimeOfDay = Annotated[str, StringConstraints(pattern=TIME_PATTERN)]
Email = Annotated[str, StringConstraints(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")]


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def new_cancel_token() -> str:
    return secrets.token_urlsafe(32)


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    SEATED = "seated"
    NO_SHOW = "no_show"


class ReservationSource(str, Enum):
    WEB = "web"
    IN_HOUSE = "in_house"
    PHONE = "phone"


class WaitlistStatus(str, Enum):
    WAITING = "waiting"
    PROMOTED = "promoted"
    EXPIRED = "expired"


class ChangeType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"
    CONFIRMED = "confirmed"
    SEATED = "seated"
    NO_SHOW = "no_show"


class ChangeActor(str, Enum):
    GUEST = "guest"
    STAFF = "staff"
    SYSTEM = "system"


# ============================================================================
# RESERVATIONS
# ============================================================================

class Reservation(SQLModel, table=True):
    """A booked table. ``date`` and ``time`` are restaurant-local civil values."""
    __tablename__ = "reservations"
    __table_args__ = (
        Index("ix_reservations_date_time", "date", "time"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    # Guest contact
    guest_name: str
    email: str = ""
    phone: str = ""

    # Booking details
    date: dt.date
    time: str  # "HH:MM"
    party_size: int
    status: ReservationStatus = Field(default=ReservationStatus.PENDING, index=True)
    source: ReservationSource = ReservationSource.WEB
    notes: Optional[str] = None

    # Guest self-service, never rotated
    cancel_token: str = Field(default_factory=new_cancel_token, unique=True, index=True)

    created_at: dt.datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))
    updated_at: dt.datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))


class WaitlistEntry(SQLModel, table=True):
    """A party waiting for an exact (date, time) slot. FIFO by ``created_at``."""
    __tablename__ = "waitlist_entries"
    __table_args__ = (
        Index("ix_waitlist_entries_date_time", "date", "time"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    guest_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    date: dt.date
    time: str
    party_size: int
    status: WaitlistStatus = Field(default=WaitlistStatus.WAITING, index=True)
    linked_reservation_id: Optional[int] = Field(default=None, foreign_key="reservations.id")
    created_at: dt.datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))
    promoted_at: Optional[dt.datetime] = Field(default=None, sa_type=DateTime(timezone=True))


class ReservationHistory(SQLModel, table=True):
    """Audit trail of reservation changes."""
    __tablename__ = "reservation_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    reservation_id: int = Field(foreign_key="reservations.id", index=True)
    change_type: ChangeType
    actor: ChangeActor
    previous_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    new_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    notes: Optional[str] = None
    created_at: dt.datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True), index=True)


# ============================================================================
# RESTAURANT SETTINGS (capacity and business rules)
# ============================================================================

class RestaurantSettings(SQLModel, table=True):
    """Singleton per restaurant. Total capacity is the sum of the seat pools."""
    __tablename__ = "restaurant_settings"

    id: Optional[int] = Field(default=None, primary_key=True)
    restaurant_id: str = Field(default="default", unique=True, index=True)
    restaurant_name: str = "My Restaurant"

    # Capacity
    dining_room_seats: int = 50
    bar_seats: int = 12
    outdoor_seats: int = 20
    max_reservations_per_slot: int = 8
    turnover_minutes: int = 90

    # Booking window
    min_hours_in_advance: int = 2
    max_days_in_advance: int = 60
    allow_same_day_booking: bool = True
    same_day_cutoff_hour: int = 20

    # Party size policy
    auto_accept_max_party_size: int = 6
    require_deposit_min_party_size: int = 8
    large_party_min_size: int = 10
    large_party_needs_approval: bool = True

    # Utilization thresholds
    auto_waitlist_threshold: float = 0.95
    auto_pending_threshold: float = 0.85

    created_at: dt.datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))
    updated_at: dt.datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))

    @property
    def total_capacity(self) -> int:
        return self.dining_room_seats + self.bar_seats + self.outdoor_seats


class OperatingHours(SQLModel, table=True):
    """Regular hours for one weekday (Monday=0 ... Sunday=6)."""
    __tablename__ = "operating_hours"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "day_of_week"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    restaurant_id: str = Field(index=True)
    day_of_week: int
    is_closed: bool = False
    open_time: str = "17:00"
    close_time: str = "22:00"
    # [{"name": "Dinner", "start_time": "17:00", "end_time": "22:00"}]
    service_periods: List[Dict[str, str]] = Field(default_factory=list, sa_column=Column(JSON))


class SpecialDate(SQLModel, table=True):
    """Per-date override of the weekday rules (holiday closures, events)."""
    __tablename__ = "special_dates"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "date"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    restaurant_id: str = Field(index=True)
    date: dt.date
    name: str
    is_closed: bool = False
    custom_open_time: Optional[str] = None
    custom_close_time: Optional[str] = None
    custom_auto_accept_max: Optional[int] = None
    custom_require_deposit_min: Optional[int] = None
    custom_waitlist_threshold: Optional[float] = None
    custom_pending_threshold: Optional[float] = None


# ============================================================================
# API REQUEST/RESPONSE MODELS
# ============================================================================

def normalize_phone(phone: str) -> str:
    """Format an 11-digit number as ``+1 (555) 123-4567``; leave others untouched."""
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 11:
        return f"+{digits[0]} ({digits[1:4]}) {digits[4:7]}-{digits[7:11]}"
    return phone


class EvaluationRequest(SQLModel):
    """Query for the admission engine."""
    date: dt.date
    time: TimeOfDay
    party_size: int = Field(ge=1, le=20)
    source: ReservationSource = ReservationSource.WEB


class ReservationCreate(SQLModel):
    """Create a reservation (guest web form or staff)."""
    guest_name: str = Field(min_length=1)
    email: Email
    phone: str
    date: dt.date
    time: TimeOfDay
    party_size: int = Field(ge=1, le=20)
    notes: Optional[str] = None
    source: ReservationSource = ReservationSource.WEB

    @field_validator("phone")
    @classmethod
    def _us_phone(cls, value: str) -> str:
        digits = re.sub(r"\D", "", value)
        if not re.fullmatch(r"1\d{10}", digits):
            raise ValueError("Phone must be a US number: +1 (XXX) XXX-XXXX")
        return digits


class ReservationUpdate(SQLModel):
    """Staff edit. Every field is optional."""
    guest_name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[Email] = None
    phone: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[TimeOfDay] = None
    party_size: Optional[int] = Field(default=None, ge=1, le=20)
    status: Optional[ReservationStatus] = None
    notes: Optional[str] = None


class GuestUpdate(SQLModel):
    """Guest self-service edit through the cancel token."""
    date: Optional[dt.date] = None
    time: Optional[TimeOfDay] = None
    party_size: Optional[int] = Field(default=None, ge=1, le=20)
    notes: Optional[str] = None


class ServicePeriodIn(SQLModel):
    name: str
    start_time: TimeOfDay
    end_time: TimeOfDay


class OperatingHoursIn(SQLModel):
    day_of_week: int = Field(ge=0, le=6)
    is_closed: bool = False
    open_time: TimeOfDay = "17:00"
    close_time: TimeOfDay = "22:00"
    service_periods: List[ServicePeriodIn] = []


class SpecialDateIn(SQLModel):
    date: dt.date
    name: str
    is_closed: bool = False
    custom_open_time: Optional[TimeOfDay] = None
    custom_close_time: Optional[TimeOfDay] = None
    custom_auto_accept_max: Optional[int] = None
    custom_require_deposit_min: Optional[int] = None
    custom_waitlist_threshold: Optional[float] = Field(default=None, ge=0, le=1)
    custom_pending_threshold: Optional[float] = Field(default=None, ge=0, le=1)


class SettingsUpdate(SQLModel):
    """Partial settings update. Lists replace the stored rows wholesale."""
    restaurant_name: Optional[str] = None
    dining_room_seats: Optional[int] = Field(default=None, ge=0)
    bar_seats: Optional[int] = Field(default=None, ge=0)
    outdoor_seats: Optional[int] = Field(default=None, ge=0)
    max_reservations_per_slot: Optional[int] = Field(default=None, ge=1)
    turnover_minutes: Optional[int] = Field(default=None, ge=0)
    min_hours_in_advance: Optional[int] = Field(default=None, ge=0)
    max_days_in_advance: Optional[int] = Field(default=None, ge=0)
    allow_same_day_booking: Optional[bool] = None
    same_day_cutoff_hour: Optional[int] = Field(default=None, ge=0, le=23)
    auto_accept_max_party_size: Optional[int] = Field(default=None, ge=1)
    require_deposit_min_party_size: Optional[int] = Field(default=None, ge=1)
    large_party_min_size: Optional[int] = Field(default=None, ge=1)
    large_party_needs_approval: Optional[bool] = None
    auto_waitlist_threshold: Optional[float] = None
    auto_pending_threshold: Optional[float] = None
    operating_hours: Optional[List[OperatingHoursIn]] = None
    special_dates: Optional[List[SpecialDateIn]] = None
