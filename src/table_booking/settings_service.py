"""Settings provider: restaurant capacity and business rules."""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ConfigurationError
from .models import OperatingHours, RestaurantSettings, SettingsUpdate, SpecialDate

logger = logging.getLogger(__name__)

# Monday=0 ... Sunday=6, matching date.weekday()
DEFAULT_HOURS = {
    0: ("17:00", "22:00"),
    1: ("17:00", "22:00"),
    2: ("17:00", "22:00"),
    3: ("17:00", "22:00"),
    4: ("17:00", "23:00"),
    5: ("17:00", "23:00"),
    6: ("17:00", "22:00"),
}


@dataclass(frozen=True)
class DayHours:
    """Resolved opening hours for one calendar date."""
    is_closed: bool
    open_time: Optional[str] = None
    close_time: Optional[str] = None
    special_date: Optional[str] = None  # name of the override, if one applied


@dataclass(frozen=True)
class DayRules:
    """Party-size and utilization thresholds in force on one date."""
    auto_accept_max_party_size: int
    require_deposit_min_party_size: int
    auto_waitlist_threshold: float
    auto_pending_threshold: float


@dataclass(frozen=True)
class SettingsSnapshot:
    """Settings as read once for a single operation. Never mutated by the engines."""
    settings: RestaurantSettings
    operating_hours: Tuple[OperatingHours, ...] = ()
    special_dates: Tuple[SpecialDate, ...] = ()

    @property
    def total_capacity(self) -> int:
        return self.settings.total_capacity

    def special_date_for(self, day: date) -> Optional[SpecialDate]:
        return next((sd for sd in self.special_dates if sd.date == day), None)

    def hours_for(self, day: date) -> DayHours:
        """Special dates take precedence over the weekday schedule."""
        special = self.special_date_for(day)
        if special:
            if special.is_closed:
                return DayHours(is_closed=True, special_date=special.name)
            if special.custom_open_time and special.custom_close_time:
                return DayHours(
                    is_closed=False,
                    open_time=special.custom_open_time,
                    close_time=special.custom_close_time,
                    special_date=special.name,
                )

        hours = next((h for h in self.operating_hours if h.day_of_week == day.weekday()), None)
        if not hours or hours.is_closed:
            return DayHours(is_closed=True)
        return DayHours(is_closed=False, open_time=hours.open_time, close_time=hours.close_time)

    def rules_for(self, day: date) -> DayRules:
        s = self.settings
        special = self.special_date_for(day)

        def pick(override, default):
            return default if override is None else override

        return DayRules(
            auto_accept_max_party_size=pick(
                special and special.custom_auto_accept_max, s.auto_accept_max_party_size
            ),
            require_deposit_min_party_size=pick(
                special and special.custom_require_deposit_min, s.require_deposit_min_party_size
            ),
            auto_waitlist_threshold=pick(
                special and special.custom_waitlist_threshold, s.auto_waitlist_threshold
            ),
            auto_pending_threshold=pick(
                special and special.custom_pending_threshold, s.auto_pending_threshold
            ),
        )


def validate_settings(snapshot: SettingsSnapshot) -> SettingsSnapshot:
    """Fail loudly on settings the engines cannot work with."""
    s = snapshot.settings
    if s.total_capacity <= 0:
        raise ConfigurationError(
            f"Total seating capacity must be positive (got {s.total_capacity})"
        )
    if s.max_reservations_per_slot < 1:
        raise ConfigurationError("max_reservations_per_slot must be at least 1")

    thresholds = [(s.auto_pending_threshold, s.auto_waitlist_threshold, "default")]
    for sd in snapshot.special_dates:
        thresholds.append((
            sd.custom_pending_threshold if sd.custom_pending_threshold is not None else s.auto_pending_threshold,
            sd.custom_waitlist_threshold if sd.custom_waitlist_threshold is not None else s.auto_waitlist_threshold,
            sd.date.isoformat(),
        ))
    for pending, waitlist, label in thresholds:
        if not (0 <= pending <= 1 and 0 <= waitlist <= 1):
            raise ConfigurationError(f"Utilization thresholds must be within [0, 1] ({label})")
        if pending > waitlist:
            raise ConfigurationError(
                f"auto_pending_threshold ({pending}) exceeds auto_waitlist_threshold ({waitlist}) ({label})"
            )
    return snapshot


class SettingsService:
    """
    Reads and updates the restaurant settings singleton.

    Every call returns a fresh snapshot; nothing is cached here.
    """

    def __init__(self, session: AsyncSession, restaurant_id: str = "default"):
        self.session = session
        self.restaurant_id = restaurant_id

    async def get(self) -> SettingsSnapshot:
        """Load settings, creating the defaults on first access."""
        row = await self._get_row()
        if row is None:
            row = await self._create_defaults()
        return validate_settings(await self._snapshot(row))

    async def update(self, patch: SettingsUpdate) -> SettingsSnapshot:
        row = await self._get_row()
        if row is None:
            row = await self._create_defaults()

        changes = patch.model_dump(exclude_unset=True, exclude={"operating_hours", "special_dates"})
        for field, value in changes.items():
            setattr(row, field, value)
        row.updated_at = datetime.now(timezone.utc)
        self.session.add(row)

        if patch.operating_hours is not None:
            await self.session.execute(
                delete(OperatingHours).where(OperatingHours.restaurant_id == self.restaurant_id)
            )
            for hours in patch.operating_hours:
                self.session.add(OperatingHours(
                    restaurant_id=self.restaurant_id,
                    day_of_week=hours.day_of_week,
                    is_closed=hours.is_closed,
                    open_time=hours.open_time,
                    close_time=hours.close_time,
                    service_periods=[sp.model_dump() for sp in hours.service_periods],
                ))

        if patch.special_dates is not None:
            await self.session.execute(
                delete(SpecialDate).where(SpecialDate.restaurant_id == self.restaurant_id)
            )
            for sd in patch.special_dates:
                self.session.add(SpecialDate(restaurant_id=self.restaurant_id, **sd.model_dump()))

        await self.session.flush()
        try:
            snapshot = validate_settings(await self._snapshot(row))
        except ConfigurationError:
            await self.session.rollback()
            raise

        await self.session.commit()
        logger.info(f"Updated settings for {self.restaurant_id}: {sorted(changes)}")
        return snapshot

    async def _get_row(self) -> Optional[RestaurantSettings]:
        result = await self.session.execute(
            select(RestaurantSettings).where(RestaurantSettings.restaurant_id == self.restaurant_id)
        )
        return result.scalar_one_or_none()

    async def _snapshot(self, row: RestaurantSettings) -> SettingsSnapshot:
        hours = await self.session.execute(
            select(OperatingHours)
            .where(OperatingHours.restaurant_id == self.restaurant_id)
            .order_by(OperatingHours.day_of_week)
        )
        special = await self.session.execute(
            select(SpecialDate)
            .where(SpecialDate.restaurant_id == self.restaurant_id)
            .order_by(SpecialDate.date)
        )
        return SettingsSnapshot(
            settings=row,
            operating_hours=tuple(hours.scalars().all()),
            special_dates=tuple(special.scalars().all()),
        )

    async def _create_defaults(self) -> RestaurantSettings:
        row = RestaurantSettings(restaurant_id=self.restaurant_id)
        self.session.add(row)
        for day, (open_time, close_time) in DEFAULT_HOURS.items():
            self.session.add(OperatingHours(
                restaurant_id=self.restaurant_id,
                day_of_week=day,
                open_time=open_time,
                close_time=close_time,
            ))
        await self.session.commit()
        logger.info(f"Created default settings for {self.restaurant_id}")
        return row
