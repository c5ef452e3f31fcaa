"""Repositories over an AsyncSession.

Stores stage changes and flush; committing is left to the caller so a
whole lifecycle operation lands in one transaction.
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    ChangeActor, ChangeType, Reservation, ReservationHistory, ReservationStatus,
    WaitlistEntry, WaitlistStatus
)


class ReservationStore:
    """Reservation persistence."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_confirmed_by_date(self, day: date) -> List[Reservation]:
        result = await self.session.execute(
            select(Reservation).where(
                Reservation.date == day,
                Reservation.status == ReservationStatus.CONFIRMED,
            )
        )
        return list(result.scalars().all())

    async def get(self, reservation_id: int) -> Optional[Reservation]:
        return await self.session.get(Reservation, reservation_id)

    async def find_by_cancel_token(self, token: str) -> Optional[Reservation]:
        result = await self.session.execute(
            select(Reservation).where(Reservation.cancel_token == token)
        )
        return result.scalar_one_or_none()

    async def find(
        self,
        day: Optional[date] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        status: Optional[ReservationStatus] = None,
    ) -> List[Reservation]:
        """Exact ``day`` wins over the range filters."""
        query = select(Reservation)
        if day:
            query = query.where(Reservation.date == day)
        else:
            if from_date:
                query = query.where(Reservation.date >= from_date)
            if to_date:
                query = query.where(Reservation.date <= to_date)
        if status:
            query = query.where(Reservation.status == status)

        result = await self.session.execute(
            query.order_by(Reservation.date, Reservation.time, Reservation.id)
        )
        return list(result.scalars().all())

    async def create(self, **data: Any) -> Reservation:
        reservation = Reservation(**data)
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def update(self, reservation: Reservation, **patch: Any) -> Reservation:
        for field, value in patch.items():
            setattr(reservation, field, value)
        reservation.updated_at = datetime.now(timezone.utc)
        self.session.add(reservation)
        await self.session.flush()
        return reservation


class WaitlistStore:
    """Waitlist persistence."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_waiting(self, day: date, time: str) -> List[WaitlistEntry]:
        """Waiting entries for an exact slot, oldest first."""
        result = await self.session.execute(
            select(WaitlistEntry)
            .where(
                WaitlistEntry.date == day,
                WaitlistEntry.time == time,
                WaitlistEntry.status == WaitlistStatus.WAITING,
            )
            .order_by(WaitlistEntry.created_at, WaitlistEntry.id)
        )
        return list(result.scalars().all())

    async def get(self, entry_id: int) -> Optional[WaitlistEntry]:
        return await self.session.get(WaitlistEntry, entry_id)

    async def find(
        self, day: Optional[date] = None, status: Optional[WaitlistStatus] = None
    ) -> List[WaitlistEntry]:
        query = select(WaitlistEntry)
        if day:
            query = query.where(WaitlistEntry.date == day)
        if status:
            query = query.where(WaitlistEntry.status == status)
        result = await self.session.execute(
            query.order_by(WaitlistEntry.date, WaitlistEntry.time, WaitlistEntry.created_at)
        )
        return list(result.scalars().all())

    async def create(self, **data: Any) -> WaitlistEntry:
        entry = WaitlistEntry(status=WaitlistStatus.WAITING, **data)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def update(self, entry: WaitlistEntry, **patch: Any) -> WaitlistEntry:
        for field, value in patch.items():
            setattr(entry, field, value)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def expire_before(self, day: date) -> int:
        """Mark every waiting entry dated strictly before ``day`` as expired."""
        result = await self.session.execute(
            update(WaitlistEntry)
            .where(
                WaitlistEntry.status == WaitlistStatus.WAITING,
                WaitlistEntry.date < day,
            )
            .values(status=WaitlistStatus.EXPIRED)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount


class HistoryStore:
    """Audit trail. Rows join the caller's transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        reservation_id: int,
        change_type: ChangeType,
        actor: ChangeActor,
        previous_data: Optional[Dict[str, Any]] = None,
        new_data: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> ReservationHistory:
        entry = ReservationHistory(
            reservation_id=reservation_id,
            change_type=change_type,
            actor=actor,
            previous_data=previous_data,
            new_data=new_data,
            notes=notes,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def for_reservation(self, reservation_id: int) -> List[ReservationHistory]:
        result = await self.session.execute(
            select(ReservationHistory)
            .where(ReservationHistory.reservation_id == reservation_id)
            .order_by(ReservationHistory.created_at, ReservationHistory.id)
        )
        return list(result.scalars().all())

    async def recent(self, since: datetime, limit: int = 10) -> List[ReservationHistory]:
        """Newest entries first."""
        result = await self.session.execute(
            select(ReservationHistory)
            .where(ReservationHistory.created_at >= since)
            .order_by(ReservationHistory.created_at.desc(), ReservationHistory.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


def history_snapshot(reservation: Reservation, *fields: str) -> Dict[str, Any]:
    """JSON-safe view of selected reservation fields for the audit trail."""
    fields = fields or ("guest_name", "email", "phone", "date", "time", "party_size", "status")
    data = {}
    for name in fields:
        value = getattr(reservation, name)
        if isinstance(value, date):
            value = value.isoformat()
        elif hasattr(value, "value"):
            value = value.value
        data[name] = value
    return data
