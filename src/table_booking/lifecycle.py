"""Reservation lifecycle: create, cancel, edit, promote and expire.

This is the only place that writes reservation and waitlist state. Each
public operation runs in one transaction under the date lock(s) it
touches, and sends guest notifications only after the commit.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from .capacity import CapacityCalculator, SlotAvailability, day_slots, slot_covers
from .clock import Clock, restaurant_clock
from .config import settings
from .dashboard import (
    ACTIVE_STATUSES, ActivityItem, DashboardStats, UpcomingStats, activity_message, capacity_status,
    today_stats
)
from .errors import InvalidTransitionError, ReservationNotFoundError, WaitlistEntryNotFoundError
from .evaluation import Decision, Evaluation, EvaluationService
from .locks import SlotLocks
from .models import (
    ChangeActor, ChangeType, EvaluationRequest, GuestUpdate, Reservation,
    ReservationCreate, ReservationHistory, ReservationSource, ReservationStatus,
    ReservationUpdate, WaitlistEntry, WaitlistStatus, normalize_phone
)
from .notifications import NotificationKind, Notifier
from .settings_service import SettingsService
from .stores import HistoryStore, ReservationStore, WaitlistStore, history_snapshot
from .waitlist import PromotionResult, plan_promotion

logger = logging.getLogger(__name__)

PROMOTION_NOTE = "Promoted from waitlist"

STATUS_CHANGE_TYPES = {
    ReservationStatus.CONFIRMED: ChangeType.CONFIRMED,
    ReservationStatus.SEATED: ChangeType.SEATED,
    ReservationStatus.NO_SHOW: ChangeType.NO_SHOW,
}


@dataclass
class BookingOutcome:
    """Result of ``create``. A policy rejection is an outcome, not an error."""
    status: str  # confirmed, pending, waitlisted, rejected
    message: str
    evaluation: Evaluation
    reservation: Optional[Reservation] = None
    waitlist_entry: Optional[WaitlistEntry] = None

    @property
    def rejected(self) -> bool:
        return self.status == "rejected"


@dataclass
class CancellationResult:
    reservation: Reservation
    promotion: PromotionResult


class ReservationService:
    """
    Orchestrates the admission engine, the promotion policy and the stores.

    Args:
        session: Database session (one per request)
        notifier: Guest notification channel
        locks: Shared per-date lock registry
        clock: Restaurant-local wall clock
        restaurant_id: Key of the settings singleton
        max_covers_per_time_slot: Exact-slot cover cap for promotions
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: Notifier,
        locks: SlotLocks,
        clock: Optional[Clock] = None,
        restaurant_id: Optional[str] = None,
        max_covers_per_time_slot: Optional[int] = None,
        slot_interval_minutes: Optional[int] = None,
    ):
        self.session = session
        self.notifier = notifier
        self.locks = locks
        self.clock = clock or restaurant_clock(settings.restaurant_timezone)
        self.max_covers = max_covers_per_time_slot or settings.max_covers_per_time_slot
        self.slot_interval = slot_interval_minutes or settings.slot_interval_minutes

        self.reservations = ReservationStore(session)
        self.waitlist = WaitlistStore(session)
        self.history = HistoryStore(session)
        self.settings = SettingsService(session, restaurant_id or settings.restaurant_id)
        self.evaluator = EvaluationService(self.settings, self.reservations, self.clock)
        self.capacity = CapacityCalculator(self.reservations)

        self._outbox: List[Tuple[NotificationKind, Optional[str], Dict[str, Any]]] = []

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def evaluate(self, request: EvaluationRequest) -> Evaluation:
        return await self.evaluator.evaluate(request)

    async def list_slots(self, day: date) -> List[SlotAvailability]:
        snapshot = await self.settings.get()
        return await self.capacity.list_slots(day, snapshot, self.slot_interval)

    async def get(self, reservation_id: int) -> Reservation:
        reservation = await self.reservations.get(reservation_id)
        if not reservation:
            raise ReservationNotFoundError(f"Reservation {reservation_id} not found")
        return reservation

    async def get_by_token(self, token: str) -> Reservation:
        reservation = await self.reservations.find_by_cancel_token(token)
        if not reservation:
            raise ReservationNotFoundError("Reservation not found")
        return reservation

    async def list_reservations(
        self,
        day: Optional[date] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        status: Optional[ReservationStatus] = None,
    ) -> List[Reservation]:
        return await self.reservations.find(day, from_date, to_date, status)

    async def get_history(self, reservation_id: int) -> List[ReservationHistory]:
        await self.get(reservation_id)
        return await self.history.for_reservation(reservation_id)

    async def list_waitlist(
        self, day: Optional[date] = None, status: Optional[WaitlistStatus] = None
    ) -> List[WaitlistEntry]:
        return await self.waitlist.find(day, status)

    async def get_waitlist_entry(self, entry_id: int) -> WaitlistEntry:
        entry = await self.waitlist.get(entry_id)
        if not entry:
            raise WaitlistEntryNotFoundError(f"Waitlist entry {entry_id} not found")
        return entry

    async def stats(self) -> DashboardStats:
        """Figures for the staff dashboard, in the restaurant's calendar."""
        today = self.clock().date()
        snapshot = await self.settings.get()

        todays = await self.reservations.find(day=today)
        confirmed = [r for r in todays if r.status == ReservationStatus.CONFIRMED]
        ahead = await self.reservations.find(from_date=today, to_date=today + timedelta(days=30))
        active = [r for r in ahead if r.status in ACTIVE_STATUSES]
        week_end = today + timedelta(days=7)
        waiting = await self.waitlist.find(status=WaitlistStatus.WAITING)

        activity = []
        for entry in await self.history.recent(datetime.now(timezone.utc) - timedelta(hours=24)):
            reservation = await self.reservations.get(entry.reservation_id)
            activity.append(ActivityItem(
                id=entry.id,
                type=entry.change_type.value,
                message=activity_message(entry, reservation.guest_name if reservation else None),
                timestamp=entry.created_at,
                reservation_id=entry.reservation_id,
            ))

        slots = day_slots(snapshot, today, confirmed, self.slot_interval)
        return DashboardStats(
            today=today_stats(todays),
            upcoming=UpcomingStats(
                next_7_days=sum(1 for r in active if r.date <= week_end),
                next_30_days=len(active),
                waitlist_count=len(waiting),
            ),
            capacity=capacity_status(confirmed, snapshot.total_capacity, slots),
            recent_activity=activity,
        )

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create(self, data: ReservationCreate) -> BookingOutcome:
        """Evaluate a booking request and persist whatever the engine decides."""
        phone = normalize_phone(data.phone)
        request = EvaluationRequest(
            date=data.date, time=data.time, party_size=data.party_size, source=data.source
        )

        async with self.locks.hold(data.date):
            try:
                evaluation = await self.evaluator.evaluate(request)

                if evaluation.decision == Decision.REJECT:
                    logger.info(f"Rejected booking for {data.guest_name}: {evaluation.reason}")
                    return BookingOutcome("rejected", evaluation.reason, evaluation)

                if evaluation.decision == Decision.WAITLIST:
                    entry = await self.waitlist.create(
                        guest_name=data.guest_name,
                        email=data.email,
                        phone=phone,
                        date=data.date,
                        time=data.time,
                        party_size=data.party_size,
                    )
                    await self.session.commit()
                    logger.info(f"Waitlisted {data.guest_name} for {data.date} {data.time} (entry {entry.id})")
                    self._queue(NotificationKind.WAITLISTED, entry.email, _payload(entry))
                    outcome = BookingOutcome("waitlisted", evaluation.reason, evaluation, waitlist_entry=entry)
                else:
                    outcome = await self._persist_reservation(data, phone, evaluation)
            except Exception:
                await self.session.rollback()
                raise

        await self._send_notifications()
        return outcome

    async def _persist_reservation(
        self, data: ReservationCreate, phone: str, evaluation: Evaluation
    ) -> BookingOutcome:
        confirmed = evaluation.decision == Decision.AUTO_CONFIRM
        status = ReservationStatus.CONFIRMED if confirmed else ReservationStatus.PENDING

        reservation = await self.reservations.create(
            guest_name=data.guest_name,
            email=data.email,
            phone=phone,
            date=data.date,
            time=data.time,
            party_size=data.party_size,
            notes=data.notes,
            source=data.source,
            status=status,
        )
        actor = ChangeActor.GUEST if data.source == ReservationSource.WEB else ChangeActor.STAFF
        await self.history.record(
            reservation.id, ChangeType.CREATED, actor,
            new_data=history_snapshot(reservation), notes=evaluation.reason,
        )
        if confirmed:
            await self.history.record(
                reservation.id, ChangeType.CONFIRMED, ChangeActor.SYSTEM, notes=evaluation.reason
            )
        await self.session.commit()

        logger.info(f"Created reservation {reservation.id} ({status.value}) for {data.date} {data.time}")
        kind = NotificationKind.CONFIRMED if confirmed else NotificationKind.PENDING
        self._queue(kind, reservation.email, _payload(reservation))
        return BookingOutcome(status.value, evaluation.reason, evaluation, reservation=reservation)

    # =========================================================================
    # CANCEL
    # =========================================================================

    async def cancel(
        self,
        reservation_id: int,
        actor: ChangeActor = ChangeActor.STAFF,
        notes: Optional[str] = None,
    ) -> CancellationResult:
        """Cancel, then offer the freed slot to the waitlist."""
        reservation = await self.get(reservation_id)

        async with self.locks.hold(reservation.date):
            try:
                await self.session.refresh(reservation)
                if reservation.status == ReservationStatus.CANCELLED:
                    raise InvalidTransitionError(f"Reservation {reservation_id} is already cancelled")

                previous = reservation.status
                await self.reservations.update(reservation, status=ReservationStatus.CANCELLED)
                await self.history.record(
                    reservation.id, ChangeType.CANCELLED, actor,
                    previous_data={"status": previous.value},
                    new_data={"status": ReservationStatus.CANCELLED.value},
                    notes=notes,
                )
                promotion = await self._promote_next(reservation.date, reservation.time)
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        logger.info(
            f"Cancelled reservation {reservation.id} by {actor.value}; "
            f"promotion {'made' if promotion.promoted else 'not made'}"
        )
        self._queue(NotificationKind.CANCELLED, reservation.email, _payload(reservation))
        await self._send_notifications()
        return CancellationResult(reservation=reservation, promotion=promotion)

    async def cancel_by_token(self, token: str) -> CancellationResult:
        reservation = await self.get_by_token(token)
        return await self.cancel(
            reservation.id, actor=ChangeActor.GUEST, notes="Guest cancelled via email link"
        )

    # =========================================================================
    # EDIT
    # =========================================================================

    async def update_by_token(self, token: str, patch: GuestUpdate) -> Reservation:
        """Guest edit. Any change sends the reservation back to pending review."""
        reservation = await self.get_by_token(token)
        requested = patch.model_dump(exclude_unset=True, exclude_none=True)

        async with self.locks.hold(reservation.date, requested.get("date", reservation.date)):
            try:
                # A cancel may have committed while we waited for the lock
                await self.session.refresh(reservation)
                if reservation.status == ReservationStatus.CANCELLED:
                    raise InvalidTransitionError("Cancelled reservations cannot be edited")

                changes = _changed_fields(reservation, requested)
                if not changes:
                    return reservation

                before = history_snapshot(reservation, "date", "time", "party_size", "status")
                await self.reservations.update(reservation, status=ReservationStatus.PENDING, **changes)
                await self.history.record(
                    reservation.id, ChangeType.UPDATED, ChangeActor.GUEST,
                    previous_data=before,
                    new_data=history_snapshot(reservation, "date", "time", "party_size", "status"),
                    notes="Guest updated via email link",
                )
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        logger.info(f"Guest updated reservation {reservation.id}: {sorted(changes)}; now pending")
        self._queue(NotificationKind.UPDATED, reservation.email, _payload(reservation))
        await self._send_notifications()
        return reservation

    async def update(self, reservation_id: int, patch: ReservationUpdate) -> Reservation:
        """Staff edit. Cancelling through here still runs the promotion scan."""
        reservation = await self.get(reservation_id)
        requested = patch.model_dump(exclude_unset=True, exclude_none=True)
        if requested.get("phone"):
            requested["phone"] = normalize_phone(requested["phone"])

        cancel = requested.get("status") == ReservationStatus.CANCELLED
        if cancel:
            del requested["status"]

        changes = {}
        previous_status = None
        if requested:
            async with self.locks.hold(reservation.date, requested.get("date", reservation.date)):
                try:
                    await self.session.refresh(reservation)
                    if reservation.status == ReservationStatus.CANCELLED:
                        raise InvalidTransitionError(f"Reservation {reservation_id} is cancelled")

                    previous_status = reservation.status
                    changes = _changed_fields(reservation, requested)
                    if changes:
                        before = history_snapshot(reservation)
                        await self.reservations.update(reservation, **changes)
                        change_type = ChangeType.UPDATED
                        if "status" in changes:
                            change_type = STATUS_CHANGE_TYPES.get(changes["status"], ChangeType.UPDATED)
                        await self.history.record(
                            reservation.id, change_type, ChangeActor.STAFF,
                            previous_data=before, new_data=history_snapshot(reservation),
                        )
                        await self.session.commit()
                except Exception:
                    await self.session.rollback()
                    raise

        if changes:
            logger.info(f"Staff updated reservation {reservation.id}: {sorted(changes)}")
            if (
                changes.get("status") == ReservationStatus.CONFIRMED
                and previous_status != ReservationStatus.CONFIRMED
            ):
                self._queue(NotificationKind.CONFIRMED, reservation.email, _payload(reservation))
                await self._send_notifications()

        if cancel:
            return (await self.cancel(reservation.id, actor=ChangeActor.STAFF)).reservation
        return reservation

    # =========================================================================
    # WAITLIST
    # =========================================================================

    async def try_promote_next(self, day: date, time: str) -> PromotionResult:
        async with self.locks.hold(day):
            try:
                result = await self._promote_next(day, time)
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise
        await self._send_notifications()
        return result

    async def _promote_next(self, day: date, time: str) -> PromotionResult:
        """Promote at most one waiting party for the exact slot. Caller commits."""
        entries = await self.waitlist.find_waiting(day, time)
        if not entries:
            return PromotionResult(promoted=False)

        confirmed = await self.reservations.find_confirmed_by_date(day)
        entry = plan_promotion(entries, slot_covers(confirmed, time), self.max_covers)
        if entry is None:
            logger.info(f"No waitlist entry fits {day} {time} ({len(entries)} waiting)")
            return PromotionResult(promoted=False)

        reservation = await self.reservations.create(
            guest_name=entry.guest_name,
            email=entry.email or "",
            phone=entry.phone or "",
            date=entry.date,
            time=entry.time,
            party_size=entry.party_size,
            status=ReservationStatus.CONFIRMED,
            source=ReservationSource.IN_HOUSE,
            notes=PROMOTION_NOTE,
        )
        await self.history.record(
            reservation.id, ChangeType.CREATED, ChangeActor.SYSTEM,
            new_data=history_snapshot(reservation),
            notes=f"{PROMOTION_NOTE} (entry {entry.id})",
        )
        await self.waitlist.update(
            entry,
            status=WaitlistStatus.PROMOTED,
            linked_reservation_id=reservation.id,
            promoted_at=datetime.now(timezone.utc),
        )

        logger.info(f"Promoted waitlist entry {entry.id} to reservation {reservation.id}")
        if entry.email:
            self._queue(NotificationKind.PROMOTED, entry.email, _payload(reservation))
        return PromotionResult(promoted=True, reservation=reservation, waitlist_entry=entry)

    async def expire_old_entries(self) -> int:
        """Expire waiting entries dated before today (restaurant calendar)."""
        today = self.clock().date()
        count = await self.waitlist.expire_before(today)
        await self.session.commit()
        self.locks.prune(today)
        if count:
            logger.info(f"Expired {count} waitlist entries dated before {today}")
        return count

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def _queue(self, kind: NotificationKind, recipient: Optional[str], payload: Dict[str, Any]) -> None:
        self._outbox.append((kind, recipient, payload))

    async def _send_notifications(self) -> None:
        outbox, self._outbox = self._outbox, []
        for kind, recipient, payload in outbox:
            try:
                await self.notifier.notify(kind, recipient, payload)
            except Exception:
                logger.exception(f"Notifier raised for {kind.value} to {recipient}")


def _payload(item: Any) -> Dict[str, Any]:
    return {
        "guest_name": item.guest_name,
        "date": item.date.isoformat(),
        "time": item.time,
        "party_size": item.party_size,
        "cancel_token": getattr(item, "cancel_token", None),
    }


def _changed_fields(reservation: Reservation, requested: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in requested.items() if getattr(reservation, k) != v}
