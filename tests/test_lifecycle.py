"""Reservation lifecycle against a real (SQLite) database."""
import asyncio
from datetime import date

import pytest

from table_booking.errors import InvalidTransitionError, ReservationNotFoundError
from table_booking.models import (
    ChangeActor, ChangeType, GuestUpdate, ReservationSource, ReservationStatus, ReservationUpdate,
    WaitlistStatus
)
from table_booking.notifications import NotificationKind

from conftest import DAY, FailingNotifier, booking


# ============================================================================
# CREATE
# ============================================================================

async def test_create_auto_confirms(service, notifier):
    outcome = await service.create(booking())

    assert outcome.status == "confirmed"
    assert outcome.reservation.id is not None
    assert outcome.reservation.status == ReservationStatus.CONFIRMED
    assert outcome.reservation.phone == "+1 (312) 555-0100"
    assert notifier.sent[0][0] == NotificationKind.CONFIRMED
    assert notifier.sent[0][1] == "guest@example.com"
    assert notifier.sent[0][2]["cancel_token"] == outcome.reservation.cancel_token

    history = await service.get_history(outcome.reservation.id)
    assert [h.change_type for h in history] == [ChangeType.CREATED, ChangeType.CONFIRMED]
    assert history[0].actor == ChangeActor.GUEST
    assert history[1].actor == ChangeActor.SYSTEM


async def test_create_pending(service, notifier):
    outcome = await service.create(booking(party_size=7, source=ReservationSource.PHONE))

    assert outcome.status == "pending"
    assert outcome.reservation.status == ReservationStatus.PENDING
    assert notifier.kinds() == [NotificationKind.PENDING]

    history = await service.get_history(outcome.reservation.id)
    assert [(h.change_type, h.actor) for h in history] == [(ChangeType.CREATED, ChangeActor.STAFF)]


async def test_rejection_persists_nothing(service, notifier):
    outcome = await service.create(booking(time="16:00"))

    assert outcome.rejected
    assert outcome.reservation is None
    assert outcome.message == "Outside operating hours (17:00-22:00)"
    assert await service.list_reservations() == []
    assert await service.list_waitlist() == []
    assert notifier.sent == []


async def test_full_slot_waitlists(service, configure, notifier):
    await configure(max_reservations_per_slot=1)
    await service.create(booking(guest_name="First"))

    outcome = await service.create(booking(guest_name="Second", party_size=3))

    assert outcome.status == "waitlisted"
    assert outcome.reservation is None
    assert outcome.waitlist_entry.status == WaitlistStatus.WAITING
    assert outcome.waitlist_entry.party_size == 3
    assert len(await service.list_reservations()) == 1
    assert notifier.kinds() == [NotificationKind.CONFIRMED, NotificationKind.WAITLISTED]


async def test_date_and_time_round_trip(service, session_factory, make_service):
    outcome = await service.create(booking(date=date(2025, 12, 15), time="19:00"))

    async with session_factory() as fresh:
        stored = await make_service(fresh).get(outcome.reservation.id)

    assert stored.date == date(2025, 12, 15)
    assert stored.date.isoformat() == "2025-12-15"
    assert stored.time == "19:00"


async def test_notifier_failure_does_not_undo_booking(session, make_service):
    service = make_service(session, notifier=FailingNotifier())

    outcome = await service.create(booking())

    assert outcome.status == "confirmed"
    assert (await service.get(outcome.reservation.id)).status == ReservationStatus.CONFIRMED


async def test_concurrent_creates_cannot_oversell(service, configure, session_factory, make_service):
    await configure(max_reservations_per_slot=1)

    async def book(name):
        async with session_factory() as session:
            return await make_service(session).create(booking(guest_name=name))

    outcomes = await asyncio.gather(book("A"), book("B"))

    assert sorted(o.status for o in outcomes) == ["confirmed", "waitlisted"]


# ============================================================================
# CANCEL AND PROMOTE
# ============================================================================

async def test_cancel_promotes_waiting_party(service, configure, notifier):
    await configure(max_reservations_per_slot=1)
    original = (await service.create(booking(guest_name="Original", party_size=4))).reservation
    entry = (await service.create(booking(guest_name="Waiting", email="wait@example.com"))).waitlist_entry

    result = await service.cancel(original.id)

    assert result.reservation.status == ReservationStatus.CANCELLED
    assert result.promotion.promoted
    promoted = result.promotion.reservation
    assert promoted.status == ReservationStatus.CONFIRMED
    assert promoted.source == ReservationSource.IN_HOUSE
    assert promoted.guest_name == "Waiting"
    assert (promoted.date, promoted.time) == (DAY, "19:00")

    refreshed = await service.get_waitlist_entry(entry.id)
    assert refreshed.status == WaitlistStatus.PROMOTED
    assert refreshed.linked_reservation_id == promoted.id
    assert refreshed.promoted_at is not None

    assert NotificationKind.PROMOTED in notifier.kinds()
    assert NotificationKind.CANCELLED in notifier.kinds()


async def test_promotion_is_first_fit_in_order(service, session, make_service):
    service = make_service(session, max_covers_per_time_slot=5)
    await service.create(booking(party_size=2))
    big = await service.waitlist.create(guest_name="A", date=DAY, time="19:00", party_size=8)
    small = await service.waitlist.create(guest_name="B", date=DAY, time="19:00", party_size=2)
    await session.commit()

    result = await service.try_promote_next(DAY, "19:00")

    assert result.promoted
    assert result.waitlist_entry.id == small.id
    assert (await service.get_waitlist_entry(big.id)).status == WaitlistStatus.WAITING

    again = await service.try_promote_next(DAY, "19:00")
    assert not again.promoted


async def test_promotion_without_waiting_entries_is_noop(service):
    first = await service.try_promote_next(DAY, "19:00")
    second = await service.try_promote_next(DAY, "19:00")

    assert not first.promoted and not second.promoted
    assert await service.list_reservations() == []


async def test_cancel_twice_is_invalid(service):
    reservation = (await service.create(booking())).reservation
    await service.cancel(reservation.id)

    with pytest.raises(InvalidTransitionError):
        await service.cancel(reservation.id)


async def test_cancel_by_token_records_guest(service):
    reservation = (await service.create(booking())).reservation

    result = await service.cancel_by_token(reservation.cancel_token)

    assert result.reservation.status == ReservationStatus.CANCELLED
    history = await service.get_history(reservation.id)
    assert history[-1].change_type == ChangeType.CANCELLED
    assert history[-1].actor == ChangeActor.GUEST


async def test_unknown_reservation(service):
    with pytest.raises(ReservationNotFoundError):
        await service.get(999)
    with pytest.raises(ReservationNotFoundError):
        await service.get_by_token("no-such-token")
    with pytest.raises(ReservationNotFoundError):
        await service.cancel(999)


# ============================================================================
# EDIT
# ============================================================================

async def test_guest_edit_resets_to_pending(service, notifier):
    reservation = (await service.create(booking())).reservation

    updated = await service.update_by_token(reservation.cancel_token, GuestUpdate(party_size=3))

    assert updated.status == ReservationStatus.PENDING
    assert updated.party_size == 3
    assert notifier.kinds()[-1] == NotificationKind.UPDATED
    history = await service.get_history(reservation.id)
    assert history[-1].change_type == ChangeType.UPDATED
    assert history[-1].previous_data["party_size"] == 2
    assert history[-1].new_data["status"] == "pending"


async def test_guest_edit_moves_date(service):
    reservation = (await service.create(booking())).reservation

    updated = await service.update_by_token(
        reservation.cancel_token, GuestUpdate(date=date(2025, 12, 16), time="18:30")
    )

    assert (updated.date, updated.time) == (date(2025, 12, 16), "18:30")
    assert updated.status == ReservationStatus.PENDING


async def test_guest_cannot_edit_cancelled(service):
    reservation = (await service.create(booking())).reservation
    await service.cancel(reservation.id)

    with pytest.raises(InvalidTransitionError):
        await service.update_by_token(reservation.cancel_token, GuestUpdate(party_size=4))


async def test_staff_cannot_edit_cancelled(service):
    reservation = (await service.create(booking())).reservation
    await service.cancel(reservation.id)

    with pytest.raises(InvalidTransitionError):
        await service.update(reservation.id, ReservationUpdate(party_size=4))


@pytest.mark.parametrize("edit", [
    lambda svc, r: svc.update_by_token(r.cancel_token, GuestUpdate(party_size=3)),
    lambda svc, r: svc.update(r.id, ReservationUpdate(party_size=3)),
], ids=["guest", "staff"])
async def test_edit_waiting_behind_cancel_sees_cancellation(
    edit, service, configure, locks, session_factory, make_service
):
    await configure(max_reservations_per_slot=1)
    reservation = (await service.create(booking(party_size=4))).reservation
    entry = (await service.create(booking(guest_name="Waiting"))).waitlist_entry

    async def run(action):
        async with session_factory() as session:
            return await action(make_service(session))

    # Both calls load the reservation, then queue on the date lock: cancel first
    async with locks.hold(DAY):
        cancelling = asyncio.create_task(run(lambda svc: svc.cancel(reservation.id)))
        await asyncio.sleep(0.05)
        editing = asyncio.create_task(run(lambda svc: edit(svc, reservation)))
        await asyncio.sleep(0.05)

    assert (await cancelling).promotion.promoted
    with pytest.raises(InvalidTransitionError):
        await editing

    async with session_factory() as fresh:
        check = make_service(fresh)
        stored = await check.get(reservation.id)
        assert stored.status == ReservationStatus.CANCELLED
        assert stored.party_size == 4
        assert (await check.get_waitlist_entry(entry.id)).status == WaitlistStatus.PROMOTED


async def test_staff_confirms_pending(service, notifier):
    reservation = (await service.create(booking(party_size=7))).reservation

    updated = await service.update(reservation.id, ReservationUpdate(status=ReservationStatus.CONFIRMED))

    assert updated.status == ReservationStatus.CONFIRMED
    assert notifier.kinds() == [NotificationKind.PENDING, NotificationKind.CONFIRMED]
    history = await service.get_history(reservation.id)
    assert (history[-1].change_type, history[-1].actor) == (ChangeType.CONFIRMED, ChangeActor.STAFF)


async def test_staff_cancel_runs_promotion(service, configure):
    await configure(max_reservations_per_slot=1)
    original = (await service.create(booking(party_size=4))).reservation
    entry = (await service.create(booking(guest_name="Waiting"))).waitlist_entry

    updated = await service.update(original.id, ReservationUpdate(status=ReservationStatus.CANCELLED))

    assert updated.status == ReservationStatus.CANCELLED
    assert (await service.get_waitlist_entry(entry.id)).status == WaitlistStatus.PROMOTED


# ============================================================================
# EXPIRY
# ============================================================================

async def test_expire_old_entries(service, session, session_factory, make_service):
    old = await service.waitlist.create(guest_name="Old", date=date(2025, 11, 30), time="19:00", party_size=2)
    future = await service.waitlist.create(guest_name="Future", date=DAY, time="19:00", party_size=2)
    await session.commit()

    assert await service.expire_old_entries() == 1
    assert await service.expire_old_entries() == 0

    async with session_factory() as fresh:
        check = make_service(fresh)
        assert (await check.get_waitlist_entry(old.id)).status == WaitlistStatus.EXPIRED
        assert (await check.get_waitlist_entry(future.id)).status == WaitlistStatus.WAITING


async def test_capacity_reads_confirmed_bookings(service):
    await service.create(booking(party_size=4))
    await service.create(booking(time="19:30", party_size=3))
    await service.create(booking(party_size=7))  # pending, not counted

    snapshot = await service.settings.get()
    capacity = await service.capacity.calculate_capacity(DAY, "19:00", snapshot)

    assert capacity.reservation_count == 2
    assert capacity.total_guests == 7
    assert await service.capacity.covers_for_slot(DAY, "19:00") == 4
