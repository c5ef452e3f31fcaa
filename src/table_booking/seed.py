"""Seed script to populate demo data."""
import asyncio
from datetime import timedelta

from .clock import restaurant_clock
from .config import settings
from .db import async_session, init_db
from .locks import SlotLocks
from .lifecycle import ReservationService
from .models import ReservationCreate, ReservationSource
from .notifications import Notifier

DEMO_GUESTS = [
    ("Ada Lovelace", "ada@example.com", "+1 (312) 555-0101", "18:00", 2),
    ("Grace Hopper", "grace@example.com", "+1 (312) 555-0102", "18:30", 4),
    ("Alan Turing", "alan@example.com", "+1 (312) 555-0103", "19:00", 3),
    ("Katherine Johnson", "katherine@example.com", "+1 (312) 555-0104", "19:00", 6),
    ("Edsger Dijkstra", "edsger@example.com", "+1 (312) 555-0105", "20:00", 8),
]


class SilentNotifier(Notifier):
    """Seeding should not email anyone."""

    async def notify(self, kind, recipient, payload):
        return None


async def seed_database(days_ahead: int = 3):
    """Create default settings and a few demo bookings over the next days."""
    print("🌱 Initializing database...")
    await init_db()

    today = restaurant_clock(settings.restaurant_timezone)().date()
    async with async_session() as session:
        service = ReservationService(session, SilentNotifier(), SlotLocks())
        snapshot = await service.settings.get()
        print(f"✅ Settings ready: {snapshot.settings.restaurant_name} ({snapshot.total_capacity} seats)")

        for offset in range(1, days_ahead + 1):
            day = today + timedelta(days=offset)
            for name, email, phone, time, party_size in DEMO_GUESTS:
                outcome = await service.create(ReservationCreate(
                    guest_name=name,
                    email=email,
                    phone=phone,
                    date=day,
                    time=time,
                    party_size=party_size,
                    source=ReservationSource.PHONE,
                ))
                print(f"   {day} {time} {name} ({party_size}): {outcome.status}")


if __name__ == "__main__":
    asyncio.run(seed_database())
