"""FastAPI backend for the table booking service."""
import asyncio
import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .db import async_session, close_db, get_session, init_db
from .errors import (
    ConfigurationError, InvalidTransitionError, ReservationNotFoundError,
    WaitlistEntryNotFoundError
)
from .lifecycle import BookingOutcome, ReservationService
from .locks import SlotLocks
from .models import (
    EvaluationRequest, GuestUpdate, ReservationCreate, ReservationStatus,
    ReservationUpdate, SettingsUpdate, WaitlistStatus
)
from .notifications import EmailNotifier
from .settings_service import SettingsService, SettingsSnapshot

logger = logging.getLogger(__name__)


# Create app
app = FastAPI(
    title="Table Booking API",
    description="Restaurant reservations with automatic admission control and waitlist promotion",
    version="1.0.0"
)

# CORS for the guest site and staff dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Shared across requests: the date locks must be one registry per process
app.state.slot_locks = SlotLocks()
app.state.notifier = EmailNotifier()
app.state.expiry_task = None


@app.on_event("startup")
async def startup():
    """Initialize database and start the waitlist expiry sweep."""
    await init_db()

    if settings.waitlist_expiry_interval_minutes > 0:
        app.state.expiry_task = asyncio.create_task(
            expire_waitlist_periodically(settings.waitlist_expiry_interval_minutes)
        )


@app.on_event("shutdown")
async def shutdown():
    task = app.state.expiry_task
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await close_db()


async def expire_waitlist_periodically(interval_minutes: int):
    """Background sweep: expire waitlist entries whose date has passed."""
    while True:
        try:
            async with async_session() as session:
                service = ReservationService(session, app.state.notifier, app.state.slot_locks)
                await service.expire_old_entries()
        except Exception:
            logger.exception("Waitlist expiry sweep failed")
        await asyncio.sleep(interval_minutes * 60)


def get_service(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReservationService:
    """Dependency: lifecycle service bound to this request's session."""
    return ReservationService(
        session,
        notifier=request.app.state.notifier,
        locks=request.app.state.slot_locks,
    )


# =============================================================================
# ERROR MAPPING
# =============================================================================

@app.exception_handler(ReservationNotFoundError)
@app.exception_handler(WaitlistEntryNotFoundError)
async def not_found_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error: {exc}")
    return JSONResponse(status_code=500, content={"detail": f"Restaurant is misconfigured: {exc}"})


def _outcome(outcome: BookingOutcome) -> dict:
    return {
        "status": outcome.status,
        "message": outcome.message,
        "reservation": outcome.reservation,
        "waitlist_entry": outcome.waitlist_entry,
        "evaluation": outcome.evaluation.to_dict(),
    }


def _settings(snapshot: SettingsSnapshot) -> dict:
    return {
        "settings": snapshot.settings,
        "total_capacity": snapshot.total_capacity,
        "operating_hours": list(snapshot.operating_hours),
        "special_dates": list(snapshot.special_dates),
    }


# =============================================================================
# HEALTH
# =============================================================================

@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "table-booking-api"}


# =============================================================================
# CAPACITY
# =============================================================================

@app.post("/capacity/evaluate")
async def evaluate_request(
    data: EvaluationRequest,
    service: ReservationService = Depends(get_service)
):
    """Dry-run the admission rules for a prospective booking."""
    result = await service.evaluate(data)
    return result.to_dict()


@app.get("/capacity/slots")
async def get_slots(
    date: date,
    service: ReservationService = Depends(get_service)
):
    """Bookable start times for a date with their occupancy."""
    return {"date": date, "slots": await service.list_slots(date)}


# =============================================================================
# RESERVATIONS (staff and guest booking)
# =============================================================================

@app.post("/reservations")
async def create_reservation(
    data: ReservationCreate,
    service: ReservationService = Depends(get_service)
):
    """Create a reservation. Rejections and waitlisting are normal responses."""
    return _outcome(await service.create(data))


@app.get("/reservations")
async def list_reservations(
    date: Optional[date] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    status: Optional[ReservationStatus] = None,
    service: ReservationService = Depends(get_service)
):
    """List reservations; an exact date takes precedence over a range."""
    return await service.list_reservations(date, from_date, to_date, status)


@app.get("/reservations/{reservation_id}")
async def get_reservation(
    reservation_id: int,
    service: ReservationService = Depends(get_service)
):
    return await service.get(reservation_id)


@app.patch("/reservations/{reservation_id}")
async def update_reservation(
    reservation_id: int,
    data: ReservationUpdate,
    service: ReservationService = Depends(get_service)
):
    """Staff edit (including status changes)."""
    return await service.update(reservation_id, data)


@app.post("/reservations/{reservation_id}/cancel")
async def cancel_reservation(
    reservation_id: int,
    service: ReservationService = Depends(get_service)
):
    """Cancel a reservation and try to fill the slot from the waitlist."""
    result = await service.cancel(reservation_id)
    return {
        "reservation": result.reservation,
        "promoted": result.promotion.promoted,
        "promoted_reservation": result.promotion.reservation,
    }


@app.get("/reservations/{reservation_id}/history")
async def get_reservation_history(
    reservation_id: int,
    service: ReservationService = Depends(get_service)
):
    return {"history": await service.get_history(reservation_id)}


# =============================================================================
# PUBLIC (guest self-service by cancel token)
# =============================================================================

@app.get("/public/reservations/{token}")
async def get_by_token(
    token: str,
    service: ReservationService = Depends(get_service)
):
    return await service.get_by_token(token)


@app.patch("/public/reservations/{token}")
async def update_by_token(
    token: str,
    data: GuestUpdate,
    service: ReservationService = Depends(get_service)
):
    """Guest edit; the reservation goes back to pending review."""
    reservation = await service.update_by_token(token, data)
    return {
        "reservation": reservation,
        "message": "Your changes have been received and are pending review.",
    }


@app.post("/public/reservations/{token}/cancel")
async def cancel_by_token(
    token: str,
    service: ReservationService = Depends(get_service)
):
    result = await service.cancel_by_token(token)
    return {"reservation": result.reservation, "message": "Your reservation has been cancelled."}


# =============================================================================
# WAITLIST
# =============================================================================

@app.get("/waitlist")
async def list_waitlist(
    date: Optional[date] = None,
    status: Optional[WaitlistStatus] = None,
    service: ReservationService = Depends(get_service)
):
    return await service.list_waitlist(date, status)


@app.get("/waitlist/{entry_id}")
async def get_waitlist_entry(
    entry_id: int,
    service: ReservationService = Depends(get_service)
):
    return await service.get_waitlist_entry(entry_id)


@app.post("/waitlist/expire")
async def expire_waitlist(
    service: ReservationService = Depends(get_service)
):
    """Run the expiry sweep now (normally on a schedule)."""
    return {"expired": await service.expire_old_entries()}


# =============================================================================
# DASHBOARD
# =============================================================================

@app.get("/dashboard/stats")
async def dashboard_stats(
    service: ReservationService = Depends(get_service)
):
    """Today's bookings, the days ahead, occupancy and recent activity."""
    return await service.stats()


# =============================================================================
# SETTINGS
# =============================================================================

@app.get("/settings")
async def get_settings(
    session: AsyncSession = Depends(get_session)
):
    return _settings(await SettingsService(session, settings.restaurant_id).get())


@app.put("/settings")
async def update_settings(
    data: SettingsUpdate,
    session: AsyncSession = Depends(get_session)
):
    return _settings(await SettingsService(session, settings.restaurant_id).update(data))
