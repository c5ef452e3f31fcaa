#!/usr/bin/env python3
"""
Start the Table Booking API server.

Usage:
    python scripts/start_api.py

Seed demo data first (optional):
    python -m table_booking.seed
"""
import uvicorn

from table_booking.config import settings

if __name__ == "__main__":
    print("=" * 60)
    print("🚀 Starting Table Booking API")
    print("=" * 60)
    print()
    print(f"API will be available at: http://localhost:{settings.port}")
    print()
    print("Endpoints:")
    print("  - GET   /health                             Health check")
    print("  - POST  /capacity/evaluate                  Dry-run admission rules")
    print("  - GET   /capacity/slots?date=YYYY-MM-DD     Slot availability")
    print("  - POST  /reservations                       Book a table")
    print("  - GET   /reservations                       List reservations")
    print("  - PATCH /reservations/{id}                  Staff edit")
    print("  - POST  /reservations/{id}/cancel           Cancel (promotes waitlist)")
    print("  - GET   /public/reservations/{token}        Guest view")
    print("  - GET   /waitlist                           List waitlist")
    print("  - GET   /settings, PUT /settings            Restaurant rules")
    print()
    print("Press Ctrl+C to stop")
    print("=" * 60)

    uvicorn.run(
        "table_booking.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
