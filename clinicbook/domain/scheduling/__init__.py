"""
Scheduling Domain

Availability calculation and atomic reservations for a practice.

Structure:
```
clinicbook/domain/scheduling/
├── __init__.py
├── schemas.py              # Reservation, availability and block-time schemas
├── repository.py           # Appointment queries and the atomic conditional insert
├── time_calculator.py      # Time parsing, schedule normalisation, slot grid (pure)
├── availability_service.py # Open slots for a day, first-available search
├── booking_service.py      # Reservation transaction, block time, cancellation
└── router.py               # Public booking endpoints and staff schedule endpoints
```

A calendar is either a provider's id or "practice" for appointments and
blocks not tied to a provider. Every status except Cancelled occupies time.
"""
