"""
Scheduling Domain

Availability and appointment booking for salon professionals.

Structure:
```
domain/scheduling/
├── errors.py               # BookingError hierarchy (error codes returned to callers)
├── schemas.py              # Request / response models
├── repository.py           # Rule, override and appointment queries
├── conflicts.py            # The overlap predicate and ConflictChecker
├── availability_service.py # Slot generation, solo-salon fallback
├── booking_service.py      # Create / update / reschedule / cancel / complete
├── commands.py             # Typed agent commands and the dispatch table
└── router.py               # HTTP endpoints
```

External calendar sync lives in salon_booking/integrations.
"""
