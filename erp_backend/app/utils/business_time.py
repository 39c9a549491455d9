from datetime import datetime, timedelta

BUSINESS_START_HOUR = 9
BUSINESS_END_HOUR = 18   # exclusive

def _is_weekend(d: datetime) -> bool:
    return d.weekday() >= 5   # Sat/Sun

def add_business_hours(base: datetime, hours: int) -> datetime:
    """Step one wall-clock hour at a time, counting only 09:00-18:00 Mon-Fri."""
    d = base
    remaining = hours
    while remaining > 0:
        d = d + timedelta(hours=1)
        if _is_weekend(d):
            continue
        if BUSINESS_START_HOUR <= d.hour < BUSINESS_END_HOUR:
            remaining -= 1
    return d

def add_business_days(base: datetime, days: int) -> datetime:
    d = base
    remaining = days
    while remaining > 0:
        d = d + timedelta(days=1)
        if not _is_weekend(d):
            remaining -= 1
    return d

def sla_target(priority: str, submitted_at: datetime) -> datetime:
    p = (priority or "").lower()
    if p == "urgent":
        return add_business_hours(submitted_at, 4)
    if p == "high":
        return add_business_hours(submitted_at, 24)
    if p == "medium":
        return add_business_days(submitted_at, 3)
    return add_business_days(submitted_at, 7)
