from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

import pytz


CENTS = Decimal("0.01")
SECONDS_PER_HOUR = Decimal(3600)


def utcnow():
    return datetime.now(pytz.UTC).replace(tzinfo=None)


def to_utc(dt):
    """Normalise to a naive UTC datetime, the form stored in the database."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(pytz.UTC).replace(tzinfo=None)


def calculate_duration(start, end):
    """Elapsed hours between two datetimes, as a Decimal."""
    seconds = Decimal(str((end - start).total_seconds()))
    return seconds / SECONDS_PER_HOUR


def calculate_amount(duration_hours, rate_per_hour):
    """Hours x hourly rate, rounded half-up to cents."""
    amount = Decimal(duration_hours) * Decimal(str(rate_per_hour))
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
