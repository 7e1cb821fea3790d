"""
Time helpers for slots and bookings.

Instants are built in the server's local frame. A slot stores a timezone
label for clients, but no timezone conversion happens here.
"""
from datetime import date, datetime, time


def parse_time_string(value):
    """Return a ``time`` for a ``time`` or ``'HH:MM'`` value, else ``None``."""
    if isinstance(value, time):
        return value
    if not value or not isinstance(value, str):
        return None

    parts = value.strip().split(':')
    if len(parts) < 2:
        return None
    try:
        hours, minutes = int(parts[0]), int(parts[1])
        return time(hours, minutes)
    except ValueError:
        return None


def parse_date(value):
    """Return a ``date`` for a ``date``/``datetime`` or ISO string, else ``None``."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


def build_datetime(date_value, time_value):
    """Combine a calendar date and a clock time into a naive local datetime."""
    day = parse_date(date_value)
    if day is None:
        return None

    clock = parse_time_string(time_value)
    if clock is None:
        return None

    return datetime.combine(day, clock.replace(second=0, microsecond=0))


def is_slot_in_past(slot, now=None):
    """
    True when the slot's end (or start, if it has no end) is strictly
    before ``now``.

    Missing or unparseable dates/times are treated as not past, so this is
    not a substitute for input validation.
    """
    if slot is None or not getattr(slot, 'date', None):
        return False

    time_value = getattr(slot, 'end_time', None) or getattr(slot, 'start_time', None)
    slot_end = build_datetime(slot.date, time_value)
    if slot_end is None:
        return False

    return slot_end < (now or datetime.now())
