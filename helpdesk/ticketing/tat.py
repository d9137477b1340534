"""Turnaround-time (TAT) arithmetic.

Deadlines are counted in business hours: Saturdays and Sundays do not
count towards the deadline. Calculations run in the active time zone so a
weekend is the local weekend.
"""
import math
import re
from datetime import timedelta

from django.utils import timezone

from .constants import LIMITS

TAT_PATTERN = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*(hour|hours|hr|hrs|h|day|days|d|week|weeks|w)?\s*$', re.IGNORECASE)


def _local(dt):
    if timezone.is_aware(dt):
        return timezone.localtime(dt)
    return dt


def is_weekend(dt):
    return dt.weekday() >= 5


def _start_of_day(dt):
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def add_business_hours(start, hours):
    """Return ``start`` moved forward by ``hours`` business hours."""
    result = _local(start)
    remaining = hours

    while remaining > 0:
        if is_weekend(result):
            days_to_monday = 7 - result.weekday()
            result = _start_of_day(result + timedelta(days=days_to_monday))
            continue

        hours_until_midnight = 24 - result.hour
        if remaining <= hours_until_midnight:
            result = result + timedelta(hours=remaining)
            remaining = 0
        else:
            remaining -= hours_until_midnight
            result = _start_of_day(result + timedelta(days=1))

    return result


def remaining_business_hours(start, end):
    """Business hours between two instants, 0 when ``end`` is not after ``start``."""
    current = _local(start)
    end = _local(end)
    total = 0.0

    while current < end:
        next_midnight = _start_of_day(current + timedelta(days=1))
        if not is_weekend(current):
            boundary = min(end, next_midnight)
            total += max(0.0, (boundary - current).total_seconds() / 3600)
        current = next_midnight

    return total


def calculate_deadlines(start, sla_hours=None):
    """Acknowledgement is due after 10% of the SLA (rounded up), resolution after all of it."""
    sla_hours = sla_hours or LIMITS['DEFAULT_TAT_HOURS']
    ack_hours = math.ceil(sla_hours * 0.1)
    return {
        'acknowledgement_due_at': add_business_hours(start, ack_hours),
        'resolution_due_at': add_business_hours(start, sla_hours),
    }


def parse_tat(value):
    """Parse '48 hours', '2 days', '1 week' or a bare number of hours. Returns hours."""
    if value is None:
        return None
    match = TAT_PATTERN.match(str(value))
    if not match:
        return None
    amount = float(match.group(1))
    unit = (match.group(2) or 'hours').lower()
    if unit.startswith('d'):
        amount *= 24
    elif unit.startswith('w'):
        amount *= 24 * 7
    if amount <= 0:
        return None
    return int(amount) if amount.is_integer() else amount


def humanize_delta(delta):
    """Return a short human string like '2 days, 3 hours' or '45 minutes'."""
    seconds = int(abs(delta.total_seconds()))
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    parts = []
    if days:
        parts.append(f"{days} day{'s' if days != 1 else ''}")
    if hours:
        parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
    if not days and not hours:
        parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    return ", ".join(parts[:2])


def tat_state(ticket, now=None):
    """Classify a ticket's resolution deadline as overdue, due_today or on_track."""
    if not ticket.resolution_due_at:
        return None, ''
    now = now or timezone.now()
    delta = ticket.resolution_due_at - now
    if delta.total_seconds() < 0:
        return 'overdue', f"overdue by {humanize_delta(-delta)}"
    if _local(ticket.resolution_due_at).date() == _local(now).date():
        return 'due_today', f"due in {humanize_delta(delta)}"
    return 'on_track', f"due in {humanize_delta(delta)}"
