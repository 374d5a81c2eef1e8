"""Decide whether a reminder is due at a given instant.

Offsets are fixed numeric minutes with the browser's ``getTimezoneOffset()``
sign convention: local time = UTC - offset. There is no timezone database, so
daylight-saving changes are the client's job (it re-sends its offset).
"""

from __future__ import annotations

from datetime import datetime, timedelta

from .models import Reminder, coerce_utc

RESEND_DEBOUNCE = timedelta(seconds=70)
_ONE_MINUTE = timedelta(minutes=1)
_END_OF_MINUTE = timedelta(seconds=59, milliseconds=999)


def parse_hhmm(value: str | None) -> tuple[int, int] | None:
    if not value:
        return None
    parts = value.split(":")
    if len(parts) != 2:
        return None
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def to_user_local(now_utc: datetime, offset_minutes: int) -> datetime:
    """Shift ``now_utc`` into the subscriber's wall clock (returned naive)."""
    return coerce_utc(now_utc).replace(tzinfo=None) - timedelta(minutes=offset_minutes)


def _local_today_at_utc(user_local: datetime, hour: int, minute: int, offset_minutes: int) -> datetime:
    local = user_local.replace(hour=hour, minute=minute, second=0, microsecond=0)
    return local + timedelta(minutes=offset_minutes)


def _debounced(reminder: Reminder, now_utc: datetime) -> bool:
    if reminder.last_sent_at is None:
        return False
    return now_utc - coerce_utc(reminder.last_sent_at) < RESEND_DEBOUNCE


def should_fire(reminder: Reminder, now_utc: datetime) -> bool:
    """Return True when ``reminder`` is due at ``now_utc``.

    Non-repeating reminders fire during the matching local minute. Repeating
    reminders fire at the local start time and every ``repeat_every_minutes``
    after it, up to the end of the ``repeat_until`` minute on the same local
    day. Both honour a 70 second debounce against ``last_sent_at``.
    """
    start = parse_hhmm(reminder.time)
    if start is None:
        return False
    offset = reminder.timezone_offset_minutes
    now_naive = coerce_utc(now_utc).replace(tzinfo=None)
    user_local = to_user_local(now_utc, offset)
    start_hour, start_minute = start

    if reminder.repeat_every_minutes <= 0:
        if user_local.hour != start_hour or user_local.minute != start_minute:
            return False
        return not _debounced(reminder, coerce_utc(now_utc))

    scheduled_utc = _local_today_at_utc(user_local, start_hour, start_minute, offset)
    if now_naive < scheduled_utc:
        return False

    until = parse_hhmm(reminder.repeat_until)
    if until is not None:
        until_utc = _local_today_at_utc(user_local, until[0], until[1], offset) + _END_OF_MINUTE
        if now_naive > until_utc:
            return False

    diff_minutes = (now_naive - scheduled_utc) // _ONE_MINUTE
    if diff_minutes < 0 or diff_minutes % reminder.repeat_every_minutes != 0:
        return False
    return not _debounced(reminder, coerce_utc(now_utc))
