"""Deadline resolution and reminder fire times.

Requesters type the attack time as ``HH:mm`` on a clock one hour ahead of UTC
(``BST``). The typed clock time is converted to UTC and resolved to its next
occurrence: a time near midnight always lands on the coming instant, never on
one already gone.

Reminders fire at fixed offsets before the attack. Offsets whose fire time
is already past are dropped, never caught up.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

DEADLINE_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")


@dataclass(frozen=True)
class ReminderSlot:
    minutes_before: int
    label: str


REMINDER_SLOTS: tuple[ReminderSlot, ...] = (
    ReminderSlot(60, "1h till attack"),
    ReminderSlot(30, "30 minutes till attack"),
    ReminderSlot(15, "15 minutes till attack"),
    ReminderSlot(5, "5 minutes till attack"),
)


def is_valid_deadline(text: str) -> bool:
    """Check *text* against the strict 24-hour ``HH:mm`` grammar."""
    return DEADLINE_PATTERN.match(text) is not None


def resolve_attack_time(
    deadline: str,
    now: datetime | None = None,
    utc_offset_hours: int = 1,
) -> datetime:
    """Resolve a typed ``HH:mm`` deadline to the next matching UTC instant.

    The clock time is placed on today's UTC date, shifted back by the zone
    offset (rolling the date back when the hour underflows), then rolled
    forward a day at a time until it is no longer in the past.

    Args:
        deadline: ``HH:mm`` in the requester's zone. Must already be valid.
        now: Reference time (defaults to ``datetime.now(UTC)``).
        utc_offset_hours: How far the requester's zone is ahead of UTC.

    Returns:
        A tz-aware UTC datetime at or after *now*.
    """
    ref = (now or datetime.now(UTC)).astimezone(UTC)
    hours, minutes = (int(part) for part in deadline.split(":"))
    local = ref.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    attack = local - timedelta(hours=utc_offset_hours)
    while attack < ref:
        attack += timedelta(days=1)
    return attack


def reminder_times(
    attack_time: datetime,
    now: datetime,
) -> list[tuple[ReminderSlot, datetime]]:
    """Return ``(slot, fire_at)`` for every reminder still in the future."""
    due: list[tuple[ReminderSlot, datetime]] = []
    for slot in REMINDER_SLOTS:
        fire_at = attack_time - timedelta(minutes=slot.minutes_before)
        if fire_at > now:
            due.append((slot, fire_at))
    return due
