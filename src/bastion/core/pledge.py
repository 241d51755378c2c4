"""Pledge parsing and completion matching.

Participants answer a call with free text such as ``"5k/5k"`` or
``"sent 1.5m / 1.5M"``. The parser scans for ``<number><suffix?> / <number><suffix?>``
anywhere in the message; ``k`` multiplies by 1,000 and ``m`` by 1,000,000,
case-insensitively, each side independently.

A pledge completes a call only when both sides agree after rounding and both
equal the requested amount. Every call-creation path (slash command, HTTP)
goes through :func:`match_completion`.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

PLEDGE_PATTERN = re.compile(
    r"(\d+(?:\.\d+)?)([kKmM])?\s*/\s*(\d+(?:\.\d+)?)([kKmM])?"
)

_MULTIPLIERS = {"k": 1_000, "m": 1_000_000}


@dataclass(frozen=True)
class Pledge:
    """Both sides of a parsed ``X/Y`` pledge, rounded to whole units."""

    pledged: int
    target: int


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _resolve(number: str, suffix: str | None) -> float:
    value = float(number)
    if suffix:
        value *= _MULTIPLIERS[suffix.lower()]
    return value


def parse_pledge(text: str) -> Pledge | None:
    """Find the first ``X/Y`` pledge in *text*. Returns None when there is none."""
    match = PLEDGE_PATTERN.search(text)
    if match is None:
        return None
    pledged = _resolve(match.group(1), match.group(2))
    target = _resolve(match.group(3), match.group(4))
    return Pledge(pledged=_round_half_up(pledged), target=_round_half_up(target))


def is_completing(pledge: Pledge, requested_amount: int) -> bool:
    """True when ``pledged == target == requested_amount``."""
    return pledge.pledged == pledge.target == requested_amount


def match_completion(text: str, requested_amount: int) -> Pledge | None:
    """Return the pledge in *text* if it completes a call for *requested_amount*."""
    pledge = parse_pledge(text)
    if pledge is None or not is_completing(pledge, requested_amount):
        return None
    return pledge
