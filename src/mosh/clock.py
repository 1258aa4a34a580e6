"""Service-day clock: every time in the engine is integer seconds since midnight."""

from __future__ import annotations

from datetime import datetime, time
from typing import List

SECONDS_PER_DAY = 86400


def parse_time_of_day(token: object, label: str = "time") -> int:
    """
    Parse a time-of-day value into seconds since the service-day midnight.

    Accepts integer seconds, ``HH:MM`` / ``HH:MM:SS`` strings (hours may exceed 23
    for after-midnight service, as in GTFS), ``datetime.time`` and ISO-8601
    datetimes (only the clock part is kept).
    """
    if isinstance(token, bool):
        raise ValueError(f"{label} must be a time, got {token!r}")
    if isinstance(token, int):
        if token < 0:
            raise ValueError(f"{label} must be non-negative: {token!r}")
        return token
    if isinstance(token, float):
        if token < 0 or token != token:
            raise ValueError(f"{label} must be non-negative: {token!r}")
        return int(round(token))
    if isinstance(token, datetime):
        return token.hour * 3600 + token.minute * 60 + token.second
    if isinstance(token, time):
        return token.hour * 3600 + token.minute * 60 + token.second
    if not isinstance(token, str) or not token.strip():
        raise ValueError(f"{label} must be a non-empty HH:MM[:SS] string")
    text = token.strip()
    if "T" in text:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError(f"{label} is not an ISO datetime: {text!r}") from exc
        return parsed.hour * 3600 + parsed.minute * 60 + parsed.second
    parts = text.split(":")
    if len(parts) not in (2, 3) or not all(part.isdigit() for part in parts):
        raise ValueError(f"{label} must be in HH:MM[:SS] format: {text!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    seconds = int(parts[2]) if len(parts) == 3 else 0
    if minutes > 59 or seconds > 59:
        raise ValueError(f"{label} out of range: {text!r}")
    return hours * 3600 + minutes * 60 + seconds


def format_time_of_day(seconds: int) -> str:
    """Format service-day seconds as ``HH:MM:SS`` (hours may exceed 23)."""
    hours, rem = divmod(int(seconds), 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def departure_grid(start: int, end: int, step_seconds: int) -> List[int]:
    """Departure times from ``start`` to ``end`` inclusive every ``step_seconds``."""
    if end < start:
        raise ValueError("Departure window end must not precede its start")
    if step_seconds <= 0:
        return [start]
    return list(range(start, end + 1, step_seconds))
