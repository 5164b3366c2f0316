"""Conversions between the local "MM:SS" strings and remote seconds."""

from __future__ import annotations

import math


def parse_seconds(value: object) -> float | None:
    """Parse ``"MM:SS"``, ``"MM:SS.hh"``, ``"H:MM:SS"`` or a plain number.

    Returns ``None`` for blank or unparseable input.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else None

    text = str(value).strip()
    if not text:
        return None

    if ":" not in text:
        try:
            number = float(text)
        except ValueError:
            return None
        return number if number >= 0 else None

    parts = text.split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        seconds = float(parts[-1])
        minutes = int(parts[-2])
        hours = int(parts[0]) if len(parts) == 3 else 0
    except ValueError:
        return None
    if seconds < 0 or minutes < 0 or hours < 0 or seconds >= 60:
        return None
    return hours * 3600 + minutes * 60 + seconds


def format_mmss(seconds: object) -> str:
    """Format whole seconds as ``"MM:SS"``; ``""`` when there is no value."""

    if seconds is None or isinstance(seconds, bool):
        return ""
    try:
        total = int(round(float(seconds)))
    except (TypeError, ValueError):
        return ""
    if total <= 0:
        return ""
    minutes, secs = divmod(total, 60)
    return f"{minutes:02d}:{secs:02d}"


def format_precise(seconds: object) -> str:
    """Format seconds as ``"MM:SS.hh"`` for search and area times."""

    if seconds is None or isinstance(seconds, bool):
        return ""
    try:
        value = float(seconds)
    except (TypeError, ValueError):
        return ""
    if value <= 0 or math.isnan(value):
        return ""
    hundredths = int(round(value * 100))
    minutes, rest = divmod(hundredths, 6000)
    secs, frac = divmod(rest, 100)
    return f"{minutes:02d}:{secs:02d}.{frac:02d}"


def to_whole_seconds(value: object) -> int | None:
    parsed = parse_seconds(value)
    if parsed is None:
        return None
    return int(round(parsed))
