from __future__ import annotations

import datetime as dt

UTC = dt.timezone.utc


def as_utc(value: dt.datetime, naive_tz: dt.tzinfo = UTC) -> dt.datetime:
    """Return ``value`` as an aware UTC datetime.

    Naive values are interpreted in ``naive_tz``. SQLite hands back naive
    datetimes for columns that were stored as UTC, so the default is UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=naive_tz)
    return value.astimezone(UTC)


UNITS = (
    (24 * 60 * 60, "d", "day"),
    (60 * 60, "h", "hour"),
    (60, "m", "minute"),
    (1, "s", "second"),
)


def format_duration(seconds: int, compact: bool = False) -> str:
    """Render a duration using at most two non-zero units.

    ``compact`` gives ``1d 2h``; otherwise ``1 day 2 hours``.
    """
    remainder = max(0, int(seconds))
    parts = []
    for size, short, name in UNITS:
        amount, remainder = divmod(remainder, size)
        if amount == 0 or len(parts) == 2:
            continue
        if compact:
            parts.append(f"{amount}{short}")
        else:
            parts.append(f"{amount} {name}{'' if amount == 1 else 's'}")
    if not parts:
        return "0s" if compact else "0 seconds"
    return " ".join(parts)
