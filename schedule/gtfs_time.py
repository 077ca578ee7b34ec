"""
GTFS service-day time arithmetic.

GTFS times are HH:MM:SS offsets from midnight of the service day, and HH may
exceed 23 ("25:10:00" is 01:10 on the following calendar day). ETAs use a
wrap-once rule: a target earlier than now is taken to be tomorrow.
"""

from datetime import datetime

SECONDS_PER_DAY = 24 * 3600


def gtfs_to_seconds(hms: str) -> int:
    """
    Convert HH:MM:SS (HH may be >= 24) to seconds since service-day start.

    A missing seconds part ("08:15") counts as zero.

    Raises:
        ValueError: If the text is not colon-separated integers.
    """
    parts = hms.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid GTFS time {hms!r}: expected HH:MM:SS.")
    h, m = int(parts[0]), int(parts[1])
    s = int(parts[2]) if len(parts) == 3 and parts[2] else 0
    return h * 3600 + m * 60 + s


def seconds_of_day(dt: datetime) -> int:
    """Wall-clock seconds since local midnight for dt."""
    return dt.hour * 3600 + dt.minute * 60 + dt.second


def eta_minutes(now: datetime, target_hms: str) -> int:
    """
    Whole minutes from now until target_hms on the same service day, or
    once wrapped into the next day when the target is already behind now.

    Targets two or more days ahead are not distinguished; callers bound the
    result with a horizon.
    """
    now_sec = seconds_of_day(now)
    target_sec = gtfs_to_seconds(target_hms)
    if target_sec >= now_sec:
        ahead = target_sec - now_sec
    else:
        ahead = target_sec + SECONDS_PER_DAY - now_sec
    # Half a minute rounds up
    return (ahead + 30) // 60
