"""
Resolves which service_ids run on a calendar date.

  active(D) = { calendar rows whose weekday flag for D is set and whose
                [start_date, end_date] contains D, minus REMOVED on D }
            ∪ { ADDED on D }

The remote query only filters on the weekday flag; the date-range check
happens here. A service listed as both ADDED and REMOVED on the same date
is treated as removed.
"""

import logging
from datetime import date
from typing import Iterable

from remote.client import RemoteTableClient
from remote.filters import encode_eq
from schedule.errors import join_stage
from schedule.models import (
    WEEKDAY_COLUMNS,
    ExceptionType,
    ServiceCalendarEntry,
    ServiceCalendarException,
    parse_rows,
)

logger = logging.getLogger(__name__)


def resolve_active_services(
    entries: Iterable[ServiceCalendarEntry],
    exceptions: Iterable[ServiceCalendarException],
    day: date,
) -> set[str]:
    """Combine weekly calendar entries and dated exceptions for one day."""
    added: set[str] = set()
    removed: set[str] = set()
    for exc in exceptions:
        if exc.date != day:
            continue
        if exc.exception_type is ExceptionType.ADDED:
            added.add(exc.service_id)
        elif exc.exception_type is ExceptionType.REMOVED:
            removed.add(exc.service_id)

    active = {e.service_id for e in entries if e.runs_on(day)}
    active |= added
    return active - removed


async def fetch_calendar_entries(client: RemoteTableClient, day: date) -> list[ServiceCalendarEntry]:
    """Calendar rows whose weekday flag is set for day (date range unchecked)."""
    day_column = WEEKDAY_COLUMNS[day.weekday()]
    rows = await client.fetch_rows(
        "calendar",
        filters={day_column: "eq.1"},
        select=",".join(("service_id", *WEEKDAY_COLUMNS, "start_date", "end_date")),
    )
    return parse_rows(rows, ServiceCalendarEntry.from_row, "calendar")


async def fetch_calendar_exceptions(client: RemoteTableClient, day: date) -> list[ServiceCalendarException]:
    rows = await client.fetch_rows(
        "calendar_dates",
        filters={"date": encode_eq(day.isoformat())},
        select="service_id,date,exception_type",
    )
    return parse_rows(rows, ServiceCalendarException.from_row, "calendar_dates")


async def active_services(client: RemoteTableClient, day: date) -> set[str]:
    """
    Return the service_ids operating on day.

    An empty set means nothing runs that day; it is not an error. Remote
    failures propagate as StageError("calendar", ...).
    """
    async with join_stage("calendar"):
        entries = await fetch_calendar_entries(client, day)
        exceptions = await fetch_calendar_exceptions(client, day)

    result = resolve_active_services(entries, exceptions, day)
    logger.info(
        "Active services on %s: %d (%d weekly entries, %d exceptions).",
        day.isoformat(), len(result), len(entries), len(exceptions),
    )
    return result
