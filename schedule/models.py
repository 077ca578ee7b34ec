"""
Immutable snapshots of GTFS rows and the derived query results.

Rows come from the remote store as plain dicts; each entity has a from_row
constructor that accepts the column names used in GTFS (stop_lat,
route_short_name, ...). GTFS time fields (arrival_time, departure_time) stay
as HH:MM:SS text because the hour may exceed 23; schedule.gtfs_time converts
them to seconds when needed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import IntEnum
from typing import Any, Callable, Iterable, TypeVar

from remote.errors import RemoteMalformed

T = TypeVar("T")

WEEKDAY_COLUMNS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def parse_gtfs_date(value: str | date) -> date:
    """Accept YYYYMMDD (GTFS feed format) or YYYY-MM-DD (database format)."""
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) == 8 and text.isdigit():
        return datetime.strptime(text, "%Y%m%d").date()
    return date.fromisoformat(text[:10])


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "t")
    return bool(value)


def _optional_time(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_rows(rows: Iterable[dict[str, Any]], build: Callable[[dict[str, Any]], T], target: str) -> list[T]:
    """Build entities from rows, reporting a missing or mistyped column as RemoteMalformed."""
    out: list[T] = []
    for row in rows:
        try:
            out.append(build(row))
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteMalformed(f"Unexpected row shape: {row!r} ({exc!r})", target=target) from exc
    return out


@dataclass(frozen=True)
class Stop:
    stop_id: str
    stop_name: str
    stop_lat: float
    stop_lon: float

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Stop:
        return cls(
            stop_id=str(row["stop_id"]),
            stop_name=row.get("stop_name") or "Unknown Stop",
            stop_lat=float(row["stop_lat"]),
            stop_lon=float(row["stop_lon"]),
        )


@dataclass(frozen=True)
class Route:
    route_id: str
    route_short_name: str
    route_long_name: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Route:
        return cls(
            route_id=str(row["route_id"]),
            route_short_name=row.get("route_short_name") or "",
            route_long_name=row.get("route_long_name") or "",
        )


@dataclass(frozen=True)
class Trip:
    trip_id: str
    route_id: str
    service_id: str
    trip_headsign: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Trip:
        return cls(
            trip_id=str(row["trip_id"]),
            route_id=str(row["route_id"]),
            service_id=str(row["service_id"]),
            trip_headsign=row.get("trip_headsign") or "",
        )


@dataclass(frozen=True)
class StopTime:
    trip_id: str
    stop_id: str
    stop_sequence: int
    arrival_time: str | None = None    # HH:MM:SS (may exceed 24:00:00)
    departure_time: str | None = None  # HH:MM:SS (may exceed 24:00:00)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> StopTime:
        return cls(
            trip_id=str(row["trip_id"]),
            stop_id=str(row["stop_id"]),
            stop_sequence=int(row.get("stop_sequence") or 0),
            arrival_time=_optional_time(row.get("arrival_time")),
            departure_time=_optional_time(row.get("departure_time")),
        )

    @property
    def scheduled_time(self) -> str | None:
        """Departure time if present, else arrival time."""
        return self.departure_time or self.arrival_time


@dataclass(frozen=True)
class ServiceCalendarEntry:
    service_id: str
    days: tuple[bool, bool, bool, bool, bool, bool, bool]  # Monday first, like date.weekday()
    start_date: date
    end_date: date

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ServiceCalendarEntry:
        return cls(
            service_id=str(row["service_id"]),
            days=tuple(_flag(row.get(col, 0)) for col in WEEKDAY_COLUMNS),
            start_date=parse_gtfs_date(row["start_date"]),
            end_date=parse_gtfs_date(row["end_date"]),
        )

    def runs_on(self, day: date) -> bool:
        return self.days[day.weekday()] and self.start_date <= day <= self.end_date


class ExceptionType(IntEnum):
    ADDED = 1
    REMOVED = 2


@dataclass(frozen=True)
class ServiceCalendarException:
    service_id: str
    date: date
    exception_type: ExceptionType

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ServiceCalendarException:
        return cls(
            service_id=str(row["service_id"]),
            date=parse_gtfs_date(row["date"]),
            exception_type=ExceptionType(int(row["exception_type"])),
        )


# ---------------------------------------------------------------------------
# Query results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RankedStop:
    stop: Stop
    distance_m: float


@dataclass(frozen=True)
class Departure:
    trip_id: str
    route_id: str
    route_short_name: str
    route_long_name: str
    headsign: str
    scheduled_time: str          # raw HH:MM:SS from stop_times
    eta_minutes: int
    arrival_time: str | None = None


@dataclass(frozen=True)
class DepartureGroup:
    """All departures of one route within the horizon, ETA-ascending."""
    route_id: str
    route_short_name: str
    route_long_name: str
    departures: list[Departure] = field(default_factory=list)

    @property
    def next_departure(self) -> Departure:
        return self.departures[0]


@dataclass(frozen=True)
class RouteStopEntry:
    stop: Stop
    average_sequence: float  # ordering key only
