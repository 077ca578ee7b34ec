"""
Builds the departure board for one stop.

Join plan (the remote store has no joins, so each arrow is a separate read):

  calendar + calendar_dates ─► active service_ids for the query date
  trips     (service_id ∈ active)               ─► trip_id, route_id, headsign
  stop_times(stop_id = S, trip_id ∈ trips)      ─► scheduled times at S
  routes    (route_id ∈ routes of matched trips) ─► short / long names

Each stop_time's departure_time (or arrival_time when departure is blank)
is turned into an ETA with the wrap-once rule in schedule.gtfs_time. Rows
outside [0, horizon_minutes] are dropped, the rest sorted by ETA and cut to
limit. Any stage that comes back empty ends the query with []: that is
"nothing scheduled", not a failure.
"""

import logging
from collections import defaultdict
from datetime import datetime
from zoneinfo import ZoneInfo

from config import DEPARTURE_HORIZON_MINUTES, DEPARTURE_LIMIT, LOCAL_TIMEZONE
from remote.client import RemoteTableClient
from remote.filters import encode_eq
from schedule.calendar import active_services
from schedule.errors import join_stage
from schedule.gtfs_time import eta_minutes
from schedule.models import Departure, DepartureGroup, Route, StopTime, Trip, parse_rows

logger = logging.getLogger(__name__)

TRIP_COLUMNS = "trip_id,route_id,service_id,trip_headsign"
STOP_TIME_COLUMNS = "trip_id,stop_id,stop_sequence,arrival_time,departure_time"
ROUTE_COLUMNS = "route_id,route_short_name,route_long_name"


def to_local(at: datetime, tz_name: str | None = None) -> datetime:
    """Aware datetimes are converted to the schedule's zone; naive ones are taken as local already."""
    if at.tzinfo is None:
        return at
    return at.astimezone(ZoneInfo(tz_name or LOCAL_TIMEZONE))


def build_departures(
    stop_times: list[StopTime],
    trips: dict[str, Trip],
    routes: dict[str, Route],
    now: datetime,
    limit: int,
    horizon_minutes: int,
) -> list[Departure]:
    """Pure assembly step of departures(): ETA, horizon filter, sort, truncate."""
    seen: set[tuple[str, str]] = set()
    board: list[Departure] = []
    for st in stop_times:
        trip = trips.get(st.trip_id)
        scheduled = st.scheduled_time
        if trip is None or scheduled is None:
            continue
        key = (st.trip_id, scheduled)
        if key in seen:
            continue
        seen.add(key)

        try:
            eta = eta_minutes(now, scheduled)
        except ValueError:
            logger.warning("Skipping stop_time with unparseable time %r on trip %s.", scheduled, st.trip_id)
            continue
        if not 0 <= eta <= horizon_minutes:
            continue

        route = routes.get(trip.route_id)
        board.append(Departure(
            trip_id=trip.trip_id,
            route_id=trip.route_id,
            route_short_name=(route.route_short_name if route else "") or trip.route_id,
            route_long_name=(route.route_long_name if route else "") or "Unknown Route",
            headsign=trip.trip_headsign or "Unknown Destination",
            scheduled_time=scheduled,
            eta_minutes=eta,
            arrival_time=st.arrival_time,
        ))

    board.sort(key=lambda d: (d.eta_minutes, d.route_short_name, d.trip_id))
    return board[:limit]


async def departures(
    client: RemoteTableClient,
    stop_id: str,
    at: datetime,
    limit: int = DEPARTURE_LIMIT,
    horizon_minutes: int = DEPARTURE_HORIZON_MINUTES,
) -> list[Departure]:
    """
    Return departures from stop_id within horizon_minutes of at, ETA-ascending.

    Args:
        client:          Remote store client.
        stop_id:         GTFS stop_id.
        at:              Query instant. Naive datetimes are local wall-clock
                         time; aware ones are converted to LOCAL_TIMEZONE.
        limit:           Maximum departures returned.
        horizon_minutes: Look-ahead window; ETAs outside [0, horizon] drop.

    Raises:
        ValueError: If limit or horizon_minutes is negative.
        StageError: If a remote read fails after retries.
    """
    if limit < 0:
        raise ValueError(f"limit must be non-negative, got {limit}.")
    if horizon_minutes < 0:
        raise ValueError(f"horizon_minutes must be non-negative, got {horizon_minutes}.")

    now = to_local(at)
    services = await active_services(client, now.date())
    if not services:
        logger.info("No active services on %s; no departures for stop %s.", now.date(), stop_id)
        return []

    async with join_stage("trips"):
        trip_rows = await client.fetch_rows_for_id_set(
            "trips", "service_id", sorted(services), select=TRIP_COLUMNS
        )
    trips = {t.trip_id: t for t in parse_rows(trip_rows, Trip.from_row, "trips")}
    if not trips:
        return []

    async with join_stage("stop_times"):
        st_rows = await client.fetch_rows_for_id_set(
            "stop_times", "trip_id", sorted(trips),
            filters={"stop_id": encode_eq(stop_id)},
            select=STOP_TIME_COLUMNS,
        )
    stop_times = parse_rows(st_rows, StopTime.from_row, "stop_times")
    if not stop_times:
        logger.info("Stop %s has no stop_times on active trips.", stop_id)
        return []

    route_ids = sorted({trips[st.trip_id].route_id for st in stop_times if st.trip_id in trips})
    async with join_stage("routes"):
        route_rows = await client.fetch_rows_for_id_set("routes", "route_id", route_ids, select=ROUTE_COLUMNS)
    routes = {r.route_id: r for r in parse_rows(route_rows, Route.from_row, "routes")}

    board = build_departures(stop_times, trips, routes, now, limit, horizon_minutes)
    logger.info(
        "Stop %s at %s: %d stop_times, %d departures within %d min.",
        stop_id, now.strftime("%H:%M:%S"), len(stop_times), len(board), horizon_minutes,
    )
    return board


def group_departures_by_route(board: list[Departure]) -> list[DepartureGroup]:
    """
    Group a departure list by route_id.

    Each group keeps its departures ETA-ascending; groups are ordered by their
    earliest ETA, then route_id.
    """
    by_route: dict[str, list[Departure]] = defaultdict(list)
    for d in board:
        by_route[d.route_id].append(d)

    groups = [
        DepartureGroup(
            route_id=route_id,
            route_short_name=deps[0].route_short_name,
            route_long_name=deps[0].route_long_name,
            departures=sorted(deps, key=lambda d: (d.eta_minutes, d.trip_id)),
        )
        for route_id, deps in by_route.items()
    ]
    groups.sort(key=lambda g: (g.next_departure.eta_minutes, g.route_id))
    return groups
