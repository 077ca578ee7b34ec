"""
Ordered stop list for a route.

Trips of one route rarely agree on stop_sequence numbering (short turns,
skipped stops, branch variants), so no single trip is picked as canonical.
Instead every stop seen on any active trip is kept once, and stops are
ordered by the mean stop_sequence they were observed at, then by stop_id.
"""

import logging
from collections import defaultdict
from datetime import date, datetime
from zoneinfo import ZoneInfo

from config import LOCAL_TIMEZONE
from remote.client import RemoteTableClient
from remote.filters import encode_eq
from schedule.calendar import active_services
from schedule.errors import join_stage
from schedule.models import RouteStopEntry, Stop, StopTime, Trip, parse_rows

logger = logging.getLogger(__name__)

UNKNOWN_STOP_NAME = "Unknown Stop"


def local_today(tz_name: str | None = None) -> date:
    return datetime.now(ZoneInfo(tz_name or LOCAL_TIMEZONE)).date()


def order_stops(stop_times: list[StopTime], stops: dict[str, Stop]) -> list[RouteStopEntry]:
    """
    Average each stop's observed sequence values and sort by that mean.

    A stop_id with no row in stops is kept with UNKNOWN_STOP_NAME and 0,0
    coordinates, so every stop the trips visit appears exactly once.
    """
    sequences: dict[str, list[int]] = defaultdict(list)
    for st in stop_times:
        sequences[st.stop_id].append(st.stop_sequence)

    entries: list[RouteStopEntry] = []
    for stop_id, seqs in sequences.items():
        stop = stops.get(stop_id)
        if stop is None:
            logger.warning("stop_times reference unknown stop %s; listing it as %r.", stop_id, UNKNOWN_STOP_NAME)
            stop = Stop(stop_id=stop_id, stop_name=UNKNOWN_STOP_NAME, stop_lat=0.0, stop_lon=0.0)
        entries.append(RouteStopEntry(stop=stop, average_sequence=sum(seqs) / len(seqs)))

    entries.sort(key=lambda e: (e.average_sequence, e.stop.stop_id))
    return entries


async def stops_for_route(
    client: RemoteTableClient,
    route_id: str,
    service_date: date | None = None,
    headsign: str | None = None,
) -> list[RouteStopEntry]:
    """
    Return the distinct stops served by route_id on service_date, in route order.

    Args:
        client:       Remote store client.
        route_id:     GTFS route_id.
        service_date: Date whose active services decide which trips count.
                      Defaults to today in LOCAL_TIMEZONE.
        headsign:     When given, only trips with this trip_headsign are used
                      (one direction of the route).

    Returns:
        RouteStopEntry list, empty when no active trip runs on the route.
    """
    day = service_date or local_today()
    services = await active_services(client, day)
    if not services:
        return []

    async with join_stage("trips"):
        trip_rows = await client.fetch_rows_for_id_set(
            "trips", "service_id", sorted(services),
            filters={"route_id": encode_eq(route_id)},
            select="trip_id,route_id,service_id,trip_headsign",
        )
    trips = parse_rows(trip_rows, Trip.from_row, "trips")
    if headsign is not None:
        trips = [t for t in trips if t.trip_headsign == headsign]
    if not trips:
        logger.info("Route %s has no active trips on %s.", route_id, day.isoformat())
        return []

    async with join_stage("stop_times"):
        st_rows = await client.fetch_rows_for_id_set(
            "stop_times", "trip_id", [t.trip_id for t in trips],
            select="trip_id,stop_id,stop_sequence",
        )
    stop_times = parse_rows(st_rows, StopTime.from_row, "stop_times")
    if not stop_times:
        return []

    stop_ids = sorted({st.stop_id for st in stop_times})
    async with join_stage("stops"):
        stop_rows = await client.fetch_rows_for_id_set(
            "stops", "stop_id", stop_ids, select="stop_id,stop_name,stop_lat,stop_lon"
        )
    stops = {s.stop_id: s for s in parse_rows(stop_rows, Stop.from_row, "stops")}

    entries = order_stops(stop_times, stops)
    logger.info(
        "Route %s on %s: %d trips, %d stop_times, %d distinct stops.",
        route_id, day.isoformat(), len(trips), len(stop_times), len(entries),
    )
    return entries
