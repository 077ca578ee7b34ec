"""Single-table lookups: routes by short name, one stop, a route's headsigns."""

import logging

from remote.client import RemoteTableClient
from remote.errors import RemoteClientError, RemoteMalformed
from remote.filters import encode_eq
from schedule.models import Route, Stop, parse_rows

logger = logging.getLogger(__name__)

UNKNOWN_HEADSIGN = "(Unknown)"


async def routes_by_short_name(client: RemoteTableClient, short_name: str, limit: int = 10) -> list[Route]:
    """Routes whose route_short_name equals short_name (several agencies may reuse one)."""
    rows = await client.fetch_rows(
        "routes",
        filters={"route_short_name": encode_eq(short_name)},
        select="route_id,route_short_name,route_long_name",
        limit=limit,
    )
    return parse_rows(rows, Route.from_row, "routes")


async def stop_header(client: RemoteTableClient, stop_id: str) -> Stop | None:
    rows = await client.fetch_rows(
        "stops",
        filters={"stop_id": encode_eq(stop_id)},
        select="stop_id,stop_name,stop_lat,stop_lon",
        limit=1,
    )
    stops = parse_rows(rows, Stop.from_row, "stops")
    return stops[0] if stops else None


def _distinct_headsigns(values: list[str | None]) -> list[str]:
    seen: dict[str, None] = {}
    for v in values:
        seen.setdefault(v or UNKNOWN_HEADSIGN, None)
    return list(seen)


async def route_headsigns(client: RemoteTableClient, route_id: str) -> list[str]:
    """
    Distinct headsigns (directions) of a route, first-seen order.

    Uses the route_headsigns database function when deployed; a 4xx from it
    (function missing) falls back to scanning the trips table.
    """
    try:
        result = await client.call_function("route_headsigns", {"in_route_id": route_id})
    except RemoteClientError as exc:
        logger.info("route_headsigns function unavailable (%s); scanning trips.", exc.status_code)
    else:
        if not isinstance(result, list):
            raise RemoteMalformed(
                f"Expected a JSON array, got {type(result).__name__}", target="route_headsigns"
            )
        return _distinct_headsigns([r.get("headsign") if isinstance(r, dict) else r for r in result])

    rows = await client.fetch_rows(
        "trips",
        filters={"route_id": encode_eq(route_id)},
        select="trip_headsign",
        limit=1000,
    )
    return _distinct_headsigns([r.get("trip_headsign") for r in rows])
