"""
Ranks stops by great-circle distance from a point.

The whole stop catalog (capped at STOP_CATALOG_LIMIT rows) is fetched and
ranked client-side. Stops within radius_m are returned, nearest first, up to
max_results.

Fallback: when no stop lies within radius_m, the max_results nearest stops
are returned regardless of distance, so a rider at the edge of coverage
still sees somewhere to go. Only an empty catalog yields an empty result.
"""

import logging

from config import NEARBY_MAX_RESULTS, NEARBY_RADIUS_METRES, STOP_CATALOG_LIMIT
from geo.distance import distance_metres, is_valid_coordinate
from remote.client import RemoteTableClient
from schedule.errors import join_stage
from schedule.models import RankedStop, Stop, parse_rows

logger = logging.getLogger(__name__)


def rank_stops(
    stops: list[Stop],
    lat: float,
    lon: float,
    radius_m: float,
    max_results: int,
) -> list[RankedStop]:
    """Pure ranking step of nearby(); see the module docstring for the fallback rule."""
    ranked = sorted(
        (RankedStop(stop=s, distance_m=distance_metres(lat, lon, s.stop_lat, s.stop_lon)) for s in stops),
        key=lambda r: (r.distance_m, r.stop.stop_id),
    )
    within = [r for r in ranked if r.distance_m <= radius_m]
    if within:
        return within[:max_results]
    if ranked:
        logger.info(
            "No stops within %.0fm of (%.5f, %.5f); returning %d nearest instead.",
            radius_m, lat, lon, min(max_results, len(ranked)),
        )
    return ranked[:max_results]


async def nearby(
    client: RemoteTableClient,
    lat: float,
    lon: float,
    radius_m: float = NEARBY_RADIUS_METRES,
    max_results: int = NEARBY_MAX_RESULTS,
) -> list[RankedStop]:
    """
    Return stops nearest (lat, lon), ascending by distance then stop_id.

    Raises:
        ValueError: If the coordinates are out of range, radius_m is negative
                    or max_results is below 1.
    """
    if not is_valid_coordinate(lat, lon):
        raise ValueError(f"Invalid coordinate ({lat}, {lon}).")
    if radius_m < 0:
        raise ValueError(f"radius_m must be non-negative, got {radius_m}.")
    if max_results < 1:
        raise ValueError(f"max_results must be at least 1, got {max_results}.")

    async with join_stage("stops"):
        rows = await client.fetch_rows(
            "stops",
            select="stop_id,stop_name,stop_lat,stop_lon",
            order="stop_id.asc",
            limit=STOP_CATALOG_LIMIT,
        )
    stops = parse_rows(rows, Stop.from_row, "stops")
    if len(rows) >= STOP_CATALOG_LIMIT:
        logger.warning("Stop catalog hit the %d-row cap; distant stops may be missing.", STOP_CATALOG_LIMIT)

    return rank_stops(stops, lat, lon, radius_m, max_results)
