"""
FastAPI application entry point.

On startup one shared RemoteTableClient (an httpx.AsyncClient with the
store's API key) is opened; it is closed on shutdown. Every endpoint is a
read-only pass-through to the schedule package; nothing is cached or
persisted between requests.

Endpoints (v1):
  GET  /health
  GET  /stops/nearby?lat=<float>&lon=<float>&radius_m=<int>&limit=<int>
  GET  /stops/{stop_id}
  GET  /stops/{stop_id}/departures?at=<iso>&limit=<int>&horizon_minutes=<int>&grouped=<bool>
  GET  /routes?short_name=<str>
  GET  /routes/{route_id}/stops?date=<YYYY-MM-DD>&headsign=<str>
  GET  /routes/{route_id}/headsigns
  GET  /services/active?date=<YYYY-MM-DD>

Failure mapping:
  RemoteClientError / RemoteMalformed  → 502 (our request or their data is wrong)
  RemoteTimeout / RemoteServerError    → 503 (store unavailable, retries exhausted)
  invalid parameters                   → 422
An empty list is a normal 200 response ("nothing nearby / scheduled").
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, date as Date
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.schemas import (
    ActiveServicesResponse,
    DeparturesResponse,
    HealthResponse,
    NearbyStop,
    RouteResult,
    RouteStopsResponse,
    StopResult,
)
from config import (
    API_HOST,
    API_PORT,
    CORS_ORIGINS,
    DEPARTURE_HORIZON_MINUTES,
    DEPARTURE_LIMIT,
    LOCAL_TIMEZONE,
    NEARBY_MAX_RESULTS,
    NEARBY_RADIUS_METRES,
)
from remote.client import RemoteTableClient
from remote.errors import RemoteClientError, RemoteError, RemoteMalformed
from schedule.calendar import active_services
from schedule.departures import departures as build_board, group_departures_by_route
from schedule.errors import StageError
from schedule.lookups import route_headsigns, routes_by_short_name, stop_header
from schedule.models import Departure, Stop
from schedule.nearby import nearby
from schedule.route_stops import local_today, stops_for_route

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_remote_client: RemoteTableClient | None = None


def get_client() -> RemoteTableClient:
    """Dependency returning the client opened in lifespan()."""
    if _remote_client is None:
        raise RuntimeError("Remote client is not open; the app lifespan has not started.")
    return _remote_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _remote_client
    _remote_client = RemoteTableClient()
    logger.info("Remote client opened.")

    yield

    await _remote_client.aclose()
    _remote_client = None
    logger.info("Remote client closed.")


app = FastAPI(
    title="GTFS Schedule Engine",
    description="Nearby stops, departure boards and route stop lists over a remote GTFS store.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.exception_handler(RemoteError)
async def _remote_error_handler(request: Request, exc: RemoteError) -> JSONResponse:
    cause = exc.cause if isinstance(exc, StageError) else exc
    status = 502 if isinstance(cause, (RemoteClientError, RemoteMalformed)) else 503
    logger.error("Remote failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": f"Remote store error: {exc}"})


@app.exception_handler(ValueError)
async def _value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _stop_dict(stop: Stop) -> dict:
    return {
        "stop_id": stop.stop_id,
        "stop_name": stop.stop_name,
        "lat": stop.stop_lat,
        "lon": stop.stop_lon,
    }


def _departure_dict(d: Departure) -> dict:
    return {
        "trip_id": d.trip_id,
        "route_id": d.route_id,
        "route_short_name": d.route_short_name,
        "route_long_name": d.route_long_name,
        "headsign": d.headsign,
        "scheduled_time": d.scheduled_time,
        "arrival_time": d.arrival_time,
        "eta_minutes": d.eta_minutes,
    }


def _parse_date(value: str | None) -> Date:
    if not value:
        return local_today()
    try:
        return Date.fromisoformat(value)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"Invalid date parameter: {exc}")


def _parse_instant(value: str | None) -> datetime:
    if not value:
        return datetime.now(ZoneInfo(LOCAL_TIMEZONE))
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"Invalid at parameter: {exc}")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/health", response_model=HealthResponse)
async def health(client: RemoteTableClient = Depends(get_client)) -> HealthResponse:
    """Liveness check plus a one-row probe of the remote store."""
    remote = await client.health_check()
    return {
        "status": "ok" if remote["ok"] else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "remote": remote,
    }


@app.get("/stops/nearby", response_model=list[NearbyStop])
async def nearby_stops(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius_m: int = Query(NEARBY_RADIUS_METRES, ge=0, description="Search radius in metres"),
    limit: int = Query(NEARBY_MAX_RESULTS, ge=1, le=200),
    client: RemoteTableClient = Depends(get_client),
) -> list[NearbyStop]:
    """
    Stops nearest a point, closest first.

    If no stop lies within radius_m the closest `limit` stops are returned
    anyway, each with its real distance.
    """
    ranked = await nearby(client, lat, lon, radius_m=radius_m, max_results=limit)
    return [{**_stop_dict(r.stop), "distance_m": round(r.distance_m, 1)} for r in ranked]


@app.get("/stops/{stop_id}", response_model=StopResult)
async def get_stop(stop_id: str, client: RemoteTableClient = Depends(get_client)) -> StopResult:
    stop = await stop_header(client, stop_id)
    if stop is None:
        raise HTTPException(status_code=404, detail=f"Stop '{stop_id}' not found.")
    return _stop_dict(stop)


@app.get("/stops/{stop_id}/departures", response_model=DeparturesResponse)
async def stop_departures(
    stop_id: str,
    at: str | None = Query(None, description="ISO 8601 instant. Defaults to now."),
    limit: int = Query(DEPARTURE_LIMIT, ge=1, le=500),
    horizon_minutes: int = Query(DEPARTURE_HORIZON_MINUTES, ge=0, le=1440),
    grouped: bool = Query(False, description="Also group departures by route"),
    client: RemoteTableClient = Depends(get_client),
) -> DeparturesResponse:
    """Upcoming scheduled departures from a stop, soonest first."""
    instant = _parse_instant(at)
    board = await build_board(client, stop_id, instant, limit=limit, horizon_minutes=horizon_minutes)

    response = {
        "stop_id": stop_id,
        "at": instant.isoformat(),
        "horizon_minutes": horizon_minutes,
        "departures": [_departure_dict(d) for d in board],
    }
    if grouped:
        response["groups"] = [
            {
                "route_id": g.route_id,
                "route_short_name": g.route_short_name,
                "route_long_name": g.route_long_name,
                "next_departure": _departure_dict(g.next_departure),
                "departures": [_departure_dict(d) for d in g.departures],
            }
            for g in group_departures_by_route(board)
        ]
    return response


@app.get("/routes", response_model=list[RouteResult])
async def find_routes(
    short_name: str = Query(..., min_length=1, description="Public route number, e.g. 'F11'"),
    client: RemoteTableClient = Depends(get_client),
) -> list[RouteResult]:
    routes = await routes_by_short_name(client, short_name)
    return [
        {
            "route_id": r.route_id,
            "route_short_name": r.route_short_name,
            "route_long_name": r.route_long_name,
        }
        for r in routes
    ]


@app.get("/routes/{route_id}/stops", response_model=RouteStopsResponse)
async def route_stops(
    route_id: str,
    date: str | None = Query(None, description="Service date as YYYY-MM-DD. Defaults to today."),
    headsign: str | None = Query(None, description="Restrict to trips with this headsign"),
    client: RemoteTableClient = Depends(get_client),
) -> RouteStopsResponse:
    """Distinct stops of a route in travel order."""
    service_date = _parse_date(date)
    entries = await stops_for_route(client, route_id, service_date=service_date, headsign=headsign)
    return {
        "route_id": route_id,
        "service_date": service_date.isoformat(),
        "headsign": headsign,
        "stops": [
            {**_stop_dict(e.stop), "average_sequence": round(e.average_sequence, 3)}
            for e in entries
        ],
    }


@app.get("/routes/{route_id}/headsigns", response_model=list[str])
async def headsigns(route_id: str, client: RemoteTableClient = Depends(get_client)) -> list[str]:
    return await route_headsigns(client, route_id)


@app.get("/services/active", response_model=ActiveServicesResponse)
async def services_active(
    date: str | None = Query(None, description="Service date as YYYY-MM-DD. Defaults to today."),
    client: RemoteTableClient = Depends(get_client),
) -> ActiveServicesResponse:
    day = _parse_date(date)
    services = await active_services(client, day)
    return {"date": day.isoformat(), "service_ids": sorted(services)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=API_HOST, port=API_PORT)
