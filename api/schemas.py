from __future__ import annotations
from typing import Literal
from pydantic import BaseModel


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

class StopResult(BaseModel):
    stop_id: str
    stop_name: str
    lat: float
    lon: float


class RouteResult(BaseModel):
    route_id: str
    route_short_name: str
    route_long_name: str


# ---------------------------------------------------------------------------
# GET /stops/nearby
# ---------------------------------------------------------------------------

class NearbyStop(StopResult):
    distance_m: float


# ---------------------------------------------------------------------------
# GET /stops/{stop_id}/departures
# ---------------------------------------------------------------------------

class DepartureResult(BaseModel):
    trip_id: str
    route_id: str
    route_short_name: str
    route_long_name: str
    headsign: str
    scheduled_time: str        # HH:MM:SS, may exceed 24:00:00
    arrival_time: str | None   # HH:MM:SS, may exceed 24:00:00
    eta_minutes: int


class DepartureGroupResult(BaseModel):
    route_id: str
    route_short_name: str
    route_long_name: str
    next_departure: DepartureResult
    departures: list[DepartureResult]


class DeparturesResponse(BaseModel):
    stop_id: str
    at: str
    horizon_minutes: int
    departures: list[DepartureResult]
    groups: list[DepartureGroupResult] | None = None


# ---------------------------------------------------------------------------
# GET /routes/{route_id}/stops
# ---------------------------------------------------------------------------

class RouteStopResult(StopResult):
    average_sequence: float


class RouteStopsResponse(BaseModel):
    route_id: str
    service_date: str
    headsign: str | None
    stops: list[RouteStopResult]


# ---------------------------------------------------------------------------
# GET /services/active
# ---------------------------------------------------------------------------

class ActiveServicesResponse(BaseModel):
    date: str
    service_ids: list[str]


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------

class RemoteStats(BaseModel):
    ok: bool
    message: str


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    timestamp: str
    remote: RemoteStats
