"""
Shared fixtures: an in-memory stand-in for the remote GTFS store.

FakeStore answers PostgREST-style requests through httpx.MockTransport, so
the real RemoteTableClient (URL building, filter encoding, batching, retry)
is exercised end to end without a network.

Supported:
  GET  /rest/v1/<table>?col=eq.<v>&col=in.(<v>,...)&select=&order=&limit=
  POST /rest/v1/rpc/<name>   → store.functions[name](body)
"""

import csv
import json
from collections import deque
from typing import Any, Callable

import httpx
import pytest

from remote.client import RemoteTableClient

BASE_URL = "http://store.test/rest/v1"
_RESERVED = {"select", "order", "limit"}


def _matches(row: dict[str, Any], column: str, expr: str) -> bool:
    actual = str(row.get(column))
    if expr.startswith("eq."):
        return actual == expr[3:]
    if expr.startswith("in.(") and expr.endswith(")"):
        inner = expr[4:-1]
        values = next(csv.reader([inner])) if inner else []
        return actual in values
    raise AssertionError(f"FakeStore does not understand filter {column}={expr}")


class FakeStore:
    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.functions: dict[str, Callable[[dict[str, Any]], Any]] = {}
        self.requests: list[httpx.Request] = []
        # Each entry is a Response or an exception instance, served before normal handling
        self.failures: deque = deque()

    def fail_next(self, outcome: httpx.Response | Exception, times: int = 1) -> None:
        for _ in range(times):
            self.failures.append(outcome)

    def requests_to(self, name: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.rsplit("/", 1)[-1] == name]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failures:
            outcome = self.failures.popleft()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        path = request.url.path
        assert path.startswith("/rest/v1/"), path
        name = path[len("/rest/v1/"):]

        if name.startswith("rpc/"):
            fn = self.functions.get(name[4:])
            if fn is None:
                return httpx.Response(404, json={"code": "PGRST202", "message": "function not found"})
            return httpx.Response(200, json=fn(json.loads(request.content or b"{}")))

        if name not in self.tables:
            return httpx.Response(404, json={"code": "42P01", "message": f"relation {name} does not exist"})

        params = request.url.params
        rows = [
            row for row in self.tables[name]
            if all(_matches(row, col, expr) for col, expr in params.items() if col not in _RESERVED)
        ]
        if "order" in params:
            col, _, direction = params["order"].partition(".")
            rows = sorted(rows, key=lambda r: str(r.get(col)), reverse=direction == "desc")
        if "limit" in params:
            rows = rows[:int(params["limit"])]
        if "select" in params:
            cols = params["select"].split(",")
            rows = [{c: r.get(c) for c in cols} for r in rows]
        return httpx.Response(200, json=rows)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
async def client(store, anyio_backend):
    """RemoteTableClient wired to the FakeStore, no backoff delay, small batches."""
    c = RemoteTableClient(
        base_url=BASE_URL,
        api_key="test-key",
        backoff_seconds=0,
        batch_size=2,
        transport=httpx.MockTransport(store.handler),
    )
    yield c
    await c.aclose()


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------

def stop_row(stop_id: str, lat: float = 0.0, lon: float = 0.0, name: str | None = None) -> dict:
    return {"stop_id": stop_id, "stop_name": name or f"Stop {stop_id}", "stop_lat": lat, "stop_lon": lon}


def calendar_row(service_id: str, days: str = "1111100", start: str = "2026-01-01", end: str = "2026-12-31") -> dict:
    """days: seven 0/1 characters, Monday first."""
    cols = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
    row = {"service_id": service_id, "start_date": start, "end_date": end}
    row.update({col: int(flag) for col, flag in zip(cols, days)})
    return row


def exception_row(service_id: str, date: str, exception_type: int) -> dict:
    return {"service_id": service_id, "date": date, "exception_type": exception_type}


def trip_row(trip_id: str, route_id: str, service_id: str, headsign: str = "") -> dict:
    return {"trip_id": trip_id, "route_id": route_id, "service_id": service_id, "trip_headsign": headsign}


def stop_time_row(trip_id: str, stop_id: str, seq: int, arr: str | None = None, dep: str | None = None) -> dict:
    return {
        "trip_id": trip_id, "stop_id": stop_id, "stop_sequence": seq,
        "arrival_time": arr, "departure_time": dep,
    }


def route_row(route_id: str, short: str = "", long: str = "") -> dict:
    return {"route_id": route_id, "route_short_name": short, "route_long_name": long}
