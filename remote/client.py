"""
Read-only client for the remote GTFS store.

The store exposes two call shapes:
  GET  /<table>?<column>=<op>.<value>&select=...&order=...&limit=...
  POST /rpc/<function>   (JSON body of named parameters)

There are no server-side joins, so the schedule layer reconstructs them
from several narrow reads. Large id lists are split into batches of
REMOTE_BATCH_SIZE and fetched with at most REMOTE_MAX_CONCURRENCY requests
in flight; the request line would otherwise exceed the server's limit.

Retry policy (per request):
  - timeout, connection failure, 5xx  → retry, sleeping attempt × backoff
                                         seconds (capped) between attempts
  - 4xx, unparseable payload          → raise immediately
A batch that still fails after retries fails the whole id-set fetch; rows
from batches that already succeeded are discarded.
"""

import asyncio
import logging
from typing import Any, Iterable

import httpx

from config import (
    REMOTE_BACKOFF_CAP_SECONDS,
    REMOTE_BACKOFF_SECONDS,
    REMOTE_BATCH_SIZE,
    REMOTE_MAX_ATTEMPTS,
    REMOTE_MAX_CONCURRENCY,
    REMOTE_REST_URL,
    REMOTE_TIMEOUT_SECONDS,
    SUPABASE_API_KEY,
)
from remote.errors import (
    RemoteClientError,
    RemoteError,
    RemoteMalformed,
    RemoteServerError,
    RemoteTimeout,
)
from remote.filters import encode_in_list

logger = logging.getLogger(__name__)

Row = dict[str, Any]


def chunked(values: list[Any], size: int) -> list[list[Any]]:
    """Split values into consecutive lists of at most size items."""
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}.")
    return [values[i:i + size] for i in range(0, len(values), size)]


def _unique(values: Iterable[Any]) -> list[Any]:
    seen: set[Any] = set()
    out: list[Any] = []
    for v in values:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


class RemoteTableClient:
    """
    Thin async wrapper over httpx.AsyncClient with batching and retries.

    Use as an async context manager, or call aclose() when done. A single
    instance is safe to share between concurrent callers; it holds no
    per-query state.
    """

    def __init__(
        self,
        base_url: str = REMOTE_REST_URL,
        api_key: str = SUPABASE_API_KEY,
        timeout: float = REMOTE_TIMEOUT_SECONDS,
        max_attempts: int = REMOTE_MAX_ATTEMPTS,
        backoff_seconds: float = REMOTE_BACKOFF_SECONDS,
        backoff_cap_seconds: float = REMOTE_BACKOFF_CAP_SECONDS,
        batch_size: int = REMOTE_BATCH_SIZE,
        max_concurrency: int = REMOTE_MAX_CONCURRENCY,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}.")
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.backoff_cap_seconds = backoff_cap_seconds
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency

    async def __aenter__(self) -> "RemoteTableClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Public read operations
    # ------------------------------------------------------------------

    async def fetch_rows(
        self,
        table: str,
        filters: dict[str, str] | None = None,
        select: str | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[Row]:
        """
        GET rows from a table.

        Args:
            table:   Table name, e.g. "stop_times".
            filters: column → encoded PostgREST expression, e.g.
                     {"stop_id": encode_eq("S1")}. See remote.filters.
            select:  Comma-separated column projection.
            order:   PostgREST order clause, e.g. "stop_id.asc".
            limit:   Maximum rows to return.

        Returns:
            List of row dicts (possibly empty).
        """
        params = self._table_params(filters, select, order, limit)
        payload = await self._request("GET", f"/{table}", target=table, params=params)
        if not isinstance(payload, list):
            raise RemoteMalformed(
                f"Expected a JSON array of rows, got {type(payload).__name__}",
                target=table, params=params,
            )
        logger.debug("GET %s %s → %d rows", table, params, len(payload))
        return payload

    async def fetch_rows_for_id_set(
        self,
        table: str,
        column: str,
        ids: Iterable[str | int],
        filters: dict[str, str] | None = None,
        select: str | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[Row]:
        """
        GET rows whose column is in ids, batching the id list.

        ids are de-duplicated before batching. An empty id set issues no
        request. limit applies per batch. Results are concatenated in batch
        order; callers that need a particular order must sort.
        """
        unique_ids = _unique(ids)
        if not unique_ids:
            return []

        batches = chunked(unique_ids, self.batch_size)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _one(batch: list[str | int]) -> list[Row]:
            batch_filters = dict(filters or {})
            batch_filters[column] = encode_in_list(batch)
            async with semaphore:
                return await self.fetch_rows(
                    table, filters=batch_filters, select=select, order=order, limit=limit
                )

        results = await asyncio.gather(*(_one(b) for b in batches), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        rows = [row for batch_rows in results for row in batch_rows]
        logger.debug(
            "GET %s by %s: %d ids in %d batches → %d rows",
            table, column, len(unique_ids), len(batches), len(rows),
        )
        return rows

    async def call_function(self, name: str, params: dict[str, Any] | None = None) -> Any:
        """POST /rpc/<name> with params as the JSON body; return the decoded result."""
        body = dict(params or {})
        payload = await self._request("POST", f"/rpc/{name}", target=name, json=body)
        logger.debug("RPC %s %s → %s", name, body, type(payload).__name__)
        return payload

    async def health_check(self) -> dict[str, Any]:
        """Single-row probe of the stops table. Never raises."""
        try:
            await self.fetch_rows("stops", select="stop_id", limit=1)
        except RemoteError as exc:
            logger.warning("Remote health check failed: %s", exc)
            return {"ok": False, "message": f"Remote store unavailable: {exc}"}
        return {"ok": True, "message": "Remote store reachable"}

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @staticmethod
    def _table_params(
        filters: dict[str, str] | None,
        select: str | None,
        order: str | None,
        limit: int | None,
    ) -> dict[str, str]:
        params: dict[str, str] = dict(filters or {})
        if select:
            params["select"] = select
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        return params

    def _backoff_delay(self, attempt: int) -> float:
        return min(attempt * self.backoff_seconds, self.backoff_cap_seconds)

    async def _request(
        self,
        method: str,
        path: str,
        target: str,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Issue one logical request, retrying transient failures."""
        context = params if params is not None else (json or {})
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._send_once(method, path, target, context, params, json)
            except RemoteError as exc:
                if not exc.retryable or attempt == self.max_attempts:
                    raise
                delay = self._backoff_delay(attempt)
                logger.warning(
                    "%s %s attempt %d/%d failed: %s. Retrying in %.1fs",
                    method, target, attempt, self.max_attempts, exc, delay,
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")  # loop always returns or raises

    async def _send_once(
        self,
        method: str,
        path: str,
        target: str,
        context: dict[str, Any],
        params: dict[str, str] | None,
        json: dict[str, Any] | None,
    ) -> Any:
        try:
            response = await self._http.request(method, path, params=params, json=json)
        except httpx.TimeoutException as exc:
            raise RemoteTimeout(f"Request timed out: {exc!r}", target, context) from exc
        except httpx.TransportError as exc:
            raise RemoteServerError(f"Connection failed: {exc!r}", target, context) from exc

        status = response.status_code
        if status >= 500:
            raise RemoteServerError(
                f"Server error {status}", target, context,
                status_code=status, body=response.text[:500],
            )
        if status >= 400:
            raise RemoteClientError(
                f"Client error {status}", target, context,
                status_code=status, body=response.text[:500],
            )

        try:
            return response.json()
        except ValueError as exc:
            raise RemoteMalformed(
                f"Response is not valid JSON: {response.text[:200]!r}", target, context
            ) from exc
