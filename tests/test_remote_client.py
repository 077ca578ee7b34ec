"""
Unit tests for remote.client and remote.filters.

The client talks to tests/conftest.FakeStore through httpx.MockTransport;
failures are injected with store.fail_next().
"""

import pytest
import httpx
from unittest.mock import AsyncMock, patch

from conftest import BASE_URL, stop_row
from remote.client import RemoteTableClient, chunked
from remote.errors import (
    RemoteClientError,
    RemoteMalformed,
    RemoteServerError,
    RemoteTimeout,
)
from remote.filters import encode_eq, encode_in_list


# ---------------------------------------------------------------------------
# Filter encoding
# ---------------------------------------------------------------------------

class TestEncodeEq:
    def test_digits_unquoted(self):
        assert encode_eq("12345") == "eq.12345"

    def test_int_unquoted(self):
        assert encode_eq(7) == "eq.7"

    def test_string_sent_bare(self):
        assert encode_eq("F11-A") == "eq.F11-A"

    def test_iso_date_sent_bare(self):
        assert encode_eq("2026-02-09") == "eq.2026-02-09"


class TestEncodeInList:
    def test_strings_quoted_numbers_bare(self):
        assert encode_in_list(["a", 2, "3"]) == 'in.("a",2,"3")'

    def test_single_value(self):
        assert encode_in_list(["T1"]) == 'in.("T1")'


class TestChunked:
    def test_even_split(self):
        assert chunked([1, 2, 3, 4], 2) == [[1, 2], [3, 4]]

    def test_remainder_in_last_batch(self):
        assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert chunked([], 50) == []

    def test_zero_size_rejected(self):
        with pytest.raises(ValueError):
            chunked([1], 0)


# ---------------------------------------------------------------------------
# fetch_rows
# ---------------------------------------------------------------------------

class TestFetchRows:

    @pytest.mark.anyio
    async def test_returns_filtered_rows(self, client, store):
        store.tables["stops"] = [stop_row("A"), stop_row("B")]
        rows = await client.fetch_rows("stops", filters={"stop_id": encode_eq("B")})
        assert [r["stop_id"] for r in rows] == ["B"]

    @pytest.mark.anyio
    async def test_sends_projection_order_and_limit(self, client, store):
        store.tables["stops"] = [stop_row("B"), stop_row("A"), stop_row("C")]
        rows = await client.fetch_rows("stops", select="stop_id", order="stop_id.asc", limit=2)
        assert rows == [{"stop_id": "A"}, {"stop_id": "B"}]
        params = store.requests[0].url.params
        assert params["select"] == "stop_id"
        assert params["order"] == "stop_id.asc"
        assert params["limit"] == "2"

    @pytest.mark.anyio
    async def test_sends_api_key_headers(self, client, store):
        store.tables["stops"] = []
        await client.fetch_rows("stops")
        headers = store.requests[0].headers
        assert headers["apikey"] == "test-key"
        assert headers["authorization"] == "Bearer test-key"

    @pytest.mark.anyio
    async def test_empty_table_is_empty_list(self, client, store):
        store.tables["stops"] = []
        assert await client.fetch_rows("stops") == []

    @pytest.mark.anyio
    async def test_non_list_payload_is_malformed(self, client, store):
        store.fail_next(httpx.Response(200, json={"rows": []}))
        with pytest.raises(RemoteMalformed) as exc_info:
            await client.fetch_rows("stops")
        assert exc_info.value.target == "stops"

    @pytest.mark.anyio
    async def test_invalid_json_is_malformed_and_not_retried(self, client, store):
        store.fail_next(httpx.Response(200, content=b"<html>oops</html>"))
        with pytest.raises(RemoteMalformed):
            await client.fetch_rows("stops")
        assert len(store.requests) == 1


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

class TestRetry:

    @pytest.mark.anyio
    async def test_server_error_retried_then_succeeds(self, client, store):
        store.tables["stops"] = [stop_row("A")]
        store.fail_next(httpx.Response(503, text="busy"), times=2)
        rows = await client.fetch_rows("stops")
        assert len(rows) == 1
        assert len(store.requests) == 3

    @pytest.mark.anyio
    async def test_server_error_surfaces_after_max_attempts(self, client, store):
        store.fail_next(httpx.Response(500, text="boom"), times=3)
        with pytest.raises(RemoteServerError) as exc_info:
            await client.fetch_rows("stops", filters={"stop_id": encode_eq("A")})
        assert exc_info.value.status_code == 500
        assert exc_info.value.params == {"stop_id": "eq.A"}
        assert len(store.requests) == 3

    @pytest.mark.anyio
    async def test_timeout_retried_then_surfaces(self, client, store):
        store.fail_next(httpx.ReadTimeout("slow"), times=3)
        with pytest.raises(RemoteTimeout):
            await client.fetch_rows("stops")
        assert len(store.requests) == 3

    @pytest.mark.anyio
    async def test_connection_failure_is_retryable_server_error(self, client, store):
        store.tables["stops"] = []
        store.fail_next(httpx.ConnectError("refused"))
        assert await client.fetch_rows("stops") == []
        assert len(store.requests) == 2

    @pytest.mark.anyio
    async def test_client_error_not_retried(self, client, store):
        store.fail_next(httpx.Response(400, text="bad filter"))
        with pytest.raises(RemoteClientError) as exc_info:
            await client.fetch_rows("stops")
        assert exc_info.value.status_code == 400
        assert "bad filter" in exc_info.value.body
        assert len(store.requests) == 1

    @pytest.mark.anyio
    async def test_backoff_grows_per_attempt_and_is_capped(self, store):
        store.fail_next(httpx.Response(502), times=4)
        c = RemoteTableClient(
            base_url=BASE_URL,
            max_attempts=4,
            backoff_seconds=2,
            backoff_cap_seconds=5,
            transport=httpx.MockTransport(store.handler),
        )
        with patch("remote.client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(RemoteServerError):
                await c.fetch_rows("stops")
        await c.aclose()
        assert [call.args[0] for call in mock_sleep.call_args_list] == [2, 4, 5]

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValueError):
            RemoteTableClient(base_url=BASE_URL, max_attempts=0)


# ---------------------------------------------------------------------------
# fetch_rows_for_id_set
# ---------------------------------------------------------------------------

class TestFetchRowsForIdSet:

    @pytest.mark.anyio
    async def test_batches_ids(self, client, store):
        store.tables["stops"] = [stop_row(s) for s in "ABCDE"]
        rows = await client.fetch_rows_for_id_set("stops", "stop_id", list("ABCDE"))
        assert sorted(r["stop_id"] for r in rows) == list("ABCDE")
        # batch_size=2 in the fixture → 3 requests
        assert len(store.requests) == 3

    @pytest.mark.anyio
    async def test_duplicate_ids_fetched_once(self, client, store):
        store.tables["stops"] = [stop_row("A"), stop_row("B")]
        rows = await client.fetch_rows_for_id_set("stops", "stop_id", ["A", "B", "A", "B"])
        assert len(rows) == 2
        assert len(store.requests) == 1

    @pytest.mark.anyio
    async def test_empty_id_set_makes_no_request(self, client, store):
        assert await client.fetch_rows_for_id_set("stops", "stop_id", []) == []
        assert store.requests == []

    @pytest.mark.anyio
    async def test_extra_filters_applied_to_every_batch(self, client, store):
        store.tables["stop_times"] = [
            {"trip_id": t, "stop_id": s} for t in ("T1", "T2", "T3") for s in ("X", "Y")
        ]
        rows = await client.fetch_rows_for_id_set(
            "stop_times", "trip_id", ["T1", "T2", "T3"], filters={"stop_id": encode_eq("X")}
        )
        assert {(r["trip_id"], r["stop_id"]) for r in rows} == {("T1", "X"), ("T2", "X"), ("T3", "X")}
        assert all(r.url.params["stop_id"] == "eq.X" for r in store.requests)

    @pytest.mark.anyio
    async def test_failed_batch_fails_whole_fetch(self, client, store):
        store.tables["stops"] = [stop_row(s) for s in "ABCD"]
        store.fail_next(httpx.Response(404, text="gone"))
        with pytest.raises(RemoteClientError):
            await client.fetch_rows_for_id_set("stops", "stop_id", list("ABCD"))


# ---------------------------------------------------------------------------
# call_function / health_check
# ---------------------------------------------------------------------------

class TestCallFunction:

    @pytest.mark.anyio
    async def test_posts_params_as_json(self, client, store):
        store.functions["echo"] = lambda body: [body]
        result = await client.call_function("echo", {"in_route_id": "R1"})
        assert result == [{"in_route_id": "R1"}]
        assert store.requests[0].method == "POST"
        assert store.requests[0].url.path == "/rest/v1/rpc/echo"

    @pytest.mark.anyio
    async def test_missing_function_is_client_error(self, client, store):
        with pytest.raises(RemoteClientError) as exc_info:
            await client.call_function("nope", {})
        assert exc_info.value.target == "nope"


class TestHealthCheck:

    @pytest.mark.anyio
    async def test_ok_when_reachable(self, client, store):
        store.tables["stops"] = [stop_row("A")]
        assert (await client.health_check())["ok"] is True

    @pytest.mark.anyio
    async def test_never_raises(self, client, store):
        store.fail_next(httpx.Response(500), times=3)
        result = await client.health_check()
        assert result["ok"] is False
        assert "unavailable" in result["message"]
