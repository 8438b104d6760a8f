"""Tests for the record REST client (memo/records/api.py)."""

from __future__ import annotations

import json
from dataclasses import replace

import httpx
import pytest

from memo.records.api import RecordApiError, RecordAuthError, RemoteRecordClient
from memo.records.models import CONTACT, SCHEDULE, ContactRecord

pytestmark = pytest.mark.anyio


class Backend:
    """httpx.MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            return httpx.Response(500, text="no canned response")
        return self.responses.pop(0)


@pytest.fixture
def make_client(backend_config):
    def _make(backend: Backend, kind=CONTACT, **kwargs):
        client = RemoteRecordClient(backend_config, kind, transport=httpx.MockTransport(backend), **kwargs)
        return client

    return _make


class TestInit:
    def test_requires_base_url(self, backend_config):
        with pytest.raises(ValueError):
            RemoteRecordClient(replace(backend_config, base_url=""), CONTACT)

    def test_requires_session(self, backend_config):
        with pytest.raises(ValueError):
            RemoteRecordClient(replace(backend_config, session_id=None), CONTACT)


class TestFetchDetail:
    async def test_fetch_unwraps_data_and_sends_headers(self, make_client):
        body = {"code": 0, "data": {"id": "c-42", "name": "Ada", "position": "Countess"}}
        backend = Backend(httpx.Response(200, json=body))
        client = make_client(backend)
        record = await client.fetch_detail("c-42", keep_local_id="local-1")

        assert isinstance(record, ContactRecord)
        assert record.title == "Countess"
        assert record.local_id == "local-1"
        request = backend.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/api/v1/contacts/c-42"
        assert request.headers["X-Session-Id"] == "sid-123"
        assert request.headers["X-App-Id"] == "memo-test"

    async def test_fetch_uses_cache_until_forced(self, make_client):
        backend = Backend(
            httpx.Response(200, json={"id": "c-42", "name": "Ada"}),
            httpx.Response(200, json={"id": "c-42", "name": "Ada Byron"}),
        )
        client = make_client(backend)
        first = await client.fetch_detail("c-42")
        cached = await client.fetch_detail("c-42")
        forced = await client.fetch_detail("c-42", force_refresh=True)

        assert cached is first
        assert forced.name == "Ada Byron"
        assert len(backend.requests) == 2

    async def test_cache_can_be_disabled(self, make_client):
        backend = Backend(
            httpx.Response(200, json={"id": "c-42", "name": "Ada"}),
            httpx.Response(200, json={"id": "c-42", "name": "Ada"}),
        )
        client = make_client(backend, cache_ttl=0)
        await client.fetch_detail("c-42")
        await client.fetch_detail("c-42")
        assert len(backend.requests) == 2

    async def test_fetch_non_record_raises(self, make_client):
        client = make_client(Backend(httpx.Response(200, json={"code": 0, "data": None})))
        with pytest.raises(RecordApiError):
            await client.fetch_detail("c-42")

    async def test_fetch_fills_missing_id(self, make_client):
        body = {"title": "Standup", "start_time": "2026-01-01T09:00:00"}
        client = make_client(Backend(httpx.Response(200, json=body)), kind=SCHEDULE)
        record = await client.fetch_detail("s-5")
        assert record.remote_id == "s-5"

    async def test_blank_id_rejected(self, make_client):
        client = make_client(Backend())
        with pytest.raises(ValueError):
            await client.fetch_detail("  ")


class TestMutations:
    async def test_update_is_put_with_body(self, make_client):
        backend = Backend(httpx.Response(200, json={"data": {"id": "c-42", "name": "Ada", "company": "Babbage"}}))
        client = make_client(backend)
        record = await client.update("c-42", {"name": "Ada", "company": "Babbage"})

        request = backend.requests[0]
        assert request.method == "PUT"
        assert request.url.path == "/api/v1/contacts/c-42"
        assert json.loads(request.content) == {"name": "Ada", "company": "Babbage"}
        assert record.company == "Babbage"

    async def test_update_empty_body_returns_none(self, make_client):
        client = make_client(Backend(httpx.Response(204)))
        assert await client.update("c-42", {"name": "Ada"}) is None

    async def test_update_invalidates_cache(self, make_client):
        backend = Backend(
            httpx.Response(200, json={"id": "c-42", "name": "Ada"}),
            httpx.Response(204),
            httpx.Response(200, json={"id": "c-42", "name": "Ada L."}),
        )
        client = make_client(backend)
        await client.fetch_detail("c-42")
        await client.update("c-42", {"name": "Ada L."})
        refreshed = await client.fetch_detail("c-42")
        assert refreshed.name == "Ada L."

    async def test_create_posts_to_collection(self, make_client):
        backend = Backend(httpx.Response(200, json={"data": {"id": 77, "name": "New"}}))
        client = make_client(backend)
        record = await client.create({"name": "New"}, keep_local_id="local-new")

        assert backend.requests[0].method == "POST"
        assert backend.requests[0].url.path == "/api/v1/contacts"
        assert record.remote_id == "77"
        assert record.local_id == "local-new"

    async def test_delete(self, make_client):
        backend = Backend(httpx.Response(200, json={"code": 0}))
        client = make_client(backend, kind=SCHEDULE)
        await client.delete("s-1")
        assert backend.requests[0].method == "DELETE"
        assert backend.requests[0].url.path == "/api/v1/schedules/s-1"


class TestErrors:
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_errors(self, make_client, status):
        client = make_client(Backend(httpx.Response(status)))
        with pytest.raises(RecordAuthError):
            await client.fetch_detail("c-42")

    async def test_server_error(self, make_client):
        client = make_client(Backend(httpx.Response(502, text="bad gateway")))
        with pytest.raises(RecordApiError, match="502"):
            await client.update("c-42", {"name": "Ada"})

    async def test_network_error_wrapped(self, backend_config):
        def _fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        client = RemoteRecordClient(backend_config, CONTACT, transport=httpx.MockTransport(_fail))
        with pytest.raises(RecordApiError, match="Failed to contact backend"):
            await client.fetch_detail("c-42")
        await client.close()
        await client.close()
