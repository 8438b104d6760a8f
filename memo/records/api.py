"""Async client for the backend record REST API (contacts and schedules)."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from memo.config import BackendConfig

from .models import Record, RecordKind

LOGGER = logging.getLogger(__name__)


class RecordApiError(RuntimeError):
    """Generic record API failure."""


class RecordAuthError(RecordApiError):
    """Raised when the backend returns 401/403."""


@dataclass(slots=True)
class RemoteRecordClient:
    config: BackendConfig
    kind: RecordKind
    cache_ttl: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient = field(init=False, repr=False)
    _closed: bool = field(init=False, default=True, repr=False)
    _cache: dict[str, tuple[float, Record]] = field(init=False, default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if not self.config.base_url:
            raise ValueError("Backend base URL is not configured")
        if not self.config.session_id:
            raise ValueError("Backend session id is not configured")
        headers = {"Content-Type": "application/json", **self.config.common_headers()}
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/"),
            headers=headers,
            timeout=self.config.timeout,
            verify=self.config.verify_ssl,
            transport=self.transport,
            trust_env=False,
        )
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    async def fetch_detail(
        self,
        remote_id: str,
        *,
        keep_local_id: str | None = None,
        force_refresh: bool = False,
    ) -> Record:
        """Return the backend's current record; raises when the body is not a record."""
        rid = _require_id(remote_id)
        if not force_refresh:
            cached = self._cache.get(rid)
            if cached and cached[0] > time.monotonic():
                LOGGER.debug("[records] Detail cache hit for %s %s", self.kind.name, rid)
                return cached[1]
        body = await self._request("GET", self.kind.detail_path(rid))
        record = self._extract_record(body, keep_local_id)
        if record is None:
            raise RecordApiError(f"Backend returned no {self.kind.name} for id {rid}")
        if not record.remote_id:
            record.remote_id = rid
        self._remember(rid, record)
        return record

    async def create(self, payload: Mapping[str, Any], *, keep_local_id: str | None = None) -> Record | None:
        """POST a new record; ``None`` when the backend replied without a usable body."""
        body = await self._request("POST", self.kind.collection_path, json=dict(payload))
        record = self._extract_record(body, keep_local_id)
        if record and record.remote_id:
            self._remember(record.remote_id, record)
        return record

    async def update(
        self,
        remote_id: str,
        payload: Mapping[str, Any],
        *,
        keep_local_id: str | None = None,
    ) -> Record | None:
        rid = _require_id(remote_id)
        self._cache.pop(rid, None)
        body = await self._request("PUT", self.kind.detail_path(rid), json=dict(payload))
        record = self._extract_record(body, keep_local_id)
        if record is not None:
            if not record.remote_id:
                record.remote_id = rid
            self._remember(rid, record)
        return record

    async def delete(self, remote_id: str) -> None:
        rid = _require_id(remote_id)
        self._cache.pop(rid, None)
        await self._request("DELETE", self.kind.detail_path(rid))

    def invalidate(self, remote_id: str | None = None) -> None:
        if remote_id is None:
            self._cache.clear()
        else:
            self._cache.pop(remote_id.strip(), None)

    def _remember(self, remote_id: str, record: Record) -> None:
        if self.cache_ttl > 0:
            self._cache[remote_id] = (time.monotonic() + self.cache_ttl, record)

    def _extract_record(self, body: Any, keep_local_id: str | None) -> Record | None:
        if not isinstance(body, dict):
            return None
        nested = body.get("data")
        if isinstance(nested, dict):
            record = self.kind.from_server(nested, keep_local_id)
            if record is not None:
                return record
        return self.kind.from_server(body, keep_local_id)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            raise RecordApiError(f"Failed to contact backend: {exc}") from exc
        LOGGER.debug("[records] %s %s -> %s", method, path, response.status_code)
        if response.status_code in (401, 403):
            raise RecordAuthError("Backend rejected the session")
        if response.status_code >= 400:
            raise RecordApiError(f"Backend error {response.status_code}: {response.text}")
        if not response.content:
            return None
        if response.headers.get("content-type", "").startswith("application/json"):
            try:
                return response.json()
            except ValueError as exc:
                raise RecordApiError(f"Backend returned invalid JSON: {exc}") from exc
        return response.text


def _require_id(remote_id: str | None) -> str:
    rid = (remote_id or "").strip()
    if not rid:
        raise ValueError("remote id is empty")
    return rid
