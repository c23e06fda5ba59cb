from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import httpx

from membank.errors import (
    MemoryNotFoundError,
    MemoryValidationError,
    StorageError,
    StorageTimeoutError,
)
from membank.logging import get_logger
from membank.types import Memory, StorageStats, encode_update, format_timestamp

if TYPE_CHECKING:
    from membank.types import MemoryQuery

logger = get_logger("storage.remote")

_DEFAULT_TIMEOUT_SECONDS = 10.0
_HEALTH_TIMEOUT_SECONDS = 5.0


class RemoteStorageAdapter:
    """Memory storage behind a REST service.

    Each operation is a single request; there is no retry. Timeouts
    surface as :class:`StorageTimeoutError`, non-success statuses as
    :class:`StorageError`, except that a 404 on retrieve means "absent"
    and a 404 on update/delete means :class:`MemoryNotFoundError`.
    Read operations (retrieve, search, get_all) log failures and return
    an empty result instead of raising.

    Pass ``client`` to supply a preconfigured :class:`httpx.AsyncClient`
    (tests use one with a mock transport); otherwise the adapter owns
    its client and :meth:`aclose` releases it.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeout(self) -> float:
        return self._timeout

    def update_config(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        if base_url is not None:
            self._base_url = base_url.rstrip("/")
        if api_key is not None:
            self._api_key = api_key
        if timeout is not None:
            self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        payload: Any = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        if timeout is None:
            timeout = self._timeout
        try:
            return await self._client.request(
                method,
                url,
                params=params,
                content=json.dumps(payload) if payload is not None else None,
                headers=self._headers(),
                timeout=httpx.Timeout(timeout),
            )
        except httpx.TimeoutException as exc:
            raise StorageTimeoutError(
                f"{method} {url} timed out after {timeout}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise StorageError(f"{method} {url} failed: {exc}") from exc

    @staticmethod
    def _check(response: httpx.Response) -> None:
        if not response.is_success:
            raise StorageError(
                f"HTTP {response.status_code}: {response.reason_phrase}"
            )

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise StorageError(f"Invalid JSON from {response.request.url}") from exc

    @staticmethod
    def _decode_list(data: Any) -> list[Memory]:
        if not isinstance(data, list):
            raise StorageError("Expected a JSON array of memories")
        try:
            return [Memory.from_dict(item) for item in data]
        except MemoryValidationError as exc:
            raise StorageError(f"Malformed memory in response: {exc}") from exc

    # ── Writes ──────────────────────────────────────────────────────

    async def store(self, memory: Memory) -> None:
        response = await self._request("POST", "/memories", payload=memory.to_dict())
        self._check(response)

    async def update(self, memory_id: str, fields: dict[str, Any]) -> None:
        response = await self._request(
            "PATCH", f"/memories/{memory_id}", payload=encode_update(fields),
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            raise MemoryNotFoundError(memory_id)
        self._check(response)

    async def delete(self, memory_id: str) -> None:
        response = await self._request("DELETE", f"/memories/{memory_id}")
        if response.status_code == httpx.codes.NOT_FOUND:
            raise MemoryNotFoundError(memory_id)
        self._check(response)

    async def clear(self) -> None:
        response = await self._request("DELETE", "/memories")
        self._check(response)

    # ── Reads ───────────────────────────────────────────────────────

    async def retrieve(self, memory_id: str) -> Memory | None:
        try:
            response = await self._request("GET", f"/memories/{memory_id}")
            if response.status_code == httpx.codes.NOT_FOUND:
                return None
            self._check(response)
            return Memory.from_dict(self._json(response))
        except (StorageError, MemoryValidationError):
            logger.exception("Failed to retrieve memory %s from remote storage", memory_id)
            return None

    async def search(self, query: MemoryQuery) -> list[Memory]:
        params = self._search_params(query)
        try:
            response = await self._request("GET", "/memories/search", params=params)
            self._check(response)
            results = self._decode_list(self._json(response))
        except StorageError:
            logger.exception("Failed to search memories in remote storage")
            return []
        if query.limit is not None:
            results = results[:query.limit]
        return results

    async def get_all(self) -> list[Memory]:
        try:
            response = await self._request("GET", "/memories")
            self._check(response)
            return self._decode_list(self._json(response))
        except StorageError:
            logger.exception("Failed to list memories from remote storage")
            return []

    @staticmethod
    def _search_params(query: MemoryQuery) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        if query.type is not None:
            params.append(("type", query.type.value))
        if query.limit is not None:
            params.append(("limit", str(query.limit)))
        if query.min_importance is not None:
            params.append(("minImportance", str(query.min_importance)))
        for keyword in query.keywords:
            params.append(("keywords", keyword))
        if query.date_range is not None:
            params.append(("startDate", format_timestamp(query.date_range.start)))
            params.append(("endDate", format_timestamp(query.date_range.end)))
        if query.metadata:
            params.append(("metadata", json.dumps(query.metadata)))
        return params

    # ── Diagnostics ─────────────────────────────────────────────────

    async def get_stats(self) -> StorageStats:
        try:
            response = await self._request("GET", "/memories/stats")
            self._check(response)
            data = self._json(response)
            return StorageStats(count=int(data.get("count", 0)), size=int(data.get("size", 0)))
        except (StorageError, AttributeError, TypeError, ValueError):
            logger.exception("Failed to get stats from remote storage")
            return StorageStats()

    async def health_check(self) -> bool:
        try:
            response = await self._request("GET", "/health", timeout=_HEALTH_TIMEOUT_SECONDS)
        except StorageError:
            logger.warning("Remote storage health check failed", exc_info=True)
            return False
        return response.is_success

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
