from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from curator.core.config import Settings
from curator.core.sources import known_sources, parse_text_map
from curator.services.content import CandidateItem

logger = logging.getLogger(__name__)


class ConnectorError(Exception):
    """Raised when a source connector call fails."""


@dataclass(slots=True)
class ConnectionStatus:
    success: bool
    message: str


class Connector(Protocol):
    async def search(self, query: str, limit: int) -> list[CandidateItem]: ...

    async def test_connection(self) -> ConnectionStatus: ...


class HttpConnector:
    """Adapter for a connector service exposing `/search` and `/health`."""

    def __init__(
        self,
        source: str,
        base_url: str,
        *,
        timeout_seconds: float = 20.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.source = source
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def search(self, query: str, limit: int) -> list[CandidateItem]:
        try:
            response = await self._get("/search", params={"query": query, "limit": limit})
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ConnectorError(f"{self.source} search failed: {exc}") from exc

        raw_items = body.get("items") if isinstance(body, dict) else body
        if not isinstance(raw_items, list):
            raise ConnectorError(f"{self.source} search returned an unexpected body")

        items: list[CandidateItem] = []
        for raw in raw_items[:limit]:
            if not isinstance(raw, dict):
                continue
            payload: dict[str, Any] = {**raw, "source": self.source}
            items.append(CandidateItem.from_payload(payload))
        return items

    async def test_connection(self) -> ConnectionStatus:
        try:
            response = await self._get("/health")
        except httpx.HTTPError as exc:
            return ConnectionStatus(success=False, message=str(exc))
        if response.is_success:
            return ConnectionStatus(success=True, message="ok")
        return ConnectionStatus(success=False, message=f"HTTP {response.status_code}")

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(f"{self.base_url}{path}", params=params)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.get(f"{self.base_url}{path}", params=params)


def build_connectors(settings: Settings) -> dict[str, Connector]:
    endpoints = parse_text_map(settings.connector_endpoints_json)
    connectors: dict[str, Connector] = {}
    for source, base_url in endpoints.items():
        if source not in known_sources():
            logger.warning("Ignoring connector endpoint for unknown source=%s", source)
            continue
        connectors[source] = HttpConnector(source, base_url, timeout_seconds=settings.connector_timeout_seconds)
    return connectors


def build_queries(settings: Settings) -> dict[str, str]:
    overrides = parse_text_map(settings.source_queries_json)
    return {source: overrides.get(source, settings.default_search_query) for source in known_sources()}
