"""
HTTP Card Store — Infrastructure adapter for a hosted document API.

Endpoints (relative to base_url):
    GET   /cards?scope=<kind>&id=<id>    -> {"cards": [...]}
    PATCH /cards/{card_id}               <- {"stats": {...}}
    POST  /ratings                       <- rating event record
    GET   /ratings?scope=<kind>&id=<id>  -> {"ratings": [...]}
"""

import logging
from typing import Any

import httpx

from collate.domain.constants import REQUEST_TIMEOUT
from collate.domain.errors import CardStoreError
from collate.domain.models import Card, CardStats, RatingEvent, StudyScope
from collate.domain.ports import CardStore

from .codec import cards_from_records, event_to_dict, events_from_records, stats_to_dict


class HttpCardStore(CardStore):
    """Adapter for a card store reachable over a JSON HTTP API."""

    def __init__(
        self,
        base_url: str = "http://localhost:8080/api",
        token: str | None = None,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def is_responsive(self) -> bool:
        """Check if the store answers at all."""
        try:
            resp = await self._get_client().get("/health")
            return resp.status_code == 200
        except httpx.HTTPError:
            return False

    async def fetch_pool(self, scope: StudyScope) -> list[Card]:
        data = await self._request("GET", "/cards", params=_scope_params(scope))
        return cards_from_records(data.get("cards"))

    async def fetch_rating_events(self, scope: StudyScope) -> list[RatingEvent]:
        data = await self._request("GET", "/ratings", params=_scope_params(scope))
        return events_from_records(data.get("ratings"))

    async def persist_rating_update(self, card_id: str, stats: CardStats) -> bool:
        try:
            await self._request("PATCH", f"/cards/{card_id}", json={"stats": stats_to_dict(stats)})
            return True
        except CardStoreError as e:
            self.logger.error(f"Failed to save stats for card {card_id}: {e}")
            return False

    async def append_rating_event(self, event: RatingEvent) -> bool:
        try:
            await self._request("POST", "/ratings", json=event_to_dict(event))
            return True
        except CardStoreError as e:
            self.logger.error(f"Failed to append rating event {event.id}: {e}")
            return False

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            resp = await self._get_client().request(method, path, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CardStoreError(
                f"{method} {path} returned {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise CardStoreError(f"{method} {path} failed: {e}") from e

        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise CardStoreError(f"{method} {path} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise CardStoreError(f"{method} {path} returned {type(data).__name__}, expected object")
        return data


def _scope_params(scope: StudyScope) -> dict[str, str]:
    params = {"scope": scope.kind}
    if scope.id is not None:
        params["id"] = scope.id
    return params
