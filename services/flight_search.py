# services/flight_search.py
"""
HTTP flight search index client.

Talks to an upstream search API that returns flights as JSON:

    GET /flights/search?origin=JFK&destination=LHR&date=2025-06-01&passengers=1[&max_stops=0]
        -> {"flights": [FlightResult, ...]}
    GET /flights/{id}
        -> FlightResult

Results are validated into FlightResult models; malformed entries are
skipped rather than failing the whole search.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from app.conversation.models import FlightResult, SearchFilters
from services.base_api_service import BaseAPIService
from services.exceptions import NotFoundError

logger = logging.getLogger(__name__)


def apply_filters(flights: List[FlightResult], filters: Optional[SearchFilters]) -> List[FlightResult]:
    if not filters:
        return flights
    result = flights
    if filters.max_stops is not None:
        result = [f for f in result if f.stops <= filters.max_stops]
    if filters.max_price is not None:
        result = [f for f in result if f.price <= filters.max_price]
    if filters.airlines:
        result = [f for f in result if f.airline in filters.airlines]
    return result


class HttpSearchIndex(BaseAPIService):
    SERVICE_NAME = "search"

    def __init__(self, base_url: str, api_key: str = "", timeout_s: Optional[float] = None, **kwargs):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        super().__init__(base_url, headers=headers, timeout_s=timeout_s, **kwargs)

    @staticmethod
    def _parse_flights(payload: Any) -> List[FlightResult]:
        raw = payload.get("flights", []) if isinstance(payload, dict) else payload
        flights = []
        for item in raw or []:
            try:
                flights.append(FlightResult.model_validate(item))
            except PydanticValidationError as e:
                logger.warning(f"[SearchIndex] Skipping malformed flight: {e.error_count()} errors")
        return flights

    async def search(
        self,
        origin: str,
        destination: str,
        departure_date: date,
        passengers: int = 1,
        filters: Optional[SearchFilters] = None,
    ) -> List[FlightResult]:
        params: Dict[str, Any] = {
            "origin": origin,
            "destination": destination,
            "date": departure_date.isoformat(),
            "passengers": passengers,
        }
        if filters and filters.max_stops is not None:
            params["max_stops"] = filters.max_stops

        logger.info(f"[SearchIndex] Searching {origin}→{destination} on {departure_date}, {passengers} pax")
        payload = await self._get("/flights/search", params=params)
        return apply_filters(self._parse_flights(payload), filters)

    async def get_by_id(self, flight_id: str) -> Optional[FlightResult]:
        try:
            payload = await self._get(f"/flights/{flight_id}")
        except NotFoundError:
            return None
        return FlightResult.model_validate(payload)
