#services/base_api_service.py

from __future__ import annotations
import logging
from typing import Any, Dict, Optional

import httpx

from services.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ExternalServiceError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)


class BaseAPIService:
    """
    Thin httpx wrapper for upstream JSON APIs.

    One attempt per call: retries and backoff belong to the circuit breaker
    wrapping the caller. HTTP failures are translated into the application's
    error taxonomy here, at the boundary.
    """

    DEFAULT_TIMEOUT_S = 15.0
    SERVICE_NAME = "upstream"

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.timeout_s = timeout_s or self.DEFAULT_TIMEOUT_S
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_s, headers=self.headers, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _map_status_error(self, error: httpx.HTTPStatusError) -> Exception:
        status = error.response.status_code
        if status == 400 or status == 422:
            return ValidationError(f"{self.SERVICE_NAME} rejected the request ({status})")
        if status == 401:
            return AuthenticationError(f"{self.SERVICE_NAME} authentication failed")
        if status == 403:
            return AuthorizationError(f"{self.SERVICE_NAME} access denied")
        if status == 404:
            return NotFoundError("Resource", f"{self.SERVICE_NAME} resource not found")
        if status == 429:
            return RateLimitError(f"{self.SERVICE_NAME} rate limit exceeded")
        return ExternalServiceError(self.SERVICE_NAME, f"{self.SERVICE_NAME} returned HTTP {status}")

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{endpoint}"
        try:
            client = await self._get_client()
            resp = await client.request(method, url, params=params, json=json)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            self.logger.error("HTTP error %s on %s %s", e.response.status_code, method, url)
            raise self._map_status_error(e) from e
        except (httpx.TimeoutException, httpx.TransportError) as e:
            self.logger.error("Transport error on %s %s: %s", method, url, e)
            raise ExternalServiceError(self.SERVICE_NAME, f"{self.SERVICE_NAME} unreachable: {e}") from e
        except ValueError as e:
            self.logger.error("Invalid JSON from %s %s: %s", method, url, e)
            raise ExternalServiceError(self.SERVICE_NAME, f"{self.SERVICE_NAME} returned invalid JSON") from e

    async def _get(self, endpoint: str, *, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("GET", endpoint, params=params)

    async def _post(self, endpoint: str, *, json: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("POST", endpoint, json=json)
