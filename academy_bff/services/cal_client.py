"""
Cal.com API Client

Async wrapper around the Cal.com v2 REST API:
- Authentication via Authorization header + cal-api-version header
- One pooled httpx.AsyncClient with bounded connect/total timeouts
- Error mapping into CalResponse (never raises for HTTP/transport errors)
- fetch_bookings() for the booking poller, raising FetchFailure

Cal.com API Documentation: https://cal.com/docs/api-reference/v2
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..schemas.booking import Booking
from .errors import FetchFailure

logger = logging.getLogger(__name__)


@dataclass
class CalResponse:
    """Wrapper for Cal.com API responses with structured error info"""
    success: bool
    status_code: int
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False


@dataclass
class CalError:
    code: str
    message: str
    status_code: int
    retryable: bool = False


# Error mapping for Cal.com responses
ERROR_MAP = {
    400: CalError("bad_request", "Invalid request", 400, False),
    401: CalError("unauthorized", "Invalid or missing API key", 401, False),
    403: CalError("forbidden", "Access denied to this resource", 403, False),
    404: CalError("not_found", "Booking not found", 404, False),
    429: CalError("rate_limited", "Too many requests", 429, True),
    500: CalError("server_error", "Cal.com server error", 500, True),
    502: CalError("bad_gateway", "Cal.com gateway error", 502, True),
    503: CalError("service_unavailable", "Cal.com service unavailable", 503, True),
}


class CalClient:

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_version: str,
        page_size: int = 100,
        connect_timeout: float = 10,
        total_timeout: float = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._get_headers(api_key, api_version),
            timeout=httpx.Timeout(total_timeout, connect=connect_timeout),
            transport=transport,
        )

    @staticmethod
    def _get_headers(api_key: str, api_version: str) -> Dict[str, str]:
        authorization = api_key if api_key.lower().startswith("bearer ") else f"Bearer {api_key}"
        return {
            "Content-Type": "application/json",
            "Authorization": authorization,
            "cal-api-version": api_version,
            "User-Agent": "Academy-BFF/1.0",
        }

    def _map_error(self, status_code: int, response_data: Optional[Dict]) -> CalError:
        """Map HTTP status code to structured error"""
        if status_code in ERROR_MAP:
            error = ERROR_MAP[status_code]
            if isinstance(response_data, dict):
                err = response_data.get("error")
                msg = (err.get("message") if isinstance(err, dict) else None) or response_data.get("message")
                if msg:
                    return CalError(error.code, msg, status_code, error.retryable)
            return error

        if status_code >= 500:
            return CalError("server_error", f"Server error: {status_code}", status_code, True)

        return CalError("unknown", f"Unknown error: {status_code}", status_code, False)

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        payload: Optional[Dict] = None,
    ) -> CalResponse:
        start_time = time.time()
        try:
            response = await self._client.request(method, endpoint, params=params, json=payload)
        except httpx.TimeoutException as e:
            logger.warning(f"Cal.com {method} {endpoint} timed out: {e!r}")
            return CalResponse(False, 0, error=f"Timed out calling Cal.com: {e!r}",
                               error_code="timeout", retryable=True)
        except httpx.HTTPError as e:
            logger.warning(f"Cal.com {method} {endpoint} failed: {e!r}")
            return CalResponse(False, 0, error=f"Error calling Cal.com: {e!r}",
                               error_code="network_error", retryable=True)

        duration_ms = int((time.time() - start_time) * 1000)
        status_code = response.status_code

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = None
            if response.is_success:
                return CalResponse(False, status_code, error="Invalid JSON in Cal.com response",
                                   error_code="parse_error")

        if response.is_success:
            logger.debug(f"Cal.com {method} {endpoint} -> {status_code} ({duration_ms}ms)")
            return CalResponse(True, status_code, data=data)

        error = self._map_error(status_code, data)
        logger.warning(f"Cal.com {method} {endpoint} -> {status_code}: {error.message} ({duration_ms}ms)")
        return CalResponse(
            False,
            status_code,
            data=data,
            error=error.message,
            error_code=error.code,
            retryable=error.retryable,
        )

    async def fetch_bookings(self) -> List[Booking]:
        """
        Latest bookings, most recently updated first.

        Raises FetchFailure when the list cannot be obtained as a whole.
        Individual entries that do not parse are skipped.
        """
        result = await self._request(
            "GET", "/bookings",
            params={"take": self.page_size, "sortUpdatedAt": "desc"},
        )
        if not result.success:
            raise FetchFailure(f"Error fetching bookings: {result.error}")

        items = result.data.get("data") if isinstance(result.data, dict) else None
        if not isinstance(items, list):
            raise FetchFailure("Error parsing bookings JSON: missing 'data' list")

        bookings: List[Booking] = []
        for item in items:
            if not isinstance(item, dict) or not item.get("uid"):
                logger.warning("Skipping booking without uid in Cal.com response")
                continue
            try:
                bookings.append(Booking.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping unparsable booking {item.get('uid')}: {e.error_count()} errors")
        return bookings

    async def get_booking(self, uid: str) -> CalResponse:
        result = await self._request("GET", f"/bookings/{uid}")
        if not result.success:
            return result
        raw = result.data.get("data") if isinstance(result.data, dict) else None
        try:
            result.data = Booking.model_validate(raw)
        except ValidationError as e:
            return CalResponse(False, result.status_code, error=f"Error parsing booking JSON: {e}",
                               error_code="parse_error")
        return result

    async def confirm_booking(self, uid: str) -> CalResponse:
        result = await self._request("POST", f"/bookings/{uid}/confirm")
        if result.success:
            logger.info(f"Booking {uid} confirmed on Cal.com")
        else:
            logger.error(f"Error confirming booking {uid} on Cal.com: {result.status_code} - {result.error}")
        return result

    async def aclose(self) -> None:
        await self._client.aclose()
