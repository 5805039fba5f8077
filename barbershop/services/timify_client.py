import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

import httpx
from flask import g, has_request_context

from ..errors import AppError, ErrorCode, ProviderError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = 429


class TimifyClient:
    """
    Server-to-server client for the TIMIFY booker-services API.

    The booker-services endpoints are public, so no credentials are attached.
    Transient failures (no response, 5xx, 429) are retried with a fixed
    backoff; everything else is mapped to an AppError without leaking the
    provider's response body.
    """

    def __init__(
        self,
        base_url: str,
        region: str = "EUROPE",
        timeout_ms: int = 10000,
        max_retries: int = 2,
        backoff_seconds: float = 1,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.region = region
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.http = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout_ms / 1000,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_config(cls, config, transport=None) -> "TimifyClient":
        return cls(
            base_url=config["TIMIFY_BASE_URL"],
            region=config["TIMIFY_REGION"],
            timeout_ms=config["TIMIFY_TIMEOUT_MS"],
            max_retries=config["TIMIFY_MAX_RETRIES"],
            backoff_seconds=config["TIMIFY_RETRY_BACKOFF_SECONDS"],
            transport=transport,
        )

    def close(self):
        self.http.close()

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------

    @staticmethod
    def _request_id() -> str:
        if has_request_context() and getattr(g, "request_id", None):
            return g.request_id
        return f"req-{uuid.uuid4().hex[:12]}"

    @staticmethod
    def _is_retryable(error: Exception) -> bool:
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            return status >= 500 or status == RETRYABLE_STATUS
        return isinstance(error, httpx.TransportError)

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {"X-Request-ID": self._request_id()}
        retries_left = self.max_retries

        while True:
            try:
                response = self.http.request(method, path, headers=headers, **kwargs)
                response.raise_for_status()
                return response
            except (httpx.HTTPStatusError, httpx.TransportError) as e:
                if retries_left > 0 and self._is_retryable(e):
                    logger.warning(
                        f"TIMIFY {method} {path} failed ({e.__class__.__name__}), "
                        f"retrying, {retries_left} left"
                    )
                    retries_left -= 1
                    if self.backoff_seconds:
                        time.sleep(self.backoff_seconds)
                    continue
                raise

    def _call(self, method: str, path: str, parse: Callable[[Any], Any], **kwargs):
        try:
            response = self._send(method, path, **kwargs)
            return parse(response.json())
        except AppError:
            raise
        except Exception as e:
            raise self._map_error(e) from e

    def _map_error(self, error: Exception) -> AppError:
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            body = error.response.text or ""
            logger.error(f"TIMIFY API error status={status} body={body[:200]}")

            if status in (400, 422):
                return AppError(
                    "Invalid booking request",
                    code=ErrorCode.BOOKING_VALIDATION_ERROR,
                    status_code=400,
                )
            if status == 404:
                return AppError(
                    "Booking slot not available",
                    code=ErrorCode.BOOKING_SLOT_UNAVAILABLE,
                    status_code=404,
                )
            if status == 409:
                return AppError(
                    "Booking slot already taken",
                    code=ErrorCode.BOOKING_SLOT_UNAVAILABLE,
                    status_code=409,
                )
        else:
            logger.error(f"TIMIFY request failed: {error.__class__.__name__}: {error}")

        return ProviderError()

    # ------------------------------------------------------------------
    # endpoints
    # ------------------------------------------------------------------

    def get_companies(self) -> List[Dict[str, Any]]:
        return self._call("GET", "/booker-services/companies", _parse_list(_parse_company))

    def get_services(self, company_id: str) -> List[Dict[str, Any]]:
        return self._call(
            "GET",
            f"/booker-services/companies/{company_id}/services",
            _parse_list(_parse_service),
        )

    def get_availabilities(
        self,
        company_id: str,
        service_id: str,
        start_date: str,
        end_date: str,
        resource_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {
            "company_id": company_id,
            "service_id": service_id,
            "start_date": start_date,
            "end_date": end_date,
        }
        if resource_id:
            params["resource_id"] = resource_id
        return self._call("GET", "/booker-services/availabilities", _parse_availability, params=params)

    def create_reservation(
        self,
        company_id: str,
        service_id: str,
        date: str,
        time_: str,
        resource_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        body = {"company_id": company_id, "service_id": service_id, "date": date, "time": time_}
        if resource_id:
            body["resource_id"] = resource_id
        return self._call("POST", "/booker-services/reservations", _parse_reservation, json=body)

    def confirm_appointment(
        self,
        company_id: str,
        reservation_id: str,
        secret: str,
        external_customer_id: str,
    ) -> Dict[str, Any]:
        body = {
            "company_id": company_id,
            "reservation_id": reservation_id,
            "secret": secret,
            "external_customer_id": external_customer_id,
            "is_course": False,
            "region": self.region,
        }
        return self._call("POST", "/booker-services/appointments/confirm", _parse_confirm, json=body)


# ----------------------------------------------------------------------
# response parsing; a shape mismatch surfaces as a provider error
# ----------------------------------------------------------------------


def _field(data: Dict[str, Any], key: str, kind, required: bool = True):
    value = data.get(key)
    if value is None:
        if required:
            raise ValueError(f"missing field {key}")
        return None
    if kind is int and isinstance(value, float) and value.is_integer():
        value = int(value)
    if kind is str and isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, kind) or isinstance(value, bool):
        raise ValueError(f"field {key} has type {type(value).__name__}")
    return value


def _parse_list(parse_item):
    def parse(data):
        if not isinstance(data, list):
            return []
        return [parse_item(item) for item in data]

    return parse


def _parse_company(item: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": _field(item, "id", str),
        "name": _field(item, "name", str),
        "address": _field(item, "address", str, required=False),
        "city": _field(item, "city", str, required=False),
        "country": _field(item, "country", str, required=False),
        "timezone": _field(item, "timezone", str, required=False),
    }


def _parse_service(item: Dict[str, Any]) -> Dict[str, Any]:
    duration = _field(item, "duration", int)
    if duration < 0:
        raise ValueError("negative duration")
    price = item.get("price")
    if price is not None and not isinstance(price, (int, float)):
        raise ValueError("field price is not a number")
    return {
        "id": _field(item, "id", str),
        "name": _field(item, "name", str),
        "duration": duration,
        "price": price,
        "currency": _field(item, "currency", str, required=False),
    }


def _parse_availability(data: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError("availability response is not an object")

    on_days = data.get("on_days")
    if not isinstance(on_days, list):
        raise ValueError("missing field on_days")

    times_by_day: Dict[str, List[str]] = {}
    for slot in data.get("slots") or []:
        start = _field(slot, "start", str)
        day, _, clock = start.partition("T")
        hhmm = clock[:5]
        if not hhmm:
            continue
        times = times_by_day.setdefault(day, [])
        if hhmm not in times:
            times.append(hhmm)

    return {
        "calendarBegin": _field(data, "calendar_begin", str),
        "calendarEnd": _field(data, "calendar_end", str),
        "onDays": on_days,
        "offDays": data.get("off_days") or [],
        "timesByDay": times_by_day or None,
    }


def _parse_reservation(data: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError("reservation response is not an object")
    return {
        "reservation_id": _field(data, "reservation_id", str),
        "secret": _field(data, "secret", str),
        "expires_at": _field(data, "expires_at", str),
    }


def _parse_confirm(data: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError("confirm response is not an object")
    return {
        "appointment_id": _field(data, "appointment_id", str, required=False),
        "status": _field(data, "status", str),
    }
