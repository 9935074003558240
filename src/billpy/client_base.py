"""Base client functionality for Bill.com API."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from billpy.exceptions import (
    BillAPIError,
    BillAuthError,
    BillNotFoundError,
    BillRateLimitError,
    BillServerError,
)


class ClientConfig:
    """Configuration for Bill.com API client."""

    BASE_URL = "https://api.bill.com/api/v2"
    DEFAULT_TIMEOUT = 30.0
    PAGE_MAX = 999
    # Bill.com documents a ceiling of 3 concurrent requests per session
    WORKERS_MAX = 3
    PAGE_TIMEOUT = 8.0


class Resource:
    """Endpoint suffixes of the Bill.com entities."""

    CUSTOMER = "Customer.json"
    VENDOR = "Vendor.json"
    INVOICE = "Invoice.json"
    BILL = "Bill.json"
    PAYMENT_MADE = "BillPay.json"
    PAYMENT_RECEIVED = "ReceivedPay.json"
    LOCATION = "Location.json"
    CLASS = "ActgClass.json"
    ITEM = "Item.json"


def list_endpoint(resource: str) -> str:
    return f"/List/{resource}"


def crud_endpoint(operation: str, resource: str) -> str:
    return f"/Crud/{operation}/{resource}"


# Bill.com timestamps look like 2019-01-02T02:01:41.000+0000
TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.{millis:03d}%z"
DATE_FORMAT = "%Y-%m-%d"


def parse_error_response(response: httpx.Response) -> BillAPIError:
    """Parse an HTTP-level error response and return appropriate exception.

    Args:
        response: HTTP response from the API with status >= 400

    Returns:
        Appropriate BillAPIError subclass
    """
    status_code = response.status_code
    try:
        error_data: dict[str, Any] = response.json()
        message = error_data.get("response_message", response.text or "Unknown error")
    except Exception:
        message = response.text or f"HTTP {status_code} error"
        error_data = {}

    request = response.request

    if status_code in (401, 403):
        return BillAuthError(message, status_code, error_data, request, response)
    elif status_code == 404:
        return BillNotFoundError(message, status_code, error_data, request, response)
    elif status_code == 429:
        return BillRateLimitError(message, status_code, error_data, request, response)
    elif status_code >= 500:
        return BillServerError(message, status_code, error_data, request, response)
    else:
        return BillAPIError(message, status_code, error_data, request, response)


def parse_envelope_error(response: httpx.Response) -> BillAPIError | None:
    """Return the application error carried in a response body, if any.

    Bill.com reports failures with ``response_status`` 1 and an
    ``error_code``/``error_message`` pair under ``response_data``.
    """
    try:
        body = response.json()
    except ValueError:
        return BillAPIError(
            f"Unable to decode response from {response.request.url}",
            request=response.request,
            response=response,
        )
    if not isinstance(body, dict) or body.get("response_status") != 1:
        return None

    data = body.get("response_data") or {}
    if not isinstance(data, dict):
        data = {}
    return BillAPIError(
        f"Unable to perform operation at {response.request.url}: "
        f"{data.get('error_message', 'Unknown error')}",
        response_data=body,
        request=response.request,
        response=response,
        error_code=data.get("error_code"),
    )


def check_response(response: httpx.Response) -> httpx.Response:
    """Raise on HTTP or envelope errors, otherwise return the response."""
    if response.status_code >= 400:
        raise parse_error_response(response)
    error = parse_envelope_error(response)
    if error is not None:
        raise error
    return response


def encode_form(auth_fields: dict[str, str], data: dict[str, Any]) -> dict[str, str]:
    """Build the form body every Bill.com call expects.

    Args:
        auth_fields: ``sessionId``/``devKey`` pair from the auth handler
        data: Operation payload, sent JSON-encoded in the ``data`` field

    Returns:
        Form fields ready for ``httpx`` ``data=``
    """
    form = {"data": json.dumps(data, default=str)}
    form.update(auth_fields)
    return form


def response_data(response: httpx.Response) -> Any:
    """Return the ``response_data`` member of a successful response."""
    return response.json().get("response_data")


def format_timestamp(moment: datetime) -> str:
    """Format a datetime the way Bill.com filters expect it.

    Naive datetimes are taken to be UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.strftime(TIME_FORMAT.format(millis=moment.microsecond // 1000))


def parse_timestamp(value: str) -> datetime:
    """Parse a Bill.com timestamp such as ``2019-01-02T02:01:41.000+0000``."""
    return datetime.strptime(value.strip(), "%Y-%m-%dT%H:%M:%S.%f%z")


def read_timestamp_file(path: Path | str) -> datetime:
    """Read a "last updated" timestamp stored alone in a text file.

    Args:
        path: File holding a single Bill.com formatted timestamp

    Returns:
        The parsed timestamp

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is empty or not a valid timestamp
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    content = file_path.read_text().strip()
    if not content:
        raise ValueError(f"File {file_path} is empty")
    try:
        return parse_timestamp(content)
    except ValueError as e:
        raise ValueError(
            f"Unable to parse time {content!r} in file {file_path}: {e}"
        ) from e
