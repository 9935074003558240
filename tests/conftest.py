"""Pytest fixtures for BillPy tests."""

from collections.abc import Callable
from typing import Any

import httpx
import pytest
from helpers import decode_form, envelope, error_envelope
from httpx import Response

from billpy import AsyncBillClient, BillClient


@pytest.fixture
def session_id() -> str:
    """Return a test session id."""
    return "test_session_12345"


@pytest.fixture
def dev_key() -> str:
    """Return a test developer key."""
    return "test_dev_key"


@pytest.fixture
def login_credentials(dev_key: str) -> dict[str, str]:
    """Return test login credentials."""
    return {
        "user_name": "user@example.com",
        "password": "secret",
        "org_id": "00801ABCDEFGHIJ",
        "dev_key": dev_key,
    }


@pytest.fixture
def base_url() -> str:
    """Return the base API URL."""
    return "https://api.bill.com/api/v2"


@pytest.fixture
def sync_client(session_id: str, dev_key: str):
    """Create a sync BillClient for testing."""
    client = BillClient(session_id=session_id, dev_key=dev_key)
    yield client
    client.close()


@pytest.fixture
async def async_client(session_id: str, dev_key: str):
    """Create an async BillClient for testing."""
    client = AsyncBillClient(session_id=session_id, dev_key=dev_key)
    yield client
    await client.close()


@pytest.fixture
def list_server() -> Callable[..., Callable[[httpx.Request], Response]]:
    """Return a factory of respx side effects serving an in-memory List endpoint.

    The handler honours ``start``/``max`` of the request, so page probes and
    page fetches see a consistent collection of ``total`` records. Pages in
    ``failing_pages`` (full-size requests only) answer with an error envelope.
    """

    def factory(
        total: int,
        entity: str = "Invoice",
        failing_pages: tuple[int, ...] = (),
    ) -> Callable[[httpx.Request], Response]:
        def handler(request: httpx.Request) -> Response:
            query = decode_form(request)["data"]
            start, limit = query["start"], query["max"]
            if limit > 1 and start // limit in failing_pages:
                return Response(200, json=error_envelope("BDC_1000", "Page failed"))
            records = [
                {"entity": entity, "id": f"{entity.lower()}{n:05d}", "isActive": "1"}
                for n in range(start, min(start + limit, total))
            ]
            return Response(200, json=envelope(records))

        return handler

    return factory


@pytest.fixture
def mock_invoice() -> dict[str, Any]:
    """Return mock invoice data."""
    return {
        "entity": "Invoice",
        "id": "00e01abcdef123456789",
        "isActive": "1",
        "createdTime": "2018-12-31T22:00:00.000+0000",
        "updatedTime": "2019-01-02T02:01:41.000+0000",
        "customerId": "0cuabcdefgh123456789",
        "invoiceNumber": "1",
        "invoiceDate": "2019-01-01",
        "dueDate": "2019-01-01",
        "amount": 1000.00,
        "amountDue": 1000.00,
        "paymentStatus": "1",
        "description": "Invoice for service",
        "isToBeEmailed": False,
        "locationId": "00000000000000000000",
        "actgClassId": "00000000000000000000",
        "invoiceLineItems": [
            {
                "entity": "InvoiceLineItem",
                "id": "00f01abcdef123456789",
                "itemId": "0ii01abcdef123456789",
                "quantity": 1,
                "amount": 1000.00,
                "price": 1000.00,
                "actgClassId": "00000000000000000000",
                "locationId": "00000000000000000000",
                "description": "Services rendered",
            }
        ],
    }

