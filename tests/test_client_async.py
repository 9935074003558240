"""Tests for AsyncBillClient (asynchronous)."""

import asyncio
from datetime import date, datetime

import httpx
import pytest
import respx
from helpers import decode_form, envelope, error_envelope
from httpx import Response

from billpy import AsyncBillClient, InvoicePatch, WorkerPoolConfig
from billpy.exceptions import (
    BillAPIError,
    BillAuthError,
    BillNotFoundError,
    PageCountError,
    PageTimeoutError,
    PaginationError,
)


class TestAuthentication:
    """Test authentication methods."""

    @pytest.mark.asyncio
    async def test_session_auth_initialization(self, session_id: str, dev_key: str):
        """Test client initialization with an existing session."""
        async with AsyncBillClient(session_id=session_id, dev_key=dev_key) as client:
            assert client.auth is not None

    def test_missing_credentials_raises_error(self):
        """Test that missing credentials raises ValueError."""
        try:
            AsyncBillClient()
            assert False, "Should have raised ValueError"
        except ValueError as e:
            assert "Either session_id and dev_key" in str(e)

    @pytest.mark.asyncio
    @respx.mock
    async def test_login_happens_once(
        self, login_credentials: dict, base_url: str, list_server
    ):
        """Test concurrent page workers share a single login."""
        login = respx.post(f"{base_url}/Login.json").mock(
            return_value=Response(200, json=envelope({"sessionId": "fresh-session"}))
        )
        route = respx.post(f"{base_url}/List/Location.json").mock(
            side_effect=list_server(2500, entity="Location")
        )

        async with AsyncBillClient(**login_credentials) as client:
            locations = await client.get_locations()

        assert len(locations) == 2500
        assert login.call_count == 1
        assert {decode_form(c.request)["sessionId"] for c in route.calls} == {
            "fresh-session"
        }

    @pytest.mark.asyncio
    @respx.mock
    async def test_login_failure_raises_auth_error(
        self, login_credentials: dict, base_url: str
    ):
        """Test a rejected login raises BillAuthError."""
        respx.post(f"{base_url}/Login.json").mock(
            return_value=Response(
                200, json=error_envelope("BDC_1102", "Incorrect userName or password")
            )
        )

        async with AsyncBillClient(**login_credentials) as client:
            with pytest.raises(BillAuthError):
                await client.get_customer("0cu01")

    @pytest.mark.asyncio
    @respx.mock
    async def test_expired_session_logs_in_again(
        self, login_credentials: dict, base_url: str, mock_invoice: dict
    ):
        """Test an expired session is renewed and the call retried once."""
        login = respx.post(f"{base_url}/Login.json").mock(
            side_effect=[
                Response(200, json=envelope({"sessionId": "first"})),
                Response(200, json=envelope({"sessionId": "second"})),
            ]
        )
        read = respx.post(f"{base_url}/Crud/Read/Invoice.json").mock(
            side_effect=[
                Response(200, json=error_envelope("BDC_1109", "Session is invalid")),
                Response(200, json=envelope(mock_invoice)),
            ]
        )

        async with AsyncBillClient(**login_credentials) as client:
            invoice = await client.get_invoice(mock_invoice["id"])

        assert invoice.id == mock_invoice["id"]
        assert login.call_count == 2
        assert decode_form(read.calls[1].request)["sessionId"] == "second"

    @pytest.mark.asyncio
    @respx.mock
    async def test_expired_session_is_not_retried_twice(
        self, login_credentials: dict, base_url: str
    ):
        """Test a session rejected again after a new login raises."""
        respx.post(f"{base_url}/Login.json").mock(
            return_value=Response(200, json=envelope({"sessionId": "fresh"}))
        )
        read = respx.post(f"{base_url}/Crud/Read/Invoice.json").mock(
            return_value=Response(
                200, json=error_envelope("BDC_1109", "Session is invalid")
            )
        )

        async with AsyncBillClient(**login_credentials) as client:
            with pytest.raises(BillAPIError) as exc_info:
                await client.get_invoice("00e01")

        assert exc_info.value.error_code == "BDC_1109"
        assert read.call_count == 2


class TestPagination:
    """Test paginated listing through the HTTP layer."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_three_pages(
        self, async_client: AsyncBillClient, base_url: str, list_server
    ):
        """Test 999/999/450 invoices are fetched in order."""
        respx.post(f"{base_url}/List/Invoice.json").mock(side_effect=list_server(2448))

        outcome = await async_client.fetch_all_pages("Invoice.json")

        assert [len(r.records()) for r in outcome.results] == [999, 999, 450]
        assert outcome.combined_error is None
        invoices = await async_client.get_invoices()
        assert [i.id for i in invoices] == [f"invoice{n:05d}" for n in range(2448)]

    @pytest.mark.asyncio
    @respx.mock
    async def test_failed_page_raises_with_partial_results(
        self, async_client: AsyncBillClient, base_url: str, list_server
    ):
        """Test a failing page raises PaginationError carrying the other pages."""
        respx.post(f"{base_url}/List/Bill.json").mock(
            side_effect=list_server(2448, entity="Bill", failing_pages=(0, 2))
        )

        with pytest.raises(PaginationError) as exc_info:
            await async_client.get_bills()

        assert exc_info.value.pages == [0, 2]
        assert len(exc_info.value.partial) == 999

    @pytest.mark.asyncio
    @respx.mock
    async def test_slow_page_times_out(self, base_url: str, list_server):
        """Test a page slower than the deadline is reported as timed out."""
        serve = list_server(30, entity="ActgClass")

        async def slow_second_page(request: httpx.Request) -> Response:
            query = decode_form(request)["data"]
            if query["max"] > 1 and query["start"] == 10:
                await asyncio.sleep(5)
            return serve(request)

        respx.post(f"{base_url}/List/ActgClass.json").mock(side_effect=slow_second_page)

        async with AsyncBillClient(
            session_id="s",
            dev_key="k",
            pool=WorkerPoolConfig(page_size=10, page_timeout=0.2),
        ) as client:
            with pytest.raises(PaginationError) as exc_info:
                await client.get_classes()

        assert isinstance(exc_info.value.errors[1], PageTimeoutError)
        assert len(exc_info.value.partial) == 20

    @pytest.mark.asyncio
    @respx.mock
    async def test_count_failure_raises(
        self, async_client: AsyncBillClient, base_url: str
    ):
        """Test an error while counting is raised, not treated as empty."""
        respx.post(f"{base_url}/List/Item.json").mock(
            return_value=Response(500, text="Internal error")
        )

        with pytest.raises(PageCountError) as exc_info:
            await async_client.get_items()
        assert exc_info.value.page_index == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_customers_since(
        self, async_client: AsyncBillClient, base_url: str, list_server
    ):
        """Test naive datetimes are sent as UTC timestamps."""
        route = respx.post(f"{base_url}/List/Customer.json").mock(
            side_effect=list_server(1, entity="Customer")
        )

        await async_client.get_customers_since(datetime(2024, 5, 6, 7, 8, 9, 123000))

        query = decode_form(route.calls.last.request)["data"]
        assert query["filters"] == [
            {"field": "updatedTime", "op": ">", "value": "2024-05-06T07:08:09.123+0000"}
        ]


class TestInvoiceEndpoints:
    """Test invoice read and update."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_update_invoice(
        self, async_client: AsyncBillClient, base_url: str, mock_invoice: dict
    ):
        """Test an update merges only the patched fields onto the invoice."""
        respx.post(f"{base_url}/Crud/Read/Invoice.json").mock(
            return_value=Response(200, json=envelope(mock_invoice))
        )
        update = respx.post(f"{base_url}/Crud/Update/Invoice.json").mock(
            side_effect=lambda request: Response(
                200, json=envelope(decode_form(request)["data"]["obj"])
            )
        )

        result = await async_client.update_invoice(
            mock_invoice["id"],
            InvoicePatch(due_date=date(2019, 3, 1), description="Rescheduled"),
        )

        obj = decode_form(update.calls.last.request)["data"]["obj"]
        assert obj["dueDate"] == "2019-03-01"
        assert obj["description"] == "Rescheduled"
        assert obj["amount"] == 1000.0
        assert result.description == "Rescheduled"


class TestErrorHandling:
    """Test error handling."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_404_raises_not_found(
        self, async_client: AsyncBillClient, base_url: str
    ):
        """Test that 404 raises BillNotFoundError."""
        respx.post(f"{base_url}/Crud/Read/Invoice.json").mock(
            return_value=Response(404, text="Not found")
        )

        with pytest.raises(BillNotFoundError) as exc_info:
            await async_client.get_invoice("00e404")
        assert exc_info.value.status_code == 404
