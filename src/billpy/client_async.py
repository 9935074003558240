"""Asynchronous Bill.com API client."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, TypeVar

import httpx

from billpy._version import __version__
from billpy.auth import SESSION_INVALID_CODE, AsyncLoginAuth, SessionAuth
from billpy.client_base import (
    ClientConfig,
    Resource,
    check_response,
    crud_endpoint,
    encode_form,
    format_timestamp,
    list_endpoint,
    response_data,
)
from billpy.exceptions import BillAPIError, BillTransportError
from billpy.models import (
    AccountingClass,
    Bill,
    BillModel,
    Customer,
    Invoice,
    InvoicePatch,
    Item,
    Location,
    PaymentMade,
    PaymentReceived,
    Vendor,
)
from billpy.pagination import (
    AsyncPaginator,
    FetchOutcome,
    PageRequest,
    PageResult,
    WorkerPoolConfig,
)
from billpy.parameters import Parameters

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BillModel)


class AsyncBillClient:
    """Asynchronous client for the Bill.com API.

    Accepts either an existing session (``session_id`` + ``dev_key``) or login
    credentials, in which case it logs in on first use and again whenever
    the session expires.

    List methods run their page workers as tasks. A page that exceeds
    ``pool.page_timeout`` has its task cancelled, which also closes its
    in-flight request.
    """

    def __init__(
        self,
        *,
        session_id: str | None = None,
        dev_key: str | None = None,
        user_name: str | None = None,
        password: str | None = None,
        org_id: str | None = None,
        base_url: str = ClientConfig.BASE_URL,
        timeout: float = ClientConfig.DEFAULT_TIMEOUT,
        pool: WorkerPoolConfig | None = None,
    ) -> None:
        """Initialize Bill.com client.

        Args:
            session_id: Session id from a previous login
            dev_key: Developer key issued by Bill.com
            user_name: User name (for login)
            password: Password (for login)
            org_id: Organization id (for login)
            base_url: Base URL for API (default: https://api.bill.com/api/v2)
            timeout: HTTP request timeout in seconds
            pool: Worker pool settings for List calls

        Raises:
            ValueError: If neither a session nor login credentials are provided
        """
        self.base_url = base_url
        self.timeout = timeout

        self.auth: SessionAuth | AsyncLoginAuth
        if session_id and dev_key:
            self.auth = SessionAuth(session_id, dev_key)
        elif user_name and password and org_id and dev_key:
            self.auth = AsyncLoginAuth(
                user_name=user_name,
                password=password,
                org_id=org_id,
                dev_key=dev_key,
                base_url=base_url,
                timeout=timeout,
            )
        else:
            raise ValueError(
                "Either session_id and dev_key or all login credentials "
                "(user_name, password, org_id, dev_key) must be provided"
            )

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={
                "User-Agent": f"BillPy/{__version__}",
            },
        )
        self.paginator = AsyncPaginator(self._fetch_page, pool)

    async def __aenter__(self) -> AsyncBillClient:
        """Context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def _auth_fields(self) -> dict[str, str]:
        if isinstance(self.auth, AsyncLoginAuth):
            return await self.auth.get_form_fields_async()
        return self.auth.get_form_fields()

    async def _request(
        self,
        endpoint: str,
        data: dict[str, Any],
        retry_login: bool = True,
    ) -> httpx.Response:
        """Post a form-encoded request with the session fields.

        Args:
            endpoint: API endpoint path
            data: Operation payload
            retry_login: Log in again and retry once if the session expired

        Returns:
            HTTP response

        Raises:
            BillAPIError: On API errors
        """
        form = encode_form(await self._auth_fields(), data)
        response = await self.client.post(endpoint, data=form)
        try:
            return check_response(response)
        except BillAPIError as e:
            if (
                retry_login
                and e.error_code == SESSION_INVALID_CODE
                and self.auth.invalidate(form["sessionId"])
            ):
                logger.info("Session expired; logging in again")
                return await self._request(endpoint, data, retry_login=False)
            raise

    async def _fetch_page(self, request: PageRequest) -> PageResult:
        """Fetch one page of a List endpoint; errors are returned, not raised."""
        try:
            response = await self._request(
                list_endpoint(request.endpoint), request.to_query()
            )
        except BillAPIError as e:
            return PageResult(request.page_index, error=e)
        except httpx.HTTPError as e:
            return PageResult(
                request.page_index,
                error=BillTransportError(
                    f"Unable to send request to {request.endpoint}: {e}"
                ),
            )
        return PageResult(request.page_index, payload=response.content)

    # Pagination

    async def count_pages(
        self, resource: str, parameters: Parameters | None = None
    ) -> int:
        """Count the pages of a collection.

        Args:
            resource: Endpoint suffix, e.g. ``Resource.INVOICE``
            parameters: Optional filters and sorts

        Returns:
            Number of pages (at least 1; page 0 is always fetched)

        Raises:
            PageCountError: If a probe failed
        """
        params = parameters or Parameters()
        return await self.paginator.count_pages(resource, params.filters, params.sorts)

    async def fetch_all_pages(
        self, resource: str, parameters: Parameters | None = None
    ) -> FetchOutcome:
        """Fetch every page of a collection as raw payloads.

        Per-page failures do not raise; they are collected in
        ``FetchOutcome.combined_error`` next to the pages that succeeded.

        Args:
            resource: Endpoint suffix, e.g. ``Resource.INVOICE``
            parameters: Optional filters and sorts

        Returns:
            Outcome with results ordered by page index

        Raises:
            PageCountError: If counting the pages failed
        """
        params = parameters or Parameters()
        return await self.paginator.collect(resource, params.filters, params.sorts)

    async def _list(
        self, resource: str, model_class: type[M], parameters: Parameters | None
    ) -> list[M]:
        outcome = await self.fetch_all_pages(resource, parameters)
        items = [model_class.model_validate(record) for record in outcome.records()]
        if outcome.combined_error is not None:
            raise outcome.combined_error.with_partial(items)
        return items

    async def _list_since(
        self,
        resource: str,
        model_class: type[M],
        since: datetime,
        parameters: Parameters | None,
    ) -> list[M]:
        params = parameters.copy() if parameters else Parameters()
        params.add_filter("updatedTime", ">", format_timestamp(since))
        return await self._list(resource, model_class, params)

    async def _read(self, resource: str, entity_id: str) -> Any:
        response = await self._request(
            crud_endpoint("Read", resource), {"id": entity_id}
        )
        return response_data(response)

    async def _write(self, operation: str, resource: str, entity: BillModel) -> Any:
        response = await self._request(
            crud_endpoint(operation, resource), {"obj": entity.to_api()}
        )
        return response_data(response)

    # Customer endpoints

    async def get_customers(
        self, parameters: Parameters | None = None
    ) -> list[Customer]:
        """Get all customers.

        Args:
            parameters: Optional filters and sorts

        Returns:
            Customers, in page order

        Raises:
            PaginationError: If any page failed; ``partial`` holds the rest
        """
        return await self._list(Resource.CUSTOMER, Customer, parameters)

    async def get_customers_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[Customer]:
        """Get customers updated after ``since``."""
        return await self._list_since(Resource.CUSTOMER, Customer, since, parameters)

    async def get_customer(self, customer_id: str) -> Customer:
        """Get a specific customer.

        Args:
            customer_id: Customer ID

        Returns:
            Customer details
        """
        return Customer.model_validate(await self._read(Resource.CUSTOMER, customer_id))

    # Vendor endpoints

    async def get_vendors(self, parameters: Parameters | None = None) -> list[Vendor]:
        """Get all vendors."""
        return await self._list(Resource.VENDOR, Vendor, parameters)

    async def get_vendors_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[Vendor]:
        """Get vendors updated after ``since``."""
        return await self._list_since(Resource.VENDOR, Vendor, since, parameters)

    # Invoice endpoints

    async def get_invoices(
        self, parameters: Parameters | None = None
    ) -> list[Invoice]:
        """Get all invoices.

        Args:
            parameters: Optional filters and sorts

        Returns:
            Invoices, in page order

        Raises:
            PaginationError: If any page failed; ``partial`` holds the rest
        """
        return await self._list(Resource.INVOICE, Invoice, parameters)

    async def get_invoices_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[Invoice]:
        """Get invoices updated after ``since``.

        Args:
            since: Lower bound (exclusive) on ``updatedTime``
            parameters: Additional filters and sorts; not modified

        Returns:
            Matching invoices
        """
        return await self._list_since(Resource.INVOICE, Invoice, since, parameters)

    async def get_invoice(self, invoice_id: str) -> Invoice:
        """Get a specific invoice.

        Args:
            invoice_id: Invoice ID

        Returns:
            Invoice details
        """
        return Invoice.model_validate(await self._read(Resource.INVOICE, invoice_id))

    async def create_invoice(self, invoice: Invoice) -> Invoice:
        """Create a new invoice.

        Args:
            invoice: Invoice data, e.g. from ``new_invoice``

        Returns:
            Created invoice
        """
        created = Invoice.model_validate(
            await self._write("Create", Resource.INVOICE, invoice)
        )
        logger.info("Created invoice %s (%s)", created.id, created.invoice_number)
        return created

    async def update_invoice(self, invoice_id: str, patch: InvoicePatch) -> Invoice:
        """Update an invoice.

        Fetches the invoice, merges the fields set on ``patch`` and writes
        the whole invoice back; every other field is preserved.

        Args:
            invoice_id: Invoice ID
            patch: Fields to change

        Returns:
            Updated invoice
        """
        if not invoice_id:
            raise ValueError("Must provide invoice ID to update")
        updated = patch.apply(await self.get_invoice(invoice_id))
        result = Invoice.model_validate(
            await self._write("Update", Resource.INVOICE, updated)
        )
        logger.info("Updated invoice %s with %s", invoice_id, sorted(patch.changes()))
        return result

    # Bill endpoints

    async def get_bills(self, parameters: Parameters | None = None) -> list[Bill]:
        """Get all bills."""
        return await self._list(Resource.BILL, Bill, parameters)

    async def get_bills_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[Bill]:
        """Get bills updated after ``since``."""
        return await self._list_since(Resource.BILL, Bill, since, parameters)

    # Payment endpoints

    async def get_payments_made(
        self, parameters: Parameters | None = None
    ) -> list[PaymentMade]:
        """Get all bill payments."""
        return await self._list(Resource.PAYMENT_MADE, PaymentMade, parameters)

    async def get_payments_made_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[PaymentMade]:
        """Get bill payments made or updated after ``since``."""
        return await self._list_since(
            Resource.PAYMENT_MADE, PaymentMade, since, parameters
        )

    async def get_payments_received(
        self, parameters: Parameters | None = None
    ) -> list[PaymentReceived]:
        """Get all received payments."""
        return await self._list(Resource.PAYMENT_RECEIVED, PaymentReceived, parameters)

    async def get_payments_received_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[PaymentReceived]:
        """Get received payments updated after ``since``."""
        return await self._list_since(
            Resource.PAYMENT_RECEIVED, PaymentReceived, since, parameters
        )

    # Location, class and item endpoints

    async def get_locations(
        self, parameters: Parameters | None = None
    ) -> list[Location]:
        """Get all locations."""
        return await self._list(Resource.LOCATION, Location, parameters)

    async def get_locations_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[Location]:
        """Get locations updated after ``since``."""
        return await self._list_since(Resource.LOCATION, Location, since, parameters)

    async def get_classes(
        self, parameters: Parameters | None = None
    ) -> list[AccountingClass]:
        """Get all accounting classes."""
        return await self._list(Resource.CLASS, AccountingClass, parameters)

    async def get_classes_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[AccountingClass]:
        """Get accounting classes updated after ``since``."""
        return await self._list_since(
            Resource.CLASS, AccountingClass, since, parameters
        )

    async def get_items(self, parameters: Parameters | None = None) -> list[Item]:
        """Get all items."""
        return await self._list(Resource.ITEM, Item, parameters)

    async def get_items_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[Item]:
        """Get items updated after ``since``."""
        return await self._list_since(Resource.ITEM, Item, since, parameters)

    # Reports

    async def get_open_invoices(self) -> list[Invoice]:
        """Get active invoices with an amount due, smallest amount first."""
        params = (
            Parameters()
            .add_filter("isActive", "=", "1")
            .add_filter("amountDue", ">", 0)
            .add_sort("amountDue")
        )
        return await self.get_invoices(params)
