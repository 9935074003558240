"""Synchronous Bill.com API client."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, TypeVar

import httpx

from billpy._version import __version__
from billpy.auth import SESSION_INVALID_CODE, LoginAuth, SessionAuth
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
from billpy.exceptions import BillAPIError, BillTransportError, PageTimeoutError
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
    FetchOutcome,
    PageRequest,
    PageResult,
    Paginator,
    WorkerPoolConfig,
)
from billpy.parameters import Parameters

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BillModel)


class BillClient:
    """Synchronous client for the Bill.com API.

    Accepts either an existing session (``session_id`` + ``dev_key``) or login
    credentials, in which case it logs in on first use and again whenever
    the session expires.

    List methods count the pages of a collection and fetch them with a small
    pool of worker threads. The pool never exceeds ``pool.max_workers``
    concurrent requests within one call; concurrent calls each have their
    own pool.
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

        self.auth: SessionAuth | LoginAuth
        if session_id and dev_key:
            self.auth = SessionAuth(session_id, dev_key)
        elif user_name and password and org_id and dev_key:
            self.auth = LoginAuth(
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

        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={
                "User-Agent": f"BillPy/{__version__}",
            },
        )
        self.paginator = Paginator(self._fetch_page, pool)

    def __enter__(self) -> BillClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def _request(
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
        form = encode_form(self.auth.get_form_fields(), data)
        response = self.client.post(endpoint, data=form)
        try:
            return check_response(response)
        except BillAPIError as e:
            if (
                retry_login
                and e.error_code == SESSION_INVALID_CODE
                and self.auth.invalidate(form["sessionId"])
            ):
                logger.info("Session expired; logging in again")
                return self._request(endpoint, data, retry_login=False)
            raise

    def _fetch_page(self, request: PageRequest, cancelled: threading.Event) -> PageResult:
        """Fetch one page of a List endpoint; errors are returned, not raised.

        Nothing is sent once ``cancelled`` is set, e.g. when the attempt was
        abandoned while logging in.
        """
        try:
            self.auth.get_form_fields()
            if cancelled.is_set():
                logger.debug("Page %d abandoned before sending", request.page_index)
                return PageResult(
                    request.page_index,
                    error=PageTimeoutError(
                        request.page_index, self.paginator.config.page_timeout
                    ),
                )
            response = self._request(list_endpoint(request.endpoint), request.to_query())
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

    def count_pages(self, resource: str, parameters: Parameters | None = None) -> int:
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
        return self.paginator.count_pages(resource, params.filters, params.sorts)

    def fetch_all_pages(
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
        return self.paginator.collect(resource, params.filters, params.sorts)

    def _list(
        self, resource: str, model_class: type[M], parameters: Parameters | None
    ) -> list[M]:
        outcome = self.fetch_all_pages(resource, parameters)
        items = [model_class.model_validate(record) for record in outcome.records()]
        if outcome.combined_error is not None:
            raise outcome.combined_error.with_partial(items)
        return items

    def _list_since(
        self,
        resource: str,
        model_class: type[M],
        since: datetime,
        parameters: Parameters | None,
    ) -> list[M]:
        params = parameters.copy() if parameters else Parameters()
        params.add_filter("updatedTime", ">", format_timestamp(since))
        return self._list(resource, model_class, params)

    def _read(self, resource: str, entity_id: str) -> Any:
        response = self._request(crud_endpoint("Read", resource), {"id": entity_id})
        return response_data(response)

    def _write(self, operation: str, resource: str, entity: BillModel) -> Any:
        response = self._request(
            crud_endpoint(operation, resource), {"obj": entity.to_api()}
        )
        return response_data(response)

    # Customer endpoints

    def get_customers(self, parameters: Parameters | None = None) -> list[Customer]:
        """Get all customers.

        Args:
            parameters: Optional filters and sorts

        Returns:
            Customers, in page order

        Raises:
            PaginationError: If any page failed; ``partial`` holds the rest
        """
        return self._list(Resource.CUSTOMER, Customer, parameters)

    def get_customers_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[Customer]:
        """Get customers updated after ``since``."""
        return self._list_since(Resource.CUSTOMER, Customer, since, parameters)

    def get_customer(self, customer_id: str) -> Customer:
        """Get a specific customer.

        Args:
            customer_id: Customer ID

        Returns:
            Customer details
        """
        return Customer.model_validate(self._read(Resource.CUSTOMER, customer_id))

    # Vendor endpoints

    def get_vendors(self, parameters: Parameters | None = None) -> list[Vendor]:
        """Get all vendors."""
        return self._list(Resource.VENDOR, Vendor, parameters)

    def get_vendors_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[Vendor]:
        """Get vendors updated after ``since``."""
        return self._list_since(Resource.VENDOR, Vendor, since, parameters)

    # Invoice endpoints

    def get_invoices(self, parameters: Parameters | None = None) -> list[Invoice]:
        """Get all invoices.

        Args:
            parameters: Optional filters and sorts

        Returns:
            Invoices, in page order

        Raises:
            PaginationError: If any page failed; ``partial`` holds the rest
        """
        return self._list(Resource.INVOICE, Invoice, parameters)

    def get_invoices_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[Invoice]:
        """Get invoices updated after ``since``.

        Args:
            since: Lower bound (exclusive) on ``updatedTime``
            parameters: Additional filters and sorts; not modified

        Returns:
            Matching invoices
        """
        return self._list_since(Resource.INVOICE, Invoice, since, parameters)

    def get_invoice(self, invoice_id: str) -> Invoice:
        """Get a specific invoice.

        Args:
            invoice_id: Invoice ID

        Returns:
            Invoice details
        """
        return Invoice.model_validate(self._read(Resource.INVOICE, invoice_id))

    def create_invoice(self, invoice: Invoice) -> Invoice:
        """Create a new invoice.

        Args:
            invoice: Invoice data, e.g. from ``new_invoice``

        Returns:
            Created invoice
        """
        created = Invoice.model_validate(self._write("Create", Resource.INVOICE, invoice))
        logger.info("Created invoice %s (%s)", created.id, created.invoice_number)
        return created

    def update_invoice(self, invoice_id: str, patch: InvoicePatch) -> Invoice:
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
        updated = patch.apply(self.get_invoice(invoice_id))
        result = Invoice.model_validate(self._write("Update", Resource.INVOICE, updated))
        logger.info("Updated invoice %s with %s", invoice_id, sorted(patch.changes()))
        return result

    # Bill endpoints

    def get_bills(self, parameters: Parameters | None = None) -> list[Bill]:
        """Get all bills."""
        return self._list(Resource.BILL, Bill, parameters)

    def get_bills_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[Bill]:
        """Get bills updated after ``since``."""
        return self._list_since(Resource.BILL, Bill, since, parameters)

    # Payment endpoints

    def get_payments_made(
        self, parameters: Parameters | None = None
    ) -> list[PaymentMade]:
        """Get all bill payments."""
        return self._list(Resource.PAYMENT_MADE, PaymentMade, parameters)

    def get_payments_made_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[PaymentMade]:
        """Get bill payments made or updated after ``since``."""
        return self._list_since(Resource.PAYMENT_MADE, PaymentMade, since, parameters)

    def get_payments_received(
        self, parameters: Parameters | None = None
    ) -> list[PaymentReceived]:
        """Get all received payments."""
        return self._list(Resource.PAYMENT_RECEIVED, PaymentReceived, parameters)

    def get_payments_received_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[PaymentReceived]:
        """Get received payments updated after ``since``."""
        return self._list_since(
            Resource.PAYMENT_RECEIVED, PaymentReceived, since, parameters
        )

    # Location, class and item endpoints

    def get_locations(self, parameters: Parameters | None = None) -> list[Location]:
        """Get all locations."""
        return self._list(Resource.LOCATION, Location, parameters)

    def get_locations_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[Location]:
        """Get locations updated after ``since``."""
        return self._list_since(Resource.LOCATION, Location, since, parameters)

    def get_classes(
        self, parameters: Parameters | None = None
    ) -> list[AccountingClass]:
        """Get all accounting classes."""
        return self._list(Resource.CLASS, AccountingClass, parameters)

    def get_classes_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[AccountingClass]:
        """Get accounting classes updated after ``since``."""
        return self._list_since(Resource.CLASS, AccountingClass, since, parameters)

    def get_items(self, parameters: Parameters | None = None) -> list[Item]:
        """Get all items."""
        return self._list(Resource.ITEM, Item, parameters)

    def get_items_since(
        self, since: datetime, parameters: Parameters | None = None
    ) -> list[Item]:
        """Get items updated after ``since``."""
        return self._list_since(Resource.ITEM, Item, since, parameters)

    # Reports

    def get_open_invoices(self) -> list[Invoice]:
        """Get active invoices with an amount due, smallest amount first."""
        params = (
            Parameters()
            .add_filter("isActive", "=", "1")
            .add_filter("amountDue", ">", 0)
            .add_sort("amountDue")
        )
        return self.get_invoices(params)
