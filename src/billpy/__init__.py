"""BillPy - Modern Python library for the Bill.com accounting API."""

from billpy._version import __version__
from billpy.client_async import AsyncBillClient
from billpy.client_base import Resource, format_timestamp, read_timestamp_file
from billpy.client_sync import BillClient
from billpy.exceptions import (
    BillAPIError,
    BillAuthError,
    BillError,
    BillNotFoundError,
    BillRateLimitError,
    BillServerError,
    BillTransportError,
    PageCountError,
    PageTimeoutError,
    PaginationError,
)
from billpy.models import InvoicePatch, new_invoice, new_invoice_line_item
from billpy.pagination import FetchOutcome, PageResult, WorkerPoolConfig
from billpy.parameters import Parameters

__all__ = [
    "__version__",
    "BillClient",
    "AsyncBillClient",
    "Parameters",
    "Resource",
    "WorkerPoolConfig",
    "FetchOutcome",
    "PageResult",
    "InvoicePatch",
    "new_invoice",
    "new_invoice_line_item",
    "format_timestamp",
    "read_timestamp_file",
    "BillError",
    "BillAPIError",
    "BillAuthError",
    "BillNotFoundError",
    "BillRateLimitError",
    "BillServerError",
    "BillTransportError",
    "PageCountError",
    "PageTimeoutError",
    "PaginationError",
]
