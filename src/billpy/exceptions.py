"""Exceptions for the BillPy library."""

from __future__ import annotations

from typing import Any

import httpx


class BillError(Exception):
    """Base class for every error raised by BillPy."""


class BillAPIError(BillError, httpx.HTTPStatusError):
    """Error reported by the Bill.com API.

    Bill.com answers most failures with HTTP 200 and an error envelope
    (``response_status == 1``) in the body, so ``status_code`` is only set
    when the HTTP layer itself failed. Extends httpx.HTTPStatusError so users
    can catch both BillAPIError and httpx.HTTPStatusError.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict[str, Any] | None = None,
        request: httpx.Request | None = None,
        response: httpx.Response | None = None,
        error_code: str | None = None,
    ) -> None:
        """Initialize BillAPIError.

        Args:
            message: Error message
            status_code: HTTP status code, if the HTTP layer failed
            response_data: Full response data from the API
            request: The request that caused the error
            response: The response from the API
            error_code: Bill.com error code (e.g. ``BDC_1109``)
        """
        if request and response:
            httpx.HTTPStatusError.__init__(
                self, message, request=request, response=response
            )
        else:
            Exception.__init__(self, message)

        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.response_data = response_data or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.status_code:
            return f"[{self.status_code}] {self.message}"
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class BillAuthError(BillAPIError):
    """Raised when login fails or the session is rejected (401/403)."""

    pass


class BillRateLimitError(BillAPIError):
    """Raised when the concurrency ceiling is exceeded (429).

    Bill.com allows at most 3 concurrent requests per session.
    """

    pass


class BillNotFoundError(BillAPIError):
    """Raised when a resource is not found (404)."""

    pass


class BillServerError(BillAPIError):
    """Raised when server encounters an error (5xx)."""

    pass


class BillTransportError(BillError):
    """Raised when a request never produced a response (DNS, refused, reset)."""

    pass


class PageTimeoutError(BillError):
    """A page request exceeded the worker deadline."""

    def __init__(self, page_index: int, timeout: float) -> None:
        super().__init__("request timed out; retry later")
        self.page_index = page_index
        self.timeout = timeout


class PageCountError(BillError):
    """Counting the pages of a collection failed."""

    def __init__(self, endpoint: str, page_index: int, cause: Exception) -> None:
        super().__init__(
            f"Unable to count pages of {endpoint}: probe of page {page_index} "
            f"failed: {cause}"
        )
        self.endpoint = endpoint
        self.page_index = page_index
        self.cause = cause


class PaginationError(BillError):
    """One or more pages of a fetch-all call failed.

    ``errors`` maps page index to the error for that page. ``partial`` holds
    whatever the successful pages produced, so callers may keep partial data.
    """

    def __init__(
        self,
        errors: dict[int, Exception],
        partial: list[Any] | None = None,
    ) -> None:
        self.errors = dict(sorted(errors.items()))
        self.partial: list[Any] = partial if partial is not None else []
        super().__init__(
            "\n".join(f"page {page}: {error}" for page, error in self.errors.items())
        )

    @property
    def pages(self) -> list[int]:
        """Indices of the pages that failed, ascending."""
        return list(self.errors)

    def with_partial(self, partial: list[Any]) -> PaginationError:
        """Return a copy of this error carrying ``partial`` results."""
        return PaginationError(self.errors, partial)
