"""Concurrent page counting and fetching for Bill.com List endpoints.

The List API offers no total-count endpoint, so fetching a whole collection
runs in two phases that never overlap:

1. Counting: ``max_workers`` probes claim page indices 1, 2, 3, ... and fetch
   a single record at each page's offset. The first empty index is the page
   count (page 0 is assumed to exist).
2. Fetching: ``min(max_workers, count)`` workers drain a queue holding the
   indices ``0..count-1``. Each page is raced against ``page_timeout``, which
   starts once the page holds a gate slot.

Both phases share one concurrency gate per call, so at most ``max_workers``
requests are in flight against the server at any instant. The gate is not
shared between calls: two resources fetched in parallel can together exceed
the server's ceiling.

Two renditions are provided. ``AsyncPaginator`` runs workers as asyncio tasks
and cancels a page's task when its deadline passes. ``Paginator`` runs workers
as threads. A thread blocked in a socket call cannot be interrupted, so a
timed-out page only gets its cancel event set. Its child thread (and its
socket) may outlive the call until the HTTP client's own timeout fires, and
it keeps its gate slot until then.
"""

from __future__ import annotations

import asyncio
import json
import logging
import queue
import threading
from collections.abc import Awaitable, Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any

from billpy.client_base import ClientConfig
from billpy.exceptions import PageCountError, PageTimeoutError, PaginationError
from billpy.parameters import Filter, Sort

logger = logging.getLogger(__name__)

# A sync fetcher receives the cancel event of its attempt; it should give up
# (returning anything) once the event is set.
PageFetcher = Callable[["PageRequest", threading.Event], "PageResult"]
AsyncPageFetcher = Callable[["PageRequest"], Awaitable["PageResult"]]


@dataclass(frozen=True)
class WorkerPoolConfig:
    """Worker pool settings for one fetch-all call.

    Attributes:
        max_workers: Concurrent requests allowed against the server
        page_timeout: Seconds a single page request may take
        page_size: Records per page (1 to 999)
    """

    max_workers: int = ClientConfig.WORKERS_MAX
    page_timeout: float = ClientConfig.PAGE_TIMEOUT
    page_size: int = ClientConfig.PAGE_MAX

    def __post_init__(self) -> None:
        """Validate worker pool configuration."""
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.page_timeout <= 0:
            raise ValueError("page_timeout must be positive")
        if not 1 <= self.page_size <= ClientConfig.PAGE_MAX:
            raise ValueError(
                f"page_size must be between 1 and {ClientConfig.PAGE_MAX}"
            )


@dataclass(frozen=True)
class PageRequest:
    """One page of a List query.

    A probe request asks for a single record at the page's offset.
    """

    endpoint: str
    page_index: int
    page_size: int
    filters: tuple[Filter, ...] = ()
    sorts: tuple[Sort, ...] = ()
    probe: bool = False

    def __post_init__(self) -> None:
        if self.page_index < 0:
            raise ValueError("page_index must be non-negative")
        if self.page_size < 1:
            raise ValueError("page_size must be positive")

    @property
    def offset(self) -> int:
        return self.page_index * self.page_size

    @property
    def limit(self) -> int:
        return 1 if self.probe else self.page_size

    def at(self, page_index: int) -> PageRequest:
        """Return the same query for another page."""
        return replace(self, page_index=page_index)

    def to_query(self) -> dict[str, Any]:
        """Return the ``data`` payload of a List call."""
        return {
            "start": self.offset,
            "max": self.limit,
            "filters": [f.to_dict() for f in self.filters],
            "sort": [s.to_dict() for s in self.sorts],
        }


@dataclass(frozen=True)
class PageResult:
    """Raw payload or error for one page. Exactly one of them is set."""

    page_index: int
    payload: bytes | None = None
    error: Exception | None = None

    def __post_init__(self) -> None:
        if (self.payload is None) == (self.error is None):
            raise ValueError("PageResult needs exactly one of payload or error")

    @property
    def ok(self) -> bool:
        return self.error is None

    def records(self) -> list[dict[str, Any]]:
        """Decode the records of a successful page."""
        if self.payload is None:
            return []
        return parse_records(self.payload)


@dataclass(frozen=True)
class FetchOutcome:
    """Results of a fetch-all call, ordered by page index."""

    results: tuple[PageResult, ...]
    combined_error: PaginationError | None = None

    @property
    def payloads(self) -> list[bytes]:
        """Payloads of the successful pages, in page order."""
        return [r.payload for r in self.results if r.payload is not None]

    def records(self) -> list[dict[str, Any]]:
        """All records of the successful pages, in page order."""
        records: list[dict[str, Any]] = []
        for result in self.results:
            records.extend(result.records())
        return records

    def raise_for_errors(self) -> None:
        """Raise the combined error if any page failed."""
        if self.combined_error is not None:
            raise self.combined_error


def parse_records(payload: bytes) -> list[dict[str, Any]]:
    """Return the record list held in a List response body.

    Raises:
        ValueError: If the payload is not JSON
    """
    body = json.loads(payload)
    data = body.get("response_data") if isinstance(body, dict) else None
    if isinstance(data, list):
        return data
    return []


def aggregate_results(results: Iterable[PageResult]) -> FetchOutcome:
    """Order page results and merge their errors.

    Successful pages are kept even when siblings failed.
    """
    ordered = tuple(sorted(results, key=lambda r: r.page_index))
    errors = {r.page_index: r.error for r in ordered if r.error is not None}
    return FetchOutcome(ordered, PaginationError(errors) if errors else None)


class _CountState:
    """Shared state of the probes of one counting phase.

    The boundary is the lowest index known to be empty or to have failed.
    No index is claimed once a boundary exists; probes below it still run
    to completion since they may lower it further.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next = 1
        self.empty_at: int | None = None
        self.failure: tuple[int, Exception] | None = None

    @property
    def boundary(self) -> int | None:
        marks = [] if self.empty_at is None else [self.empty_at]
        if self.failure is not None:
            marks.append(self.failure[0])
        return min(marks, default=None)

    def claim(self) -> int | None:
        with self._lock:
            if self.boundary is not None:
                return None
            index = self._next
            self._next += 1
            return index

    def record(self, result: PageResult) -> bool:
        """Record a probe result. Returns True if the boundary moved down."""
        index = result.page_index
        error = result.error
        empty = False
        if error is None:
            try:
                empty = not result.records()
            except ValueError as e:
                error = e

        with self._lock:
            boundary = self.boundary
            if boundary is not None and index >= boundary:
                return False
            if error is not None:
                self.failure = (index, error)
            elif empty:
                self.empty_at = index
            else:
                return False
            return True

    def count(self, endpoint: str) -> int:
        if self.failure is not None and (
            self.empty_at is None or self.failure[0] < self.empty_at
        ):
            index, error = self.failure
            logger.warning("Counting %s failed at page %d: %s", endpoint, index, error)
            raise PageCountError(endpoint, index, error)
        if self.empty_at is None:
            raise RuntimeError(f"Counting {endpoint} stopped without a result")
        logger.info("Counted %d page(s) at %s", self.empty_at, endpoint)
        return self.empty_at


def _timeout_result(request: PageRequest, timeout: float) -> PageResult:
    logger.warning(
        "Page %d of %s timed out after %.1fs", request.page_index, request.endpoint, timeout
    )
    return PageResult(request.page_index, error=PageTimeoutError(request.page_index, timeout))


class _Attempt:
    """One page fetch on a child thread that can be abandoned."""

    def __init__(
        self,
        fetch_page: PageFetcher,
        request: PageRequest,
        gate: threading.BoundedSemaphore,
    ) -> None:
        self.request = request
        self.cancelled = threading.Event()
        self._fetch_page = fetch_page
        self._gate = gate
        self._started = threading.Event()
        self._done = threading.Event()
        self._result: PageResult | None = None
        self._thread = threading.Thread(
            target=self._run,
            name=f"billpy-page-{request.page_index}",
            daemon=True,
        )

    def start(self) -> _Attempt:
        self._thread.start()
        return self

    def cancel(self) -> None:
        self.cancelled.set()
        self._started.set()
        self._done.set()

    def wait(self, timeout: float) -> PageResult | None:
        """Wait for the fetch.

        The deadline starts once the attempt holds a gate slot; a slot kept
        by an abandoned sibling does not count against this page.

        Returns the page result, a timeout result if the deadline passed
        first, or None if the attempt was cancelled.
        """
        self._started.wait()
        if not self._done.wait(timeout):
            self.cancelled.set()
            return _timeout_result(self.request, timeout)
        if self.cancelled.is_set():
            return None
        return self._result

    def _run(self) -> None:
        with self._gate:
            self._started.set()
            if not self.cancelled.is_set():
                try:
                    self._result = self._fetch_page(self.request, self.cancelled)
                except Exception as e:
                    self._result = PageResult(self.request.page_index, error=e)
        self._done.set()


class Paginator:
    """Thread-based page counter and dispatcher.

    Args:
        fetch_page: Callable fetching one page; receives the request and the
            cancel event of the attempt, and returns a PageResult
        config: Worker pool settings
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        config: WorkerPoolConfig | None = None,
    ) -> None:
        self.fetch_page = fetch_page
        self.config = config or WorkerPoolConfig()

    def _gate(self) -> threading.BoundedSemaphore:
        return threading.BoundedSemaphore(self.config.max_workers)

    def collect(
        self,
        endpoint: str,
        filters: Sequence[Filter] = (),
        sorts: Sequence[Sort] = (),
    ) -> FetchOutcome:
        """Count the pages of a collection, then fetch them all.

        Raises:
            PageCountError: If counting failed
        """
        gate = self._gate()
        total = self._count(endpoint, tuple(filters), tuple(sorts), gate)
        return self._fetch_all(endpoint, total, tuple(filters), tuple(sorts), gate)

    def count_pages(
        self,
        endpoint: str,
        filters: Sequence[Filter] = (),
        sorts: Sequence[Sort] = (),
    ) -> int:
        """Return the number of pages of a collection.

        Raises:
            PageCountError: If a probe failed below the first empty page
        """
        return self._count(endpoint, tuple(filters), tuple(sorts), self._gate())

    def fetch_all(
        self,
        endpoint: str,
        total_pages: int,
        filters: Sequence[Filter] = (),
        sorts: Sequence[Sort] = (),
    ) -> FetchOutcome:
        """Fetch pages ``0..total_pages-1``; per-page errors are aggregated."""
        return self._fetch_all(
            endpoint, total_pages, tuple(filters), tuple(sorts), self._gate()
        )

    def _count(
        self,
        endpoint: str,
        filters: tuple[Filter, ...],
        sorts: tuple[Sort, ...],
        gate: threading.BoundedSemaphore,
    ) -> int:
        template = PageRequest(
            endpoint, 0, self.config.page_size, filters, sorts, probe=True
        )
        state = _CountState()
        in_flight: dict[int, _Attempt] = {}
        lock = threading.Lock()

        def probe() -> None:
            while True:
                index = state.claim()
                if index is None:
                    return
                attempt = _Attempt(self.fetch_page, template.at(index), gate)
                with lock:
                    in_flight[index] = attempt
                try:
                    boundary = state.boundary
                    if boundary is not None and index >= boundary:
                        continue
                    result = attempt.start().wait(self.config.page_timeout)
                finally:
                    with lock:
                        in_flight.pop(index, None)
                if result is None or not state.record(result):
                    continue
                with lock:
                    stale = [a for i, a in in_flight.items() if i > index]
                for other in stale:
                    other.cancel()

        workers = self.config.max_workers
        with ThreadPoolExecutor(workers, thread_name_prefix="billpy-count") as pool:
            futures = [pool.submit(probe) for _ in range(workers)]
            for future in futures:
                future.result()
        return state.count(endpoint)

    def _fetch_all(
        self,
        endpoint: str,
        total_pages: int,
        filters: tuple[Filter, ...],
        sorts: tuple[Sort, ...],
        gate: threading.BoundedSemaphore,
    ) -> FetchOutcome:
        if total_pages < 0:
            raise ValueError("total_pages must be non-negative")
        if total_pages == 0:
            return aggregate_results([])

        template = PageRequest(endpoint, 0, self.config.page_size, filters, sorts)
        pages: queue.Queue[int] = queue.Queue()
        for index in range(total_pages):
            pages.put(index)
        results: queue.Queue[PageResult] = queue.Queue()

        def worker() -> None:
            while True:
                try:
                    index = pages.get_nowait()
                except queue.Empty:
                    return
                logger.debug("Fetching page %d of %s", index, endpoint)
                attempt = _Attempt(self.fetch_page, template.at(index), gate)
                result = attempt.start().wait(self.config.page_timeout)
                if result is not None:
                    results.put(result)

        workers = min(self.config.max_workers, total_pages)
        with ThreadPoolExecutor(workers, thread_name_prefix="billpy-fetch") as pool:
            futures = [pool.submit(worker) for _ in range(workers)]
            for future in futures:
                future.result()

        collected = [results.get_nowait() for _ in range(results.qsize())]
        return aggregate_results(collected)


class AsyncPaginator:
    """Asyncio page counter and dispatcher.

    Args:
        fetch_page: Coroutine function fetching one page and returning a
            PageResult. It is cancelled when its deadline passes.
        config: Worker pool settings
    """

    def __init__(
        self,
        fetch_page: AsyncPageFetcher,
        config: WorkerPoolConfig | None = None,
    ) -> None:
        self.fetch_page = fetch_page
        self.config = config or WorkerPoolConfig()

    def _gate(self) -> asyncio.Semaphore:
        return asyncio.Semaphore(self.config.max_workers)

    async def collect(
        self,
        endpoint: str,
        filters: Sequence[Filter] = (),
        sorts: Sequence[Sort] = (),
    ) -> FetchOutcome:
        """Count the pages of a collection, then fetch them all.

        Raises:
            PageCountError: If counting failed
        """
        gate = self._gate()
        total = await self._count(endpoint, tuple(filters), tuple(sorts), gate)
        return await self._fetch_all(
            endpoint, total, tuple(filters), tuple(sorts), gate
        )

    async def count_pages(
        self,
        endpoint: str,
        filters: Sequence[Filter] = (),
        sorts: Sequence[Sort] = (),
    ) -> int:
        """Return the number of pages of a collection.

        Raises:
            PageCountError: If a probe failed below the first empty page
        """
        return await self._count(endpoint, tuple(filters), tuple(sorts), self._gate())

    async def fetch_all(
        self,
        endpoint: str,
        total_pages: int,
        filters: Sequence[Filter] = (),
        sorts: Sequence[Sort] = (),
    ) -> FetchOutcome:
        """Fetch pages ``0..total_pages-1``; per-page errors are aggregated."""
        return await self._fetch_all(
            endpoint, total_pages, tuple(filters), tuple(sorts), self._gate()
        )

    async def _attempt(self, request: PageRequest, gate: asyncio.Semaphore) -> PageResult:
        """Fetch one page; the deadline starts once a gate slot is held."""
        async with gate:
            try:
                return await asyncio.wait_for(
                    self.fetch_page(request), self.config.page_timeout
                )
            except asyncio.TimeoutError:
                return _timeout_result(request, self.config.page_timeout)
            except Exception as e:
                return PageResult(request.page_index, error=e)

    async def _count(
        self,
        endpoint: str,
        filters: tuple[Filter, ...],
        sorts: tuple[Sort, ...],
        gate: asyncio.Semaphore,
    ) -> int:
        template = PageRequest(
            endpoint, 0, self.config.page_size, filters, sorts, probe=True
        )
        state = _CountState()
        in_flight: dict[int, asyncio.Task[PageResult]] = {}

        async def probe() -> None:
            while True:
                index = state.claim()
                if index is None:
                    return
                task = asyncio.ensure_future(
                    self._attempt(template.at(index), gate)
                )
                in_flight[index] = task
                try:
                    await asyncio.wait({task})
                finally:
                    in_flight.pop(index, None)
                    if not task.done():
                        task.cancel()
                if task.cancelled() or not state.record(task.result()):
                    continue
                for other, stale in list(in_flight.items()):
                    if other > index:
                        stale.cancel()

        await asyncio.gather(*(probe() for _ in range(self.config.max_workers)))
        return state.count(endpoint)

    async def _fetch_all(
        self,
        endpoint: str,
        total_pages: int,
        filters: tuple[Filter, ...],
        sorts: tuple[Sort, ...],
        gate: asyncio.Semaphore,
    ) -> FetchOutcome:
        if total_pages < 0:
            raise ValueError("total_pages must be non-negative")
        if total_pages == 0:
            return aggregate_results([])

        template = PageRequest(endpoint, 0, self.config.page_size, filters, sorts)
        pages: asyncio.Queue[int] = asyncio.Queue()
        for index in range(total_pages):
            pages.put_nowait(index)
        results: asyncio.Queue[PageResult] = asyncio.Queue()

        async def worker() -> None:
            while True:
                try:
                    index = pages.get_nowait()
                except asyncio.QueueEmpty:
                    return
                logger.debug("Fetching page %d of %s", index, endpoint)
                results.put_nowait(
                    await self._attempt(template.at(index), gate)
                )

        workers = min(self.config.max_workers, total_pages)
        await asyncio.gather(*(worker() for _ in range(workers)))

        collected = [results.get_nowait() for _ in range(results.qsize())]
        return aggregate_results(collected)
