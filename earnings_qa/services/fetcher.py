# =============================================================================
# Report Fetcher — Concurrent, Rate-Limited Acquisition
# =============================================================================
#
# Fetches quarterly earnings releases for a set of (year, quarter) periods.
#
# CONCURRENCY:
# All fetches are scheduled at once with asyncio.gather(). Each fetch first
# passes through a StartSpacingLimiter, so consecutive fetch *starts* are at
# least `fetch_min_interval_seconds` apart while earlier requests are still
# in flight.
#
# FAILURE SEMANTICS:
# - A failed fetch (network error, non-2xx status, empty extraction) is
#   logged with its locator and left out of the result. It never cancels
#   sibling fetches.
# - No retries here. Retry policy belongs to the ingestion job.
# - Only when every requested source fails is AllFetchesFailed raised.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

import httpx

from earnings_qa.config import settings
from earnings_qa.errors import AllFetchesFailed, ExtractionEmpty, FetchFailure
from earnings_qa.services.extractor import extract_report_text
from earnings_qa.services.rate_limiter import StartSpacingLimiter

logger = logging.getLogger(__name__)

QUARTERS: tuple[str, ...] = ("First", "Second", "Third", "Fourth")


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceDescriptor:
    """One fetchable report: a fiscal period plus the URL it lives at."""

    year: int
    quarter: str
    url_template: str = field(
        default=settings.source_url_template, compare=False, repr=False,
    )

    @property
    def locator(self) -> str:
        return self.url_template.format(year=self.year, quarter=self.quarter)

    @property
    def label(self) -> str:
        """Short period label, e.g. 'Q1-2023'."""
        try:
            number = QUARTERS.index(self.quarter) + 1
        except ValueError:
            return f"{self.quarter}-{self.year}"
        return f"Q{number}-{self.year}"


@dataclass(frozen=True)
class RawDocument:
    """Extracted report text plus provenance. Never mutated after creation."""

    content: str
    metadata: dict = field(default_factory=dict)


@dataclass
class FetchResult:
    """Documents that were fetched (request order) and the failures."""

    documents: list[RawDocument] = field(default_factory=list)
    failures: list[FetchFailure] = field(default_factory=list)


def descriptors_for_range(
    start_year: int,
    end_year: int,
    quarters: Iterable[str] | None = None,
    url_template: str | None = None,
) -> list[SourceDescriptor]:
    """
    Expand an inclusive year range into report descriptors.

    Duplicate quarters are dropped, order is year-major then quarter order.

    Raises:
        ValueError: On an inverted range or an unknown quarter name.
    """
    if start_year > end_year:
        raise ValueError(
            f"start_year ({start_year}) must not be after end_year ({end_year})"
        )

    wanted = list(dict.fromkeys(quarters or settings.source_quarters))
    unknown = [q for q in wanted if q not in QUARTERS]
    if unknown:
        raise ValueError(f"Unknown quarter(s) {unknown}; expected {list(QUARTERS)}")

    template = url_template or settings.source_url_template
    return [
        SourceDescriptor(year=year, quarter=quarter, url_template=template)
        for year in range(start_year, end_year + 1)
        for quarter in wanted
    ]


# ---------------------------------------------------------------------------
# Document Source Protocol
# ---------------------------------------------------------------------------


class DocumentSource(Protocol):
    """Returns extracted report text for a locator or raises FetchFailure."""

    async def fetch(self, locator: str) -> str:
        ...


class HttpDocumentSource:
    """
    Fetches report pages over HTTP and extracts the press-release body.

    The httpx.AsyncClient is created lazily and reused; call `aclose()` (or
    use the instance as an async context manager) to release connections.
    """

    def __init__(
        self,
        selector: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.selector = selector or settings.source_content_selector
        self.timeout = timeout or settings.fetch_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": settings.fetch_user_agent},
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def fetch(self, locator: str) -> str:
        try:
            response = await self.client.get(locator)
        except httpx.HTTPError as e:
            raise FetchFailure(locator, f"network error: {e!r}") from e

        if not response.is_success:
            raise FetchFailure(
                locator,
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        content = extract_report_text(response.text, self.selector)
        if not content:
            raise ExtractionEmpty(locator)
        return content

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpDocumentSource:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class Fetcher:
    """Concurrent report acquisition with start spacing and failure isolation."""

    def __init__(
        self,
        source: DocumentSource | None = None,
        min_interval: float | None = None,
    ) -> None:
        self.source = source or HttpDocumentSource()
        self.limiter = StartSpacingLimiter(
            settings.fetch_min_interval_seconds
            if min_interval is None
            else min_interval
        )

    async def fetch_one(self, descriptor: SourceDescriptor) -> RawDocument:
        """Fetch a single report. Raises FetchFailure on any failure."""
        locator = descriptor.locator
        await self.limiter.acquire()
        logger.debug("Fetching %s (%s)", descriptor.label, locator)

        try:
            content = await self.source.fetch(locator)
        except FetchFailure:
            raise
        except Exception as e:
            raise FetchFailure(locator, repr(e)) from e

        if not content or not content.strip():
            raise ExtractionEmpty(locator)

        return RawDocument(
            content=content,
            metadata={
                "source": locator,
                "year": descriptor.year,
                "quarter": descriptor.quarter,
                "label": descriptor.label,
                "retrieved_at": datetime.now(UTC).isoformat(),
            },
        )

    async def fetch_all(
        self,
        descriptors: Sequence[SourceDescriptor],
    ) -> FetchResult:
        """
        Fetch every descriptor concurrently.

        Returns:
            FetchResult with successful documents in request order and the
            per-source failures.

        Raises:
            AllFetchesFailed: If at least one descriptor was requested and
                none succeeded.
        """
        if not descriptors:
            return FetchResult()

        logger.info("Fetching %d reports", len(descriptors))

        outcomes = await asyncio.gather(
            *(self._fetch_isolated(d) for d in descriptors)
        )

        result = FetchResult()
        for outcome in outcomes:
            if isinstance(outcome, RawDocument):
                result.documents.append(outcome)
            else:
                result.failures.append(outcome)

        logger.info(
            "Fetched %d/%d reports (%d failed)",
            len(result.documents), len(descriptors), len(result.failures),
        )

        if not result.documents:
            raise AllFetchesFailed(result.failures)
        return result

    async def aclose(self) -> None:
        """Release the source's connections, if it holds any."""
        close = getattr(self.source, "aclose", None)
        if close is not None:
            await close()

    async def _fetch_isolated(
        self,
        descriptor: SourceDescriptor,
    ) -> RawDocument | FetchFailure:
        """Run one fetch, converting its failure into a value."""
        try:
            return await self.fetch_one(descriptor)
        except FetchFailure as e:
            logger.warning(
                "Failed to fetch report for %s %d (%s): %s",
                descriptor.quarter, descriptor.year, e.locator, e.reason,
            )
            return e
