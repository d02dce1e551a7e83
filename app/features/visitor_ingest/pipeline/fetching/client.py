"""
Enrichment API client.

Reads every page of the visitors/audience endpoints. Page 1 is fetched on
its own to learn the page count; the rest are fetched in fixed-size batches
of concurrent requests, each batch awaited before the next starts. A page
that fails comes back empty and the fetch carries on.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import httpx

from app.config import settings
from app.features.visitor_ingest.domain.models import RawContactRecord
from app.features.visitor_ingest.errors import ImportValidationError, UpstreamApiError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RECORD_KEYS = ("Data", "data", "records", "contacts")
TOTAL_PAGES_KEYS = ("total_pages", "TotalPages", "totalPages")
CURRENT_PAGE_KEYS = ("page", "Page", "current_page")

DEFAULT_SYNC_BATCH_SIZE = 5
DEFAULT_IMPORT_BATCH_SIZE = 10
ERROR_SNIPPET_LENGTH = 500


@dataclass(slots=True)
class FirstPage:
    records: list[RawContactRecord]
    total_pages: int
    current_page: int


@dataclass(slots=True)
class PageRangeResult:
    """Records of a page range in page order, plus the pages that failed."""

    records: list[RawContactRecord] = field(default_factory=list)
    pages_requested: list[int] = field(default_factory=list)
    failed_pages: list[int] = field(default_factory=list)
    total_pages: int = 1


def build_headers(url: str, api_key: str, bearer_hosts: list[str] | None = None) -> dict[str, str]:
    """
    Auth headers for the enrichment API.

    X-API-Key is always sent. Hosts in the bearer family also get an
    Authorization header, since deployments differ in which one they check.
    """
    hosts = settings.ENRICHMENT_BEARER_HOSTS if bearer_hosts is None else bearer_hosts
    headers = {"Accept": "application/json"}
    hostname = urlparse(url).hostname or ""
    if any(host in hostname for host in hosts):
        headers["Authorization"] = f"Bearer {api_key}"
    headers["X-API-Key"] = api_key
    return headers


def page_url(url: str, page: int) -> str:
    return str(httpx.URL(url).copy_set_param("page", str(page)))


def extract_records(body: Any) -> list[RawContactRecord]:
    """Records under the first populated key of Data, data, records, contacts."""
    if not isinstance(body, dict):
        return []
    raw: Any = None
    for key in RECORD_KEYS:
        raw = body.get(key)
        if raw:
            break
    if not isinstance(raw, list):
        return []
    return [record for record in raw if isinstance(record, dict)]


def _int_field(body: dict, keys: tuple[str, ...], default: int = 1) -> int:
    for key in keys:
        value = body.get(key)
        if not value:
            continue
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return default
    return default


def parse_pagination(body: Any) -> tuple[int, int]:
    """(total_pages, current_page), both defaulting to 1."""
    if not isinstance(body, dict):
        return 1, 1
    return _int_field(body, TOTAL_PAGES_KEYS), _int_field(body, CURRENT_PAGE_KEYS)


class EnrichmentApiClient:
    """
    Async client for the paginated enrichment API.

    One instance (and one underlying httpx.AsyncClient) is shared by the
    process; tests pass a client built on httpx.MockTransport.
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client or self._create_client()

    def _create_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(settings.ENRICHMENT_REQUEST_TIMEOUT)
        limits = httpx.Limits(
            max_keepalive_connections=settings.ENRICHMENT_MAX_CONNECTIONS,
            max_connections=settings.ENRICHMENT_MAX_CONNECTIONS * 2,
        )
        return httpx.AsyncClient(timeout=timeout, limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def fetch_first_page(self, url: str, headers: dict[str, str]) -> FirstPage:
        """
        Fetch the unparameterized URL (page 1) and read pagination.

        Raises:
            UpstreamApiError: non-2xx response or network failure
            ImportValidationError: body is not JSON
        """
        logger.info("Fetching first page", url=url)
        try:
            response = await self._client.get(url, headers=headers)
        except httpx.RequestError as e:
            logger.error("First page request failed", url=url, error=str(e))
            raise UpstreamApiError(f"Failed to fetch: {e}") from e

        if not response.is_success:
            snippet = response.text[:ERROR_SNIPPET_LENGTH]
            logger.error(
                "First page returned an error",
                url=url,
                status_code=response.status_code,
                body=snippet,
            )
            raise UpstreamApiError(
                f"API returned {response.status_code}: {snippet}",
                upstream_status=response.status_code,
                body_snippet=snippet,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ImportValidationError("Response is not valid JSON") from e

        total_pages, current_page = parse_pagination(body)
        records = extract_records(body)
        logger.info(
            "First page fetched",
            records=len(records),
            total_pages=total_pages,
            current_page=current_page,
        )
        return FirstPage(records=records, total_pages=total_pages, current_page=current_page)

    async def _fetch_page(
        self, url: str, headers: dict[str, str], page: int
    ) -> list[RawContactRecord] | None:
        """One page's records, or None when the page failed."""
        try:
            response = await self._client.get(page_url(url, page), headers=headers)
        except httpx.RequestError as e:
            logger.warning("Page request failed", page=page, error=str(e))
            return None

        if not response.is_success:
            logger.warning("Page returned an error", page=page, status_code=response.status_code)
            return None

        try:
            body = response.json()
        except ValueError:
            logger.warning("Page body is not valid JSON", page=page)
            return None
        return extract_records(body)

    async def fetch_page_range(
        self,
        url: str,
        headers: dict[str, str],
        start: int,
        end: int,
        batch_size: int = DEFAULT_IMPORT_BATCH_SIZE,
    ) -> PageRangeResult:
        """
        Fetch pages start..end inclusive in concurrent batches of batch_size.

        Results are concatenated in page order regardless of arrival order.
        """
        result = PageRangeResult(pages_requested=list(range(start, end + 1)))
        batch_size = max(1, batch_size)

        for batch_start in range(start, end + 1, batch_size):
            batch_end = min(batch_start + batch_size - 1, end)
            pages = list(range(batch_start, batch_end + 1))
            batch = await asyncio.gather(*(self._fetch_page(url, headers, page) for page in pages))

            for page, records in zip(pages, batch):
                if records is None:
                    result.failed_pages.append(page)
                    continue
                result.records.extend(records)

            logger.info(
                "Fetched page batch",
                batch_start=batch_start,
                batch_end=batch_end,
                total_records=len(result.records),
            )

        if result.failed_pages:
            logger.warning("Some pages failed and were left empty", failed_pages=result.failed_pages)
        return result

    async def fetch_all_pages(
        self,
        url: str,
        headers: dict[str, str],
        batch_size: int = DEFAULT_SYNC_BATCH_SIZE,
    ) -> PageRangeResult:
        """Page 1, then every remaining page in batches."""
        first = await self.fetch_first_page(url, headers)

        if first.total_pages > 1 and first.current_page == 1:
            rest = await self.fetch_page_range(url, headers, 2, first.total_pages, batch_size)
        else:
            rest = PageRangeResult()

        return PageRangeResult(
            records=first.records + rest.records,
            pages_requested=[1, *rest.pages_requested],
            failed_pages=rest.failed_pages,
            total_pages=first.total_pages,
        )
