"""
Pixel visitor sync.

Fetches every page of a pixel's visitors endpoint, folds the events into
visitor profiles and reconciles them with the visitors table. The pixel row
is stamped with the outcome whether the run succeeded or not.
"""

from __future__ import annotations

import asyncio

from app.config import settings
from app.features.visitor_ingest.domain.models import PixelForSync, SyncResult
from app.features.visitor_ingest.errors import IngestError, PixelNotFound
from app.features.visitor_ingest.pipeline.aggregation import (
    VisitorAggregationService,
    visitor_aggregation_service,
)
from app.features.visitor_ingest.pipeline.fetching import EnrichmentApiClient, build_headers
from app.features.visitor_ingest.pipeline.writer import VisitorRepository, VisitorWriter
from app.features.visitor_ingest.services.api_keys import ApiKeyProvider
from app.infrastructure.audit import SystemLogWriter, system_log
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class VisitorSyncService:
    def __init__(
        self,
        api_client: EnrichmentApiClient,
        api_keys: ApiKeyProvider,
        writer: VisitorWriter | None = None,
        aggregator: VisitorAggregationService = visitor_aggregation_service,
        repository=VisitorRepository,
        audit: SystemLogWriter = system_log,
        page_batch_size: int | None = None,
        timeout_seconds: float | None = None,
    ):
        self._client = api_client
        self._api_keys = api_keys
        self._repository = repository
        self._writer = writer or VisitorWriter(repository)
        self._aggregator = aggregator
        self._audit = audit
        self.page_batch_size = page_batch_size or settings.SYNC_PAGE_BATCH_SIZE
        self.timeout_seconds = timeout_seconds or settings.BACKGROUND_SYNC_TIMEOUT_SECONDS

    async def sync_pixel(self, pixel: PixelForSync) -> SyncResult:
        """Run fetch, aggregate and write for one pixel. Failures land in the result."""
        result = SyncResult(pixel_id=pixel.id)
        try:
            api_key = await self._api_keys.get_api_key(pixel.user_id)
            headers = build_headers(pixel.visitors_api_url, api_key)
            fetched = await self._client.fetch_all_pages(
                pixel.visitors_api_url, headers, self.page_batch_size
            )
            result.total_fetched = len(fetched.records)

            aggregated = self._aggregator.aggregate(fetched.records, pixel.id, pixel.user_id)
            result.unique_visitors = len(aggregated.profiles)

            written = await self._writer.reconcile(aggregated.profiles, pixel.scope)
            result.inserted = written.inserted
            result.updated = written.updated
            result.total_upserted = written.total_upserted
        except Exception as e:
            result.error = e.message if isinstance(e, IngestError) else str(e)
            logger.error(
                "Visitor sync failed",
                pixel_id=pixel.id,
                error=result.error,
                error_type=type(e).__name__,
            )

        await self._record_outcome(pixel, result)
        return result

    async def _record_outcome(self, pixel: PixelForSync, result: SyncResult) -> None:
        if result.error:
            status = f"error: {result.error}"
            events_count = None
        else:
            status = f"success: {result.total_upserted} visitors synced"
            events_count = result.total_fetched

        try:
            await self._repository.update_pixel_fetch_status(pixel.id, status, events_count)
        except Exception as e:
            logger.error("Failed to stamp pixel fetch status", pixel_id=pixel.id, error=str(e))

        await self._audit.log_event(
            log_type="api",
            event_name="visitors_api_sync",
            status="error" if result.error else "success",
            message=f"Visitors sync for pixel {pixel.id}: {status}",
            request_data={"pixel_id": pixel.id, "url": pixel.visitors_api_url},
            response_data=result.to_dict(),
            error_details=result.error,
            user_id=pixel.user_id,
        )

    async def sync_pixel_by_id(self, pixel_id: str) -> SyncResult:
        row = await self._repository.fetch_pixel(pixel_id)
        if not row:
            raise PixelNotFound(f"Pixel {pixel_id} not found")
        if not row.get("visitors_api_url"):
            raise PixelNotFound(f"Pixel {pixel_id} has no visitors API URL configured")

        pixel = PixelForSync(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            visitors_api_url=row["visitors_api_url"],
        )
        return await self.sync_pixel(pixel)

    async def sync_all_active(self) -> list[SyncResult]:
        """Sync every active pixel in turn, each bounded by the background timeout."""
        pixels = await self._repository.fetch_active_pixels()
        logger.info("Syncing active pixels", count=len(pixels))

        results: list[SyncResult] = []
        for pixel in pixels:
            try:
                result = await asyncio.wait_for(self.sync_pixel(pixel), self.timeout_seconds)
            except TimeoutError:
                logger.error(
                    "Visitor sync timed out",
                    pixel_id=pixel.id,
                    timeout_seconds=self.timeout_seconds,
                )
                result = SyncResult(
                    pixel_id=pixel.id,
                    error=f"timed out after {self.timeout_seconds}s",
                )
                # The cancelled run never reached its own stamp
                await self._record_outcome(pixel, result)
            results.append(result)

        failed = [result.pixel_id for result in results if result.error]
        logger.info(
            "Active pixel sync finished",
            pixels=len(results),
            failed=len(failed),
            total_upserted=sum(result.total_upserted for result in results),
        )
        return results
