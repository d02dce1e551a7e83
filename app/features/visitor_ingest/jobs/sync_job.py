"""
Scheduled visitor sync job.

Runs one pass over every active pixel with a visitors API URL, the same
work the cron endpoint triggers, for deployments that schedule a worker
process instead of calling the HTTP route.
"""

from app.db.pool import db_pool
from app.features.visitor_ingest.pipeline.fetching import EnrichmentApiClient
from app.features.visitor_ingest.services.api_keys import ApiKeyProvider
from app.features.visitor_ingest.services.sync_service import VisitorSyncService
from app.infrastructure.cache import ResponseCache
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


async def run_visitor_sync() -> None:
    await db_pool.initialize()
    cache = ResponseCache()
    api_client = EnrichmentApiClient()
    try:
        await cache.initialize()
        service = VisitorSyncService(api_client, ApiKeyProvider(cache))
        results = await service.sync_all_active()
        failed = [result.pixel_id for result in results if result.error]
        if failed:
            logger.warning("Visitor sync job finished with failures", failed_pixels=failed)
        else:
            logger.info("Visitor sync job finished", pixels=len(results))
    finally:
        await api_client.close()
        await cache.close()
        await db_pool.close()
