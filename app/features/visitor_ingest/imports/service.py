"""
Audience import orchestration.

Each public method is one externally triggered phase. A phase loads the
persisted job, does its bounded slice of work (fetch, normalize, store),
applies the matching state_machine event and saves the job again, so any
phase can run in a fresh process.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse
from uuid import uuid4

from app.config import settings
from app.features.visitor_ingest.domain.models import BatchResult, ImportJob, RawContactRecord
from app.features.visitor_ingest.errors import (
    ContactStorageError,
    ImportJobNotFound,
    ImportValidationError,
    InvalidImportTransition,
)
from app.features.visitor_ingest.imports.contact_store import (
    STORAGE_TABLE,
    ContactStore,
    build_contact_stores,
)
from app.features.visitor_ingest.imports.repository import AudienceRepository
from app.features.visitor_ingest.imports.state_machine import (
    ChunkImported,
    ImportFinalized,
    ImportInitialized,
    ImportReset,
    advance,
    chunk_pages,
)
from app.features.visitor_ingest.pipeline.fetching import EnrichmentApiClient, build_headers
from app.features.visitor_ingest.pipeline.normalize import normalize
from app.features.visitor_ingest.services.api_keys import ApiKeyProvider
from app.infrastructure.audit import SystemLogWriter, system_log
from app.infrastructure.cache import ResponseCache
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def _utcnow() -> str:
    return datetime.now(UTC).isoformat()


def validate_source_url(url: str | None) -> str:
    url = (url or "").strip()
    if not url:
        raise ImportValidationError("URL is required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ImportValidationError("Invalid URL format")
    return url


def _normalized_contacts(records: list[RawContactRecord]) -> list[dict[str, Any]]:
    return [normalize(record).to_dict() for record in records]


def status_cache_key(audience_id: str) -> str:
    return f"audience:{audience_id}:status"


class ImportService:
    """Runs the init, chunk and finalize phases of a URL audience import."""

    def __init__(
        self,
        api_client: EnrichmentApiClient,
        api_keys: ApiKeyProvider,
        cache: ResponseCache,
        repository=AudienceRepository,
        stores: dict[str, ContactStore] | None = None,
        audit: SystemLogWriter = system_log,
        storage_strategy: str | None = None,
        page_batch_size: int | None = None,
        clock: Callable[[], str] = _utcnow,
    ):
        self._client = api_client
        self._api_keys = api_keys
        self._cache = cache
        self._repository = repository
        self._stores = stores or build_contact_stores(repository)
        self._audit = audit
        self.storage_strategy = storage_strategy or settings.IMPORT_STORAGE_STRATEGY
        self.page_batch_size = page_batch_size or settings.IMPORT_PAGE_BATCH_SIZE
        self._clock = clock

        if self.storage_strategy not in self._stores:
            raise ValueError(f"Unknown import storage strategy '{self.storage_strategy}'")

    def _store_for(self, job: ImportJob) -> ContactStore:
        return self._stores.get(job.storage) or self._stores[STORAGE_TABLE]

    async def _load_job(self, audience_id: str | None) -> ImportJob:
        if not audience_id:
            raise ImportValidationError("audience_id is required")
        job = await self._repository.fetch_job(audience_id)
        if job is None:
            raise ImportJobNotFound(f"Import job {audience_id} not found")
        return job

    async def _headers(self, url: str) -> dict[str, str]:
        api_key = await self._api_keys.get_api_key()
        return build_headers(url, api_key)

    async def _store_contacts(
        self, job: ImportJob, contacts: list[dict[str, Any]]
    ) -> BatchResult:
        """Upsert into the job's store; a phase that stored nothing fails."""
        stored = await self._store_for(job).upsert(job.audience_id, contacts)
        if contacts and stored.succeeded == 0:
            reasons = sorted({item.reason for item in stored.skipped})
            raise ContactStorageError(
                f"Failed to store contacts for {job.audience_id}: {'; '.join(reasons)}"
            )
        return stored

    async def init(
        self,
        url: str,
        name: str,
        request_id: str | None = None,
        admin_user_id: str | None = None,
    ) -> dict[str, Any]:
        """Fetch page 1, create the job and store its contacts."""
        url = validate_source_url(url)
        name = (name or "").strip()
        if not name:
            raise ImportValidationError("URL and audience name are required")

        if request_id and await self._repository.fetch_request(request_id) is None:
            raise ImportJobNotFound("Request not found")

        headers = await self._headers(url)
        first = await self._client.fetch_first_page(url, headers)
        contacts = _normalized_contacts(first.records)

        job = advance(
            None,
            ImportInitialized(
                audience_id=f"manual_{uuid4()}",
                name=name,
                source_url=url,
                total_pages=first.total_pages,
                records=len(contacts),
                at=self._clock(),
                request_id=request_id,
                storage=self.storage_strategy,
                uploaded_by=admin_user_id,
            ),
        )

        if request_id:
            await self._repository.link_request(request_id, job, admin_user_id)
        else:
            await self._repository.create_request(job, admin_user_id)

        stored = await self._store_contacts(job, contacts)

        logger.info(
            "Audience import initialized",
            audience_id=job.audience_id,
            total_pages=job.total_pages,
            records_fetched=job.records_fetched,
            stored=stored.succeeded,
            failed_batches=len(stored.skipped),
        )
        return {
            "audience_id": job.audience_id,
            "total_pages": job.total_pages,
            "records_fetched": job.records_fetched,
        }

    async def reimport_init(self, url: str, name: str, audience_id: str) -> dict[str, Any]:
        """Restart an existing job from page 1. Contacts must be cleared first."""
        url = validate_source_url(url)
        name = (name or "").strip()
        if not name:
            raise ImportValidationError("URL and audience name are required")

        job = await self._load_job(audience_id)
        headers = await self._headers(url)
        first = await self._client.fetch_first_page(url, headers)
        contacts = _normalized_contacts(first.records)

        job = advance(
            job,
            ImportReset(
                name=name,
                source_url=url,
                total_pages=first.total_pages,
                records=len(contacts),
                at=self._clock(),
            ),
        )
        await self._store_contacts(job, contacts)
        await self._repository.save_job(job)
        await self._cache.invalidate_prefix(f"audience:{job.audience_id}")

        logger.info(
            "Audience re-import initialized",
            audience_id=job.audience_id,
            total_pages=job.total_pages,
            records_fetched=job.records_fetched,
        )
        return {
            "audience_id": job.audience_id,
            "total_pages": job.total_pages,
            "records_fetched": job.records_fetched,
        }

    async def chunk(
        self,
        url: str | None,
        audience_id: str,
        page_start: int,
        page_end: int,
    ) -> dict[str, Any]:
        """Fetch one page window and upsert its contacts."""
        job = await self._load_job(audience_id)
        url = validate_source_url(url or job.source_url)

        # Validate before any upstream call
        pages = chunk_pages(job, page_start, page_end)
        if job.finalized:
            raise InvalidImportTransition(
                f"Import {job.audience_id} is finalized; reimport to fetch pages again"
            )

        headers = await self._headers(url)
        fetched = await self._client.fetch_page_range(
            url, headers, pages[0], pages[-1], self.page_batch_size
        )
        contacts = _normalized_contacts(fetched.records)

        stored = await self._store_contacts(job, contacts)

        job = advance(
            job,
            ChunkImported(
                page_start=pages[0],
                page_end=pages[-1],
                records=len(contacts),
                at=self._clock(),
                failed_pages=tuple(fetched.failed_pages),
            ),
        )
        await self._repository.save_job(job)
        await self._cache.invalidate_prefix(f"audience:{job.audience_id}")
        total_inserted = await self._store_for(job).count(job.audience_id)

        logger.info(
            "Audience import chunk stored",
            audience_id=job.audience_id,
            page_start=pages[0],
            page_end=pages[-1],
            chunk_records=len(contacts),
            failed_pages=fetched.failed_pages,
            failed_batches=len(stored.skipped),
            total_inserted=total_inserted,
        )
        return {
            "pages_fetched": len(pages) - len(fetched.failed_pages),
            "chunk_records": len(contacts),
            "total_inserted": total_inserted,
            "page_start": pages[0],
            "page_end": pages[-1],
            "failed_pages": fetched.failed_pages,
            "pages_remaining": job.pages_remaining,
        }

    async def finalize(
        self,
        audience_id: str,
        url: str | None = None,
        request_id: str | None = None,
        admin_user_id: str | None = None,
    ) -> dict[str, Any]:
        """Seal the job with the row count read back from storage."""
        job = await self._load_job(audience_id)
        total_records = await self._store_for(job).count(job.audience_id)

        job = advance(job, ImportFinalized(total_records=total_records, at=self._clock()))
        await self._repository.save_job(job)
        await self._cache.invalidate_prefix(f"audience:{job.audience_id}")

        if job.pages_remaining:
            logger.warning(
                "Audience import finalized with pages missing",
                audience_id=job.audience_id,
                pages_remaining=job.pages_remaining,
            )

        await self._audit.log_audit_action(
            user_id=admin_user_id or job.uploaded_by,
            action="create_manual_audience",
            resource_type="audience",
            resource_id=job.audience_id,
            details={
                "contacts_count": total_records,
                "source_url": url or job.source_url,
                "total_pages": job.total_pages,
                "request_id": request_id or job.request_id,
            },
        )
        logger.info(
            "Audience import finalized",
            audience_id=job.audience_id,
            total_records=total_records,
        )
        return {
            "audience": {
                "id": job.audience_id,
                "name": job.name,
                "total_records": total_records,
            }
        }

    async def clear_contacts(self, audience_id: str) -> dict[str, Any]:
        job = await self._load_job(audience_id)
        deleted = await self._store_for(job).clear(job.audience_id)
        await self._cache.invalidate_prefix(f"audience:{job.audience_id}")
        logger.info("Audience contacts cleared", audience_id=job.audience_id, deleted=deleted)
        return {"audience_id": job.audience_id, "deleted": deleted}

    async def get_status(self, audience_id: str) -> dict[str, Any]:
        """Job snapshot, cached for a short TTL on warm instances."""

        async def load() -> dict[str, Any] | None:
            job = await self._repository.fetch_job(audience_id)
            if job is None:
                return None
            snapshot = job.to_dict()
            snapshot["pages_remaining"] = job.pages_remaining
            return snapshot

        snapshot = await self._cache.get_or_set(
            status_cache_key(audience_id), settings.STATUS_CACHE_TTL_SECONDS, load
        )
        if snapshot is None:
            raise ImportJobNotFound(f"Import job {audience_id} not found")
        return snapshot
