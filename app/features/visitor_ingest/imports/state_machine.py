"""
Import job state transitions.

An audience import runs as three externally triggered phases: init, any
number of chunks, then finalize. Progress between phases lives only in the
persisted ImportJob, and this module is the single place that changes it:
advance(job, event) returns a new job and never mutates its input.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from app.features.visitor_ingest.domain.models import (
    JOB_STATUS_COMPLETE,
    JOB_STATUS_IMPORTING,
    ImportJob,
)
from app.features.visitor_ingest.errors import ImportValidationError, InvalidImportTransition


@dataclass(frozen=True, slots=True)
class ImportInitialized:
    audience_id: str
    name: str
    source_url: str
    total_pages: int
    records: int
    at: str
    request_id: str | None = None
    storage: str = "table"
    uploaded_by: str | None = None


@dataclass(frozen=True, slots=True)
class ChunkImported:
    page_start: int
    page_end: int
    records: int
    at: str
    failed_pages: tuple[int, ...] = ()


@dataclass(frozen=True, slots=True)
class ImportFinalized:
    total_records: int
    at: str


@dataclass(frozen=True, slots=True)
class ImportReset:
    """Re-import under the same audience id after its contacts were cleared."""

    name: str
    source_url: str
    total_pages: int
    records: int
    at: str


ImportEvent = ImportInitialized | ChunkImported | ImportFinalized | ImportReset


def finalized_note(total_records: int) -> str:
    return f"Manual audience imported from URL. {total_records} contacts."


def chunk_pages(job: ImportJob, page_start: int, page_end: int) -> list[int]:
    """
    Pages a chunk request covers, clamped to the job's page count.

    Raises:
        ImportValidationError: the range is empty or starts past the last page
    """
    if page_start < 1 or page_end < page_start:
        raise ImportValidationError(
            f"Invalid page range {page_start}-{page_end}: need 1 <= page_start <= page_end"
        )
    if page_start > job.total_pages:
        raise ImportValidationError(
            f"page_start {page_start} is beyond total_pages {job.total_pages}"
        )
    return list(range(page_start, min(page_end, job.total_pages) + 1))


def advance(job: ImportJob | None, event: ImportEvent) -> ImportJob:
    """Apply one phase event to a job and return the resulting job."""
    if isinstance(event, ImportInitialized):
        if job is not None:
            raise InvalidImportTransition(
                f"Import {job.audience_id} already exists; use reimport to start over"
            )
        return ImportJob(
            audience_id=event.audience_id,
            name=event.name,
            source_url=event.source_url,
            request_id=event.request_id,
            status=JOB_STATUS_IMPORTING,
            total_pages=max(1, event.total_pages),
            pages_fetched=[1],
            records_fetched=event.records,
            note=f"Importing: page 1 of {max(1, event.total_pages)} fetched.",
            storage=event.storage,
            uploaded_by=event.uploaded_by,
            created_at=event.at,
            updated_at=event.at,
        )

    if job is None:
        raise InvalidImportTransition(f"{type(event).__name__} needs an existing import job")

    if isinstance(event, ImportReset):
        return replace(
            job,
            name=event.name,
            source_url=event.source_url,
            status=JOB_STATUS_IMPORTING,
            total_pages=max(1, event.total_pages),
            pages_fetched=[1],
            records_fetched=event.records,
            total_records=None,
            note=f"Re-importing: page 1 of {max(1, event.total_pages)} fetched.",
            finalized=False,
            finalized_at=None,
            updated_at=event.at,
        )

    if isinstance(event, ChunkImported):
        if job.finalized:
            raise InvalidImportTransition(
                f"Import {job.audience_id} is finalized; reimport to fetch pages again"
            )
        pages = set(chunk_pages(job, event.page_start, event.page_end)) - set(event.failed_pages)
        pages_fetched = sorted(set(job.pages_fetched) | pages)
        return replace(
            job,
            pages_fetched=pages_fetched,
            records_fetched=job.records_fetched + event.records,
            note=f"Importing: {len(pages_fetched)} of {job.total_pages} pages fetched.",
            updated_at=event.at,
        )

    if isinstance(event, ImportFinalized):
        return replace(
            job,
            status=JOB_STATUS_COMPLETE,
            total_records=event.total_records,
            note=finalized_note(event.total_records),
            finalized=True,
            finalized_at=event.at,
            updated_at=event.at,
        )

    raise InvalidImportTransition(f"Unknown import event {type(event).__name__}")
