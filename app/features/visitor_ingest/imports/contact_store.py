"""
Where imported audience contacts are kept.

TableContactStore appends chunk rows to audience_contacts and is the
default. BlobContactStore keeps every contact inside the job's JSON and
rewrites it on each chunk, so it only suits small audiences. Both key rows
by contact_key, which makes a replayed chunk overwrite instead of add.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Protocol

from app.config import settings
from app.features.visitor_ingest.domain.models import BatchResult
from app.features.visitor_ingest.imports.repository import AudienceRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

STORAGE_TABLE = "table"
STORAGE_BLOB = "blob"


def contact_key(contact: dict[str, Any]) -> str:
    """Visitor id when the record has one, else a digest of its content."""
    visitor_id = contact.get("visitor_id")
    if visitor_id:
        return str(visitor_id)
    canonical = json.dumps(contact, sort_keys=True, default=str, separators=(",", ":"))
    return "sha1:" + hashlib.sha1(canonical.encode("utf-8")).hexdigest()


class ContactStore(Protocol):
    async def upsert(self, audience_id: str, contacts: list[dict[str, Any]]) -> BatchResult: ...

    async def count(self, audience_id: str) -> int: ...

    async def clear(self, audience_id: str) -> int: ...


class TableContactStore:
    def __init__(self, repository=AudienceRepository, batch_size: int | None = None):
        self._repository = repository
        self.batch_size = batch_size or settings.CONTACT_UPSERT_BATCH_SIZE

    async def upsert(self, audience_id: str, contacts: list[dict[str, Any]]) -> BatchResult:
        result = BatchResult()
        rows = [{"contact_key": contact_key(contact), "contact": contact} for contact in contacts]
        for offset in range(0, len(rows), self.batch_size):
            batch = rows[offset : offset + self.batch_size]
            try:
                await self._repository.upsert_contacts(audience_id, batch)
            except Exception as e:
                logger.error(
                    "Audience contact batch failed",
                    audience_id=audience_id,
                    offset=offset,
                    size=len(batch),
                    error=str(e),
                )
                result.skip({"offset": offset, "size": len(batch)}, f"insert_failed: {e}")
                continue
            result.succeeded += len(batch)
        return result

    async def count(self, audience_id: str) -> int:
        return await self._repository.count_contacts(audience_id)

    async def clear(self, audience_id: str) -> int:
        return await self._repository.delete_contacts(audience_id)


class BlobContactStore:
    def __init__(self, repository=AudienceRepository):
        self._repository = repository

    async def upsert(self, audience_id: str, contacts: list[dict[str, Any]]) -> BatchResult:
        stored = await self._repository.fetch_blob_contacts(audience_id)
        merged: dict[str, dict[str, Any]] = {contact_key(contact): contact for contact in stored}
        for contact in contacts:
            merged[contact_key(contact)] = contact
        await self._repository.save_blob_contacts(audience_id, list(merged.values()))
        return BatchResult(succeeded=len(contacts))

    async def count(self, audience_id: str) -> int:
        return len(await self._repository.fetch_blob_contacts(audience_id))

    async def clear(self, audience_id: str) -> int:
        stored = await self._repository.fetch_blob_contacts(audience_id)
        await self._repository.save_blob_contacts(audience_id, [])
        return len(stored)


def build_contact_stores(repository=AudienceRepository) -> dict[str, ContactStore]:
    return {
        STORAGE_TABLE: TableContactStore(repository),
        STORAGE_BLOB: BlobContactStore(repository),
    }
