"""
Request and response bodies for the visitor ingest routes.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class ImportFromUrlRequest(BaseModel):
    """
    Body of POST /admin/audiences/import-from-url.

    One endpoint serves every phase; the fields present decide which:
    {url, name, request_id?} init, {url, audience_id, page_start, page_end}
    chunk, {audience_id, finalize: true} finalize and
    {url, name, audience_id, reimport: true} re-import.
    """

    url: str | None = None
    name: str | None = None
    request_id: str | None = None
    audience_id: str | None = None
    page_start: int | None = None
    page_end: int | None = None
    finalize: bool = False
    reimport: bool = False

    def phase(self) -> Literal["init", "chunk", "finalize", "reimport"]:
        if self.finalize:
            return "finalize"
        if self.reimport:
            return "reimport"
        if self.audience_id and (self.page_start is not None or self.page_end is not None):
            return "chunk"
        return "init"


class ClearContactsRequest(BaseModel):
    audience_id: str = Field(..., min_length=1)


class InitResponse(BaseModel):
    success: bool = True
    step: Literal["init", "reimport"]
    audience_id: str
    total_pages: int
    records_fetched: int


class ChunkResponse(BaseModel):
    success: bool = True
    step: Literal["chunk"] = "chunk"
    pages_fetched: int
    chunk_records: int
    total_inserted: int
    page_start: int
    page_end: int
    failed_pages: list[int] = Field(default_factory=list)
    pages_remaining: list[int] = Field(default_factory=list)


class FinalizedAudience(BaseModel):
    id: str
    name: str
    total_records: int


class FinalizeResponse(BaseModel):
    success: bool = True
    step: Literal["finalize"] = "finalize"
    audience: FinalizedAudience


class ClearContactsResponse(BaseModel):
    success: bool = True
    audience_id: str
    deleted: int


class SyncResponse(BaseModel):
    success: bool
    pixel_id: str
    total_fetched: int
    total_upserted: int
    unique_visitors: int
    inserted: int
    updated: int
    error: str | None = None


class CronSyncResponse(BaseModel):
    success: bool
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    message: str | None = None
    results: list[dict[str, Any]] = Field(default_factory=list)
