"""
Visitor ingest routes.

Admin audience imports, per-pixel syncs and the scheduled sync endpoint.
Services are built once in the app lifespan and read from app.state, so
tests swap them through dependency overrides.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request

from app.auth.verify import require_admin, require_cron_secret
from app.features.visitor_ingest.api.schemas import (
    ChunkResponse,
    ClearContactsRequest,
    ClearContactsResponse,
    CronSyncResponse,
    FinalizeResponse,
    ImportFromUrlRequest,
    InitResponse,
    SyncResponse,
)
from app.features.visitor_ingest.errors import ImportValidationError
from app.features.visitor_ingest.imports.service import ImportService
from app.features.visitor_ingest.services.sync_service import VisitorSyncService
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

admin_router = APIRouter(prefix="/admin/audiences", tags=["admin-audiences"])
pixel_router = APIRouter(prefix="/pixels", tags=["pixels"])
cron_router = APIRouter(prefix="/cron", tags=["cron"])


def get_import_service(request: Request) -> ImportService:
    return request.app.state.import_service


def get_sync_service(request: Request) -> VisitorSyncService:
    return request.app.state.sync_service


@admin_router.post("/import-from-url")
async def import_from_url(
    body: ImportFromUrlRequest,
    claims: dict = Depends(require_admin),
    service: ImportService = Depends(get_import_service),
) -> Any:
    phase = body.phase()
    admin_user_id = claims.get("sub")
    logger.info("Audience import phase requested", phase=phase, audience_id=body.audience_id)

    if phase == "finalize":
        result = await service.finalize(
            body.audience_id,
            url=body.url,
            request_id=body.request_id,
            admin_user_id=admin_user_id,
        )
        return FinalizeResponse(**result)

    if phase == "reimport":
        result = await service.reimport_init(body.url, body.name, body.audience_id)
        return InitResponse(step="reimport", **result)

    if phase == "chunk":
        if body.page_start is None or body.page_end is None:
            raise ImportValidationError("page_start and page_end are required for a chunk")
        result = await service.chunk(body.url, body.audience_id, body.page_start, body.page_end)
        return ChunkResponse(**result)

    result = await service.init(
        body.url,
        body.name,
        request_id=body.request_id,
        admin_user_id=admin_user_id,
    )
    return InitResponse(step="init", **result)


@admin_router.post("/clear-contacts", response_model=ClearContactsResponse)
async def clear_contacts(
    body: ClearContactsRequest,
    _claims: dict = Depends(require_admin),
    service: ImportService = Depends(get_import_service),
) -> ClearContactsResponse:
    result = await service.clear_contacts(body.audience_id)
    return ClearContactsResponse(**result)


@admin_router.get("/{audience_id}/status")
async def import_status(
    audience_id: str,
    _claims: dict = Depends(require_admin),
    service: ImportService = Depends(get_import_service),
) -> dict:
    return await service.get_status(audience_id)


@pixel_router.post("/{pixel_id}/sync-visitors", response_model=SyncResponse)
async def sync_pixel_visitors(
    pixel_id: str,
    _claims: dict = Depends(require_admin),
    service: VisitorSyncService = Depends(get_sync_service),
) -> SyncResponse:
    result = await service.sync_pixel_by_id(pixel_id)
    return SyncResponse(success=result.error is None, **result.to_dict())


@cron_router.get("/fetch-visitors", response_model=CronSyncResponse)
async def cron_fetch_visitors(
    _auth: None = Depends(require_cron_secret),
    service: VisitorSyncService = Depends(get_sync_service),
) -> CronSyncResponse:
    results = await service.sync_all_active()
    if not results:
        return CronSyncResponse(success=True, message="No pixels with API URLs configured")

    failed = sum(1 for result in results if result.error)
    return CronSyncResponse(
        success=failed == 0,
        processed=len(results),
        succeeded=len(results) - failed,
        failed=failed,
        results=[result.to_dict() for result in results],
    )
