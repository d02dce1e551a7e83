"""
Visitor batch writer.

Splits aggregated profiles into inserts and updates against the rows that
already exist for the owner scope, then writes both in bounded batches. A
failed batch is recorded and the remaining batches still run.
"""

from __future__ import annotations

import asyncio

from app.config import settings
from app.features.visitor_ingest.domain.models import (
    BatchResult,
    OwnerScope,
    ReconcileResult,
    VisitorProfile,
)
from app.features.visitor_ingest.pipeline.writer.repository import VisitorRepository
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class VisitorWriter:
    def __init__(
        self,
        repository=VisitorRepository,
        insert_batch_size: int | None = None,
        update_batch_size: int | None = None,
        existing_id_window: int | None = None,
    ):
        self._repository = repository
        self.insert_batch_size = insert_batch_size or settings.VISITOR_INSERT_BATCH_SIZE
        self.update_batch_size = update_batch_size or settings.VISITOR_UPDATE_BATCH_SIZE
        self.existing_id_window = existing_id_window or settings.EXISTING_ID_WINDOW

    async def load_existing_ids(self, scope: OwnerScope) -> dict[str, str]:
        """visitor_id -> row id for every visitor already stored for the scope."""
        existing: dict[str, str] = {}
        offset = 0
        while True:
            window = await self._repository.fetch_existing_ids(
                scope, offset, self.existing_id_window
            )
            for row in window:
                existing[row["visitor_id"]] = str(row["id"])
            if len(window) < self.existing_id_window:
                break
            offset += self.existing_id_window
        return existing

    async def reconcile(self, profiles: list[VisitorProfile], scope: OwnerScope) -> ReconcileResult:
        existing = await self.load_existing_ids(scope)

        to_insert = [profile for profile in profiles if profile.visitor_id not in existing]
        to_update = [
            (existing[profile.visitor_id], profile)
            for profile in profiles
            if profile.visitor_id in existing
        ]

        logger.info(
            "Visitor write plan",
            pixel_id=scope.pixel_id,
            to_insert=len(to_insert),
            to_update=len(to_update),
        )

        insert_result = await self._insert_batches(to_insert)
        update_result = await self._update_batches(to_update)

        logger.info(
            "Visitor write finished",
            pixel_id=scope.pixel_id,
            inserted=insert_result.succeeded,
            updated=update_result.succeeded,
            failed_inserts=len(insert_result.skipped),
            failed_updates=len(update_result.skipped),
        )
        return ReconcileResult(
            inserted=insert_result.succeeded,
            updated=update_result.succeeded,
            insert_result=insert_result,
            update_result=update_result,
        )

    async def _insert_batches(self, profiles: list[VisitorProfile]) -> BatchResult:
        result = BatchResult()
        for offset in range(0, len(profiles), self.insert_batch_size):
            batch = profiles[offset : offset + self.insert_batch_size]
            try:
                inserted = await self._repository.insert_visitors(batch)
            except Exception as e:
                logger.error("Visitor insert batch failed", offset=offset, size=len(batch), error=str(e))
                result.skip({"offset": offset, "size": len(batch)}, f"insert_failed: {e}")
                continue
            if inserted < len(batch):
                # Rows stored by a concurrent run since the id lookup
                logger.warning(
                    "Visitor insert batch hit existing rows",
                    offset=offset,
                    size=len(batch),
                    inserted=inserted,
                )
            result.succeeded += inserted
        return result

    async def _update_batches(self, pairs: list[tuple[str, VisitorProfile]]) -> BatchResult:
        result = BatchResult()
        for offset in range(0, len(pairs), self.update_batch_size):
            batch = pairs[offset : offset + self.update_batch_size]
            outcomes = await asyncio.gather(
                *(self._repository.update_visitor(row_id, profile) for row_id, profile in batch),
                return_exceptions=True,
            )
            for (row_id, profile), outcome in zip(batch, outcomes):
                if outcome is True:
                    result.succeeded += 1
                elif isinstance(outcome, BaseException):
                    result.skip(profile.visitor_id, f"update_failed: {outcome}")
                else:
                    result.skip(profile.visitor_id, "row_missing")
        if result.skipped:
            logger.warning("Some visitor updates failed", failed=len(result.skipped))
        return result
