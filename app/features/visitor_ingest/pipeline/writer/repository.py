"""
Repository helpers for the visitors and pixels tables.

Raw SQL over the shared psycopg pool. Inserts are insert-if-absent on the
(visitor_id, pixel_id) unique index and updates target a single row id, so
concurrent batches never contend beyond one row.
"""

from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_many, execute_query, fetch_all, fetch_one, with_db_retry
from app.features.visitor_ingest.domain.models import OwnerScope, PixelForSync, VisitorProfile
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

VISITOR_COLUMNS = (
    "pixel_id",
    "user_id",
    "visitor_id",
    "email",
    "first_name",
    "last_name",
    "full_name",
    "company",
    "job_title",
    "linkedin_url",
    "city",
    "state",
    "country",
    "ip_address",
    "first_page_url",
    "first_referrer",
    "first_seen_at",
    "last_seen_at",
    "total_pageviews",
    "total_sessions",
    "total_time_on_site",
    "max_scroll_depth",
    "total_clicks",
    "form_submissions",
    "lead_score",
    "is_identified",
    "identified_at",
    "is_enriched",
    "enriched_at",
    "enrichment_source",
    "enrichment_data",
    "metadata",
)

# Identity and first-touch columns stay as first written
UPDATE_COLUMNS = tuple(
    column
    for column in VISITOR_COLUMNS
    if column
    not in {
        "pixel_id",
        "user_id",
        "visitor_id",
        "first_page_url",
        "first_referrer",
        "identified_at",
    }
)

JSON_COLUMNS = {"enrichment_data", "metadata"}


def _visitor_params(profile: VisitorProfile) -> dict[str, Any]:
    row = profile.to_row()
    for column in JSON_COLUMNS:
        row[column] = Jsonb(row[column])
    return row


class VisitorRepository:
    """Raw SQL helpers for the visitors and pixels tables."""

    @classmethod
    @with_db_retry()
    async def fetch_existing_ids(
        cls, scope: OwnerScope, offset: int, limit: int
    ) -> list[dict[str, Any]]:
        """
        One window of (id, visitor_id) rows for the scope's pixel.

        Matched on pixel_id alone, the same key as the (visitor_id, pixel_id)
        unique index, so every stored visitor lands on the update side.
        """
        query = """
            SELECT id, visitor_id
            FROM visitors
            WHERE pixel_id = %s
            ORDER BY id
            OFFSET %s
            LIMIT %s
        """
        return await fetch_all(query, (scope.pixel_id, offset, limit))

    @classmethod
    async def insert_visitors(cls, profiles: list[VisitorProfile]) -> int:
        """Insert-if-absent; returns the rows actually inserted."""
        columns = ", ".join(VISITOR_COLUMNS)
        values = ", ".join(f"%({column})s" for column in VISITOR_COLUMNS)
        query = f"""
            INSERT INTO visitors ({columns}, updated_at)
            VALUES ({values}, NOW())
            ON CONFLICT (visitor_id, pixel_id) DO NOTHING
        """
        return await execute_many(query, [_visitor_params(profile) for profile in profiles])

    @classmethod
    async def update_visitor(cls, row_id: str, profile: VisitorProfile) -> bool:
        assignments = ", ".join(f"{column} = %({column})s" for column in UPDATE_COLUMNS)
        query = f"""
            UPDATE visitors
            SET {assignments},
                identified_at = COALESCE(identified_at, %(identified_at)s),
                updated_at = NOW()
            WHERE id = %(id)s
        """
        params = _visitor_params(profile)
        params["id"] = row_id
        affected = await execute_query(query, params)
        return affected > 0

    @classmethod
    async def fetch_pixel(cls, pixel_id: str) -> dict[str, Any] | None:
        query = """
            SELECT id, user_id, visitors_api_url, status
            FROM pixels
            WHERE id = %s
        """
        return await fetch_one(query, (pixel_id,))

    @classmethod
    async def fetch_active_pixels(cls) -> list[PixelForSync]:
        query = """
            SELECT id, user_id, visitors_api_url
            FROM pixels
            WHERE status = 'active'
              AND visitors_api_url IS NOT NULL
            ORDER BY created_at
        """
        rows = await fetch_all(query)
        return [
            PixelForSync(
                id=str(row["id"]),
                user_id=str(row["user_id"]),
                visitors_api_url=row["visitors_api_url"],
            )
            for row in rows
        ]

    @classmethod
    async def update_pixel_fetch_status(
        cls, pixel_id: str, status: str, events_count: int | None = None
    ) -> None:
        """Stamp the last-fetch time and status; events_count only on success."""
        query = """
            UPDATE pixels
            SET visitors_api_last_fetched_at = NOW(),
                visitors_api_last_fetch_status = %s,
                events_count = COALESCE(%s, events_count),
                updated_at = NOW()
            WHERE id = %s
        """
        await execute_query(query, (status, events_count, pixel_id))
