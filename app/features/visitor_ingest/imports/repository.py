"""
Repository helpers for audience imports.

The job itself is stored as JSON at audience_requests.form_data.manual_audience.
Contacts go either to the audience_contacts child table or, for the blob
strategy, into form_data.manual_audience.contacts.
"""

from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_many, execute_query, fetch_one, fetch_val
from app.features.visitor_ingest.domain.models import ImportJob
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CONTACT_COLUMNS = (
    "email",
    "full_name",
    "first_name",
    "last_name",
    "company",
    "job_title",
    "phone",
    "city",
    "state",
    "country",
    "linkedin_url",
    "seniority",
    "department",
)


def _job_payload(job: ImportJob) -> dict[str, Any]:
    payload = job.to_dict()
    # Dashboard readers expect the existing manual_audience keys
    payload["id"] = job.audience_id
    payload["uploaded_at"] = job.created_at
    return payload


class AudienceRepository:
    """Raw SQL helpers for audience_requests and audience_contacts."""

    @classmethod
    async def fetch_request(cls, request_id: str) -> dict[str, Any] | None:
        query = """
            SELECT id, user_id, status, audience_id, form_data
            FROM audience_requests
            WHERE id = %s
        """
        return await fetch_one(query, (request_id,))

    @classmethod
    async def fetch_job(cls, audience_id: str) -> ImportJob | None:
        query = """
            SELECT form_data -> 'manual_audience' AS job
            FROM audience_requests
            WHERE audience_id = %s
            ORDER BY created_at DESC
            LIMIT 1
        """
        row = await fetch_one(query, (audience_id,))
        if not row or not row.get("job"):
            return None
        return ImportJob.from_dict(row["job"])

    @classmethod
    async def create_request(cls, job: ImportJob, user_id: str) -> None:
        query = """
            INSERT INTO audience_requests (
                user_id, request_type, name, status, audience_id,
                reviewed_by, reviewed_at, admin_notes, form_data
            ) VALUES (%s, 'standard', %s, 'approved', %s, %s, NOW(), %s, %s)
        """
        await execute_query(
            query,
            (
                user_id,
                job.name,
                job.audience_id,
                user_id,
                job.note,
                Jsonb({"manual_audience": _job_payload(job)}),
            ),
        )

    @classmethod
    async def link_request(cls, request_id: str, job: ImportJob, reviewer_id: str | None) -> bool:
        """Attach a new job to an existing pending request and approve it."""
        query = """
            UPDATE audience_requests
            SET status = 'approved',
                audience_id = %s,
                reviewed_by = %s,
                reviewed_at = NOW(),
                admin_notes = %s,
                form_data = jsonb_set(
                    COALESCE(form_data, '{}'::jsonb), '{manual_audience}', %s
                ),
                updated_at = NOW()
            WHERE id = %s
        """
        affected = await execute_query(
            query, (job.audience_id, reviewer_id, job.note, Jsonb(_job_payload(job)), request_id)
        )
        return affected > 0

    @classmethod
    async def save_job(cls, job: ImportJob) -> bool:
        """Merge the job over the stored manual_audience object, keeping its other keys."""
        query = """
            UPDATE audience_requests
            SET admin_notes = %s,
                form_data = jsonb_set(
                    COALESCE(form_data, '{}'::jsonb),
                    '{manual_audience}',
                    COALESCE(form_data -> 'manual_audience', '{}'::jsonb) || %s
                ),
                updated_at = NOW()
            WHERE audience_id = %s
        """
        affected = await execute_query(
            query, (job.note, Jsonb(_job_payload(job)), job.audience_id)
        )
        return affected > 0

    # ------------------------------------------------------------------
    # audience_contacts table
    # ------------------------------------------------------------------

    @classmethod
    async def upsert_contacts(cls, audience_id: str, rows: list[dict[str, Any]]) -> int:
        """Insert contacts keyed by (audience_id, contact_key); replays overwrite."""
        columns = ", ".join(CONTACT_COLUMNS)
        values = ", ".join(f"%({column})s" for column in CONTACT_COLUMNS)
        updates = ", ".join(f"{column} = EXCLUDED.{column}" for column in CONTACT_COLUMNS)
        query = f"""
            INSERT INTO audience_contacts (audience_id, contact_key, {columns}, data)
            VALUES (%(audience_id)s, %(contact_key)s, {values}, %(data)s)
            ON CONFLICT (audience_id, contact_key)
            DO UPDATE SET {updates}, data = EXCLUDED.data
        """
        params = []
        for row in rows:
            param = {column: row["contact"].get(column) for column in CONTACT_COLUMNS}
            param.update(
                audience_id=audience_id,
                contact_key=row["contact_key"],
                data=Jsonb(row["contact"]),
            )
            params.append(param)
        return await execute_many(query, params)

    @classmethod
    async def count_contacts(cls, audience_id: str) -> int:
        query = "SELECT COUNT(*) AS total FROM audience_contacts WHERE audience_id = %s"
        return int(await fetch_val(query, (audience_id,)) or 0)

    @classmethod
    async def delete_contacts(cls, audience_id: str) -> int:
        return await execute_query(
            "DELETE FROM audience_contacts WHERE audience_id = %s", (audience_id,)
        )

    # ------------------------------------------------------------------
    # form_data blob
    # ------------------------------------------------------------------

    @classmethod
    async def fetch_blob_contacts(cls, audience_id: str) -> list[dict[str, Any]]:
        query = """
            SELECT COALESCE(form_data -> 'manual_audience' -> 'contacts', '[]'::jsonb) AS contacts
            FROM audience_requests
            WHERE audience_id = %s
        """
        row = await fetch_one(query, (audience_id,))
        return list(row["contacts"]) if row else []

    @classmethod
    async def save_blob_contacts(cls, audience_id: str, contacts: list[dict[str, Any]]) -> None:
        query = """
            UPDATE audience_requests
            SET form_data = jsonb_set(
                    COALESCE(form_data, '{}'::jsonb), '{manual_audience,contacts}', %s
                ),
                updated_at = NOW()
            WHERE audience_id = %s
        """
        await execute_query(query, (Jsonb(contacts), audience_id))
