"""
Domain models for the visitor ingest feature.

These dataclasses describe the shapes that flow between the fetcher,
normalizer, aggregator, writer and import service. Business rules live in
the pipeline modules; the only behavior here is serialization.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

RawContactRecord = dict[str, Any]


@dataclass(slots=True)
class NormalizedContact:
    """Canonical attributes resolved from one upstream record."""

    visitor_id: str | None = None
    email: str | None = None
    business_email: str | None = None
    verified_email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    full_name: str | None = None
    company: str | None = None
    company_domain: str | None = None
    company_description: str | None = None
    company_revenue: str | None = None
    company_phone: str | None = None
    job_title: str | None = None
    seniority: str | None = None
    department: str | None = None
    phone: str | None = None
    mobile_phone: str | None = None
    direct_number: str | None = None
    linkedin_url: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    gender: str | None = None
    age_range: str | None = None
    income_range: str | None = None
    url: str | None = None
    ip_address: str | None = None
    event_type: str | None = None
    referrer_url: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Present canonical attributes merged over the extras bag."""
        data = {key: value for key, value in self.extra.items()}
        for key, value in asdict(self).items():
            if key == "extra" or value is None:
                continue
            data[key] = value
        return data


@dataclass(slots=True)
class OwnerScope:
    """Tenant boundary for visitor identity: one pixel of one user."""

    pixel_id: str
    user_id: str


@dataclass(slots=True)
class PixelForSync:
    """A pixels row with an enrichment API URL configured."""

    id: str
    user_id: str
    visitors_api_url: str

    @property
    def scope(self) -> OwnerScope:
        return OwnerScope(pixel_id=self.id, user_id=self.user_id)


@dataclass(slots=True)
class VisitorProfile:
    """One aggregated visitor row for the visitors table."""

    pixel_id: str
    user_id: str
    visitor_id: str
    email: str | None
    first_name: str | None
    last_name: str | None
    full_name: str | None
    company: str | None
    job_title: str | None
    linkedin_url: str | None
    city: str | None
    state: str | None
    country: str | None
    ip_address: str | None
    first_page_url: str | None
    first_referrer: str | None
    first_seen_at: datetime
    last_seen_at: datetime
    total_pageviews: int
    total_sessions: int
    total_time_on_site: int
    max_scroll_depth: int
    total_clicks: int
    form_submissions: int
    lead_score: int
    is_identified: bool
    identified_at: datetime | None
    enriched_at: datetime
    enrichment_source: str = "visitors_api"
    is_enriched: bool = True
    enrichment_data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SkippedItem:
    """An item a batch operation could not process, with the reason."""

    item: Any
    reason: str


@dataclass(slots=True)
class BatchResult:
    """Outcome of a batch operation: what succeeded and what was skipped."""

    succeeded: int = 0
    skipped: list[SkippedItem] = field(default_factory=list)

    def skip(self, item: Any, reason: str) -> None:
        self.skipped.append(SkippedItem(item=item, reason=reason))

    def merge(self, other: BatchResult) -> None:
        self.succeeded += other.succeeded
        self.skipped.extend(other.skipped)


@dataclass(slots=True)
class AggregationResult:
    profiles: list[VisitorProfile]
    skipped: list[SkippedItem] = field(default_factory=list)


@dataclass(slots=True)
class ReconcileResult:
    inserted: int
    updated: int
    insert_result: BatchResult
    update_result: BatchResult

    @property
    def total_upserted(self) -> int:
        return self.inserted + self.updated


@dataclass(slots=True)
class SyncResult:
    """Outcome of one pixel sync, as returned to routes and the cron job."""

    pixel_id: str
    total_fetched: int = 0
    total_upserted: int = 0
    unique_visitors: int = 0
    inserted: int = 0
    updated: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


JOB_STATUS_IMPORTING = "importing"
JOB_STATUS_COMPLETE = "complete"


@dataclass(slots=True)
class ImportJob:
    """
    Persisted state of one audience import run.

    Lives as JSON under audience_requests.form_data.manual_audience and is
    only changed through state_machine.advance().
    """

    audience_id: str
    name: str
    source_url: str
    request_id: str | None = None
    status: str = JOB_STATUS_IMPORTING
    total_pages: int = 1
    pages_fetched: list[int] = field(default_factory=list)
    records_fetched: int = 0
    total_records: int | None = None
    note: str = ""
    finalized: bool = False
    storage: str = "table"
    uploaded_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    finalized_at: str | None = None

    @property
    def pages_remaining(self) -> list[int]:
        done = set(self.pages_fetched)
        return [page for page in range(1, self.total_pages + 1) if page not in done]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImportJob:
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in data.items() if key in known})
