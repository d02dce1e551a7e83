"""
Visitor event aggregation.

Folds the per-event records returned by the enrichment API into one
VisitorProfile per visitor id, with engagement counters and a lead score.
The first record of each group supplies the identity and demographic
attributes; every record contributes activity.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from app.features.visitor_ingest.domain.models import (
    AggregationResult,
    NormalizedContact,
    RawContactRecord,
    SkippedItem,
    VisitorProfile,
)
from app.features.visitor_ingest.pipeline.normalize.fields import (
    EXPANDED_ACTIVITY_END,
    EXPANDED_ACTIVITY_START,
    EXPANDED_EVENT_DATA,
    EXPANDED_ATTRIBUTES,
)
from app.features.visitor_ingest.pipeline.normalize.service import (
    first_value,
    lookup_space,
    normalize,
    resolve_visitor_id,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ENRICHMENT_SOURCE = "visitors_api"

# Lead score weights
BASE_SCORE = 15
PAGEVIEW_POINTS = 2
PAGEVIEW_CAP = 20
CLICK_POINTS = 3
CLICK_CAP = 15
FORM_POINTS = 10
DEEP_SCROLL_THRESHOLD = 50
DEEP_SCROLL_POINTS = 5
RETURNING_POINTS = 10
MAX_SCORE = 100

METADATA_EXTRA_KEYS = (
    "company_industry",
    "company_employee_count",
    "homeowner",
    "married",
    "children",
    "net_worth",
)


def compute_lead_score(
    pageviews: int,
    clicks: int,
    form_submissions: int,
    max_scroll_depth: float,
    session_days: int,
) -> int:
    score = BASE_SCORE
    score += min(pageviews * PAGEVIEW_POINTS, PAGEVIEW_CAP)
    score += min(clicks * CLICK_POINTS, CLICK_CAP)
    score += form_submissions * FORM_POINTS
    if max_scroll_depth > DEEP_SCROLL_THRESHOLD:
        score += DEEP_SCROLL_POINTS
    if session_days > 1:
        score += RETURNING_POINTS
    return max(0, min(score, MAX_SCORE))


def parse_timestamp(value: str | None) -> datetime | None:
    """ISO-8601 text to datetime; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _scroll_percentage(payload: Any) -> float | None:
    """Percentage from a scroll_depth EVENT_DATA payload; None if malformed."""
    if isinstance(payload, str):
        try:
            payload = json.loads(payload or "{}")
        except ValueError:
            return None
    if not isinstance(payload, dict):
        return None
    raw = payload.get("percentage") or 0
    if isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


@dataclass
class _VisitorWorkingSet:
    visitor_id: str
    records: list[RawContactRecord] = field(default_factory=list)
    pageviews: int = 0
    clicks: int = 0
    form_submissions: int = 0
    max_scroll_depth: float = 0
    time_on_site: int = 0
    session_dates: set[date] = field(default_factory=set)
    first_seen: datetime | None = None
    last_seen: datetime | None = None

    def observe(self, moment: datetime) -> None:
        if self.last_seen is None or moment > self.last_seen:
            self.last_seen = moment


class VisitorAggregationService:
    """Groups raw event records by visitor and builds VisitorProfile rows."""

    def aggregate(
        self,
        records: list[RawContactRecord],
        pixel_id: str,
        user_id: str,
        now: datetime | None = None,
    ) -> AggregationResult:
        now = now or datetime.now(UTC)
        visitors: dict[str, _VisitorWorkingSet] = {}
        skipped: list[SkippedItem] = []

        for record in records:
            visitor_id = resolve_visitor_id(record)
            if not visitor_id:
                skipped.append(SkippedItem(item=record, reason="missing_identity"))
                continue
            working = visitors.get(visitor_id)
            if working is None:
                working = visitors[visitor_id] = _VisitorWorkingSet(visitor_id=visitor_id)
            working.records.append(record)
            self._apply_event(working, record)

        profiles = [
            self._build_profile(working, pixel_id, user_id, now) for working in visitors.values()
        ]

        if skipped:
            logger.warning(
                "Records without a visitor id were skipped",
                pixel_id=pixel_id,
                skipped=len(skipped),
            )
        logger.info(
            "Visitor events aggregated",
            pixel_id=pixel_id,
            records=len(records),
            visitors=len(profiles),
        )
        return AggregationResult(profiles=profiles, skipped=skipped)

    def _apply_event(self, working: _VisitorWorkingSet, record: RawContactRecord) -> None:
        space = lookup_space(record)
        event_type = (first_value(space, EXPANDED_ATTRIBUTES["event_type"]) or "").lower()
        start_text = first_value(space, EXPANDED_ACTIVITY_START)
        end_text = first_value(space, EXPANDED_ACTIVITY_END)

        start = parse_timestamp(start_text)
        end = parse_timestamp(end_text)

        if start is not None:
            working.session_dates.add(start.date())
            start_utc = start.astimezone(UTC)
            if working.first_seen is None or start_utc < working.first_seen:
                working.first_seen = start_utc
            working.observe(start_utc)
        if end is not None:
            working.observe(end.astimezone(UTC))

        if start is not None and end is not None:
            duration = (end - start).total_seconds()
            if duration > 0:
                working.time_on_site += math.floor(duration + 0.5)

        if not event_type:
            # Rows without a type are one page visit each
            working.pageviews += 1
        elif event_type == "page_view":
            working.pageviews += 1
        elif event_type == "click":
            working.clicks += 1
        elif event_type == "form_submission":
            working.form_submissions += 1
        elif event_type == "scroll_depth":
            payload = next(
                (space[key] for key in EXPANDED_EVENT_DATA if key in space),
                None,
            )
            percentage = _scroll_percentage(payload)
            if percentage is not None and percentage > working.max_scroll_depth:
                working.max_scroll_depth = percentage

    def _build_profile(
        self, working: _VisitorWorkingSet, pixel_id: str, user_id: str, now: datetime
    ) -> VisitorProfile:
        primary = working.records[0]
        contact = normalize(primary)

        first_seen = working.first_seen or now
        last_seen = working.last_seen or now
        session_days = len(working.session_dates)
        is_identified = bool(contact.email)

        country = contact.country or ("US" if contact.state else None)

        return VisitorProfile(
            pixel_id=pixel_id,
            user_id=user_id,
            visitor_id=working.visitor_id,
            email=contact.email,
            first_name=contact.first_name,
            last_name=contact.last_name,
            full_name=contact.full_name,
            company=contact.company,
            job_title=contact.job_title,
            linkedin_url=contact.linkedin_url,
            city=contact.city,
            state=contact.state,
            country=country,
            ip_address=contact.ip_address,
            first_page_url=contact.url,
            first_referrer=contact.referrer_url,
            first_seen_at=first_seen,
            last_seen_at=last_seen,
            total_pageviews=working.pageviews,
            total_sessions=session_days,
            total_time_on_site=working.time_on_site,
            # visitors.max_scroll_depth is an INTEGER percentage column
            max_scroll_depth=int(working.max_scroll_depth),
            total_clicks=working.clicks,
            form_submissions=working.form_submissions,
            lead_score=compute_lead_score(
                working.pageviews,
                working.clicks,
                working.form_submissions,
                working.max_scroll_depth,
                session_days,
            ),
            is_identified=is_identified,
            identified_at=first_seen if is_identified else None,
            enriched_at=now,
            enrichment_source=ENRICHMENT_SOURCE,
            enrichment_data=dict(primary),
            metadata=self._secondary_attributes(contact),
        )

    def _secondary_attributes(self, contact: NormalizedContact) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "phone": contact.phone,
            "gender": contact.gender,
            "age_range": contact.age_range,
            "income_range": contact.income_range,
            "seniority_level": contact.seniority,
            "department": contact.department,
            "company_revenue": contact.company_revenue,
            "company_domain": contact.company_domain,
        }
        for key in METADATA_EXTRA_KEYS:
            value = contact.extra.get(key)
            metadata[key] = value.strip() if isinstance(value, str) else value
        return metadata


visitor_aggregation_service = VisitorAggregationService()
