import json
from fnmatch import fnmatchcase
from typing import Any

import httpx
import pytest

from app.auth.verify import auth_dependency, require_admin
from app.features.visitor_ingest.domain.models import ImportJob, PixelForSync
from app.features.visitor_ingest.pipeline.fetching import EnrichmentApiClient
from app.infrastructure.cache import ResponseCache

UPSTREAM_URL = "https://api.audiencelab.io/segments/seg-1"


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "admin-123", "app_metadata": {"role": "admin"}}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override
        app.dependency_overrides[require_admin] = auth_override

    return _apply


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class FakeRedis:
    """In-memory stand-in for the redis.asyncio commands ResponseCache uses."""

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self.store: dict[str, tuple[str, float | None]] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("redis unavailable")

    def _live(self, key: str) -> str | None:
        entry = self.store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self.store[key]
            return None
        return value

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str) -> str | None:
        self._check()
        return self._live(key)

    async def set(self, key: str, value: str, px: int | None = None, ex: int | None = None) -> bool:
        self._check()
        ttl = px / 1000 if px is not None else ex
        self.store[key] = (value, self._clock() + ttl if ttl is not None else None)
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    async def scan_iter(self, match: str = "*", count: int | None = None):
        self._check()
        for key in list(self.store):
            if fnmatchcase(key, match) and self._live(key) is not None:
                yield key

    async def aclose(self) -> None:
        pass


@pytest.fixture
def redis_client(clock):
    return FakeRedis(clock)


@pytest.fixture
def cache(redis_client):
    return ResponseCache(client=redis_client, namespace="test:")


class FakeApiKeyRepository:
    def __init__(self, keys: dict[str | None, str] | None = None):
        self.keys = {None: "test-key"} if keys is None else keys
        self.calls: list[str | None] = []

    async def fetch_api_key(self, user_id: str | None = None) -> str | None:
        self.calls.append(user_id)
        return self.keys.get(user_id)


@pytest.fixture
def api_key_repository():
    return FakeApiKeyRepository()


class FakeVisitorRepository:
    """In-memory stand-in for VisitorRepository (visitors and pixels tables)."""

    def __init__(self):
        self.rows: dict[tuple[str, str], dict[str, Any]] = {}
        self.pixels: dict[str, dict[str, Any]] = {}
        self.fetch_status: list[tuple[str, str, int | None]] = []
        self.insert_calls: list[int] = []
        self.window_calls: list[tuple[int, int]] = []
        self.fail_insert_calls: set[int] = set()
        self.fail_update_ids: set[str] = set()
        self.hidden_ids: set[str] = set()
        self._next_id = 1

    def seed(self, pixel_id: str, visitor_ids: list[str]) -> None:
        for visitor_id in visitor_ids:
            self.rows[(pixel_id, visitor_id)] = {"id": f"row-{self._next_id}", "profile": None}
            self._next_id += 1

    def add_pixel(self, pixel_id: str, user_id: str, url: str | None, status: str = "active"):
        self.pixels[pixel_id] = {
            "id": pixel_id,
            "user_id": user_id,
            "visitors_api_url": url,
            "status": status,
        }

    async def fetch_existing_ids(self, scope, offset: int, limit: int) -> list[dict[str, Any]]:
        self.window_calls.append((offset, limit))
        owned = [
            {"id": row["id"], "visitor_id": visitor_id}
            for (pixel_id, visitor_id), row in self.rows.items()
            if pixel_id == scope.pixel_id and visitor_id not in self.hidden_ids
        ]
        return owned[offset : offset + limit]

    async def insert_visitors(self, profiles) -> int:
        call = len(self.insert_calls)
        self.insert_calls.append(len(profiles))
        if call in self.fail_insert_calls:
            raise RuntimeError("insert batch rejected")
        inserted = 0
        for profile in profiles:
            key = (profile.pixel_id, profile.visitor_id)
            if key not in self.rows:
                self.rows[key] = {"id": f"row-{self._next_id}", "profile": profile}
                self._next_id += 1
                inserted += 1
        return inserted

    async def update_visitor(self, row_id: str, profile) -> bool:
        if profile.visitor_id in self.fail_update_ids:
            raise RuntimeError("update rejected")
        for row in self.rows.values():
            if row["id"] == row_id:
                row["profile"] = profile
                return True
        return False

    async def fetch_pixel(self, pixel_id: str) -> dict[str, Any] | None:
        return self.pixels.get(pixel_id)

    async def fetch_active_pixels(self) -> list[PixelForSync]:
        return [
            PixelForSync(id=p["id"], user_id=p["user_id"], visitors_api_url=p["visitors_api_url"])
            for p in self.pixels.values()
            if p["status"] == "active" and p["visitors_api_url"]
        ]

    async def update_pixel_fetch_status(self, pixel_id: str, status: str, events_count=None):
        self.fetch_status.append((pixel_id, status, events_count))


@pytest.fixture
def visitor_repository():
    return FakeVisitorRepository()


class FakeAudienceRepository:
    """In-memory stand-in for AudienceRepository."""

    def __init__(self):
        self.requests: dict[str, dict[str, Any]] = {}
        self.jobs: dict[str, dict[str, Any]] = {}
        self.contacts: dict[str, dict[str, dict[str, Any]]] = {}
        self.blobs: dict[str, list[dict[str, Any]]] = {}
        self.upsert_calls = 0
        self.fail_upsert_calls: set[int] = set()

    async def fetch_request(self, request_id: str):
        return self.requests.get(request_id)

    async def fetch_job(self, audience_id: str) -> ImportJob | None:
        stored = self.jobs.get(audience_id)
        return ImportJob.from_dict(stored) if stored else None

    async def create_request(self, job: ImportJob, user_id: str | None) -> None:
        self.jobs[job.audience_id] = job.to_dict()

    async def link_request(self, request_id: str, job: ImportJob, reviewer_id: str | None) -> bool:
        self.requests[request_id]["audience_id"] = job.audience_id
        self.requests[request_id]["status"] = "approved"
        self.jobs[job.audience_id] = job.to_dict()
        return True

    async def save_job(self, job: ImportJob) -> bool:
        if job.audience_id not in self.jobs:
            return False
        self.jobs[job.audience_id] = {**self.jobs[job.audience_id], **job.to_dict()}
        return True

    async def upsert_contacts(self, audience_id: str, rows: list[dict[str, Any]]) -> int:
        call = self.upsert_calls
        self.upsert_calls += 1
        if call in self.fail_upsert_calls:
            raise RuntimeError("contact batch rejected")
        bucket = self.contacts.setdefault(audience_id, {})
        for row in rows:
            bucket[row["contact_key"]] = row["contact"]
        return len(rows)

    async def count_contacts(self, audience_id: str) -> int:
        return len(self.contacts.get(audience_id, {}))

    async def delete_contacts(self, audience_id: str) -> int:
        return len(self.contacts.pop(audience_id, {}))

    async def fetch_blob_contacts(self, audience_id: str) -> list[dict[str, Any]]:
        return list(self.blobs.get(audience_id, []))

    async def save_blob_contacts(self, audience_id: str, contacts: list[dict[str, Any]]) -> None:
        self.blobs[audience_id] = list(contacts)


@pytest.fixture
def audience_repository():
    return FakeAudienceRepository()


class FakeSystemLog:
    def __init__(self):
        self.events: list[dict[str, Any]] = []
        self.audits: list[dict[str, Any]] = []

    async def log_event(self, **kwargs) -> bool:
        self.events.append(kwargs)
        return True

    async def log_audit_action(self, **kwargs) -> bool:
        self.audits.append(kwargs)
        return True


@pytest.fixture
def fake_system_log():
    return FakeSystemLog()


def contact_record(visitor_id: str, **fields) -> dict[str, Any]:
    record = {"UUID": visitor_id, "FIRST_NAME": f"First {visitor_id}"}
    record.update(fields)
    return record


class FakeUpstream:
    """
    Paginated enrichment API served through httpx.MockTransport.

    pages maps page number to its records; pages listed in failing answer
    500 and count toward requests like any other page.
    """

    def __init__(
        self,
        pages: dict[int, list[dict[str, Any]]],
        total_pages: int | None = None,
        failing: set[int] | None = None,
        records_key: str = "Data",
    ):
        self.pages = pages
        self.total_pages = total_pages if total_pages is not None else len(pages)
        self.failing = failing or set()
        self.records_key = records_key
        self.requested: list[int] = []
        self.headers: list[httpx.Headers] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        self.requested.append(page)
        self.headers.append(request.headers)
        if page in self.failing:
            return httpx.Response(500, text=f"page {page} exploded")
        body = {
            self.records_key: self.pages.get(page, []),
            "total_pages": self.total_pages,
            "page": page,
        }
        return httpx.Response(200, content=json.dumps(body), headers={"content-type": "application/json"})

    def client(self) -> EnrichmentApiClient:
        transport = httpx.MockTransport(self.handler)
        return EnrichmentApiClient(httpx.AsyncClient(transport=transport))


def paged_contacts(total_pages: int, per_page: int) -> dict[int, list[dict[str, Any]]]:
    return {
        page: [contact_record(f"p{page}-r{index}") for index in range(per_page)]
        for page in range(1, total_pages + 1)
    }


@pytest.fixture
def make_upstream():
    return FakeUpstream


@pytest.fixture
def make_contact():
    return contact_record


@pytest.fixture
def make_pages():
    return paged_contacts
