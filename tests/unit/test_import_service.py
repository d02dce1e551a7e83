import pytest

from app.features.visitor_ingest.errors import (
    ContactStorageError,
    ImportJobNotFound,
    ImportValidationError,
    InvalidImportTransition,
    MissingApiKeyError,
    UpstreamApiError,
)
from app.features.visitor_ingest.imports.service import ImportService
from app.features.visitor_ingest.services.api_keys import ApiKeyProvider

URL = "https://api.audiencelab.io/segments/seg-1"
AT = "2024-05-01T00:00:00+00:00"


@pytest.fixture
def build_service(cache, api_key_repository, audience_repository, fake_system_log):
    def _build(upstream, **kwargs):
        return ImportService(
            upstream.client(),
            ApiKeyProvider(cache, repository=api_key_repository),
            cache,
            repository=audience_repository,
            audit=fake_system_log,
            clock=lambda: AT,
            **kwargs,
        )

    return _build


@pytest.mark.asyncio
async def test_init_stores_first_page(build_service, make_upstream, make_pages, audience_repository):
    upstream = make_upstream(make_pages(3, 4))
    service = build_service(upstream)

    result = await service.init(URL, "  Spring list ", admin_user_id="admin-1")

    audience_id = result["audience_id"]
    assert audience_id.startswith("manual_")
    assert result["total_pages"] == 3
    assert result["records_fetched"] == 4
    assert len(audience_repository.contacts[audience_id]) == 4
    job = audience_repository.jobs[audience_id]
    assert job["name"] == "Spring list"
    assert job["pages_fetched"] == [1]
    assert job["uploaded_by"] == "admin-1"
    assert upstream.requested == [1]
    assert upstream.headers[0]["x-api-key"] == "test-key"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "url,name",
    [("", "List"), ("ftp://files.example.com/x", "List"), ("not a url", "List"), (URL, "   ")],
)
async def test_init_rejects_bad_input(build_service, make_upstream, url, name):
    upstream = make_upstream({1: []})

    with pytest.raises(ImportValidationError):
        await build_service(upstream).init(url, name)

    assert upstream.requested == []


@pytest.mark.asyncio
async def test_init_without_api_key(build_service, make_upstream, api_key_repository):
    api_key_repository.keys = {}

    with pytest.raises(MissingApiKeyError):
        await build_service(make_upstream({1: []})).init(URL, "List")


@pytest.mark.asyncio
async def test_init_with_unknown_request(build_service, make_upstream):
    with pytest.raises(ImportJobNotFound):
        await build_service(make_upstream({1: []})).init(URL, "List", request_id="req-404")


@pytest.mark.asyncio
async def test_init_links_existing_request(
    build_service, make_upstream, make_pages, audience_repository
):
    audience_repository.requests["req-1"] = {"id": "req-1", "status": "pending"}

    result = await build_service(make_upstream(make_pages(1, 2))).init(
        URL, "List", request_id="req-1", admin_user_id="admin-1"
    )

    assert audience_repository.requests["req-1"]["audience_id"] == result["audience_id"]
    assert audience_repository.requests["req-1"]["status"] == "approved"
    assert audience_repository.jobs[result["audience_id"]]["request_id"] == "req-1"


@pytest.mark.asyncio
async def test_first_page_failure_creates_nothing(build_service, make_upstream, audience_repository):
    upstream = make_upstream({1: []}, failing={1})

    with pytest.raises(UpstreamApiError):
        await build_service(upstream).init(URL, "List")

    assert audience_repository.jobs == {}


@pytest.mark.asyncio
async def test_full_import_flow(build_service, make_upstream, make_pages, fake_system_log):
    service = build_service(make_upstream(make_pages(25, 4)))

    init = await service.init(URL, "Big list", admin_user_id="admin-1")
    audience_id = init["audience_id"]

    first = await service.chunk(URL, audience_id, 2, 11)
    second = await service.chunk(URL, audience_id, 12, 21)
    third = await service.chunk(URL, audience_id, 22, 31)

    assert first["pages_fetched"] == 10
    assert first["chunk_records"] == 40
    assert first["total_inserted"] == 44
    assert second["total_inserted"] == 84
    assert third["page_end"] == 25
    assert third["pages_fetched"] == 4
    assert third["pages_remaining"] == []

    final = await service.finalize(audience_id, admin_user_id="admin-1")

    assert final == {"audience": {"id": audience_id, "name": "Big list", "total_records": 100}}
    audit = fake_system_log.audits[0]
    assert audit["action"] == "create_manual_audience"
    assert audit["resource_id"] == audience_id
    assert audit["details"]["contacts_count"] == 100
    assert audit["details"]["total_pages"] == 25


@pytest.mark.asyncio
async def test_replayed_chunk_does_not_double_count(build_service, make_upstream, make_pages):
    service = build_service(make_upstream(make_pages(3, 4)))
    audience_id = (await service.init(URL, "List"))["audience_id"]

    first = await service.chunk(URL, audience_id, 2, 3)
    replay = await service.chunk(URL, audience_id, 2, 3)
    final = await service.finalize(audience_id)

    assert first["total_inserted"] == 12
    assert replay["chunk_records"] == first["chunk_records"]
    assert replay["total_inserted"] == 12
    assert final["audience"]["total_records"] == 12


@pytest.mark.asyncio
async def test_replayed_chunk_after_clear_matches_first_run(
    build_service, make_upstream, make_pages
):
    service = build_service(make_upstream(make_pages(3, 4)))
    audience_id = (await service.init(URL, "List"))["audience_id"]
    first = await service.chunk(URL, audience_id, 2, 3)

    cleared = await service.clear_contacts(audience_id)
    again = await service.chunk(URL, audience_id, 2, 3)

    assert cleared["deleted"] == 12
    assert again["chunk_records"] == first["chunk_records"]
    assert again["total_inserted"] == 8


@pytest.mark.asyncio
async def test_chunk_reports_failed_pages(build_service, make_upstream, make_pages):
    service = build_service(make_upstream(make_pages(5, 2), failing={3}))
    audience_id = (await service.init(URL, "List"))["audience_id"]

    result = await service.chunk(None, audience_id, 2, 5)

    assert result["failed_pages"] == [3]
    assert result["pages_fetched"] == 3
    assert result["pages_remaining"] == [3]
    assert result["chunk_records"] == 6


@pytest.mark.asyncio
async def test_chunk_for_unknown_job(build_service, make_upstream):
    with pytest.raises(ImportJobNotFound):
        await build_service(make_upstream({1: []})).chunk(URL, "manual_missing", 2, 3)


@pytest.mark.asyncio
async def test_chunk_after_finalize_fetches_nothing(build_service, make_upstream, make_pages):
    upstream = make_upstream(make_pages(3, 1))
    service = build_service(upstream)
    audience_id = (await service.init(URL, "List"))["audience_id"]
    await service.finalize(audience_id)
    requested_before = list(upstream.requested)

    with pytest.raises(InvalidImportTransition):
        await service.chunk(URL, audience_id, 2, 3)

    assert upstream.requested == requested_before


@pytest.mark.asyncio
async def test_status_is_cached_until_a_phase_changes_it(
    build_service, make_upstream, make_pages, audience_repository
):
    service = build_service(make_upstream(make_pages(2, 1)))
    audience_id = (await service.init(URL, "List"))["audience_id"]

    status = await service.get_status(audience_id)
    audience_repository.jobs[audience_id]["note"] = "edited elsewhere"
    cached = await service.get_status(audience_id)
    await service.finalize(audience_id)
    fresh = await service.get_status(audience_id)

    assert status["pages_remaining"] == [2]
    assert cached["note"] == status["note"]
    assert fresh["finalized"] is True
    assert fresh["total_records"] == 1


@pytest.mark.asyncio
async def test_status_for_unknown_job(build_service, make_upstream):
    with pytest.raises(ImportJobNotFound):
        await build_service(make_upstream({1: []})).get_status("manual_missing")


@pytest.mark.asyncio
async def test_reimport_reuses_audience_id(build_service, make_upstream, make_pages):
    service = build_service(make_upstream(make_pages(2, 3)))
    audience_id = (await service.init(URL, "List"))["audience_id"]
    await service.chunk(URL, audience_id, 2, 2)
    await service.finalize(audience_id)

    await service.clear_contacts(audience_id)
    restarted = await service.reimport_init(URL, "List refreshed", audience_id)
    await service.chunk(URL, audience_id, 2, 2)
    final = await service.finalize(audience_id)

    assert restarted["audience_id"] == audience_id
    assert restarted["records_fetched"] == 3
    assert final["audience"] == {"id": audience_id, "name": "List refreshed", "total_records": 6}


@pytest.mark.asyncio
async def test_blob_storage_strategy(build_service, make_upstream, make_pages, audience_repository):
    service = build_service(make_upstream(make_pages(2, 3)), storage_strategy="blob")
    audience_id = (await service.init(URL, "List"))["audience_id"]
    await service.chunk(URL, audience_id, 2, 2)
    await service.chunk(URL, audience_id, 2, 2)
    final = await service.finalize(audience_id)

    assert audience_repository.jobs[audience_id]["storage"] == "blob"
    assert len(audience_repository.blobs[audience_id]) == 6
    assert audience_id not in audience_repository.contacts
    assert final["audience"]["total_records"] == 6


def test_unknown_storage_strategy_is_rejected(
    cache, api_key_repository, audience_repository, make_upstream
):
    with pytest.raises(ValueError):
        ImportService(
            make_upstream({1: []}).client(),
            ApiKeyProvider(cache, repository=api_key_repository),
            cache,
            repository=audience_repository,
            storage_strategy="s3",
        )


@pytest.mark.asyncio
async def test_chunk_fails_when_storage_rejects_every_batch(
    build_service, make_upstream, make_pages, audience_repository
):
    service = build_service(make_upstream(make_pages(3, 4)))
    audience_id = (await service.init(URL, "List"))["audience_id"]
    audience_repository.fail_upsert_calls = {1}

    with pytest.raises(ContactStorageError) as exc_info:
        await service.chunk(URL, audience_id, 2, 2)

    assert exc_info.value.status_code == 500
    assert "insert_failed" in exc_info.value.message
    assert audience_repository.jobs[audience_id]["pages_fetched"] == [1]
    final = await service.finalize(audience_id)
    assert final["audience"]["total_records"] == 4


@pytest.mark.asyncio
async def test_init_fails_when_first_page_cannot_be_stored(
    build_service, make_upstream, make_pages, audience_repository
):
    audience_repository.fail_upsert_calls = {0}

    with pytest.raises(ContactStorageError):
        await build_service(make_upstream(make_pages(2, 3))).init(URL, "List")

    assert audience_repository.contacts == {}


@pytest.mark.asyncio
async def test_empty_page_is_not_a_storage_failure(build_service, make_upstream, make_pages):
    pages = make_pages(2, 3)
    pages[2] = []
    service = build_service(make_upstream(pages))
    audience_id = (await service.init(URL, "List"))["audience_id"]

    result = await service.chunk(URL, audience_id, 2, 2)

    assert result["chunk_records"] == 0
    assert result["pages_remaining"] == []
