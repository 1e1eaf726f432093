"""
Job entry points wired to a mocked provider and in-memory stores.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from app.jobs.catalog_sync import (
    build_rate_limiter,
    cancel_catalog_sync_run,
    reset_catalog_cursors,
    run_catalog_sync_job,
)
from app.services.catalog_sync.config import CatalogSyncConfig
from app.services.catalog_sync.store import ENTITY_CARD, ENTITY_SET, ENTITY_VARIANT
from tests.fakes import InMemoryCatalogStore, InMemoryCursorStore, InMemoryRunTracker

API = "https://api.justtcg.test/v1"

RESPONSES = {
    "/v1/games/pokemon/sets": {"data": [{"id": "abc", "code": "sv5a", "name": "Crimson Haze"}], "has_more": False},
    "/v1/games/pokemon/sets/abc/cards": {"cards": [{"id": "c1", "name": "Pikachu", "number": "025"}]},
    "/v1/games/pokemon/cards/c1/variants": {"variants": [{"id": "v1", "name": "Pikachu NM", "price": 1.5}]},
}


@pytest.fixture
def job_config():
    return CatalogSyncConfig(api_base=API, api_key="test-key", page_size=2, retries=0)


@pytest.mark.asyncio
async def test_run_job_links_scenario_set_end_to_end(job_config):
    """
    Local "SV5a: Crimson Haze" is linked to remote id "abc" by code, and the
    remote cards and variants are mirrored beneath it.
    """
    seen_keys = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_keys.append(request.headers.get("x-api-key"))
        body = RESPONSES.get(request.url.path)
        if body is None:
            return httpx.Response(404, json={"error": "unknown path"})
        return httpx.Response(200, json=body)

    catalog = InMemoryCatalogStore()
    local = catalog.add(ENTITY_SET, "pokemon", "SV5a: Crimson Haze")
    runs = InMemoryRunTracker()
    events = []

    async def sink(event):
        events.append(event.type)

    with patch("app.jobs.catalog_sync.SqlCatalogStore", return_value=catalog), \
            patch("app.jobs.catalog_sync.SqlCursorStore", return_value=InMemoryCursorStore()), \
            patch("app.jobs.catalog_sync.SqlRunTracker", return_value=runs):
        summary = await run_catalog_sync_job(
            games=["pokemon"],
            event_sink=sink,
            config=job_config,
            transport=httpx.MockTransport(handler),
        )

    assert summary["status"] == "completed"
    game = summary["games"][0]
    assert game["results"]["match_types"] == {"codeExact": 1}
    assert game["metrics"]["api_requests"] == 3
    assert catalog.get(ENTITY_SET, local)["provider_id"] == "abc"
    assert [r["provider_id"] for r in catalog.rows(ENTITY_CARD)] == ["c1"]
    assert [r["provider_id"] for r in catalog.rows(ENTITY_VARIANT)] == ["v1"]
    assert set(seen_keys) == {"test-key"}
    assert events[-1] == "complete"


@pytest.mark.asyncio
async def test_run_job_reports_client_contract_failure(job_config):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid key"})

    runs = InMemoryRunTracker()
    with patch("app.jobs.catalog_sync.SqlCatalogStore", return_value=InMemoryCatalogStore()), \
            patch("app.jobs.catalog_sync.SqlCursorStore", return_value=InMemoryCursorStore()), \
            patch("app.jobs.catalog_sync.SqlRunTracker", return_value=runs):
        summary = await run_catalog_sync_job(
            games="pokemon", config=job_config, transport=httpx.MockTransport(handler),
        )

    game = summary["games"][0]
    assert summary["status"] == "failed"
    assert game["status"] == "failed"
    assert "401" in game["error"]
    assert game["metrics"]["api_requests"] == 1


@pytest.mark.asyncio
async def test_cancel_delegates_to_run_tracker():
    tracker = MagicMock()
    tracker.request_cancel = AsyncMock(return_value=True)

    with patch("app.jobs.catalog_sync.SqlRunTracker", return_value=tracker):
        assert await cancel_catalog_sync_run("run-1") is True

    tracker.request_cancel.assert_awaited_once_with("run-1")


@pytest.mark.asyncio
async def test_reset_cursors_resolves_game_aliases(job_config):
    cursors = InMemoryCursorStore()
    await cursors.set_cursor("justtcg", "mtg", "sets", "c4")
    await cursors.set_cursor("justtcg", "mtg", "cards:lea", "c2")
    await cursors.set_cursor("justtcg", "pokemon", "sets", "c9")

    with patch("app.jobs.catalog_sync.SqlCursorStore", return_value=cursors):
        reset = await reset_catalog_cursors(["Magic"], entity_prefix="cards:", config=job_config)

    assert reset == {"mtg": 1}
    assert await cursors.get_cursor("justtcg", "mtg", "cards:lea") is None
    assert await cursors.get_cursor("justtcg", "mtg", "sets") is not None


def test_build_rate_limiter_uses_config():
    limiter = build_rate_limiter(CatalogSyncConfig(rate_limit_capacity=7, rate_limit_refill_per_second=1.5))
    assert limiter.capacity == 7
    assert limiter.refill_per_second == 1.5
