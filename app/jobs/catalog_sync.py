"""
Catalog Sync Jobs

Entry points shared by the admin routes and scripts/run_catalog_sync.py.

The TokenBucket is owned by the caller: the FastAPI app builds one at startup
and passes it in, the CLI builds one per process. When none is given a
bucket is built for this invocation only.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from app.adapters.justtcg import JustTCGClient, resolve_game_scope
from app.core.http_client import ResilientHTTPClient
from app.core.rate_limiter import TokenBucket
from app.services.catalog_sync import (
    CatalogSyncConfig,
    CatalogSyncOrchestrator,
    SqlCatalogStore,
    SqlCursorStore,
    SqlRunTracker,
)
from app.services.catalog_sync.events import EventSink

logger = logging.getLogger(__name__)


def build_rate_limiter(config: CatalogSyncConfig) -> TokenBucket:
    return TokenBucket(config.token_bucket_config())


async def run_catalog_sync_job(
    games: Union[str, Sequence[str], None] = None,
    force: bool = False,
    event_sink: Optional[EventSink] = None,
    config: Optional[CatalogSyncConfig] = None,
    rate_limiter: Optional[TokenBucket] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """
    Sync the requested games (or "ALL") from the catalog provider.

    Args:
        games: slugs, a comma-separated string, "ALL", or None for the
            configured defaults
        force: bypass the duplicate-sync guard (never the exact-match policy)
        event_sink: async callable receiving SyncEvent progress events

    Returns:
        Summary with one entry per game run
    """
    job_name = "catalog_sync"
    config = config or CatalogSyncConfig.from_settings()
    limiter = rate_limiter or build_rate_limiter(config)

    if not config.api_key:
        logger.warning(f"[{job_name}] JUSTTCG_API_KEY not set, requests will likely be rejected")

    logger.info(f"[{job_name}] Starting (games={games!r}, force={force})")

    async with ResilientHTTPClient(
        retry_config=config.retry_config(),
        rate_limiter=limiter,
        default_headers=config.auth_headers(),
        transport=transport,
    ) as http:
        client = JustTCGClient(http, config.api_base, page_size=config.page_size)
        orchestrator = CatalogSyncOrchestrator(
            config,
            client,
            SqlCatalogStore(config.provider),
            SqlCursorStore(),
            SqlRunTracker(),
            event_sink=event_sink,
            rate_limiter=limiter,
        )
        summary = await orchestrator.run(games, force=force)

    logger.info(f"[{job_name}] Done: {summary['status']} ({len(summary['games'])} games)")
    return summary


async def reset_catalog_cursors(
    games: List[str],
    entity_prefix: Optional[str] = None,
    config: Optional[CatalogSyncConfig] = None,
) -> Dict[str, int]:
    """Delete persisted cursors so the next run starts those streams from scratch."""
    config = config or CatalogSyncConfig.from_settings()
    store = SqlCursorStore()
    reset = {}
    for game in games:
        slug = resolve_game_scope(game).slug
        reset[slug] = await store.reset_cursors(config.provider, slug, entity_prefix)
    return reset


async def cancel_catalog_sync_run(run_id: str) -> bool:
    """Flag a run as cancelled; it stops at its next page boundary."""
    cancelled = await SqlRunTracker().request_cancel(run_id)
    logger.info(f"[catalog_sync] Cancel requested for run {run_id}: {cancelled}")
    return cancelled
