"""
Catalog Sync Admin API Routes

- POST /admin/catalog-sync                       run and return the summary
- POST /admin/catalog-sync/stream                run, streaming progress as SSE
- POST /admin/catalog-sync/runs/{run_id}/cancel  stop a run at its next page
- POST /admin/catalog-sync/cursors/reset         forget persisted cursors
"""
import asyncio
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from app.core.exceptions import CatalogSyncError
from app.jobs.catalog_sync import (
    cancel_catalog_sync_run,
    reset_catalog_cursors,
    run_catalog_sync_job,
)
from app.schemas.catalog_sync import (
    CancelRunResponse,
    CatalogSyncRequest,
    CatalogSyncResponse,
    CursorResetRequest,
    CursorResetResponse,
)
from app.services.catalog_sync.events import ERROR, SyncEvent, format_sse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/catalog-sync", tags=["Admin - Catalog Sync"])

# Streaming runs outlive a disconnected client; hold references until done
_background_runs = set()


def _rate_limiter(request: Request):
    """Process-wide bucket built at startup (None outside the app lifespan)."""
    return getattr(request.app.state, "catalog_rate_limiter", None)


@router.post("", response_model=CatalogSyncResponse)
async def trigger_catalog_sync(body: CatalogSyncRequest, request: Request):
    try:
        return await run_catalog_sync_job(
            games=body.games,
            force=body.force,
            rate_limiter=_rate_limiter(request),
        )
    except CatalogSyncError as e:
        logger.error(f"[catalog_sync] Trigger failed: {e.code}: {e.message}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.to_dict())


@router.post("/stream")
async def stream_catalog_sync(body: CatalogSyncRequest, request: Request):
    """
    Same as the plain trigger, but every progress event is pushed as a
    server-sent event. The stream ends after the "complete" (or "error") frame.
    """
    queue: "asyncio.Queue[Optional[SyncEvent]]" = asyncio.Queue()

    async def sink(event: SyncEvent) -> None:
        await queue.put(event)

    async def runner() -> None:
        try:
            await run_catalog_sync_job(
                games=body.games,
                force=body.force,
                event_sink=sink,
                rate_limiter=_rate_limiter(request),
            )
        except CatalogSyncError as e:
            await queue.put(SyncEvent(ERROR, data=e.to_dict()))
        except Exception as e:
            logger.exception("[catalog_sync] Streaming run failed")
            await queue.put(SyncEvent(ERROR, data={"error_type": type(e).__name__, "message": str(e)}))
        finally:
            await queue.put(None)

    async def frames() -> AsyncIterator[str]:
        task = asyncio.create_task(runner())
        _background_runs.add(task)
        task.add_done_callback(_background_runs.discard)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield format_sse(event)
        finally:
            if not task.done():
                logger.info("[catalog_sync] Stream client disconnected, run continues")

    return StreamingResponse(
        frames(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/runs/{run_id}/cancel", response_model=CancelRunResponse)
async def cancel_run(run_id: str):
    cancelled = await cancel_catalog_sync_run(run_id)
    if not cancelled:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Run {run_id} not found or already finished",
        )
    return CancelRunResponse(run_id=run_id, cancelled=True)


@router.post("/cursors/reset", response_model=CursorResetResponse)
async def reset_cursors(body: CursorResetRequest):
    reset = await reset_catalog_cursors(body.games, body.entity_prefix)
    return CursorResetResponse(reset=reset)
