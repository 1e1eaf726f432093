"""
Catalog Sync Orchestrator

One SyncRun per game; games run strictly one after another. Within a game:

    sets -> cards (per linked set) -> variants (per linked card)

Sets phase:
    1. Fetch EVERY set page from the start (the index must be complete)
    2. Build the canonical index
    3. Roll back provider ids that no longer exist upstream
    4. Match local sets lacking a provider id, write accepted matches
       (fail-fast per chunk)
    5. Emit guardrail-result {rolled_back, not_found}
    6. Per fetched page: discovery upsert, then persist the sets cursor

Cards / variants phases:
    Per parent stream, resume from an incomplete cursor if one exists; per
    page, discovery upsert THEN advance the cursor. A cursor is never moved
    past a page that has not been written.

Cancellation is checked at page boundaries. A chunk is never half applied
because each chunk is one store transaction.

Ambiguous, conflict and out-of-scope results never fail a run; they are
counted and sampled into the run results for triage.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from app.adapters.justtcg import (
    GameScope,
    Page,
    RemoteRecord,
    normalize_game_slug,
    resolve_game_scope,
)
from app.core.exceptions import CatalogSyncError, SyncCancelledError
from app.core.rate_limiter import TokenBucket
from app.core.utils import utcnow
from app.models.catalog import RunStatus
from app.services.catalog_sync import events
from app.services.catalog_sync.canonical_index import build_canonical_index
from app.services.catalog_sync.config import CatalogSyncConfig
from app.services.catalog_sync.events import EventSink, SyncEvent
from app.services.catalog_sync.matcher import Matcher, MatchStatus
from app.services.catalog_sync.paginator import paginate
from app.services.catalog_sync.rollback import rollback_stale_links
from app.services.catalog_sync.store import (
    ENTITY_CARD,
    ENTITY_SET,
    ENTITY_VARIANT,
    CatalogStore,
    CursorStore,
    RunTracker,
)
from app.services.catalog_sync.upserter import BatchUpserter, discovery_row, match_row

logger = logging.getLogger(__name__)

PHASE_SETS = "sets"
PHASE_CARDS = "cards"
PHASE_VARIANTS = "variants"
PHASES = (PHASE_SETS, PHASE_CARDS, PHASE_VARIANTS)

SKIP_FRESH = "fresh"
SKIP_ALREADY_RUNNING = "already_running"

SAMPLE_KINDS = ("unmatched", "ambiguous", "conflict", "out_of_scope", "rolled_back", "skipped_rows")


def sets_cursor_key() -> str:
    return "sets"


def cards_cursor_key(set_provider_id: str) -> str:
    return f"cards:{set_provider_id}"


def variants_cursor_key(card_provider_id: str) -> str:
    return f"variants:{card_provider_id}"


@dataclass
class GameRunStats:
    """Counters for one game run. processed and total only grow."""
    processed: int = 0
    total: int = 0
    pages: int = 0
    matched: int = 0
    unmatched: int = 0
    ambiguous: int = 0
    conflicts: int = 0
    out_of_scope: int = 0
    rolled_back: int = 0
    updated: int = 0
    discovered: int = 0
    not_found: int = 0
    skipped_rows: int = 0
    match_types: Dict[str, int] = field(default_factory=dict)
    phases: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    samples: Dict[str, List[Dict[str, Any]]] = field(
        default_factory=lambda: {kind: [] for kind in SAMPLE_KINDS}
    )

    def add_sample(self, kind: str, sample: Dict[str, Any], limit: int) -> None:
        bucket = self.samples.setdefault(kind, [])
        if len(bucket) < limit:
            bucket.append(sample)

    def to_results(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "total": self.total,
            "pages": self.pages,
            "matched": self.matched,
            "unmatched": self.unmatched,
            "ambiguous": self.ambiguous,
            "conflicts": self.conflicts,
            "out_of_scope": self.out_of_scope,
            "rolled_back": self.rolled_back,
            "updated": self.updated,
            "discovered": self.discovered,
            "not_found": self.not_found,
            "skipped_rows": self.skipped_rows,
            "match_types": dict(self.match_types),
            "phases": dict(self.phases),
            "samples": {kind: list(items) for kind, items in self.samples.items()},
        }


@dataclass
class GameRunResult:
    game: str
    run_id: str
    status: str
    results: Dict[str, Any]
    metrics: Dict[str, Any]
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game": self.game,
            "run_id": self.run_id,
            "status": self.status,
            "error": self.error,
            "results": self.results,
            "metrics": self.metrics,
        }


@dataclass
class _GameContext:
    scope: GameScope
    run_id: str
    force: bool
    stats: GameRunStats = field(default_factory=GameRunStats)
    started: float = field(default_factory=time.monotonic)
    requests_at_start: int = 0
    waits_at_start: int = 0


class CatalogSyncOrchestrator:
    """
    Sequences fetch -> index -> rollback -> match -> upsert -> cursor for
    each requested game.

    Usage:
        orchestrator = CatalogSyncOrchestrator(config, client, catalog, cursors, runs)
        summary = await orchestrator.run(["pokemon", "mtg"], force=False)
    """

    def __init__(
        self,
        config: CatalogSyncConfig,
        client,
        catalog_store: CatalogStore,
        cursor_store: CursorStore,
        run_tracker: RunTracker,
        event_sink: Optional[EventSink] = None,
        rate_limiter: Optional[TokenBucket] = None,
        clock: Callable = utcnow,
    ):
        self.config = config
        self.client = client
        self.catalog = catalog_store
        self.cursors = cursor_store
        self.runs = run_tracker
        self.event_sink = event_sink
        self.rate_limiter = rate_limiter
        self.clock = clock
        self.upserter = BatchUpserter(catalog_store, config.upsert_chunk_size)

    @property
    def provider(self) -> str:
        return self.config.provider

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def resolve_games(self, games: Union[str, Sequence[str], None]) -> List[GameScope]:
        """Turn the caller's game list (or "ALL") into de-duplicated scopes."""
        if isinstance(games, str):
            games = [g.strip() for g in games.split(",") if g.strip()]
        requested = list(games or self.config.default_games)

        if [g.upper() for g in requested] == ["ALL"]:
            remote_games = await self.client.list_games()
            requested = [record.id for record in remote_games]
            logger.info(f"[catalog_sync] ALL resolved to {len(requested)} provider games")

        scopes: List[GameScope] = []
        seen = set()
        for game in requested:
            slug = normalize_game_slug(game)
            if not slug or slug in seen:
                continue
            seen.add(slug)
            scopes.append(resolve_game_scope(slug))
        return scopes

    async def run(self, games: Union[str, Sequence[str], None] = None, force: bool = False) -> Dict[str, Any]:
        started = time.monotonic()
        scopes = await self.resolve_games(games)
        logger.info(
            f"[catalog_sync] Starting sync for {[s.slug for s in scopes]} "
            f"(provider={self.provider}, force={force})"
        )

        results = []
        for scope in scopes:
            result = await self.sync_game(scope, force=force)
            results.append(result.to_dict())

        statuses = {r["status"] for r in results}
        if not results or statuses == {RunStatus.COMPLETED}:
            overall = RunStatus.COMPLETED
        elif RunStatus.COMPLETED in statuses:
            overall = "partial"
        else:
            overall = RunStatus.FAILED

        summary = {
            "status": overall,
            "provider": self.provider,
            "force": force,
            "games": results,
            "duration_seconds": round(time.monotonic() - started, 3),
        }
        await self._emit(SyncEvent(
            events.COMPLETE,
            data={"status": overall, "games": [r["game"] for r in results]},
        ))
        logger.info(f"[catalog_sync] Sync finished: {overall} in {summary['duration_seconds']}s")
        return summary

    async def sync_game(self, scope: GameScope, force: bool = False) -> GameRunResult:
        run_id = await self.runs.create_run({
            "provider": self.provider,
            "game": scope.slug,
            "provider_game": scope.provider_game,
            "region": scope.region,
            "phases": list(PHASES),
            "force": force,
        })
        ctx = _GameContext(scope=scope, run_id=run_id, force=force)
        ctx.requests_at_start = self._request_count()
        ctx.waits_at_start = self._rate_limit_waits()

        status = RunStatus.COMPLETED
        error: Optional[str] = None

        try:
            if await self.runs.is_cancelled(run_id):
                raise SyncCancelledError(f"Run {run_id} cancelled before start")
            await self.runs.start_run(run_id)
            await self.catalog.ensure_game(scope.slug, scope.name or scope.slug, scope.provider_game)

            active_since = self.clock() - timedelta(minutes=self.config.stale_run_minutes)
            if not force and await self.runs.has_running_run(
                self.provider, scope.slug, exclude_run_id=run_id, active_since=active_since,
            ):
                logger.warning(f"[catalog_sync] {scope.slug}: another run is active, skipping all phases")
                for phase in PHASES:
                    await self._skip_phase(ctx, phase, SKIP_ALREADY_RUNNING)
            else:
                await self._run_phase(ctx, PHASE_SETS, self._sync_sets)
                await self._run_phase(ctx, PHASE_CARDS, self._sync_cards)
                await self._run_phase(ctx, PHASE_VARIANTS, self._sync_variants)

        except SyncCancelledError as e:
            status = RunStatus.CANCELLED
            error = e.message
            logger.warning(f"[catalog_sync] {scope.slug}: {e.message}")
        except (asyncio.CancelledError, KeyboardInterrupt) as e:
            # Task torn down mid-run; leave a terminal status behind before unwinding
            logger.warning(f"[catalog_sync] {scope.slug}: interrupted ({type(e).__name__})")
            await self.runs.complete_run(
                run_id, RunStatus.CANCELLED, ctx.stats.to_results(), self._metrics(ctx),
                f"Interrupted: {type(e).__name__}",
            )
            raise
        except CatalogSyncError as e:
            status = RunStatus.FAILED
            error = e.message
            logger.error(f"[catalog_sync] {scope.slug} failed: {e.code}: {e.message}")
            await self._emit(self._event(ctx, events.ERROR, data=e.to_dict()))
        except Exception as e:
            status = RunStatus.FAILED
            error = f"{type(e).__name__}: {e}"
            logger.exception(f"[catalog_sync] {scope.slug} failed unexpectedly")
            await self._emit(self._event(ctx, events.ERROR, data={"error_type": type(e).__name__, "message": str(e)}))

        results = ctx.stats.to_results()
        metrics = self._metrics(ctx)
        await self.runs.complete_run(run_id, status, results, metrics, error)

        await self._emit(self._event(ctx, events.GAME_DONE, data={
            "status": status,
            "error": error,
            "matched": ctx.stats.matched,
            "unmatched": ctx.stats.unmatched,
            "conflicts": ctx.stats.conflicts,
            "rolled_back": ctx.stats.rolled_back,
            "updated": ctx.stats.updated,
        }))
        logger.info(
            f"[catalog_sync] {scope.slug} {status}: processed={ctx.stats.processed} "
            f"matched={ctx.stats.matched} unmatched={ctx.stats.unmatched} "
            f"conflicts={ctx.stats.conflicts} rolled_back={ctx.stats.rolled_back}"
        )
        return GameRunResult(scope.slug, run_id, status, results, metrics, error)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _run_phase(self, ctx: _GameContext, phase: str, handler) -> None:
        reason = await self._skip_reason(ctx, phase)
        if reason:
            await self._skip_phase(ctx, phase, reason)
            return

        await self._check_cancelled(ctx)
        ctx.stats.phases[phase] = {"status": "running", "pages": 0, "items": 0}
        await self._emit(self._event(ctx, events.PHASE_START, phase))
        await handler(ctx)
        ctx.stats.phases[phase]["status"] = "completed"
        await self.runs.mark_phase_completed(ctx.run_id, phase)

    async def _skip_reason(self, ctx: _GameContext, phase: str) -> Optional[str]:
        if ctx.force:
            return None
        last = await self.runs.last_phase_completed_at(self.provider, ctx.scope.slug, phase)
        if last is None:
            return None
        if self.clock() - last < timedelta(hours=self.config.freshness_hours):
            return SKIP_FRESH
        return None

    async def _skip_phase(self, ctx: _GameContext, phase: str, reason: str) -> None:
        ctx.stats.phases[phase] = {"status": "skipped", "reason": reason}
        logger.info(f"[catalog_sync] {ctx.scope.slug}/{phase}: skipped ({reason})")
        await self._emit(self._event(ctx, events.PHASE_SKIPPED, phase, data={"reason": reason}))

    async def _sync_sets(self, ctx: _GameContext) -> None:
        scope = ctx.scope
        game = scope.slug
        stats = ctx.stats

        pages: List[Page] = []
        records: List[RemoteRecord] = []
        async for page in paginate(lambda cursor: self.client.list_sets(scope, cursor)):
            pages.append(page)
            records.extend(page.items)
            await self._check_cancelled(ctx)
        stats.total += len(records)
        logger.info(f"[catalog_sync] {game}/sets: fetched {len(records)} remote sets in {len(pages)} pages")

        index = build_canonical_index(records)

        rollback = await rollback_stale_links(self.catalog, game, ENTITY_SET, index)
        stats.rolled_back += rollback.rolled_back
        stats.updated += rollback.rolled_back
        for entity in rollback.entities:
            stats.add_sample("rolled_back", {
                "id": entity.id, "name": entity.name, "provider_id": entity.provider_id,
            }, self.config.max_samples)

        linked = await self.catalog.entities_with_provider_id(game, ENTITY_SET)
        claimed = {entity.provider_id for entity in linked}
        missing = await self.catalog.entities_missing_provider_id(game, ENTITY_SET)
        stats.total += len(missing)

        matcher = Matcher(index, region=scope.region, out_of_scope_enabled=self.config.out_of_scope_enabled)
        match_results = matcher.match_all(missing, claimed)
        rows = []
        for result in match_results:
            self._tally(stats, result)
            if result.status == MatchStatus.MATCHED:
                rows.append(match_row(self.provider, game, ENTITY_SET, result))

        written = await self.upserter.write_matches(ENTITY_SET, rows)
        stats.updated += written.written
        stats.processed += len(missing)
        await self._progress(ctx, PHASE_SETS)

        not_found = [record for record in records if record.id not in claimed]
        stats.not_found += len(not_found)
        await self._emit(self._event(ctx, events.GUARDRAIL_RESULT, PHASE_SETS, data={
            "checked": rollback.checked,
            "rolled_back": rollback.rolled_back,
            "not_found": len(not_found),
            "matched": sum(1 for r in match_results if r.status == MatchStatus.MATCHED),
        }))

        for position, page in enumerate(pages):
            await self._write_page(ctx, PHASE_SETS, ENTITY_SET, page.items, parent_local_id=None)
            is_last = position == len(pages) - 1
            await self.cursors.set_cursor(
                self.provider, game, sets_cursor_key(),
                page.next_cursor, is_complete=is_last,
            )
            await self._progress(ctx, PHASE_SETS, page_items=len(page.items))
            await self._check_cancelled(ctx)

    async def _sync_cards(self, ctx: _GameContext) -> None:
        game = ctx.scope.slug
        sets = await self.catalog.entities_with_provider_id(game, ENTITY_SET)
        logger.info(f"[catalog_sync] {game}/cards: {len(sets)} linked sets")
        for local_set in sets:
            await self._sync_stream(
                ctx,
                PHASE_CARDS,
                ENTITY_CARD,
                cards_cursor_key(local_set.provider_id),
                lambda cursor, sid=local_set.provider_id: self.client.list_cards(ctx.scope, sid, cursor),
                parent_local_id=local_set.id,
            )

    async def _sync_variants(self, ctx: _GameContext) -> None:
        game = ctx.scope.slug
        cards = await self.catalog.entities_with_provider_id(game, ENTITY_CARD)
        logger.info(f"[catalog_sync] {game}/variants: {len(cards)} linked cards")
        for card in cards:
            await self._sync_stream(
                ctx,
                PHASE_VARIANTS,
                ENTITY_VARIANT,
                variants_cursor_key(card.provider_id),
                lambda cursor, cid=card.provider_id: self.client.list_variants(ctx.scope, cid, cursor),
                parent_local_id=card.id,
            )

    async def _sync_stream(
        self,
        ctx: _GameContext,
        phase: str,
        entity_type: str,
        cursor_key: str,
        fetch_page,
        parent_local_id: Optional[int],
    ) -> None:
        """Upsert-then-advance traversal of one resumable stream."""
        game = ctx.scope.slug
        state = await self.cursors.get_cursor(self.provider, game, cursor_key)
        start_cursor = None
        if state is not None and not state.is_complete and state.cursor:
            start_cursor = state.cursor
            logger.info(f"[catalog_sync] {game}/{cursor_key}: resuming from cursor {start_cursor!r}")

        last_cursor = start_cursor
        async for page in paginate(fetch_page, start_cursor):
            ctx.stats.total += len(page.items)
            await self._write_page(ctx, phase, entity_type, page.items, parent_local_id)
            if page.next_cursor:
                last_cursor = page.next_cursor
                await self.cursors.set_cursor(self.provider, game, cursor_key, page.next_cursor)
            await self._progress(ctx, phase, page_items=len(page.items))
            await self._check_cancelled(ctx)

        await self.cursors.set_cursor(self.provider, game, cursor_key, last_cursor, is_complete=True)

    async def _write_page(
        self,
        ctx: _GameContext,
        phase: str,
        entity_type: str,
        items: Sequence[RemoteRecord],
        parent_local_id: Optional[int],
    ) -> None:
        stats = ctx.stats
        rows = [
            discovery_row(self.provider, ctx.scope.slug, entity_type, record, parent_local_id)
            for record in items
        ]
        written = await self.upserter.write_discovered(entity_type, rows)
        stats.discovered += written.written
        stats.skipped_rows += written.skipped
        for skipped in written.skipped_rows:
            stats.add_sample("skipped_rows", skipped, self.config.max_samples)

        stats.pages += 1
        stats.processed += len(items)
        phase_stats = stats.phases.setdefault(phase, {"status": "running", "pages": 0, "items": 0})
        phase_stats["pages"] = phase_stats.get("pages", 0) + 1
        phase_stats["items"] = phase_stats.get("items", 0) + len(items)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _tally(self, stats: GameRunStats, result) -> None:
        limit = self.config.max_samples
        if result.status == MatchStatus.MATCHED:
            stats.matched += 1
            key = result.match_type.value
            stats.match_types[key] = stats.match_types.get(key, 0) + 1
        elif result.status == MatchStatus.CONFLICT:
            stats.conflicts += 1
            stats.add_sample("conflict", result.sample(), limit)
        elif result.status == MatchStatus.OUT_OF_SCOPE:
            stats.out_of_scope += 1
            stats.add_sample("out_of_scope", result.sample(), limit)
        elif result.is_ambiguous:
            stats.unmatched += 1
            stats.ambiguous += 1
            stats.add_sample("ambiguous", result.sample(), limit)
        else:
            stats.unmatched += 1
            stats.add_sample("unmatched", result.sample(), limit)

    async def _check_cancelled(self, ctx: _GameContext) -> None:
        if await self.runs.is_cancelled(ctx.run_id):
            raise SyncCancelledError(f"Run {ctx.run_id} cancelled")

    async def _progress(self, ctx: _GameContext, phase: str, page_items: Optional[int] = None) -> None:
        await self.runs.update_progress(ctx.run_id, ctx.stats.processed, ctx.stats.total)
        data = {"page_items": page_items} if page_items is not None else {}
        await self._emit(self._event(ctx, events.PAGE_UPSERTED, phase, data=data))

    def _event(self, ctx: _GameContext, event_type: str, phase: Optional[str] = None, data=None) -> SyncEvent:
        return SyncEvent(
            type=event_type,
            game=ctx.scope.slug,
            phase=phase,
            processed=ctx.stats.processed,
            total=ctx.stats.total,
            data=data or {},
            run_id=ctx.run_id,
        )

    async def _emit(self, event: SyncEvent) -> None:
        if self.event_sink is None:
            return
        try:
            await self.event_sink(event)
        except Exception as e:
            # Sink errors never fail the run
            logger.warning(f"[catalog_sync] Event sink failed for {event.type}: {e}")

    def _request_count(self) -> int:
        return self.client.request_count

    def _rate_limit_waits(self) -> int:
        if self.rate_limiter is None:
            return 0
        return self.rate_limiter.metrics["waits"]

    def _metrics(self, ctx: _GameContext) -> Dict[str, Any]:
        duration = time.monotonic() - ctx.started
        return {
            "api_requests": self._request_count() - ctx.requests_at_start,
            "rate_limit_waits": self._rate_limit_waits() - ctx.waits_at_start,
            "duration_seconds": round(duration, 3),
            "items_per_second": round(ctx.stats.processed / duration, 2) if duration > 0 else 0.0,
        }
