"""
Storage contracts for the catalog sync engine, plus their PostgreSQL versions.

The engine only ever talks to three narrow interfaces:
- CatalogStore: read entities with/without provider ids, chunk upserts
- CursorStore: (provider, game, entity) -> resume cursor
- RunTracker: SyncRun lifecycle and duplicate-sync lookups

Each write is its own transaction. Nothing here spans a whole phase, so a
chunk is the atomic unit the orchestrator can rely on.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.exceptions import PersistenceConstraintError, PersistenceError
from app.core.utils import utcnow
from app.models.catalog import (
    CatalogCard,
    CatalogGame,
    CatalogSet,
    CatalogVariant,
    RunStatus,
    SyncCursor,
    SyncRun,
)

logger = logging.getLogger(__name__)

ENTITY_SET = "set"
ENTITY_CARD = "card"
ENTITY_VARIANT = "variant"

ENTITY_MODELS = {
    ENTITY_SET: CatalogSet,
    ENTITY_CARD: CatalogCard,
    ENTITY_VARIANT: CatalogVariant,
}

# Column holding the structured code, and the parent FK, per entity type
CODE_COLUMNS = {ENTITY_SET: "code", ENTITY_CARD: "number", ENTITY_VARIANT: None}
PARENT_COLUMNS = {ENTITY_SET: None, ENTITY_CARD: "set_id", ENTITY_VARIANT: "card_id"}


@dataclass
class LocalEntity:
    """A locally stored catalog row, as the matcher sees it."""
    id: int
    name: str
    code: Optional[str] = None
    provider_id: Optional[str] = None
    parent_id: Optional[int] = None


@dataclass
class CursorState:
    cursor: Optional[str]
    is_complete: bool = False
    updated_at: Optional[datetime] = None


class CatalogStore(ABC):
    provider: str

    @abstractmethod
    async def ensure_game(self, slug: str, name: str, provider_id: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def entities_missing_provider_id(
        self, game: str, entity_type: str, parent_id: Optional[int] = None
    ) -> List[LocalEntity]:
        ...

    @abstractmethod
    async def entities_with_provider_id(
        self, game: str, entity_type: str, parent_id: Optional[int] = None
    ) -> List[LocalEntity]:
        ...

    @abstractmethod
    async def batch_upsert(
        self, entity_type: str, rows: Sequence[Dict[str, Any]], conflict_key: str
    ) -> int:
        """Upsert rows in ONE transaction. Raises PersistenceConstraintError on unique violations."""

    @abstractmethod
    async def clear_provider_ids(self, entity_type: str, ids: Sequence[int]) -> int:
        ...


class CursorStore(ABC):
    @abstractmethod
    async def get_cursor(self, provider: str, game: str, entity: str) -> Optional[CursorState]:
        ...

    @abstractmethod
    async def set_cursor(
        self, provider: str, game: str, entity: str, cursor: Optional[str], is_complete: bool = False
    ) -> None:
        ...

    @abstractmethod
    async def reset_cursors(self, provider: str, game: str, entity_prefix: Optional[str] = None) -> int:
        ...


class RunTracker(ABC):
    @abstractmethod
    async def create_run(self, scope: Dict[str, Any]) -> str:
        ...

    @abstractmethod
    async def start_run(self, run_id: str) -> None:
        ...

    @abstractmethod
    async def update_progress(self, run_id: str, processed: int, total: int) -> None:
        ...

    @abstractmethod
    async def mark_phase_completed(self, run_id: str, phase: str) -> None:
        ...

    @abstractmethod
    async def complete_run(
        self,
        run_id: str,
        status: str,
        results: Dict[str, Any],
        metrics: Dict[str, Any],
        error: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    async def is_cancelled(self, run_id: str) -> bool:
        ...

    @abstractmethod
    async def request_cancel(self, run_id: str) -> bool:
        ...

    @abstractmethod
    async def last_phase_completed_at(self, provider: str, game: str, phase: str) -> Optional[datetime]:
        ...

    @abstractmethod
    async def has_running_run(
        self,
        provider: str,
        game: str,
        exclude_run_id: Optional[str] = None,
        active_since: Optional[datetime] = None,
    ) -> bool:
        """True when another run is RUNNING and, given active_since, touched it since then."""
        ...

    @abstractmethod
    async def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        ...


# =============================================================================
# PostgreSQL implementations
# =============================================================================

class _SessionMixin:
    def __init__(self, session_factory=None):
        if session_factory is None:
            from app.core.database import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, entity_type: Optional[str] = None):
        """One transaction; database errors leave as PersistenceError."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                constraint = getattr(getattr(e, "orig", None), "constraint_name", None)
                raise PersistenceConstraintError(
                    f"Unique constraint violated writing {entity_type or 'row'}",
                    entity_type=entity_type,
                    constraint=constraint,
                ) from e
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(f"{type(e).__name__}: {e}") from e


class SqlCatalogStore(_SessionMixin, CatalogStore):
    def __init__(self, provider: str, session_factory=None):
        super().__init__(session_factory)
        self.provider = provider

    def _columns(self, entity_type: str):
        model = ENTITY_MODELS[entity_type]
        code_col = CODE_COLUMNS[entity_type]
        parent_col = PARENT_COLUMNS[entity_type]
        return model, (
            model.id,
            model.name,
            getattr(model, code_col) if code_col else None,
            model.provider_id,
            getattr(model, parent_col) if parent_col else None,
        )

    async def _select_entities(self, entity_type, game, parent_id, with_provider_id):
        model, (id_col, name_col, code_col, pid_col, parent_col) = self._columns(entity_type)
        columns = [id_col, name_col, pid_col]
        if code_col is not None:
            columns.append(code_col)
        if parent_col is not None:
            columns.append(parent_col)

        stmt = select(*columns).where(model.game == game)
        if with_provider_id:
            # Links written before the provider column was set count as ours
            stmt = stmt.where(
                model.provider_id.is_not(None),
                or_(model.provider.is_(None), model.provider == self.provider),
            )
        else:
            stmt = stmt.where(model.provider_id.is_(None))
        if parent_id is not None and parent_col is not None:
            stmt = stmt.where(parent_col == parent_id)
        stmt = stmt.order_by(model.id)

        async with self._session(entity_type) as session:
            result = await session.execute(stmt)
            rows = result.mappings().all()

        code_key = CODE_COLUMNS[entity_type]
        parent_key = PARENT_COLUMNS[entity_type]
        return [
            LocalEntity(
                id=row["id"],
                name=row["name"],
                code=row[code_key] if code_key else None,
                provider_id=row["provider_id"],
                parent_id=row[parent_key] if parent_key else None,
            )
            for row in rows
        ]

    async def ensure_game(self, slug: str, name: str, provider_id: Optional[str] = None) -> None:
        stmt = pg_insert(CatalogGame).values(
            slug=slug, name=name, provider=self.provider, provider_id=provider_id
        ).on_conflict_do_nothing(index_elements=["slug"])
        async with self._session("game") as session:
            await session.execute(stmt)

    async def entities_missing_provider_id(self, game, entity_type, parent_id=None):
        return await self._select_entities(entity_type, game, parent_id, with_provider_id=False)

    async def entities_with_provider_id(self, game, entity_type, parent_id=None):
        return await self._select_entities(entity_type, game, parent_id, with_provider_id=True)

    async def batch_upsert(self, entity_type, rows, conflict_key):
        if not rows:
            return 0
        model = ENTITY_MODELS[entity_type]
        stmt = pg_insert(model).values(list(rows))
        update_cols = {
            col: stmt.excluded[col]
            for col in rows[0].keys()
            if col not in (conflict_key, "id", "created_at")
        }
        update_cols["updated_at"] = utcnow()
        stmt = stmt.on_conflict_do_update(index_elements=[conflict_key], set_=update_cols)

        async with self._session(entity_type) as session:
            await session.execute(stmt)
        return len(rows)

    async def clear_provider_ids(self, entity_type, ids):
        if not ids:
            return 0
        model = ENTITY_MODELS[entity_type]
        stmt = (
            update(model)
            .where(model.id.in_(list(ids)))
            .values(provider_id=None, natural_id=None, updated_at=utcnow())
        )
        async with self._session(entity_type) as session:
            result = await session.execute(stmt)
        return result.rowcount or 0


class SqlCursorStore(_SessionMixin, CursorStore):
    async def get_cursor(self, provider, game, entity):
        stmt = select(SyncCursor).where(
            SyncCursor.provider == provider,
            SyncCursor.game == game,
            SyncCursor.entity == entity,
        )
        async with self._session("cursor") as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return None
            return CursorState(cursor=row.cursor, is_complete=row.is_complete, updated_at=row.updated_at)

    async def set_cursor(self, provider, game, entity, cursor, is_complete=False):
        now = utcnow()
        stmt = pg_insert(SyncCursor).values(
            provider=provider, game=game, entity=entity,
            cursor=cursor, is_complete=is_complete, updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_sync_cursors_key",
            set_={"cursor": cursor, "is_complete": is_complete, "updated_at": now},
        )
        async with self._session("cursor") as session:
            await session.execute(stmt)

    async def reset_cursors(self, provider, game, entity_prefix=None):
        stmt = delete(SyncCursor).where(SyncCursor.provider == provider, SyncCursor.game == game)
        if entity_prefix:
            stmt = stmt.where(SyncCursor.entity.startswith(entity_prefix))
        async with self._session("cursor") as session:
            result = await session.execute(stmt)
        count = result.rowcount or 0
        logger.info(f"[catalog_sync] Reset {count} cursors for {provider}/{game} prefix={entity_prefix!r}")
        return count


class SqlRunTracker(_SessionMixin, RunTracker):
    async def create_run(self, scope):
        run = SyncRun(
            provider=scope["provider"],
            game=scope["game"],
            scope=scope,
            status=RunStatus.QUEUED,
            completed_phases={},
        )
        async with self._session("sync_run") as session:
            session.add(run)
            await session.flush()
            run_id = run.id
        return run_id

    async def start_run(self, run_id):
        stmt = (
            update(SyncRun)
            .where(SyncRun.id == run_id, SyncRun.status == RunStatus.QUEUED)
            .values(status=RunStatus.RUNNING, started_at=utcnow(), updated_at=utcnow())
        )
        async with self._session("sync_run") as session:
            await session.execute(stmt)

    async def update_progress(self, run_id, processed, total):
        stmt = (
            update(SyncRun)
            .where(SyncRun.id == run_id)
            .values(
                processed=func.greatest(SyncRun.processed, processed),
                total=func.greatest(SyncRun.total, total),
                updated_at=utcnow(),
            )
        )
        async with self._session("sync_run") as session:
            await session.execute(stmt)

    async def mark_phase_completed(self, run_id, phase):
        async with self._session("sync_run") as session:
            run = await session.get(SyncRun, run_id)
            if run is None:
                return
            phases = dict(run.completed_phases or {})
            phases[phase] = utcnow().isoformat()
            run.completed_phases = phases

    async def complete_run(self, run_id, status, results, metrics, error=None):
        stmt = (
            update(SyncRun)
            .where(SyncRun.id == run_id, SyncRun.status.not_in(RunStatus.TERMINAL))
            .values(
                status=status,
                results=results,
                metrics=metrics,
                error_message=error,
                completed_at=utcnow(),
            )
        )
        async with self._session("sync_run") as session:
            await session.execute(stmt)

    async def is_cancelled(self, run_id):
        stmt = select(SyncRun.status, SyncRun.cancel_requested).where(SyncRun.id == run_id)
        async with self._session("sync_run") as session:
            row = (await session.execute(stmt)).first()
        if row is None:
            return False
        return row.cancel_requested or row.status == RunStatus.CANCELLED

    async def request_cancel(self, run_id):
        async with self._session("sync_run") as session:
            run = await session.get(SyncRun, run_id)
            if run is None or run.status in RunStatus.TERMINAL:
                return False
            run.cancel_requested = True
            if run.status == RunStatus.QUEUED:
                run.status = RunStatus.CANCELLED
                run.completed_at = utcnow()
        return True

    async def last_phase_completed_at(self, provider, game, phase):
        stmt = (
            select(func.max(SyncRun.completed_at))
            .where(
                SyncRun.provider == provider,
                SyncRun.game == game,
                SyncRun.status == RunStatus.COMPLETED,
                SyncRun.completed_phases.has_key(phase),
            )
        )
        async with self._session("sync_run") as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def has_running_run(self, provider, game, exclude_run_id=None, active_since=None):
        stmt = select(func.count()).select_from(SyncRun).where(
            SyncRun.provider == provider,
            SyncRun.game == game,
            SyncRun.status == RunStatus.RUNNING,
        )
        if exclude_run_id:
            stmt = stmt.where(SyncRun.id != exclude_run_id)
        if active_since is not None:
            stmt = stmt.where(SyncRun.updated_at >= active_since)
        async with self._session("sync_run") as session:
            count = (await session.execute(stmt)).scalar_one()
        return count > 0

    async def get_run(self, run_id):
        async with self._session("sync_run") as session:
            run = await session.get(SyncRun, run_id)
            if run is None:
                return None
            return {
                "id": run.id,
                "provider": run.provider,
                "game": run.game,
                "status": run.status,
                "processed": run.processed,
                "total": run.total,
                "error_message": run.error_message,
                "results": run.results,
                "metrics": run.metrics,
                "completed_phases": run.completed_phases,
                "created_at": run.created_at.isoformat() if run.created_at else None,
                "completed_at": run.completed_at.isoformat() if run.completed_at else None,
            }
