"""
Catalog sync and provider-identity reconciliation.

Components:
- normalize / canonical_index: exact-only lookup structures
- matcher: code -> name -> normalized-name matching with conflict checks
- rollback: clear provider ids that vanished upstream
- paginator: resumable cursor traversal
- upserter: chunked idempotent writes
- store: storage contracts + PostgreSQL implementations
- orchestrator: per-game sets -> cards -> variants runs
"""
from app.services.catalog_sync.canonical_index import AMBIGUOUS, CanonicalIndex, build_canonical_index
from app.services.catalog_sync.config import CatalogSyncConfig
from app.services.catalog_sync.events import SyncEvent, format_sse
from app.services.catalog_sync.matcher import Matcher, MatchResult, MatchStatus, MatchType
from app.services.catalog_sync.normalize import extract_code_prefix, normalize_name
from app.services.catalog_sync.orchestrator import CatalogSyncOrchestrator, GameRunResult
from app.services.catalog_sync.paginator import paginate
from app.services.catalog_sync.rollback import rollback_stale_links
from app.services.catalog_sync.store import (
    CatalogStore,
    CursorStore,
    LocalEntity,
    RunTracker,
    SqlCatalogStore,
    SqlCursorStore,
    SqlRunTracker,
)
from app.services.catalog_sync.upserter import BatchUpserter

__all__ = [
    "AMBIGUOUS",
    "BatchUpserter",
    "CanonicalIndex",
    "CatalogStore",
    "CatalogSyncConfig",
    "CatalogSyncOrchestrator",
    "CursorStore",
    "GameRunResult",
    "LocalEntity",
    "Matcher",
    "MatchResult",
    "MatchStatus",
    "MatchType",
    "RunTracker",
    "SqlCatalogStore",
    "SqlCursorStore",
    "SqlRunTracker",
    "SyncEvent",
    "build_canonical_index",
    "extract_code_prefix",
    "format_sse",
    "normalize_name",
    "paginate",
    "rollback_stale_links",
]
