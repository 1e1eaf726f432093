from app.models.catalog import (
    RunStatus,
    CatalogGame,
    CatalogSet,
    CatalogCard,
    CatalogVariant,
    SyncCursor,
    SyncRun,
)

__all__ = [
    "RunStatus",
    # Catalog mirror
    "CatalogGame",
    "CatalogSet",
    "CatalogCard",
    "CatalogVariant",
    # Sync bookkeeping
    "SyncCursor",
    "SyncRun",
]
