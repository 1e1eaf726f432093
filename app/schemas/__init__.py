from app.schemas.catalog_sync import (
    CatalogSyncRequest,
    CursorResetRequest,
    CatalogSyncResponse,
    GameRunSummary,
    CancelRunResponse,
    CursorResetResponse,
)
