"""
Catalog Sync Schemas
"""
import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

_SLUG_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9\-_! ]{0,99}$")


def _validate_slugs(games: List[str]) -> List[str]:
    for game in games:
        if not _SLUG_RE.match(game):
            raise ValueError(f"Invalid game slug: {game!r}")
    return games


# =============================================================
# Request Schemas
# =============================================================

class CatalogSyncRequest(BaseModel):
    """Trigger a sync. games may be a list of slugs or the string "ALL"."""
    games: Optional[Union[List[str], str]] = None
    force: bool = False

    @field_validator("games")
    @classmethod
    def validate_games(cls, v):
        if v is None:
            return v
        if isinstance(v, str):
            if v.strip().upper() == "ALL":
                return "ALL"
            v = [g.strip() for g in v.split(",") if g.strip()]
        return _validate_slugs(v)


class CursorResetRequest(BaseModel):
    games: List[str] = Field(..., min_length=1)
    entity_prefix: Optional[str] = Field(None, max_length=300)

    @field_validator("games")
    @classmethod
    def validate_games(cls, v: List[str]) -> List[str]:
        return _validate_slugs(v)


# =============================================================
# Response Schemas
# =============================================================

class GameRunSummary(BaseModel):
    game: str
    run_id: str
    status: str
    error: Optional[str] = None
    results: Dict[str, Any] = {}
    metrics: Dict[str, Any] = {}


class CatalogSyncResponse(BaseModel):
    status: str
    provider: str
    force: bool
    games: List[GameRunSummary]
    duration_seconds: float


class CancelRunResponse(BaseModel):
    run_id: str
    cancelled: bool


class CursorResetResponse(BaseModel):
    reset: Dict[str, int]
