"""
Chunked, idempotent writes for the sync engine.

Two policies:
- write_matches(): provider-id links for matched local rows, keyed by local
  id. The first failing chunk aborts with ChunkUpsertError.
- write_discovered(): mirrored remote rows, keyed by natural_id
  "{provider}-{remote_id}". A chunk that hits a unique-constraint violation is
  retried row by row so one bad row does not cost the whole chunk; rows that
  still fail are skipped and reported.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

from app.adapters.justtcg import RemoteRecord
from app.core.exceptions import ChunkUpsertError, PersistenceConstraintError, PersistenceError
from app.core.utils import chunked, utcnow
from app.services.catalog_sync.matcher import MatchResult
from app.services.catalog_sync.store import (
    ENTITY_CARD,
    ENTITY_SET,
    ENTITY_VARIANT,
    CatalogStore,
)

logger = logging.getLogger(__name__)


def natural_id(provider: str, remote_id: str) -> str:
    return f"{provider}-{remote_id}"


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _text(value: Any, limit: int = 255) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text[:limit] if text else None


def match_row(provider: str, game: str, entity_type: str, result: MatchResult) -> Dict[str, Any]:
    """Row linking a local entity to its matched remote record."""
    return {
        "id": result.entity.id,
        "game": game,
        "name": result.entity.name,
        "provider": provider,
        "provider_id": result.remote_id,
        "natural_id": natural_id(provider, result.remote_id),
        "last_synced_at": utcnow(),
    }


def discovery_row(
    provider: str,
    game: str,
    entity_type: str,
    record: RemoteRecord,
    parent_local_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Mirror row for a remote record; entity-specific columns come from raw."""
    raw = record.raw or {}
    row: Dict[str, Any] = {
        "game": game,
        "name": record.name or record.id,
        "provider": provider,
        "provider_id": record.id,
        "natural_id": natural_id(provider, record.id),
        "data": raw,
        "last_synced_at": utcnow(),
    }

    if entity_type == ENTITY_SET:
        row.update({
            "code": _text(record.code, 50),
            "series": _text(raw.get("series")),
            "total_cards": _as_int(raw.get("total") or raw.get("cards_count") or raw.get("printedTotal")),
            "release_date": _text(raw.get("release_date") or raw.get("releaseDate"), 20),
        })
    elif entity_type == ENTITY_CARD:
        row.update({
            "set_id": parent_local_id,
            "set_provider_id": record.parent_id,
            "number": _text(raw.get("number") or record.code, 50),
            "rarity": _text(raw.get("rarity"), 100),
        })
    elif entity_type == ENTITY_VARIANT:
        row.update({
            "card_id": parent_local_id,
            "card_provider_id": record.parent_id,
            "language": _text(raw.get("language"), 50),
            "printing": _text(raw.get("printing"), 100),
            "condition": _text(raw.get("condition"), 100),
            "sku": _text(raw.get("sku") or raw.get("tcgplayerSkuId")),
            "price": _as_decimal(raw.get("price")),
            "market_price": _as_decimal(raw.get("market_price") or raw.get("marketPrice")),
            "low_price": _as_decimal(raw.get("low_price") or raw.get("lowPrice")),
            "high_price": _as_decimal(raw.get("high_price") or raw.get("highPrice")),
            "currency": _text(raw.get("currency"), 10) or "USD",
        })
    return row


@dataclass
class UpsertStats:
    written: int = 0
    skipped: int = 0
    chunks: int = 0
    skipped_rows: List[Dict[str, Any]] = field(default_factory=list)

    def merge(self, other: "UpsertStats") -> None:
        self.written += other.written
        self.skipped += other.skipped
        self.chunks += other.chunks
        self.skipped_rows.extend(other.skipped_rows)


class BatchUpserter:
    def __init__(self, store: CatalogStore, chunk_size: int = 50):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.store = store
        self.chunk_size = chunk_size

    async def write_matches(self, entity_type: str, rows: Sequence[Dict[str, Any]]) -> UpsertStats:
        stats = UpsertStats()
        for chunk_index, chunk in enumerate(chunked(rows, self.chunk_size)):
            try:
                stats.written += await self.store.batch_upsert(entity_type, chunk, "id")
            except PersistenceError as e:
                logger.error(f"[upsert] {entity_type} match chunk {chunk_index} failed: {e.message}")
                raise ChunkUpsertError(
                    f"Match chunk {chunk_index} for {entity_type} failed: {e.message}",
                    entity_type=entity_type,
                    chunk_index=chunk_index,
                    chunk_size=len(chunk),
                ) from e
            stats.chunks += 1
        return stats

    async def write_discovered(self, entity_type: str, rows: Sequence[Dict[str, Any]]) -> UpsertStats:
        stats = UpsertStats()
        for chunk_index, chunk in enumerate(chunked(rows, self.chunk_size)):
            try:
                stats.written += await self.store.batch_upsert(entity_type, chunk, "natural_id")
            except PersistenceConstraintError as e:
                logger.warning(
                    f"[upsert] {entity_type} chunk {chunk_index} hit {e.details.get('constraint')}, "
                    f"retrying {len(chunk)} rows singly"
                )
                stats.merge(await self._write_singly(entity_type, chunk))
            except PersistenceError as e:
                raise ChunkUpsertError(
                    f"Discovery chunk {chunk_index} for {entity_type} failed: {e.message}",
                    entity_type=entity_type,
                    chunk_index=chunk_index,
                    chunk_size=len(chunk),
                ) from e
            stats.chunks += 1
        return stats

    async def _write_singly(self, entity_type: str, rows: Sequence[Dict[str, Any]]) -> UpsertStats:
        stats = UpsertStats()
        for row in rows:
            try:
                stats.written += await self.store.batch_upsert(entity_type, [row], "natural_id")
            except PersistenceConstraintError as e:
                stats.skipped += 1
                stats.skipped_rows.append({
                    "natural_id": row.get("natural_id"),
                    "name": row.get("name"),
                    "constraint": e.details.get("constraint"),
                })
                logger.warning(f"[upsert] Skipped {entity_type} {row.get('natural_id')}: {e.message}")
        return stats
