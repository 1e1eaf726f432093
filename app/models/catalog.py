"""
Catalog Mirror Models

Local mirror of the remote card catalog (games -> sets -> cards -> variants)
plus the bookkeeping tables of the sync engine.

- CatalogGame / CatalogSet / CatalogCard / CatalogVariant: local stable id,
  parent FK, name, optional code, natural_id "{provider}-{remote_id}" and a
  nullable provider_id that is filled in by matching or discovery
- SyncCursor: resume point per (provider, game, entity)
- SyncRun: one orchestrated execution for one game

provider_id is unique per (provider, game) so a remote record can be linked
to at most one local row.
"""
from uuid import uuid4

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, Numeric,
    ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB

from app.core.database import Base
from app.core.utils import utcnow


class RunStatus:
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    TERMINAL = (COMPLETED, FAILED, CANCELLED)


class CatalogGame(Base):
    __tablename__ = "catalog_games"

    id = Column(Integer, primary_key=True)
    slug = Column(String(100), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    provider = Column(String(50), nullable=True)
    provider_id = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class CatalogSet(Base):
    __tablename__ = "catalog_sets"

    id = Column(Integer, primary_key=True)
    game = Column(String(100), ForeignKey("catalog_games.slug"), nullable=False)
    name = Column(String(500), nullable=False)
    code = Column(String(50), nullable=True)
    series = Column(String(255), nullable=True)
    total_cards = Column(Integer, nullable=True)
    release_date = Column(String(20), nullable=True)  # provider sends ISO date strings

    provider = Column(String(50), nullable=True)
    natural_id = Column(String(300), nullable=True, unique=True)
    provider_id = Column(String(255), nullable=True)
    data = Column(JSONB, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "game", "provider_id", name="uq_catalog_sets_provider_id"),
        Index("ix_catalog_sets_game_missing", "game", "provider_id"),
    )


class CatalogCard(Base):
    __tablename__ = "catalog_cards"

    id = Column(Integer, primary_key=True)
    game = Column(String(100), ForeignKey("catalog_games.slug"), nullable=False)
    set_id = Column(Integer, ForeignKey("catalog_sets.id", ondelete="CASCADE"), nullable=True)
    name = Column(String(500), nullable=False)
    number = Column(String(50), nullable=True)
    rarity = Column(String(100), nullable=True)
    set_provider_id = Column(String(255), nullable=True)

    provider = Column(String(50), nullable=True)
    natural_id = Column(String(300), nullable=True, unique=True)
    provider_id = Column(String(255), nullable=True)
    data = Column(JSONB, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "game", "provider_id", name="uq_catalog_cards_provider_id"),
        Index("ix_catalog_cards_set", "set_id"),
    )


class CatalogVariant(Base):
    __tablename__ = "catalog_variants"

    id = Column(Integer, primary_key=True)
    game = Column(String(100), ForeignKey("catalog_games.slug"), nullable=False)
    card_id = Column(Integer, ForeignKey("catalog_cards.id", ondelete="CASCADE"), nullable=True)
    name = Column(String(500), nullable=False)
    language = Column(String(50), nullable=True)
    printing = Column(String(100), nullable=True)
    condition = Column(String(100), nullable=True)
    sku = Column(String(255), nullable=True)
    price = Column(Numeric(12, 2), nullable=True)
    market_price = Column(Numeric(12, 2), nullable=True)
    low_price = Column(Numeric(12, 2), nullable=True)
    high_price = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(10), nullable=True)
    card_provider_id = Column(String(255), nullable=True)

    provider = Column(String(50), nullable=True)
    natural_id = Column(String(300), nullable=True, unique=True)
    provider_id = Column(String(255), nullable=True)
    data = Column(JSONB, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "game", "provider_id", name="uq_catalog_variants_provider_id"),
        Index("ix_catalog_variants_card", "card_id"),
    )


class SyncCursor(Base):
    """
    Resume point for one (provider, game, entity) stream.

    entity is "sets", "cards:{set_provider_id}" or "variants:{card_provider_id}".
    Overwritten after every durably upserted page; only deleted by an
    explicit reset.
    """
    __tablename__ = "sync_cursors"

    id = Column(Integer, primary_key=True)
    provider = Column(String(50), nullable=False)
    game = Column(String(100), nullable=False)
    entity = Column(String(300), nullable=False)
    cursor = Column(Text, nullable=True)
    is_complete = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("provider", "game", "entity", name="uq_sync_cursors_key"),
    )


class SyncRun(Base):
    """
    One orchestrated sync of one game.

    queued -> running -> completed | failed | cancelled. processed and total
    only ever grow. completed_phases maps phase name -> ISO timestamp for the
    phases this run actually executed (skipped phases are not recorded).
    """
    __tablename__ = "sync_runs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    provider = Column(String(50), nullable=False)
    game = Column(String(100), nullable=False)
    scope = Column(JSONB, nullable=True)

    status = Column(String(20), nullable=False, default=RunStatus.QUEUED)
    processed = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    results = Column(JSONB, nullable=True)
    metrics = Column(JSONB, nullable=True)
    completed_phases = Column(JSONB, nullable=False, default=dict)
    cancel_requested = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_sync_runs_game_status", "provider", "game", "status"),
    )
