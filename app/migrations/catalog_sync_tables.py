"""
Catalog Sync Tables Migration

Creates the local catalog mirror (catalog_games, catalog_sets, catalog_cards,
catalog_variants) and the sync bookkeeping tables (sync_cursors, sync_runs).

Idempotent - safe to run multiple times.

    python -m app.migrations.catalog_sync_tables
    python -m app.migrations.catalog_sync_tables --rollback
"""
import argparse
import asyncio
import logging
from sqlalchemy import text

logger = logging.getLogger(__name__)

TABLES = (
    "sync_runs",
    "sync_cursors",
    "catalog_variants",
    "catalog_cards",
    "catalog_sets",
    "catalog_games",
)


async def migrate_catalog_sync_tables(engine):
    """Create catalog mirror and sync tables."""
    logger.info("Starting catalog_sync_tables migration...")

    async with engine.begin() as conn:
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS catalog_games (
                id SERIAL PRIMARY KEY,
                slug VARCHAR(100) NOT NULL UNIQUE,
                name VARCHAR(255) NOT NULL,
                provider VARCHAR(50),
                provider_id VARCHAR(255),
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            )
        """))
        logger.info("Created/verified catalog_games table")

        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS catalog_sets (
                id SERIAL PRIMARY KEY,
                game VARCHAR(100) NOT NULL REFERENCES catalog_games(slug),
                name VARCHAR(500) NOT NULL,
                code VARCHAR(50),
                series VARCHAR(255),
                total_cards INTEGER,
                release_date VARCHAR(20),
                provider VARCHAR(50),
                natural_id VARCHAR(300) UNIQUE,
                provider_id VARCHAR(255),
                data JSONB,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW(),
                last_synced_at TIMESTAMPTZ,
                CONSTRAINT uq_catalog_sets_provider_id UNIQUE (provider, game, provider_id)
            )
        """))
        logger.info("Created/verified catalog_sets table")

        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS catalog_cards (
                id SERIAL PRIMARY KEY,
                game VARCHAR(100) NOT NULL REFERENCES catalog_games(slug),
                set_id INTEGER REFERENCES catalog_sets(id) ON DELETE CASCADE,
                name VARCHAR(500) NOT NULL,
                number VARCHAR(50),
                rarity VARCHAR(100),
                set_provider_id VARCHAR(255),
                provider VARCHAR(50),
                natural_id VARCHAR(300) UNIQUE,
                provider_id VARCHAR(255),
                data JSONB,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW(),
                last_synced_at TIMESTAMPTZ,
                CONSTRAINT uq_catalog_cards_provider_id UNIQUE (provider, game, provider_id)
            )
        """))
        logger.info("Created/verified catalog_cards table")

        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS catalog_variants (
                id SERIAL PRIMARY KEY,
                game VARCHAR(100) NOT NULL REFERENCES catalog_games(slug),
                card_id INTEGER REFERENCES catalog_cards(id) ON DELETE CASCADE,
                name VARCHAR(500) NOT NULL,
                language VARCHAR(50),
                printing VARCHAR(100),
                condition VARCHAR(100),
                sku VARCHAR(255),
                price NUMERIC(12, 2),
                market_price NUMERIC(12, 2),
                low_price NUMERIC(12, 2),
                high_price NUMERIC(12, 2),
                currency VARCHAR(10),
                card_provider_id VARCHAR(255),
                provider VARCHAR(50),
                natural_id VARCHAR(300) UNIQUE,
                provider_id VARCHAR(255),
                data JSONB,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW(),
                last_synced_at TIMESTAMPTZ,
                CONSTRAINT uq_catalog_variants_provider_id UNIQUE (provider, game, provider_id)
            )
        """))
        logger.info("Created/verified catalog_variants table")

        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS sync_cursors (
                id SERIAL PRIMARY KEY,
                provider VARCHAR(50) NOT NULL,
                game VARCHAR(100) NOT NULL,
                entity VARCHAR(300) NOT NULL,
                cursor TEXT,
                is_complete BOOLEAN NOT NULL DEFAULT FALSE,
                updated_at TIMESTAMPTZ DEFAULT NOW(),
                CONSTRAINT uq_sync_cursors_key UNIQUE (provider, game, entity)
            )
        """))
        logger.info("Created/verified sync_cursors table")

        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS sync_runs (
                id VARCHAR(36) PRIMARY KEY,
                provider VARCHAR(50) NOT NULL,
                game VARCHAR(100) NOT NULL,
                scope JSONB,
                status VARCHAR(20) NOT NULL DEFAULT 'queued',
                processed INTEGER NOT NULL DEFAULT 0,
                total INTEGER NOT NULL DEFAULT 0,
                error_message TEXT,
                results JSONB,
                metrics JSONB,
                completed_phases JSONB NOT NULL DEFAULT '{}'::jsonb,
                cancel_requested BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ DEFAULT NOW()
            )
        """))
        logger.info("Created/verified sync_runs table")

        await conn.execute(text("""
            CREATE INDEX IF NOT EXISTS ix_catalog_sets_game_missing
            ON catalog_sets(game, provider_id)
        """))
        await conn.execute(text("""
            CREATE INDEX IF NOT EXISTS ix_catalog_cards_set ON catalog_cards(set_id)
        """))
        await conn.execute(text("""
            CREATE INDEX IF NOT EXISTS ix_catalog_variants_card ON catalog_variants(card_id)
        """))
        await conn.execute(text("""
            CREATE INDEX IF NOT EXISTS ix_sync_runs_game_status
            ON sync_runs(provider, game, status)
        """))
        logger.info("Created indexes")

        await conn.execute(text("""
            COMMENT ON COLUMN sync_cursors.entity
            IS 'sets | cards:{set_provider_id} | variants:{card_provider_id}'
        """))

    logger.info("catalog_sync_tables migration complete!")


async def rollback_catalog_sync_tables(engine):
    """Drop all catalog sync tables (children first)."""
    logger.info("Rolling back catalog_sync_tables migration...")

    async with engine.begin() as conn:
        for table in TABLES:
            await conn.execute(text(f"DROP TABLE IF EXISTS {table}"))
            logger.info(f"Dropped {table} table")

    logger.info("catalog_sync_tables rollback complete!")


async def run_migration(rollback: bool = False):
    """Run the migration using the app's database engine."""
    from app.core.database import engine

    if rollback:
        await rollback_catalog_sync_tables(engine)
    else:
        await migrate_catalog_sync_tables(engine)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    parser = argparse.ArgumentParser(description="Catalog sync tables migration")
    parser.add_argument("--rollback", action="store_true", help="Drop the tables instead")
    args = parser.parse_args()
    asyncio.run(run_migration(rollback=args.rollback))
