"""
TCG Catalog Sync
FastAPI application entry point
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text

from app.api.routes import catalog_sync
from app.core.config import settings
from app.core.database import engine
from app.jobs.catalog_sync import build_rate_limiter
from app.services.catalog_sync import CatalogSyncConfig

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the process-wide provider rate limiter once."""
    config = CatalogSyncConfig.from_settings()
    app.state.catalog_rate_limiter = build_rate_limiter(config)
    logger.info(
        f"Catalog rate limiter: capacity={config.rate_limit_capacity}, "
        f"refill={config.rate_limit_refill_per_second}/s"
    )

    yield

    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    lifespan=lifespan,
)

app.include_router(catalog_sync.router, prefix="/api", tags=["Admin - Catalog Sync"])


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness plus a database ping."""
    db_ok = True
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Health check DB ping failed: {e}")
        db_ok = False
    return {"status": "healthy" if db_ok else "degraded", "database": db_ok}
