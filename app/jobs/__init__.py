"""
Jobs Package

Catalog sync entry points shared by the admin API and the CLI script.
"""
from app.jobs.catalog_sync import (
    build_rate_limiter,
    run_catalog_sync_job,
    reset_catalog_cursors,
    cancel_catalog_sync_run,
)

__all__ = [
    "build_rate_limiter",
    "run_catalog_sync_job",
    "reset_catalog_cursors",
    "cancel_catalog_sync_run",
]
