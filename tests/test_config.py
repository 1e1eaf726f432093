import importlib
import os

import app.core.config as config
from app.services.catalog_sync.config import CatalogSyncConfig


def _restore_env(env_snapshot):
    """Restore a snapshot of specific env vars and reload settings."""
    for key, value in env_snapshot.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value
    importlib.reload(config)


def test_sync_settings_from_environment(monkeypatch):
    """Comma-separated game lists and tuning knobs are read from the env."""
    keys = [
        "CATALOG_SYNC_GAMES", "CATALOG_PAGE_SIZE", "CATALOG_RATE_LIMIT_CAPACITY",
        "CATALOG_STALE_RUN_MINUTES", "JUSTTCG_API_KEY",
    ]
    snapshot = {k: os.environ.get(k) for k in keys}

    try:
        monkeypatch.setenv("CATALOG_SYNC_GAMES", "pokemon, yugioh")
        monkeypatch.setenv("CATALOG_PAGE_SIZE", "25")
        monkeypatch.setenv("CATALOG_RATE_LIMIT_CAPACITY", "3")
        monkeypatch.setenv("CATALOG_STALE_RUN_MINUTES", "10")
        monkeypatch.setenv("JUSTTCG_API_KEY", "secret")

        importlib.reload(config)
        sync_config = CatalogSyncConfig.from_settings(config.settings)

        assert sync_config.default_games == ("pokemon", "yugioh")
        assert sync_config.page_size == 25
        assert sync_config.token_bucket_config().capacity == 3
        assert sync_config.stale_run_minutes == 10.0
        assert sync_config.auth_headers()["x-api-key"] == "secret"
    finally:
        _restore_env(snapshot)


def test_sync_games_accepts_json_list():
    settings = config.Settings(DATABASE_URL="postgresql+asyncpg://u:p@h/db", CATALOG_SYNC_GAMES='["mtg", "lorcana"]')
    assert settings.CATALOG_SYNC_GAMES == ["mtg", "lorcana"]


def test_database_url_converted_to_asyncpg():
    settings = config.Settings(DATABASE_URL="postgres://u:p@h:5432/db")
    assert settings.DATABASE_URL == "postgresql+asyncpg://u:p@h:5432/db"


def test_retry_config_mirrors_sync_config():
    sync_config = CatalogSyncConfig(retries=2, base_delay=0.1, max_delay=5.0, timeout=7.0)
    retry = sync_config.retry_config()
    assert (retry.retries, retry.base_delay, retry.max_delay, retry.timeout) == (2, 0.1, 5.0, 7.0)


def test_auth_header_omitted_without_key():
    assert "x-api-key" not in CatalogSyncConfig(api_key="").auth_headers()
