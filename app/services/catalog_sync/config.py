"""
Explicit sync configuration.

Built once from Settings at the edge (job, route, CLI) and handed to the
orchestrator; nothing below this point reads the environment.
"""
from dataclasses import dataclass
from typing import Dict, Tuple

from app.core.http_client import RetryConfig
from app.core.rate_limiter import TokenBucketConfig


@dataclass(frozen=True)
class CatalogSyncConfig:
    provider: str = "justtcg"
    api_base: str = "https://api.justtcg.com/v1"
    api_key: str = ""
    api_key_header: str = "x-api-key"

    rate_limit_capacity: int = 10
    rate_limit_refill_per_second: float = 5.0

    retries: int = 4
    base_delay: float = 0.6
    max_delay: float = 30.0
    timeout: float = 30.0

    page_size: int = 100
    upsert_chunk_size: int = 50
    freshness_hours: float = 24.0
    stale_run_minutes: float = 30.0
    default_games: Tuple[str, ...] = ("pokemon", "pokemon-japan", "mtg")
    out_of_scope_enabled: bool = True
    max_samples: int = 25

    @classmethod
    def from_settings(cls, settings=None) -> "CatalogSyncConfig":
        if settings is None:
            from app.core.config import settings
        return cls(
            provider=settings.CATALOG_PROVIDER,
            api_base=settings.JUSTTCG_API_BASE,
            api_key=settings.JUSTTCG_API_KEY,
            api_key_header=settings.JUSTTCG_API_KEY_HEADER,
            rate_limit_capacity=settings.CATALOG_RATE_LIMIT_CAPACITY,
            rate_limit_refill_per_second=settings.CATALOG_RATE_LIMIT_REFILL_PER_SECOND,
            retries=settings.CATALOG_HTTP_RETRIES,
            base_delay=settings.CATALOG_HTTP_BASE_DELAY,
            max_delay=settings.CATALOG_HTTP_MAX_DELAY,
            timeout=settings.CATALOG_HTTP_TIMEOUT,
            page_size=settings.CATALOG_PAGE_SIZE,
            upsert_chunk_size=settings.CATALOG_UPSERT_CHUNK_SIZE,
            freshness_hours=settings.CATALOG_FRESHNESS_HOURS,
            stale_run_minutes=settings.CATALOG_STALE_RUN_MINUTES,
            default_games=tuple(settings.CATALOG_SYNC_GAMES),
            out_of_scope_enabled=settings.CATALOG_OUT_OF_SCOPE_ENABLED,
        )

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            retries=self.retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            timeout=self.timeout,
        )

    def token_bucket_config(self) -> TokenBucketConfig:
        return TokenBucketConfig(
            capacity=self.rate_limit_capacity,
            refill_per_second=self.rate_limit_refill_per_second,
        )

    def auth_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers[self.api_key_header] = self.api_key
        return headers
