"""
JustTCG Catalog Adapter

Remote catalog client for the JustTCG API.
API: https://api.justtcg.com/v1

Endpoints used:
- GET /games
- GET /games/{game}/sets[?region=]
- GET /games/{game}/sets/{set_id}/cards
- GET /games/{game}/cards/{card_id}/variants

Every response passes through decode_envelope() before anything else sees it.
The provider has returned several body shapes over time ({"data": [...]},
{"sets": [...]}, {"results": [...]}, a bare list) with either a next_cursor
or a has_more/page pair; they all collapse into one Page of RemoteRecords.

Status handling (after ResilientHTTPClient has spent its retries):
- 2xx: decode
- 429: RateLimitExceeded
- other 4xx: ClientContractError (never retried)
- 5xx: TransientNetworkError
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from app.core.exceptions import (
    ClientContractError,
    ProviderDecodeError,
    RateLimitExceeded,
    TransientNetworkError,
)
from app.core.http_client import ResilientHTTPClient

logger = logging.getLogger(__name__)

PROVIDER_NAME = "justtcg"

ENVELOPE_KEYS = ("data", "sets", "cards", "variants", "games", "results", "items")

# Page-number cursors are encoded so the rest of the engine can treat every
# cursor as an opaque string.
PAGE_CURSOR_PREFIX = "page:"

_CJK = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af]")


@dataclass(frozen=True)
class GameScope:
    """Internal game slug plus the provider parameters it maps to."""
    slug: str
    provider_game: str
    region: Optional[str] = None
    name: Optional[str] = None


# Internal slug -> provider game parameter / region
GAME_SCOPES: Dict[str, GameScope] = {
    "pokemon": GameScope("pokemon", "pokemon", name="Pokemon"),
    "pokemon-japan": GameScope("pokemon-japan", "pokemon", region="japan", name="Pokemon Japan"),
    "mtg": GameScope("mtg", "magic-the-gathering", name="Magic: The Gathering"),
    "yugioh": GameScope("yugioh", "yugioh", name="Yu-Gi-Oh!"),
    "onepiece": GameScope("onepiece", "one-piece-card-game", name="One Piece Card Game"),
    "dbs": GameScope("dbs", "dragon-ball-super-fusion-world", name="Dragon Ball Super"),
    "lorcana": GameScope("lorcana", "disney-lorcana", name="Disney Lorcana"),
}

GAME_ALIASES: Dict[str, str] = {
    "magic-the-gathering": "mtg",
    "magic": "mtg",
    "yu-gi-oh": "yugioh",
    "yu-gi-oh!": "yugioh",
    "one-piece": "onepiece",
    "one-piece-card-game": "onepiece",
    "dragon-ball-super": "dbs",
    "dragon-ball-super-fusion-world": "dbs",
    "disney-lorcana": "lorcana",
    "pokemon-jp": "pokemon-japan",
}


def normalize_game_slug(game: str) -> str:
    """Fold provider names and aliases into the internal slug."""
    slug = (game or "").strip().lower().replace("_", "-").replace(" ", "-")
    return GAME_ALIASES.get(slug, slug)


def resolve_game_scope(game: str) -> GameScope:
    """Scope for a slug; unknown slugs are passed through to the provider as-is."""
    slug = normalize_game_slug(game)
    scope = GAME_SCOPES.get(slug)
    if scope is None:
        scope = GameScope(slug=slug, provider_game=slug, name=slug)
    return scope


def has_region_marker(text: str, region: Optional[str]) -> bool:
    """True when a name carries a marker for the given region scope."""
    if not region or not text:
        return False
    if region == "japan":
        if _CJK.search(text):
            return True
        tokens = set(re.split(r"[^a-z0-9]+", text.lower()))
        return bool(tokens & {"japan", "japanese", "jp", "jpn"})
    return region.lower() in text.lower()


@dataclass
class RemoteRecord:
    """Canonical shape of one remote catalog item."""
    id: str
    name: str
    code: Optional[str] = None
    parent_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Page:
    items: List[RemoteRecord]
    next_cursor: Optional[str] = None


def _first_str(item: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = item.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def decode_record(item: Any, parent_key: Optional[str] = None) -> RemoteRecord:
    if not isinstance(item, dict):
        raise ProviderDecodeError(f"Expected object item, got {type(item).__name__}")

    remote_id = _first_str(item, "id", "uuid", "tcgplayerId")
    if remote_id is None:
        raise ProviderDecodeError("Item has no id", details={"keys": sorted(item.keys())[:20]})

    parent_id = None
    if parent_key:
        parent_id = _first_str(item, parent_key, "set_id", "setId", "card_id", "cardId")

    return RemoteRecord(
        id=remote_id,
        name=_first_str(item, "name", "title") or "",
        code=_first_str(item, "code", "set_code", "number"),
        parent_id=parent_id,
        raw=item,
    )


def _next_cursor(body: Dict[str, Any], current: Optional[str], item_count: int) -> Optional[str]:
    cursor = body.get("next_cursor") or body.get("nextCursor")
    if cursor:
        return str(cursor)

    meta = body.get("meta") if isinstance(body.get("meta"), dict) else {}
    has_more = body.get("has_more", meta.get("hasMore", meta.get("has_more")))
    if not has_more or item_count == 0:
        return None

    page = 1
    if current and current.startswith(PAGE_CURSOR_PREFIX):
        try:
            page = int(current[len(PAGE_CURSOR_PREFIX):])
        except ValueError:
            page = 1
    return f"{PAGE_CURSOR_PREFIX}{page + 1}"


def decode_envelope(
    body: Any,
    current_cursor: Optional[str] = None,
    parent_key: Optional[str] = None,
) -> Page:
    """Collapse any known response shape into a Page."""
    if isinstance(body, list):
        return Page(items=[decode_record(item, parent_key) for item in body])

    if not isinstance(body, dict):
        raise ProviderDecodeError(f"Unexpected response body type {type(body).__name__}")

    raw_items = None
    for key in ENVELOPE_KEYS:
        if isinstance(body.get(key), list):
            raw_items = body[key]
            break
    if raw_items is None:
        raise ProviderDecodeError(
            "No item list in response envelope",
            details={"keys": sorted(body.keys())[:20]},
        )

    items = [decode_record(item, parent_key) for item in raw_items]
    return Page(items=items, next_cursor=_next_cursor(body, current_cursor, len(items)))


class JustTCGClient:
    """
    Remote catalog client.

    Usage:
        async with ResilientHTTPClient(rate_limiter=bucket, default_headers=headers) as http:
            client = JustTCGClient(http, base_url)
            page = await client.list_sets(resolve_game_scope("pokemon"))
    """

    provider = PROVIDER_NAME

    def __init__(self, http: ResilientHTTPClient, base_url: str, page_size: int = 100):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size

    @property
    def request_count(self) -> int:
        """HTTP attempts issued so far, retries included."""
        return self.http.metrics["requests"]

    def _cursor_params(self, cursor: Optional[str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": self.page_size}
        if not cursor:
            return params
        if cursor.startswith(PAGE_CURSOR_PREFIX):
            params["page"] = cursor[len(PAGE_CURSOR_PREFIX):]
        else:
            params["cursor"] = cursor
        return params

    def _check_status(self, response: httpx.Response, url: str) -> None:
        status = response.status_code
        if status < 400:
            return
        body = response.text[:200] if response.text else ""
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            try:
                wait_time = float(retry_after) if retry_after else 0.0
            except ValueError:
                wait_time = 0.0
            raise RateLimitExceeded(urlparse(url).netloc, wait_time, url=url)
        if status >= 500:
            raise TransientNetworkError(
                f"JustTCG {status} after retries: {body}", status_code=status, url=url
            )
        raise ClientContractError(f"JustTCG {status}: {body}", status_code=status, url=url)

    async def _get_page(
        self,
        path: str,
        params: Dict[str, Any],
        cursor: Optional[str],
        parent_key: Optional[str] = None,
    ) -> Page:
        url = f"{self.base_url}{path}"
        try:
            response = await self.http.get(url, params=params)
        except (httpx.TransportError, asyncio.TimeoutError) as e:
            raise TransientNetworkError(
                f"JustTCG transport failure: {type(e).__name__}: {e}", url=url
            ) from e

        self._check_status(response, url)

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderDecodeError(f"Invalid JSON from {path}", details={"url": url}) from e

        page = decode_envelope(body, current_cursor=cursor, parent_key=parent_key)
        logger.debug(f"[JUSTTCG] {path} returned {len(page.items)} items (next={page.next_cursor})")
        return page

    async def list_games(self) -> List[RemoteRecord]:
        page = await self._get_page("/games", {}, None)
        return page.items

    async def list_sets(self, scope: GameScope, cursor: Optional[str] = None) -> Page:
        params = self._cursor_params(cursor)
        if scope.region:
            params["region"] = scope.region
        return await self._get_page(f"/games/{scope.provider_game}/sets", params, cursor)

    async def list_cards(self, scope: GameScope, set_id: str, cursor: Optional[str] = None) -> Page:
        page = await self._get_page(
            f"/games/{scope.provider_game}/sets/{set_id}/cards",
            self._cursor_params(cursor),
            cursor,
            parent_key="set_id",
        )
        for item in page.items:
            item.parent_id = item.parent_id or set_id
        return page

    async def list_variants(self, scope: GameScope, card_id: str, cursor: Optional[str] = None) -> Page:
        page = await self._get_page(
            f"/games/{scope.provider_game}/cards/{card_id}/variants",
            self._cursor_params(cursor),
            cursor,
            parent_key="card_id",
        )
        for item in page.items:
            item.parent_id = item.parent_id or card_id
        return page
