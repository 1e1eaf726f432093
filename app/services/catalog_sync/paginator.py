"""
Cursor-driven traversal of a remote collection.

paginate() is an async generator of Page objects. It is lazy: nothing is
fetched until the caller asks for the next page, so a caller that persists
page.next_cursor after processing each page can restart from that cursor and
see exactly the remaining pages.

The rate limiter is applied inside ResilientHTTPClient, before every HTTP
attempt the fetch function makes.
"""
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from app.adapters.justtcg import Page

logger = logging.getLogger(__name__)

FetchPage = Callable[[Optional[str]], Awaitable[Page]]

# Hard stop for remotes that never stop handing out cursors
MAX_PAGES = 10_000


async def paginate(
    fetch_page: FetchPage,
    start_cursor: Optional[str] = None,
    max_pages: int = MAX_PAGES,
) -> AsyncIterator[Page]:
    cursor = start_cursor
    seen = set()
    pages = 0

    while True:
        page = await fetch_page(cursor)
        pages += 1
        yield page

        next_cursor = page.next_cursor
        if not next_cursor:
            return
        if next_cursor == cursor and not page.items:
            logger.warning(f"[catalog_sync] Empty page repeated cursor {cursor!r}, stopping")
            return
        if next_cursor in seen:
            logger.warning(f"[catalog_sync] Cursor {next_cursor!r} already visited, stopping")
            return
        if pages >= max_pages:
            logger.error(f"[catalog_sync] Page limit {max_pages} reached, stopping")
            return

        if cursor:
            seen.add(cursor)
        cursor = next_cursor
