import pytest

from app.adapters.justtcg import Page
from app.services.catalog_sync.paginator import paginate
from tests.fakes import rec


def _pages(mapping):
    """fetch_page over {cursor: (item_ids, next_cursor)} that records every call."""
    calls = []

    async def fetch(cursor):
        calls.append(cursor)
        ids, next_cursor = mapping[cursor]
        return Page(items=[rec(i, i) for i in ids], next_cursor=next_cursor)

    return fetch, calls


async def _collect(fetch, start=None, **kwargs):
    return [page async for page in paginate(fetch, start, **kwargs)]


@pytest.mark.asyncio
async def test_follows_cursors_until_exhausted():
    fetch, calls = _pages({
        None: (["a", "b"], "c1"),
        "c1": (["c", "d"], "c2"),
        "c2": (["e"], None),
    })
    pages = await _collect(fetch)
    assert [r.id for p in pages for r in p.items] == ["a", "b", "c", "d", "e"]
    assert calls == [None, "c1", "c2"]


@pytest.mark.asyncio
async def test_resume_from_cursor_sees_only_remaining_pages():
    fetch, calls = _pages({
        None: (["a"], "c1"),
        "c1": (["b"], "c2"),
        "c2": (["c"], None),
    })
    pages = await _collect(fetch, "c1")
    assert [r.id for p in pages for r in p.items] == ["b", "c"]
    assert calls == ["c1", "c2"]


@pytest.mark.asyncio
async def test_is_lazy():
    fetch, calls = _pages({None: (["a"], "c1"), "c1": (["b"], None)})
    gen = paginate(fetch)
    await gen.__anext__()
    assert calls == [None]
    await gen.aclose()


@pytest.mark.asyncio
async def test_stops_on_empty_page_repeating_cursor():
    fetch, calls = _pages({None: (["a"], "c1"), "c1": ([], "c1")})
    pages = await _collect(fetch)
    assert len(pages) == 2
    assert calls == [None, "c1"]


@pytest.mark.asyncio
async def test_stops_on_cursor_cycle():
    fetch, calls = _pages({
        None: (["a"], "c1"),
        "c1": (["b"], "c2"),
        "c2": (["c"], "c1"),
    })
    await _collect(fetch)
    assert calls == [None, "c1", "c2"]


@pytest.mark.asyncio
async def test_max_pages_guard():
    async def endless(cursor):
        n = int(cursor or 0)
        return Page(items=[rec(str(n), "x")], next_cursor=str(n + 1))

    pages = await _collect(endless, max_pages=5)
    assert len(pages) == 5
