"""Link store tests: CRUD, ordering, search, atomicity and failure mapping."""

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from tinylink.exceptions import ConflictError, DuplicateCode, NotFoundError, StorageError
from tinylink.store import LinkStore


@pytest.mark.asyncio
async def test_create_returns_fresh_link(store: LinkStore) -> None:
    link = await store.create("abc123", "https://example.com/page")

    assert link.code == "abc123"
    assert link.target_url == "https://example.com/page"
    assert link.total_clicks == 0
    assert link.last_clicked is None
    assert link.created_at is not None


@pytest.mark.asyncio
async def test_get_round_trip(store: LinkStore) -> None:
    await store.create("Round1", "https://example.com/?q=1")

    link = await store.get("Round1")

    assert link is not None
    assert (link.code, link.target_url, link.total_clicks) == ("Round1", "https://example.com/?q=1", 0)


@pytest.mark.asyncio
async def test_get_missing_returns_none(store: LinkStore) -> None:
    assert await store.get("nothere") is None
    assert not await store.exists("nothere")


@pytest.mark.asyncio
async def test_duplicate_create_fails_and_keeps_original(store: LinkStore) -> None:
    await store.create("dup123", "https://first.example.com")

    with pytest.raises(DuplicateCode) as exc_info:
        await store.create("dup123", "https://second.example.com")

    assert isinstance(exc_info.value, ConflictError)
    link = await store.get("dup123")
    assert link.target_url == "https://first.example.com"


@pytest.mark.asyncio
async def test_concurrent_creates_of_same_code_have_one_winner(store: LinkStore) -> None:
    attempts = 10
    results = await asyncio.gather(
        *(store.create("race01", f"https://example.com/{i}") for i in range(attempts)),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, BaseException)]
    losers = [r for r in results if isinstance(r, BaseException)]
    assert len(winners) == 1
    assert len(losers) == attempts - 1
    assert all(isinstance(r, ConflictError) for r in losers)
    stored = await store.get("race01")
    assert stored.target_url == winners[0].target_url


@pytest.mark.asyncio
async def test_list_is_newest_first(store: LinkStore) -> None:
    for code in ("first1", "second", "third3"):
        await store.create(code, f"https://example.com/{code}")

    links = await store.list()

    assert [link.code for link in links] == ["third3", "second", "first1"]


@pytest.mark.asyncio
async def test_list_search_matches_code_or_url_case_insensitively(store: LinkStore) -> None:
    await store.create("Github", "https://github.com/python")
    await store.create("pydocs", "https://docs.PYTHON.org")
    await store.create("other1", "https://example.com")

    assert {link.code for link in await store.list("PYTHON")} == {"Github", "pydocs"}
    assert {link.code for link in await store.list("git")} == {"Github"}
    assert await store.list("nomatch") == []


@pytest.mark.asyncio
async def test_list_search_treats_wildcards_literally(store: LinkStore) -> None:
    await store.create("pct100", "https://example.com/100%25off")
    await store.create("plain1", "https://example.com/plain")

    assert {link.code for link in await store.list("%")} == {"pct100"}
    assert await store.list("_") == []


@pytest.mark.asyncio
async def test_delete_then_get_is_absent(store: LinkStore) -> None:
    await store.create("gone12", "https://example.com")

    await store.delete("gone12")

    assert await store.get("gone12") is None


@pytest.mark.asyncio
async def test_delete_missing_raises_not_found(store: LinkStore) -> None:
    with pytest.raises(NotFoundError):
        await store.delete("nothere")


@pytest.mark.asyncio
async def test_deleted_code_can_be_reused(store: LinkStore) -> None:
    await store.create("reuse1", "https://old.example.com")
    await store.delete("reuse1")

    link = await store.create("reuse1", "https://new.example.com")

    assert link.target_url == "https://new.example.com"
    assert link.total_clicks == 0


@pytest.mark.asyncio
async def test_record_click_updates_count_and_timestamp(store: LinkStore) -> None:
    await store.create("click1", "https://example.com")

    await store.record_click("click1")

    link = await store.get("click1")
    assert link.total_clicks == 1
    assert link.last_clicked is not None


@pytest.mark.asyncio
async def test_concurrent_clicks_are_not_lost(store: LinkStore) -> None:
    await store.create("hot123", "https://example.com")
    clicks = 25

    await asyncio.gather(*(store.record_click("hot123") for _ in range(clicks)))

    link = await store.get("hot123")
    assert link.total_clicks == clicks


@pytest.mark.asyncio
async def test_record_click_on_missing_code_raises_not_found(store: LinkStore) -> None:
    with pytest.raises(NotFoundError):
        await store.record_click("nothere")


@pytest.mark.asyncio
async def test_ping(store: LinkStore) -> None:
    await store.ping()


class _ScriptedSession:
    """Stands in for an AsyncSession whose execute() misbehaves."""

    def __init__(self, execute):
        self._execute = execute

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def execute(self, *args, **kwargs):
        return await self._execute()


@pytest.mark.asyncio
async def test_timeout_becomes_storage_error() -> None:
    async def hang():
        await asyncio.sleep(5)

    store = LinkStore(lambda: _ScriptedSession(hang), timeout_seconds=0.05)

    with pytest.raises(StorageError) as exc_info:
        await store.get("abc123")
    assert isinstance(exc_info.value.__cause__, TimeoutError)


@pytest.mark.asyncio
async def test_driver_error_becomes_generic_storage_error() -> None:
    async def fail():
        raise OperationalError("SELECT", {}, Exception("connection refused by 10.0.0.5"))

    store = LinkStore(lambda: _ScriptedSession(fail))

    with pytest.raises(StorageError) as exc_info:
        await store.list()
    assert "10.0.0.5" not in exc_info.value.message
    assert exc_info.value.message == "Internal server error"
