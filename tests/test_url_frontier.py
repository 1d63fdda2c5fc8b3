import asyncio
from unittest.mock import AsyncMock

import pytest

from anvesha.crawler.url_frontier import AddStatus, FrontierEntry, URLFrontier
from anvesha.crawler.urls import url_hash


class TestAdmission:
    @pytest.mark.asyncio
    async def test_first_add_wins_variants_are_already_seen(self):
        frontier = URLFrontier()

        first = await frontier.add("http://Example.com/", 0)
        second = await frontier.add("http://example.com", 0)
        third = await frontier.add("http://example.com/#top", 2)

        assert first.status is AddStatus.ADDED
        assert first.url == "http://example.com/"
        assert second.status is AddStatus.ALREADY_SEEN
        assert third.status is AddStatus.ALREADY_SEEN
        assert len(frontier) == 1

    @pytest.mark.asyncio
    async def test_already_seen_after_dequeue(self):
        frontier = URLFrontier()
        await frontier.add("https://example.com/a", 1)
        entry = await frontier.next()
        await frontier.mark_crawled(entry.url)

        result = await frontier.add("https://example.com/a", 1)
        assert result.status is AddStatus.ALREADY_SEEN
        assert frontier.is_empty()
        assert frontier.is_crawled("https://EXAMPLE.com/a")

    @pytest.mark.asyncio
    async def test_concurrent_adds_admit_exactly_once(self):
        frontier = URLFrontier()

        results = await asyncio.gather(*[
            frontier.add("https://example.com/page", 1) for _ in range(50)
        ])

        statuses = [r.status for r in results]
        assert statuses.count(AddStatus.ADDED) == 1
        assert statuses.count(AddStatus.ALREADY_SEEN) == 49
        assert len(frontier) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["mailto:a@b.c", "ftp://example.com/", "::nonsense::"])
    async def test_rejects_invalid_urls(self, url):
        frontier = URLFrontier()
        result = await frontier.add(url, 0)
        assert result.status is AddStatus.REJECTED
        assert result.reason
        assert frontier.is_empty()

    @pytest.mark.asyncio
    async def test_rejects_negative_depth(self):
        frontier = URLFrontier()
        result = await frontier.add("https://example.com/", -1)
        assert result.status is AddStatus.REJECTED

    @pytest.mark.asyncio
    async def test_admission_cap(self):
        frontier = URLFrontier(max_admitted=2)
        assert (await frontier.add("https://example.com/1", 0)).added
        assert (await frontier.add("https://example.com/2", 0)).added

        capped = await frontier.add("https://example.com/3", 0)
        assert capped.status is AddStatus.REJECTED
        assert capped.reason == "Admission cap reached"

        # Known URLs still report ALREADY_SEEN when the cap is reached
        seen = await frontier.add("https://example.com/1", 0)
        assert seen.status is AddStatus.ALREADY_SEEN

    @pytest.mark.asyncio
    async def test_add_many_counts_new_urls(self):
        frontier = URLFrontier()
        added = await frontier.add_many(
            ["https://a.com/", "https://a.com", "https://b.com/", "bad url"], depth=1)
        assert added == 2
        stats = frontier.get_stats()
        assert stats['added'] == 2
        assert stats['already_seen'] == 1
        assert stats['rejected'] == 1


class TestOrdering:
    @pytest.mark.asyncio
    async def test_shallower_entries_come_first(self):
        frontier = URLFrontier()
        await frontier.add("https://example.com/deep", 3)
        await frontier.add("https://example.com/mid", 2)
        await frontier.add("https://example.com/", 0)

        depths = [(await frontier.next()).depth for _ in range(3)]
        assert depths == [0, 2, 3]

    @pytest.mark.asyncio
    async def test_ties_are_fifo(self):
        frontier = URLFrontier()
        urls = [f"https://example.com/{i}" for i in range(5)]
        for url in urls:
            await frontier.add(url, 1)

        popped = [(await frontier.next()).url for _ in urls]
        assert popped == urls

    @pytest.mark.asyncio
    async def test_priority_hint_overrides_depth(self):
        frontier = URLFrontier()
        await frontier.add("https://example.com/shallow", 1)
        await frontier.add("https://example.com/urgent", 4, priority_hint=0)

        assert (await frontier.next()).url == "https://example.com/urgent"

    @pytest.mark.asyncio
    async def test_next_on_empty_returns_none(self):
        frontier = URLFrontier()
        assert await frontier.next() is None


class TestCheckpoint:
    @pytest.mark.asyncio
    async def test_initialize_restores_seen_and_pending(self):
        pending = FrontierEntry(url="https://example.com/next", priority=1.0, depth=1)
        checkpoint = AsyncMock()
        checkpoint.load.return_value = (
            {url_hash("https://example.com/"), url_hash(pending.url)}, [pending])

        frontier = URLFrontier(checkpoint=checkpoint)
        await frontier.initialize()

        assert len(frontier) == 1
        result = await frontier.add("https://example.com", 0)
        assert result.status is AddStatus.ALREADY_SEEN
        assert (await frontier.next()).url == pending.url

    @pytest.mark.asyncio
    async def test_entry_leaves_checkpoint_only_when_finished(self):
        checkpoint = AsyncMock()
        frontier = URLFrontier(checkpoint=checkpoint)

        await frontier.add("https://example.com/", 0)
        checkpoint.record_added.assert_awaited_once()
        key, entry = checkpoint.record_added.await_args.args
        assert key == url_hash("https://example.com/")
        assert entry.depth == 0

        popped = await frontier.next()
        checkpoint.record_finished.assert_not_awaited()

        await frontier.mark_crawled(popped.url)
        checkpoint.record_finished.assert_awaited_once_with(key)

    @pytest.mark.asyncio
    async def test_popped_but_unfinished_entry_stays_pending(self):
        checkpoint = AsyncMock()
        frontier = URLFrontier(checkpoint=checkpoint)
        await frontier.add("https://example.com/a", 1)
        await frontier.add("https://example.com/b", 1)

        first = await frontier.next()
        second = await frontier.next()
        await frontier.mark_failed(second.url)

        # Only the failed URL was finished; the first is still in flight
        checkpoint.record_finished.assert_awaited_once_with(url_hash(second.url))
        assert not frontier.is_crawled(first.url)

    @pytest.mark.asyncio
    async def test_failed_checkpoint_write_leaves_frontier_unchanged(self):
        checkpoint = AsyncMock()
        checkpoint.record_added.side_effect = [ConnectionError("redis down"), None]
        frontier = URLFrontier(checkpoint=checkpoint)

        with pytest.raises(ConnectionError):
            await frontier.add("https://example.com/", 0)
        assert len(frontier) == 0
        assert frontier.get_stats()['seen_count'] == 0

        retry = await frontier.add("https://example.com/", 0)
        assert retry.status is AddStatus.ADDED
        assert len(frontier) == 1


def test_entry_dict_roundtrip():
    entry = FrontierEntry(url="https://example.com/", priority=2.0, depth=2, discovered_at=10.0)
    assert FrontierEntry.from_dict(entry.to_dict()) == entry
