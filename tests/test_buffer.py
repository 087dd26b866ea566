"""
Tests for the look-ahead article buffer.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from wikifeed.core.buffer import BufferManager
from wikifeed.core.cache import CacheType, TieredCache

from tests.conftest import FakeSource, make_article


class GatedSource(FakeSource):
    """Source whose ``fetch_random`` blocks until released."""

    def __init__(self, article):
        super().__init__(generate=False)
        self.article = article
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_random(self, language):
        self.random_calls += 1
        self.started.set()
        await self.release.wait()
        return self.article


class TestFill:
    """Filling the buffer."""

    @pytest.mark.asyncio
    async def test_fill_adds_validated_articles(self, source):
        buffer = BufferManager(source)
        assert await buffer.request_fill(5) == 5
        assert len(buffer) == 5

    @pytest.mark.asyncio
    async def test_low_quality_and_duplicates_are_skipped(self):
        source = FakeSource(random_articles=[
            make_article("1", "Photosynthesis"),
            make_article("2", "Short", excerpt="too short"),
            make_article("1", "Photosynthesis"),
            make_article("3", "photosynthesis"),
            make_article("4", "List of plants"),
            make_article("5", "Chlorophyll"),
        ], generate=False)
        buffer = BufferManager(source)

        assert await buffer.request_fill(2) == 2
        assert [a.id for a in buffer.peek()] == ["1", "5"]

    @pytest.mark.asyncio
    async def test_attempts_are_bounded(self):
        source = FakeSource(generate=False)
        buffer = BufferManager(source)
        assert await buffer.request_fill(4) == 0
        assert source.random_calls == 12

    @pytest.mark.asyncio
    async def test_fetch_errors_do_not_abort_the_fill(self):
        source = FakeSource()
        source.fetch_random = AsyncMock(side_effect=[
            RuntimeError("network"),
            make_article("1", "Photosynthesis"),
        ])
        buffer = BufferManager(source)
        assert await buffer.request_fill(1) == 1

    @pytest.mark.asyncio
    async def test_accepted_articles_are_cached(self, source):
        cache = TieredCache(language='en')
        buffer = BufferManager(source, cache=cache)
        await buffer.request_fill(3)
        assert cache.size(CacheType.ARTICLES) == 3

    @pytest.mark.asyncio
    async def test_buffer_is_capped_from_the_head(self, source):
        buffer = BufferManager(source, max_size=4)
        await buffer.request_fill(3)
        await buffer.request_fill(3)
        assert [a.id for a in buffer.peek()] == ["r3", "r4", "r5", "r6"]

    @pytest.mark.asyncio
    async def test_concurrent_fill_is_a_noop(self):
        source = GatedSource(make_article("1", "Photosynthesis"))
        buffer = BufferManager(source)

        first = asyncio.ensure_future(buffer.request_fill(1))
        await source.started.wait()
        assert buffer.is_filling is True
        assert await buffer.request_fill(1) == 0

        source.release.set()
        assert await first == 1
        assert buffer.is_filling is False
        assert source.random_calls == 1


class TestDrain:
    """Draining and automatic refills."""

    @pytest.mark.asyncio
    async def test_drain_below_low_water_mark_triggers_one_fill(self):
        source = FakeSource()
        buffer = BufferManager(source, low_water_mark=10)
        await buffer.request_fill(8)
        assert len(buffer) == 8

        buffer.request_fill = AsyncMock(return_value=0)
        taken = buffer.drain(2)

        assert len(taken) == 2
        assert len(buffer) == 6
        await asyncio.sleep(0)
        buffer.request_fill.assert_called_once()

    @pytest.mark.asyncio
    async def test_drains_in_the_same_tick_schedule_one_fill(self):
        buffer = BufferManager(FakeSource(), low_water_mark=10)
        await buffer.request_fill(8)

        buffer.request_fill = AsyncMock(return_value=0)
        buffer.drain(2)
        buffer.drain(2)
        assert buffer.is_filling is True

        await buffer.wait_idle()
        buffer.request_fill.assert_called_once()
        assert buffer.is_filling is False

    @pytest.mark.asyncio
    async def test_drain_above_low_water_mark_does_not_fill(self, source):
        buffer = BufferManager(source, low_water_mark=3)
        await buffer.request_fill(6)
        buffer.request_fill = AsyncMock(return_value=0)

        buffer.drain(2)
        await asyncio.sleep(0)
        buffer.request_fill.assert_not_called()

    @pytest.mark.asyncio
    async def test_background_refill_runs(self, source):
        buffer = BufferManager(source, batch_size=5, low_water_mark=10)
        await buffer.request_fill(2)
        buffer.drain(2)
        await buffer.wait_idle()
        assert len(buffer) == 5

    def test_drain_without_event_loop(self):
        buffer = BufferManager(FakeSource())
        assert buffer.drain(3) == []

    @pytest.mark.asyncio
    async def test_top_up(self, source):
        buffer = BufferManager(source, low_water_mark=4)
        assert await buffer.top_up() == 4
        assert await buffer.top_up() == 0


class TestLanguageSwitch:
    """Results of a fill started before a language switch are dropped."""

    @pytest.mark.asyncio
    async def test_in_flight_result_is_discarded(self):
        article = make_article("1", "Photosynthesis", language='en')
        source = GatedSource(article)
        cache = TieredCache(language='en')
        buffer = BufferManager(source, cache=cache, language='en')

        fill = asyncio.ensure_future(buffer.request_fill(1))
        await source.started.wait()

        cache.clear_for_language('fr')
        buffer.reset('fr')
        source.release.set()

        assert await fill == 0
        assert len(buffer) == 0
        assert cache.get_article("1", 'en') is None
        assert cache.size(CacheType.ARTICLES) == 0
        assert buffer.language == 'fr'
        assert buffer.is_filling is False

    @pytest.mark.asyncio
    async def test_wrong_language_article_is_rejected(self):
        source = FakeSource(random_articles=[make_article("1", language='de')], generate=False)
        buffer = BufferManager(source, language='en')
        assert await buffer.request_fill(1) == 0
