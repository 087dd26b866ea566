"""
Tests for the recommendation engine.
"""
from unittest.mock import AsyncMock

import pytest

from wikifeed.core.article import InteractionType
from wikifeed.core.cache import TieredCache
from wikifeed.core.recommender import (
    FALLBACK_KEY,
    FALLBACK_SCORE,
    LIKED_SCORE,
    RELATED_SCORE,
    RecommendationEngine,
    latest_distinct,
    user_key,
)

from tests.conftest import FakeSource, make_article, make_interaction


def members(prefix, count, **kwargs):
    return [make_article(f"{prefix}{i}", f"{prefix.title()} topic {i}", **kwargs) for i in range(count)]


@pytest.fixture
def cache(clock):
    return TieredCache(language='en', clock=clock)


def rich_source():
    """Source where every seed article has plenty of category members."""
    categories = {str(i): [f"Topic{i}a", f"Topic{i}b", f"Topic{i}c"] for i in range(5)}
    member_map = {}
    for i in range(5):
        for suffix in "abc":
            member_map[f"Topic{i}{suffix}"] = members(f"m{i}{suffix}x", 2)
    return FakeSource(categories=categories, members=member_map, generate=False)


class TestLatestDistinct:
    """Seed selection."""

    def test_most_recent_wins_per_article(self):
        interactions = [
            make_interaction("a", InteractionType.VIEW, timestamp=1),
            make_interaction("b", InteractionType.VIEW, timestamp=2),
            make_interaction("a", InteractionType.LIKE, timestamp=3),
        ]
        seeds = latest_distinct(interactions, 5)
        assert [(s.article_id, s.type) for s in seeds] == [("a", InteractionType.LIKE), ("b", InteractionType.VIEW)]

    def test_limit(self):
        interactions = [make_interaction(str(i), timestamp=i) for i in range(10)]
        assert [s.article_id for s in latest_distinct(interactions, 5)] == ["9", "8", "7", "6", "5"]


class TestGenerate:
    """Category based generation."""

    @pytest.mark.asyncio
    async def test_output_is_capped_and_sorted(self, cache, clock):
        engine = RecommendationEngine(rich_source(), cache, clock=clock)
        interactions = [make_interaction(str(i), timestamp=i) for i in range(5)]

        recommendations = await engine.generate(interactions)
        assert len(recommendations) == 10
        scores = [r.score for r in recommendations]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_like_sourced_scores_higher(self, cache, clock):
        source = FakeSource(
            categories={"liked": ["Physics"], "viewed": ["Botany"]},
            members={"Physics": members("phys", 2), "Botany": members("bot", 2)},
            generate=False,
        )
        engine = RecommendationEngine(source, cache, clock=clock)
        recommendations = await engine.generate([
            make_interaction("liked", InteractionType.LIKE, timestamp=2),
            make_interaction("viewed", InteractionType.VIEW, timestamp=1),
        ])

        by_id = {r.article_id: r for r in recommendations}
        assert by_id["phys0"].score == LIKED_SCORE
        assert by_id["phys0"].reason == "Based on article you liked: Physics"
        assert by_id["bot0"].score == RELATED_SCORE
        assert by_id["bot0"].reason == "Similar to what you're reading: Botany"
        assert by_id["bot0"].metadata.categories == ("Botany",)
        assert len(recommendations) == 4

    @pytest.mark.asyncio
    async def test_invalid_and_duplicate_candidates_are_skipped(self, cache, clock):
        source = FakeSource(
            categories={"seed": ["Physics", "Mechanics"]},
            members={
                "Physics": [
                    make_article("seed", "Seed article"),
                    make_article("p1", "List of physicists"),
                    make_article("p2", "Help: Physics"),
                    make_article("p3", "Optics"),
                ],
                "Mechanics": [make_article("p3", "Optics"), make_article("p4", "Statics")],
            },
            featured=members("feat", 5),
            generate=False,
        )
        engine = RecommendationEngine(source, cache, clock=clock, per_category=4)
        recommendations = await engine.generate([make_interaction("seed", InteractionType.VIEW)])

        ids = [r.article_id for r in recommendations if r.score == RELATED_SCORE]
        assert ids == ["p3", "p4"]
        assert len({r.article_id for r in recommendations}) == len(recommendations)

    @pytest.mark.asyncio
    async def test_categories_are_cleaned_before_search(self, cache, clock):
        source = FakeSource(
            categories={"seed": ["Category:Physics (science)", "Wikidata maintenance", "Hidden categories"]},
            members={"Physics": members("phys", 2)},
            generate=False,
        )
        engine = RecommendationEngine(source, cache, clock=clock)
        await engine.generate([make_interaction("seed")])
        assert source.category_calls == ["Physics"]

    @pytest.mark.asyncio
    async def test_categories_come_from_cache_first(self, cache, clock):
        cache.set_categories("seed", ["Physics"], 'en')
        source = FakeSource(members={"Physics": members("phys", 2)}, generate=False)
        source.fetch_categories = AsyncMock(return_value=["Other"])

        engine = RecommendationEngine(source, cache, clock=clock)
        await engine.generate([make_interaction("seed")])
        source.fetch_categories.assert_not_called()

    @pytest.mark.asyncio
    async def test_exclude_ids(self, cache, clock):
        source = FakeSource(categories={"seed": ["Physics"]}, members={"Physics": members("phys", 2)}, generate=False)
        engine = RecommendationEngine(source, cache, clock=clock)
        recommendations = await engine.generate([make_interaction("seed")], exclude_ids=["phys0"])
        assert "phys0" not in {r.article_id for r in recommendations}

    @pytest.mark.asyncio
    async def test_results_are_cached(self, cache, clock):
        engine = RecommendationEngine(rich_source(), cache, clock=clock)
        recommendations = await engine.generate(
            [make_interaction(str(i), timestamp=i) for i in range(5)], session_id="reader")

        assert cache.get_recommendations(user_key("reader")) == recommendations
        assert cache.get_recommendations(FALLBACK_KEY) == recommendations

    @pytest.mark.asyncio
    async def test_cooldown_prevents_repeats(self, cache, clock):
        source = FakeSource(categories={"seed": ["Physics"]}, members={"Physics": members("phys", 2)}, generate=False)
        engine = RecommendationEngine(source, None, clock=clock, min_results=0)

        first = await engine.generate([make_interaction("seed")])
        assert len(first) == 2
        assert await engine.generate([make_interaction("seed")]) == []

        clock.advance(30 * 60 * 1000)
        assert len(await engine.generate([make_interaction("seed")])) == 2


class TestFallback:
    """Topping up when signal is weak."""

    @pytest.mark.asyncio
    async def test_few_results_are_topped_up(self, cache, clock):
        source = FakeSource(
            categories={"seed": ["Physics"]},
            members={"Physics": members("phys", 1)},
            featured=members("feat", 5),
            generate=False,
        )
        engine = RecommendationEngine(source, cache, clock=clock)
        recommendations = await engine.generate([make_interaction("seed", InteractionType.LIKE)])

        assert recommendations[0].article_id == "phys0"
        fallback = [r for r in recommendations if r.score == FALLBACK_SCORE]
        assert len(fallback) == 5
        assert all(r.reason == "You might find this interesting" for r in fallback)

    @pytest.mark.asyncio
    async def test_errors_trigger_fallback_and_never_raise(self, cache, clock):
        source = FakeSource(
            categories={str(i): RuntimeError("api down") for i in range(5)},
            generate=True,
        )
        engine = RecommendationEngine(source, cache, clock=clock)
        recommendations = await engine.generate([make_interaction(str(i), timestamp=i) for i in range(5)])

        assert 0 < len(recommendations) <= 10
        assert all(r.score == FALLBACK_SCORE for r in recommendations)

    @pytest.mark.asyncio
    async def test_cached_fallback_is_used_first(self, cache, clock):
        engine = RecommendationEngine(rich_source(), cache, clock=clock, cooldown_ms=0)
        previous = await engine.generate([make_interaction(str(i), timestamp=i) for i in range(5)])

        empty_source = FakeSource(generate=False)
        engine.source = empty_source
        recommendations = await engine.generate([])
        assert [r.article_id for r in recommendations] == [r.article_id for r in previous]
        assert empty_source.random_calls == 0

    @pytest.mark.asyncio
    async def test_nothing_available_returns_empty(self, clock):
        engine = RecommendationEngine(FakeSource(generate=False), None, clock=clock)
        assert await engine.generate([make_interaction("seed")]) == []

    @pytest.mark.asyncio
    async def test_unexpected_failure_returns_fallback(self, cache, clock):
        source = FakeSource(featured=members("feat", 3), generate=False)
        engine = RecommendationEngine(source, cache, clock=clock)
        engine._generate = AsyncMock(side_effect=RuntimeError("bug"))

        recommendations = await engine.generate([make_interaction("seed")])
        assert [r.article_id for r in recommendations] == ["feat0", "feat1", "feat2"]


class TestGenerateFromCategories:
    """Seeding from liked categories."""

    @pytest.mark.asyncio
    async def test_three_members_per_category(self, cache, clock):
        source = FakeSource(members={"Physics": members("phys", 5), "Botany": members("bot", 5)}, generate=False)
        engine = RecommendationEngine(source, cache, clock=clock)

        recommendations = await engine.generate_from_categories(["Physics", "Botany"], 'en')
        assert len(recommendations) == 6
        assert all(r.score == LIKED_SCORE for r in recommendations)
        assert recommendations[0].reason == "Based on articles you like in Physics"

    @pytest.mark.asyncio
    async def test_capped(self, cache, clock):
        member_map = {f"C{i}": members(f"c{i}x", 3) for i in range(6)}
        engine = RecommendationEngine(FakeSource(members=member_map, generate=False), cache, clock=clock)
        recommendations = await engine.generate_from_categories(list(member_map), 'en')
        assert len(recommendations) == 10

    @pytest.mark.asyncio
    async def test_members_must_be_valid_recommendations(self, cache, clock):
        source = FakeSource(members={"Physics": [
            make_article("l", "List of physicists"),
            make_article("y", "1905 in physics"),
            make_article("t", "Template:Physics"),
        ]}, generate=False)
        engine = RecommendationEngine(source, cache, clock=clock)
        assert await engine.generate_from_categories(["Physics"], 'en') == []

    @pytest.mark.asyncio
    async def test_excluded_and_recent_members_are_skipped(self, cache, clock):
        source = FakeSource(members={"Physics": members("phys", 3)}, generate=False)
        engine = RecommendationEngine(source, cache, clock=clock)

        first = await engine.generate_from_categories(["Physics"], 'en', exclude_ids=["phys0"])
        assert [r.article_id for r in first] == ["phys1", "phys2"]

        second = await engine.generate_from_categories(["Physics"], 'en')
        assert [r.article_id for r in second] == ["phys0"]
