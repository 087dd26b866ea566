"""
Category based recommendation engine.
"""
import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from wikifeed.core.article import (
    DEFAULT_LANGUAGE,
    Article,
    Interaction,
    InteractionType,
    Recommendation,
    RecommendationMetadata,
    estimate_reading_time,
    now_ms,
)
from wikifeed.core.cache import TieredCache
from wikifeed.core.filters import is_acceptable, is_valid_recommendation, relevant_categories

logger = logging.getLogger(__name__)

MAX_RESULTS = 10
SEED_COUNT = 5
PER_CATEGORY = 2
PER_LIKED_CATEGORY = 3
MIN_RESULTS = 3
MAX_ERRORS = 2
FALLBACK_SIZE = 5
COOLDOWN_MS = 30 * 60 * 1000

LIKED_SCORE = 0.9
RELATED_SCORE = 0.7
FALLBACK_SCORE = 0.5

FALLBACK_KEY = 'fallback'
FALLBACK_REASON = 'You might find this interesting'


def user_key(session_id: str) -> str:
    return f"user:{session_id}"


def latest_distinct(interactions: Iterable[Interaction], n: int) -> List[Interaction]:
    """
    The ``n`` most recent interactions, one per article.

    Args:
        interactions: Interaction history in any order
        n: Number of interactions to keep

    Returns:
        Newest first; for each article only its most recent interaction
    """
    ordered = sorted(interactions, key=lambda i: i.timestamp, reverse=True)
    seen: Set[str] = set()
    result = []
    for interaction in ordered:
        if interaction.article_id in seen:
            continue
        seen.add(interaction.article_id)
        result.append(interaction)
        if len(result) >= n:
            break
    return result


def to_recommendation(article: Article, score: float, reason: str,
                      categories: Sequence[str], popularity: float) -> Recommendation:
    return Recommendation(
        article_id=article.id,
        score=score,
        reason=reason,
        language=article.language,
        metadata=RecommendationMetadata(
            title=article.title,
            categories=tuple(categories),
            excerpt=article.excerpt,
            thumbnail=article.thumbnail or article.image_url,
            reading_time=estimate_reading_time(article.content or article.excerpt),
            popularity=popularity,
        ),
    )


class RecommendationEngine:
    """
    Builds recommendations from the categories of recently touched articles.

    ``generate`` never raises: failed lookups are logged and skipped, and a
    fallback pool tops the result up when too little signal is available.
    """
    def __init__(
        self,
        source,
        cache: Optional[TieredCache] = None,
        clock: Callable[[], int] = now_ms,
        max_results: int = MAX_RESULTS,
        seed_count: int = SEED_COUNT,
        per_category: int = PER_CATEGORY,
        min_results: int = MIN_RESULTS,
        max_errors: int = MAX_ERRORS,
        fallback_size: int = FALLBACK_SIZE,
        cooldown_ms: int = COOLDOWN_MS,
    ):
        """
        Initialize the RecommendationEngine.

        Args:
            source: Article source adapter
            cache: Cache for categories and finished recommendation lists
            clock: Returns the current time in epoch milliseconds
            max_results: Hard cap on returned recommendations
            seed_count: Number of recent distinct articles used as seeds
            per_category: Members fetched per seed category
            min_results: Below this the fallback pool is used
            max_errors: Above this many failed seeds the fallback pool is used
            fallback_size: Articles drawn for the fallback pool
            cooldown_ms: How long a recommended article is not suggested again
        """
        self.source = source
        self.cache = cache
        self.clock = clock
        self.max_results = max_results
        self.seed_count = seed_count
        self.per_category = per_category
        self.min_results = min_results
        self.max_errors = max_errors
        self.fallback_size = fallback_size
        self.cooldown_ms = cooldown_ms
        self._recently_recommended: Dict[str, int] = {}

    def resolve_language(self, language: Optional[str]) -> str:
        if language:
            return language
        if self.cache is not None:
            return self.cache.current_language
        return DEFAULT_LANGUAGE

    def _cooling_down(self, article_id: str) -> bool:
        last = self._recently_recommended.get(article_id)
        return last is not None and self.clock() - last < self.cooldown_ms

    def _remember(self, recommendations: Iterable[Recommendation]) -> None:
        now = self.clock()
        for rec in recommendations:
            self._recently_recommended[rec.article_id] = now
        expired = [k for k, t in self._recently_recommended.items() if now - t >= self.cooldown_ms]
        for article_id in expired:
            del self._recently_recommended[article_id]

    async def _categories_for(self, article_id: str, language: str) -> List[str]:
        if self.cache is not None:
            cached = self.cache.get_categories(article_id, language)
            if cached:
                return cached

        categories = await self.source.fetch_categories(article_id, language)
        if categories and self.cache is not None:
            self.cache.set_categories(article_id, categories, language)
        return categories or []

    async def generate(
        self,
        interactions: Sequence[Interaction],
        language: Optional[str] = None,
        session_id: str = 'default',
        exclude_ids: Iterable[str] = (),
    ) -> List[Recommendation]:
        """
        Generate recommendations from an interaction history.

        Args:
            interactions: Interaction history, any order
            language: Language to recommend in; defaults to the cache language
            session_id: Scope of the per-user cache entry
            exclude_ids: Article ids that must not be recommended

        Returns:
            At most ``max_results`` recommendations, best first
        """
        language = self.resolve_language(language)
        try:
            recommendations = await self._generate(interactions, language, set(exclude_ids))
        except Exception as e:
            logger.error(f"Recommendation generation failed: {e}")
            try:
                recommendations = await self._fallback(language, set(exclude_ids), self.max_results)
            except Exception as fallback_error:
                logger.error(f"Fallback recommendations failed: {fallback_error}")
                recommendations = []

        recommendations = sorted(recommendations, key=lambda r: r.score, reverse=True)[:self.max_results]
        self._remember(recommendations)

        if self.cache is not None and recommendations:
            self.cache.set_recommendations(user_key(session_id), recommendations, language)
            self.cache.set_recommendations(FALLBACK_KEY, recommendations, language)

        logger.info(f"Generated {len(recommendations)} recommendations for {language}")
        return recommendations

    async def _generate(self, interactions: Sequence[Interaction], language: str,
                        excluded: Set[str]) -> List[Recommendation]:
        recommendations: List[Recommendation] = []
        seen: Set[str] = set(excluded)
        errors = 0

        for interaction in latest_distinct(interactions, self.seed_count):
            if len(recommendations) >= self.max_results:
                break
            if interaction.language != language:
                continue

            try:
                categories = relevant_categories(await self._categories_for(interaction.article_id, language))
            except Exception as e:
                logger.warning(f"Error resolving categories for {interaction.article_id}: {e}")
                errors += 1
                continue
            if not categories:
                logger.debug(f"No usable categories for {interaction.article_id}")
                errors += 1
                continue

            liked = interaction.type == InteractionType.LIKE
            for category in categories:
                if len(recommendations) >= self.max_results:
                    break
                try:
                    members = await self.source.search_by_category(category, language, self.per_category)
                except Exception as e:
                    logger.warning(f"Error processing category {category}: {e}")
                    continue

                for article in members or []:
                    if len(recommendations) >= self.max_results:
                        break
                    if article.id in seen or article.id == interaction.article_id:
                        continue
                    if self._cooling_down(article.id):
                        continue
                    if not is_valid_recommendation(article):
                        logger.debug(f"Rejected recommendation candidate: {article.title!r}")
                        continue

                    seen.add(article.id)
                    if liked:
                        reason = f"Based on article you liked: {category}"
                    else:
                        reason = f"Similar to what you're reading: {category}"
                    recommendations.append(to_recommendation(
                        article,
                        LIKED_SCORE if liked else RELATED_SCORE,
                        reason,
                        [category],
                        popularity=RELATED_SCORE,
                    ))

        if errors > self.max_errors or len(recommendations) < self.min_results:
            room = self.max_results - len(recommendations)
            if room > 0:
                logger.debug(f"Topping up from fallback pool ({errors} errors, {len(recommendations)} found)")
                recommendations.extend(await self._fallback(language, seen, room))

        return recommendations

    async def _fallback(self, language: str, excluded: Set[str], limit: int) -> List[Recommendation]:
        """
        Draw generic recommendations.

        Uses the cached fallback list first, then featured articles, then
        random articles passing the quality filter.

        Args:
            language: Language to draw from
            excluded: Article ids already used; extended with the picks
            limit: Maximum number of picks

        Returns:
            Fallback recommendations
        """
        picks: List[Recommendation] = []
        limit = min(limit, self.max_results)
        if limit <= 0:
            return picks

        if self.cache is not None:
            for rec in self.cache.get_recommendations(FALLBACK_KEY, language) or []:
                if len(picks) >= limit:
                    return picks
                if rec.article_id in excluded:
                    continue
                excluded.add(rec.article_id)
                picks.append(rec)

        candidates: List[Article] = []
        fetch_featured = getattr(self.source, 'fetch_featured', None)
        if fetch_featured is not None:
            try:
                candidates.extend(await fetch_featured(language, self.fallback_size) or [])
            except Exception as e:
                logger.warning(f"Error fetching featured articles: {e}")

        def take(article: Article) -> None:
            if article.id in excluded or self._cooling_down(article.id):
                return
            if not is_acceptable(article):
                return
            excluded.add(article.id)
            picks.append(to_recommendation(
                article, FALLBACK_SCORE, FALLBACK_REASON, article.categories, popularity=FALLBACK_SCORE,
            ))

        for article in candidates:
            if len(picks) >= limit:
                return picks
            take(article)

        attempts = 0
        while len(picks) < limit and attempts < self.fallback_size * 3:
            attempts += 1
            try:
                article = await self.source.fetch_random(language)
            except Exception as e:
                logger.warning(f"Error fetching random fallback article: {e}")
                continue
            if article is not None:
                take(article)

        return picks

    async def generate_from_categories(
        self,
        categories: Iterable[str],
        language: Optional[str] = None,
        exclude_ids: Iterable[str] = (),
    ) -> List[Recommendation]:
        """
        Recommend members of categories the reader is known to like.

        Members go through the same validity, cooldown and exclusion checks
        as history based candidates.

        Args:
            categories: Liked category names
            language: Language to recommend in
            exclude_ids: Article ids that must not be recommended

        Returns:
            At most ``max_results`` recommendations, best first
        """
        language = self.resolve_language(language)
        recommendations: List[Recommendation] = []
        seen: Set[str] = set(exclude_ids)

        for category in categories:
            if len(recommendations) >= self.max_results:
                break
            try:
                members = await self.source.search_by_category(category, language, PER_LIKED_CATEGORY)
            except Exception as e:
                logger.warning(f"Error processing category {category}: {e}")
                continue

            for article in members or []:
                if len(recommendations) >= self.max_results:
                    break
                if article.id in seen or self._cooling_down(article.id):
                    continue
                if not is_valid_recommendation(article):
                    logger.debug(f"Rejected recommendation candidate: {article.title!r}")
                    continue
                seen.add(article.id)
                recommendations.append(to_recommendation(
                    article,
                    LIKED_SCORE,
                    f"Based on articles you like in {category}",
                    [category],
                    popularity=0.8,
                ))

        recommendations = sorted(recommendations, key=lambda r: r.score, reverse=True)[:self.max_results]
        self._remember(recommendations)
        return recommendations

    def reset(self) -> None:
        self._recently_recommended.clear()
