"""
Display feed and recommendation interleaving.
"""
import logging
from dataclasses import replace
from typing import List, Optional, Sequence, Set, Tuple

from wikifeed.core.article import DEFAULT_LANGUAGE, Article, Recommendation
from wikifeed.core.cache import TieredCache
from wikifeed.core.filters import DIVERSITY_WINDOW, is_diverse, is_insertable

logger = logging.getLogger(__name__)

RECOMMENDATION_INTERVAL = 3
AD_START = 30
AD_INTERVAL = 50


class Feed:
    """
    The list of articles shown to the reader, for one language.

    No two entries share an id, and every accepted article differs from
    the last few entries by id and title.
    """
    def __init__(self, language: str = DEFAULT_LANGUAGE, diversity_window: int = DIVERSITY_WINDOW):
        self.language = language
        self.diversity_window = diversity_window
        self._articles: List[Article] = []
        self._keys: Set[Tuple[str, str]] = set()

    def __len__(self) -> int:
        return len(self._articles)

    def __iter__(self):
        return iter(self._articles)

    @property
    def articles(self) -> List[Article]:
        return list(self._articles)

    @property
    def ids(self) -> List[str]:
        return [a.id for a in self._articles]

    def accept(self, article: Article) -> bool:
        """
        Append an article if it belongs in this feed.

        Returns:
            True if the article was appended
        """
        if article.language != self.language:
            logger.debug(f"Dropping {article.language} article {article.id} from {self.language} feed")
            return False
        if article.key in self._keys:
            return False
        if not is_diverse(article, self._articles, self.diversity_window):
            logger.debug(f"Rejected article too similar to recent entries: {article.title!r}")
            return False

        self._articles.append(article)
        self._keys.add(article.key)
        return True

    def extend(self, articles: Sequence[Article]) -> List[Article]:
        """Accept articles in order; returns the ones that were appended."""
        return [a for a in articles if self.accept(a)]

    def clear(self, language: Optional[str] = None) -> None:
        self._articles.clear()
        self._keys.clear()
        if language is not None:
            self.language = language


class FeedMerger:
    """
    Interleaves ranked recommendations into a run of articles.
    """
    def __init__(
        self,
        source=None,
        cache: Optional[TieredCache] = None,
        interval: int = RECOMMENDATION_INTERVAL,
        ad_start: int = AD_START,
        ad_interval: int = AD_INTERVAL,
    ):
        """
        Initialize the FeedMerger.

        Args:
            source: Article source used to resolve recommendations not in cache
            cache: Articles cache consulted first
            interval: A recommendation slot follows every ``interval`` articles
            ad_start: Position of the first ad slot
            ad_interval: Spacing of subsequent ad slots
        """
        self.source = source
        self.cache = cache
        self.interval = interval
        self.ad_start = ad_start
        self.ad_interval = ad_interval

    def should_insert_at(self, index: int) -> bool:
        return index > 0 and index % self.interval == 0

    def should_show_ad(self, index: int) -> bool:
        return index >= self.ad_start and (index - self.ad_start) % self.ad_interval == 0

    async def resolve(self, recommendation: Recommendation, language: str) -> Optional[Article]:
        """
        Load the article behind a recommendation.

        Args:
            recommendation: Recommendation to resolve
            language: Feed language

        Returns:
            The article, or None if it cannot be loaded
        """
        if self.cache is not None:
            cached = self.cache.get_article(recommendation.article_id, language)
            if cached is not None:
                return cached
        if self.source is None:
            return None

        try:
            article = await self.source.fetch_by_id(recommendation.article_id, language)
        except Exception as e:
            logger.warning(f"Error resolving recommendation {recommendation.article_id}: {e}")
            return None
        if article is not None and self.cache is not None:
            self.cache.set_article(article)
        return article

    async def categories_for(self, recommendation: Recommendation, article: Article, language: str) -> List[str]:
        """
        Categories to attach to an inserted recommendation.

        Looks at the article itself, then the categories cache, then the
        source, and finally the categories the recommendation was built from.
        Whatever is found is written to the categories cache.
        """
        categories = list(article.categories)
        if not categories and self.cache is not None:
            categories = list(self.cache.get_categories(article.id, language) or [])
        fetch_categories = getattr(self.source, 'fetch_categories', None)
        if not categories and fetch_categories is not None:
            try:
                categories = list(await fetch_categories(article.id, language) or [])
            except Exception as e:
                logger.warning(f"Error loading categories for recommendation {article.id}: {e}")
        if not categories:
            categories = list(recommendation.metadata.categories)

        if categories and self.cache is not None:
            self.cache.set_categories(article.id, categories, language)
        return categories

    async def merge(
        self,
        articles: Sequence[Article],
        recommendations: Sequence[Recommendation],
        language: str,
        start_index: int = 0,
    ) -> List[Article]:
        """
        Interleave recommendations into ``articles``.

        After every article whose feed position satisfies
        ``should_insert_at``, the best remaining recommendation that passes
        the insertion gate is added. Candidates that fail are skipped; a
        slot stays empty when none qualifies.

        Args:
            articles: Newly loaded articles, in display order
            recommendations: Candidates, best first
            language: Feed language
            start_index: Feed position of the first article

        Returns:
            The merged list
        """
        pending = [r for r in recommendations if r.language in ('', language)]
        merged: List[Article] = []
        used = {a.id for a in articles}

        for offset, article in enumerate(articles):
            merged.append(article)
            if not pending or not self.should_insert_at(start_index + offset + 1):
                continue

            while pending:
                rec = pending.pop(0)
                if rec.article_id in used:
                    continue
                candidate = await self.resolve(rec, language)
                if candidate is None or candidate.language != language or not is_insertable(candidate):
                    logger.debug(f"Skipping recommendation {rec.article_id}")
                    continue
                used.add(candidate.id)
                categories = await self.categories_for(rec, candidate, language)
                merged.append(replace(candidate, categories=categories, is_recommendation=True, score=rec.score))
                break

        return merged
