"""
Reader session: the main context that drives the background workers.
"""
import asyncio
import itertools
import logging
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Set

from wikifeed.config import Config, default_config
from wikifeed.core.article import (
    Article,
    Interaction,
    InteractionType,
    Recommendation,
    is_supported_language,
    now_ms,
)
from wikifeed.core.cache import MINUTE, CacheType, TieredCache
from wikifeed.core.feed import Feed, FeedMerger
from wikifeed.core.filters import relevant_categories
from wikifeed.core.interactions import InteractionRecorder
from wikifeed.core.preferences import PreferenceModel
from wikifeed.core.recommender import RecommendationEngine
from wikifeed.core.storage import BaseStore, MemoryStore
from wikifeed.core.user_store import UserStore
from wikifeed.core.workers import BackgroundWorker, LoaderWorker, Message, RecommendationWorker

logger = logging.getLogger(__name__)

REPLY_TIMEOUT = 120  # seconds


def cache_ttls(config: Config) -> Dict[CacheType, int]:
    """Per-type TTLs in milliseconds from the ``cache.ttl_minutes`` section."""
    ttls = {}
    for name, minutes in (config.get('cache.ttl_minutes') or {}).items():
        try:
            ttls[CacheType(name)] = int(float(minutes) * MINUTE)
        except ValueError:
            logger.warning(f"Ignoring TTL for unknown cache type {name}")
    return ttls


class ReaderSession:
    """
    Wires caches, stores, the preference model and both workers together.

    The loader and recommendation workers each get their own cache over the
    shared persistent store, and are only reached through messages.
    """
    def __init__(
        self,
        source,
        store: Optional[BaseStore] = None,
        config: Optional[Config] = None,
        language: Optional[str] = None,
        session_id: str = 'default',
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize the ReaderSession.

        Args:
            source: Article source adapter
            store: Persistent backend; defaults to an in-memory store
            config: Configuration; defaults to the process-wide one
            language: Initial language; defaults to the stored choice
            session_id: Scope for cached per-user recommendations
            clock: Returns the current time in epoch milliseconds
        """
        self.source = source
        self.store = store if store is not None else MemoryStore()
        self.config = config or default_config()
        self.session_id = session_id
        self.clock = clock

        self.user_store = UserStore(
            self.store,
            clock=clock,
            history_size=self.config.get('interactions.history_size', 50),
            history_days=self.config.get('interactions.history_days', 15),
            log_size=self.config.get('interactions.log_size', 500),
            log_days=self.config.get('interactions.log_days', 30),
        )

        language = language or self.user_store.get_stored_language() or self.config.get('language.default', 'en')
        if not is_supported_language(language):
            raise ValueError(f"Unsupported language: {language}")
        self.language = language

        ttls = cache_ttls(self.config)
        self.cache = TieredCache(self.store, language=language, ttls=ttls, clock=clock)
        self.preferences = PreferenceModel()
        self.recorder = InteractionRecorder(
            self.user_store,
            preferences=self.preferences,
            clock=clock,
            debounce_ms=self.config.get('interactions.debounce_ms', 1000),
            min_view_ms=self.config.get('interactions.min_view_ms', 2000),
        )
        self.feed = Feed(language, diversity_window=self.config.get('buffer.diversity_window', 5))
        self.merger = FeedMerger(
            source,
            self.cache,
            interval=self.config.get('feed.interval', 3),
            ad_start=self.config.get('feed.ad_start', 30),
            ad_interval=self.config.get('feed.ad_interval', 50),
        )

        self.loader = LoaderWorker(
            source,
            cache=TieredCache(self.store, language=language, ttls=ttls, clock=clock),
            language=language,
            batch_size=self.config.get('buffer.batch_size', 5),
            low_water_mark=self.config.get('buffer.low_water_mark', 10),
            max_size=self.config.get('buffer.max_size', 50),
            diversity_window=self.config.get('buffer.diversity_window', 5),
        )
        engine = RecommendationEngine(
            source,
            cache=TieredCache(self.store, language=language, ttls=ttls, clock=clock),
            clock=clock,
            max_results=self.config.get('recommendations.max_results', 10),
            seed_count=self.config.get('recommendations.seed_count', 5),
            per_category=self.config.get('recommendations.per_category', 2),
            min_results=self.config.get('recommendations.min_results', 3),
            max_errors=self.config.get('recommendations.max_errors', 2),
            fallback_size=self.config.get('recommendations.fallback_size', 5),
            cooldown_ms=int(self.config.get('recommendations.cooldown_minutes', 30) * MINUTE),
        )
        self.recommender = RecommendationWorker(engine, session_id=session_id)
        self.recommendations: List[Recommendation] = []
        self.reply_timeout = REPLY_TIMEOUT
        self._request_ids = itertools.count(1)

    async def start(self) -> None:
        self.user_store.cleanup_storage()
        self.loader.start()
        self.recommender.start()
        self.cache.start_sweeper(self.config.get('cache.sweep_interval_seconds', 300))
        logger.info(f"Reader session {self.session_id} started in {self.language}")

    async def stop(self) -> None:
        await self.loader.stop()
        await self.recommender.stop()
        await self.cache.stop_sweeper()
        logger.info(f"Reader session {self.session_id} stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    async def _request(self, worker: BackgroundWorker, message: Message, reply_types: Set[str]) -> Optional[Message]:
        """
        Post a message and wait for its reply.

        Each request carries an id that the worker echoes. Replies to other
        requests, including late replies to requests that timed out, are
        discarded.

        Returns:
            The reply, or None if the worker reported an error or did not
            answer within ``reply_timeout`` seconds
        """
        request_id = next(self._request_ids)
        worker.post(dict(message, id=request_id))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.reply_timeout
        while True:
            try:
                reply = await worker.next_message(max(0.0, deadline - loop.time()))
            except asyncio.TimeoutError:
                logger.warning(f"{worker.name} did not answer {message.get('type')} in time")
                return None
            if reply.get('id') != request_id:
                logger.debug(f"Discarding stale {reply.get('type')} reply from {worker.name}")
                continue
            if reply.get('type') == 'error':
                logger.warning(f"{worker.name} reported an error: {reply.get('error')}")
                return None
            if reply.get('type') in reply_types:
                return reply
            logger.debug(f"Discarding unexpected {reply.get('type')} reply from {worker.name}")

    async def change_language(self, language: str) -> bool:
        """
        Switch the active language everywhere.

        Returns:
            True if the language changed

        Raises:
            ValueError: If the language is not supported
        """
        if not is_supported_language(language):
            raise ValueError(f"Unsupported language: {language}")
        if language == self.language:
            return False

        self.language = language
        self.user_store.set_stored_language(language)
        self.feed.clear(language)
        self.cache.clear_for_language(language)
        self.preferences.reset()
        self.recommendations = []

        self.recommender.post({'type': 'changeLanguage', 'language': language})
        await self._request(self.loader, {'type': 'changeLanguage', 'language': language}, {'bufferStatus'})
        logger.info(f"Switched reader session to {language}")
        return True

    async def load_more(self, count: Optional[int] = None) -> List[Article]:
        """
        Load the next page of articles into the feed.

        Args:
            count: Number of buffered articles to request

        Returns:
            Articles appended to the feed, recommendations included
        """
        count = count or self.config.get('feed.page_size', 10)
        language = self.language
        reply = await self._request(
            self.loader,
            {'type': 'load', 'language': language, 'count': count},
            {'articles'},
        )
        if reply is None or language != self.language:
            return []

        articles = [a for a in reply.get('articles') or [] if a.language == language]
        merged = await self.merger.merge(articles, self.preferences.ranked(), language, start_index=len(self.feed))

        accepted = self.feed.extend(merged)
        for article in accepted:
            self.cache.set_article(article)
            if article.categories:
                self.cache.set_categories(article.id, article.categories, language)
            if article.is_recommendation:
                self.preferences.discard(article.id)
        logger.debug(f"Feed grew by {len(accepted)} articles to {len(self.feed)}")
        return accepted

    def record(self, article: Article, interaction_type: InteractionType,
               metadata: Optional[Dict[str, float]] = None) -> Optional[Interaction]:
        """
        Record an interaction with an article.

        Articles without categories get the ones known for their id, so
        feedback can re-weight related recommendations.
        """
        if not article.categories and article.id:
            categories = self._categories_for(article.id)
            if categories:
                article = replace(article, categories=list(categories))
        return self.recorder.record(article, interaction_type, metadata)

    def _categories_for(self, article_id: str) -> Optional[List[str]]:
        cached = self.cache.get_categories(article_id)
        if cached:
            return cached
        for article in self.feed:
            if article.id == article_id and article.categories:
                return article.categories
        for article in self.user_store.get_liked_articles_data():
            if article.id == article_id and article.categories:
                return article.categories
        return None

    def _liked_categories(self) -> List[str]:
        categories: List[str] = []
        for article in self.user_store.get_liked_articles_data():
            if article.language == self.language:
                categories.extend(article.categories)
        return relevant_categories(categories)

    async def refresh_recommendations(self) -> List[Recommendation]:
        """
        Ask the recommendation worker for a fresh batch.

        Without an interaction history, recommendations are seeded from the
        categories of liked articles.

        Returns:
            The new recommendations, best first
        """
        interactions = [i for i in self.user_store.get_interactions() if i.language == self.language]
        self.preferences.update_from_history(interactions, self._categories_for)
        language = self.language

        seeds = self.preferences.top_categories() or self._liked_categories()
        if not interactions and seeds:
            message = {
                'type': 'initialize',
                'categories': seeds,
                'language': language,
                'exclude_ids': self.feed.ids,
            }
        else:
            message = {
                'type': 'recommend',
                'interactions': interactions,
                'language': language,
                'exclude_ids': self.feed.ids,
                'session_id': self.session_id,
            }

        reply = await self._request(self.recommender, message, {'recommendations'})
        if reply is None or reply.get('language') != self.language:
            return []

        self.recommendations = list(reply.get('recommendations') or [])
        self.preferences.set_recommendations(self.recommendations)
        return self.recommendations

    def toggle_like(self, article: Article) -> bool:
        """
        Like or unlike an article and record the feedback.

        Liked articles are also kept for offline reading.

        Returns:
            True if the article is liked afterwards
        """
        if not article.categories:
            article = replace(article, categories=list(self._categories_for(article.id) or []))
        liked = self.user_store.toggle_like(article)
        interaction_type = InteractionType.LIKE if liked else InteractionType.DISLIKE

        self.record(article, interaction_type)
        self.user_store.store_feedback({
            'articleId': article.id,
            'feedbackType': interaction_type.value,
            'timestamp': self.clock(),
            'categories': list(article.categories),
            'language': article.language,
        })
        if liked:
            self.user_store.store_offline_article(article)
        return liked

    @property
    def liked_ids(self) -> Set[str]:
        return self.user_store.liked_ids()

    def load_offline(self, count: Optional[int] = None) -> List[Article]:
        """
        Fill the feed from stored content without touching the network.

        Args:
            count: Maximum number of articles to add

        Returns:
            Articles appended to the feed
        """
        count = count or self.config.get('feed.page_size', 10)
        candidates: Iterable[Article] = (
            [a for a in self.user_store.get_offline_articles() if a.language == self.language]
            + self.cache.stored_articles(self.language)
        )
        added = []
        for article in candidates:
            if len(added) >= count:
                break
            if self.feed.accept(article):
                added.append(article)
        return added
