"""
Look-ahead article buffer.

Keeps a bounded queue of validated random articles for the active language
so the feed can be extended without waiting on the network.
"""
import asyncio
import logging
from typing import List, Optional, Set

from wikifeed.core.article import DEFAULT_LANGUAGE, Article
from wikifeed.core.cache import TieredCache
from wikifeed.core.filters import DIVERSITY_WINDOW, is_acceptable, is_diverse

logger = logging.getLogger(__name__)

BATCH_SIZE = 5
LOW_WATER_MARK = 10
MAX_BUFFER_SIZE = 50
ATTEMPTS_PER_ARTICLE = 3


class BufferManager:
    """
    Bounded article queue for one language at a time.

    Fills are never concurrent: a latch turns a second ``request_fill``
    into a no-op while one is running. ``reset`` bumps a generation token
    so that a fill started before it cannot add anything afterwards.
    """
    def __init__(
        self,
        source,
        cache: Optional[TieredCache] = None,
        language: str = DEFAULT_LANGUAGE,
        batch_size: int = BATCH_SIZE,
        low_water_mark: int = LOW_WATER_MARK,
        max_size: int = MAX_BUFFER_SIZE,
        diversity_window: int = DIVERSITY_WINDOW,
    ):
        """
        Initialize the BufferManager.

        Args:
            source: Article source with an async ``fetch_random(language)``
            cache: Cache that accepted articles are written to
            language: Initially active language
            batch_size: Articles requested per automatic refill
            low_water_mark: Refill when fewer articles than this remain
            max_size: Hard cap; the oldest articles are trimmed beyond it
            diversity_window: Trailing articles checked for duplicates
        """
        self.source = source
        self.cache = cache
        self.batch_size = batch_size
        self.low_water_mark = low_water_mark
        self.max_size = max_size
        self.diversity_window = diversity_window
        self._language = language
        self._buffer: List[Article] = []
        self._filling = False
        self._fill_pending = False
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def language(self) -> str:
        return self._language

    @property
    def is_filling(self) -> bool:
        return self._filling or self._fill_pending

    def __len__(self) -> int:
        return len(self._buffer)

    def peek(self) -> List[Article]:
        return list(self._buffer)

    async def request_fill(self, n: Optional[int] = None) -> int:
        """
        Fetch up to ``n`` validated articles and append them to the buffer.

        Args:
            n: Number of articles wanted; defaults to the batch size

        Returns:
            Number of articles added
        """
        if self._filling:
            logger.debug("Buffer fill already running, skipping")
            return 0

        wanted = self.batch_size if n is None else n
        if wanted <= 0:
            return 0

        self._filling = True
        generation = self._generation
        language = self._language
        added = 0
        attempts = 0

        try:
            while added < wanted and attempts < wanted * ATTEMPTS_PER_ARTICLE:
                attempts += 1
                try:
                    article = await self.source.fetch_random(language)
                except Exception as e:
                    logger.warning(f"Error fetching article for buffer: {e}")
                    continue

                if generation != self._generation:
                    logger.debug(f"Discarding {language} fill result after reset")
                    break
                if article is None:
                    continue
                if article.language != self._language:
                    logger.debug(f"Discarding article {article.id} for inactive language {article.language}")
                    continue
                if not is_acceptable(article):
                    logger.debug(f"Rejected low quality article: {article.title!r}")
                    continue
                if any(a.key == article.key for a in self._buffer) or \
                        not is_diverse(article, self._buffer, self.diversity_window):
                    logger.debug(f"Rejected duplicate article: {article.title!r}")
                    continue

                self._buffer.append(article)
                added += 1
                if self.cache is not None:
                    self.cache.set_article(article)

            self._trim()
        finally:
            if generation == self._generation:
                self._filling = False

        logger.debug(f"Buffer fill added {added} articles ({len(self._buffer)} buffered)")
        return added

    def drain(self, n: int) -> List[Article]:
        """
        Pop up to ``n`` articles from the head of the buffer.

        Schedules a background refill when the buffer drops below the
        low-water mark.

        Args:
            n: Maximum number of articles to take

        Returns:
            The popped articles, oldest first
        """
        taken = self._buffer[:max(0, n)]
        del self._buffer[:len(taken)]

        if len(self._buffer) < self.low_water_mark:
            self._schedule_fill()
        return taken

    async def top_up(self) -> int:
        """Fill the buffer up to the low-water mark."""
        needed = self.low_water_mark - len(self._buffer)
        if needed <= 0:
            return 0
        return await self.request_fill(needed)

    def reset(self, language: Optional[str] = None) -> None:
        """
        Clear the buffer and cancel the effect of in-flight fills.

        Args:
            language: New active language, if it changes
        """
        self._buffer.clear()
        self._generation += 1
        self._filling = False
        if language is not None:
            self._language = language

    def _schedule_fill(self) -> None:
        if self._filling or self._fill_pending:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, refill deferred")
            return
        self._fill_pending = True
        task = loop.create_task(self._scheduled_fill())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _scheduled_fill(self) -> int:
        try:
            return await self.request_fill(self.batch_size)
        finally:
            self._fill_pending = False

    def _trim(self) -> None:
        excess = len(self._buffer) - self.max_size
        if excess > 0:
            del self._buffer[:excess]
            logger.debug(f"Trimmed {excess} articles from buffer head")

    async def wait_idle(self) -> None:
        """Wait for scheduled refills to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
