"""
Tiered cache for WikiFeed.

An in-memory tier per data type, backed by an optional persistent tier for
articles and images. Every entry is tagged with the language it was fetched
for; writes for any other language than the active one are ignored.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from wikifeed.core.article import DEFAULT_LANGUAGE, Article, Recommendation, now_ms
from wikifeed.core.storage import BaseStore, NullStore

logger = logging.getLogger(__name__)

T = TypeVar('T')

MINUTE = 60 * 1000
SWEEP_INTERVAL = 5 * 60  # seconds


class CacheType(str, Enum):
    ARTICLES = 'articles'
    CATEGORIES = 'categories'
    SUMMARIES = 'summaries'
    IMAGES = 'images'
    RECOMMENDATIONS = 'recommendations'


# Time-to-live per cache type, in milliseconds
DEFAULT_TTLS = {
    CacheType.ARTICLES: 30 * MINUTE,
    CacheType.CATEGORIES: 60 * MINUTE,
    CacheType.SUMMARIES: 15 * MINUTE,
    CacheType.IMAGES: 24 * 60 * MINUTE,
    CacheType.RECOMMENDATIONS: 15 * MINUTE,
}

# Only these types are written through to the persistent tier
PERSISTENT_NAMESPACES = {
    CacheType.ARTICLES: 'articles-cache-v1',
    CacheType.IMAGES: 'images-cache-v1',
}


@dataclass
class CacheEntry(Generic[T]):
    data: T
    timestamp: int
    language: str

    def is_expired(self, now: int, ttl: int) -> bool:
        return now - self.timestamp >= ttl


def _encode(value: Any) -> Any:
    if isinstance(value, (Article, Recommendation)):
        return value.to_dict()
    if isinstance(value, list):
        return [_encode(item) for item in value]
    return value


_DECODERS: Dict[CacheType, Callable[[Any], Any]] = {
    CacheType.ARTICLES: lambda data: data if isinstance(data, Article) else Article.from_dict(data),
}


class TieredCache:
    """
    Two-tier cache keyed per data type and language.
    """
    def __init__(
        self,
        store: Optional[BaseStore] = None,
        language: str = DEFAULT_LANGUAGE,
        ttls: Optional[Dict[CacheType, int]] = None,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize the TieredCache.

        Args:
            store: Persistent backend; defaults to a no-op backend
            language: Initially active language
            ttls: Per-type TTL overrides in milliseconds
            clock: Returns the current time in epoch milliseconds
        """
        self.store = store or NullStore()
        self.ttls = dict(DEFAULT_TTLS)
        if ttls:
            self.ttls.update({CacheType(k): v for k, v in ttls.items()})
        self.clock = clock
        self._language = language
        self._tiers: Dict[CacheType, Dict[str, CacheEntry]] = {t: {} for t in CacheType}
        self._sweeper: Optional[asyncio.Task] = None

    @property
    def current_language(self) -> str:
        return self._language

    def _key(self, key: str, language: str) -> str:
        return f"{language}-{key}"

    def size(self, cache_type: CacheType) -> int:
        return len(self._tiers[CacheType(cache_type)])

    def get(self, cache_type: CacheType, key: str, language: Optional[str] = None) -> Optional[Any]:
        """
        Look up a value, memory tier first, then the persistent tier.

        Args:
            cache_type: Which cache to read
            key: Entry key (article id, session key, ...)
            language: Language of the entry; defaults to the active language

        Returns:
            The cached value, or None if missing, expired or unreadable
        """
        cache_type = CacheType(cache_type)
        language = language or self._language
        full_key = self._key(key, language)
        ttl = self.ttls[cache_type]
        now = self.clock()

        tier = self._tiers[cache_type]
        entry = tier.get(full_key)
        if entry is not None:
            if entry.is_expired(now, ttl) or entry.language != self._language:
                del tier[full_key]
            else:
                return entry.data

        namespace = PERSISTENT_NAMESPACES.get(cache_type)
        if namespace is None:
            return None

        try:
            raw = self.store.get_cache(namespace, full_key)
            if not isinstance(raw, dict) or 'data' not in raw:
                return None
            stored = CacheEntry(
                data=raw['data'],
                timestamp=int(raw.get('timestamp', 0)),
                language=raw.get('language', language),
            )
            if stored.is_expired(now, ttl):
                self.store.delete_cache(namespace, full_key)
                return None
            decoder = _DECODERS.get(cache_type)
            data = decoder(stored.data) if decoder else stored.data
        except Exception as e:
            logger.warning(f"Persistent cache read failed for {namespace}/{full_key}: {e}")
            return None

        # Promote, keeping the original write time so the TTL is not extended
        if stored.language == self._language:
            tier[full_key] = CacheEntry(data=data, timestamp=stored.timestamp, language=stored.language)
        return data

    def set(self, cache_type: CacheType, key: str, value: Any, language: str) -> bool:
        """
        Store a value for the given language.

        Args:
            cache_type: Which cache to write
            key: Entry key
            value: Value to cache
            language: Language the value belongs to

        Returns:
            True if written, False if dropped because the language is not active
        """
        cache_type = CacheType(cache_type)
        if language != self._language:
            logger.debug(f"Dropping {cache_type.value} entry {key} for inactive language {language}")
            return False

        full_key = self._key(key, language)
        entry = CacheEntry(data=value, timestamp=self.clock(), language=language)
        self._tiers[cache_type][full_key] = entry

        namespace = PERSISTENT_NAMESPACES.get(cache_type)
        if namespace is not None:
            try:
                self.store.put_cache(namespace, full_key, {
                    'data': _encode(value),
                    'timestamp': entry.timestamp,
                    'language': language,
                })
            except Exception as e:
                logger.warning(f"Persistent cache write failed for {namespace}/{full_key}: {e}")
        return True

    def clear_for_language(self, new_language: str) -> bool:
        """
        Switch the active language, wiping every memory tier if it changed.

        Returns:
            True if the language changed
        """
        if new_language == self._language:
            return False
        for tier in self._tiers.values():
            tier.clear()
        logger.info(f"Cache language switched from {self._language} to {new_language}")
        self._language = new_language
        return True

    def clear_all(self) -> None:
        """Clear every memory tier and reset to the default language."""
        for tier in self._tiers.values():
            tier.clear()
        self._language = DEFAULT_LANGUAGE

    def cleanup(self) -> int:
        """
        Evict expired entries from every memory tier.

        Returns:
            Number of evicted entries
        """
        now = self.clock()
        evicted = 0
        for cache_type, tier in self._tiers.items():
            ttl = self.ttls[cache_type]
            for key in [k for k, entry in tier.items() if entry.is_expired(now, ttl)]:
                del tier[key]
                evicted += 1
        if evicted:
            logger.debug(f"Cache sweep evicted {evicted} entries")
        return evicted

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.cleanup()

    def start_sweeper(self, interval: float = SWEEP_INTERVAL) -> asyncio.Task:
        """Run ``cleanup`` periodically on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever(interval))
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    # Typed accessors

    def get_article(self, article_id: str, language: Optional[str] = None) -> Optional[Article]:
        return self.get(CacheType.ARTICLES, article_id, language)

    def set_article(self, article: Article) -> bool:
        return self.set(CacheType.ARTICLES, article.id, article, article.language)

    def stored_articles(self, language: Optional[str] = None) -> List[Article]:
        """
        Every article in the persistent tier for a language, ignoring TTLs.

        Used to serve content while offline.
        """
        language = language or self._language
        namespace = PERSISTENT_NAMESPACES[CacheType.ARTICLES]
        prefix = f"{language}-"
        articles = []
        try:
            keys = [k for k in self.store.keys(namespace) if k.startswith(prefix)]
            for key in keys:
                raw = self.store.get_cache(namespace, key)
                if isinstance(raw, dict) and isinstance(raw.get('data'), dict):
                    try:
                        articles.append(Article.from_dict(raw['data']))
                    except ValueError as e:
                        logger.debug(f"Skipping unreadable stored article {key}: {e}")
        except Exception as e:
            logger.warning(f"Reading stored articles failed: {e}")
        return articles

    def get_categories(self, article_id: str, language: Optional[str] = None) -> Optional[List[str]]:
        return self.get(CacheType.CATEGORIES, article_id, language)

    def set_categories(self, article_id: str, categories: List[str], language: str) -> bool:
        return self.set(CacheType.CATEGORIES, article_id, list(categories), language)

    def get_summary(self, article_id: str, language: Optional[str] = None) -> Optional[Dict]:
        return self.get(CacheType.SUMMARIES, article_id, language)

    def set_summary(self, article_id: str, summary: Dict, language: str) -> bool:
        return self.set(CacheType.SUMMARIES, article_id, summary, language)

    def get_images(self, article_id: str, language: Optional[str] = None) -> Optional[Dict[str, Optional[str]]]:
        return self.get(CacheType.IMAGES, article_id, language)

    def set_images(self, article_id: str, images: Dict[str, Optional[str]], language: str) -> bool:
        return self.set(CacheType.IMAGES, article_id, images, language)

    def get_recommendations(self, key: str, language: Optional[str] = None) -> Optional[List[Recommendation]]:
        return self.get(CacheType.RECOMMENDATIONS, key, language)

    def set_recommendations(self, key: str, recommendations: List[Recommendation], language: str) -> bool:
        return self.set(CacheType.RECOMMENDATIONS, key, list(recommendations), language)
