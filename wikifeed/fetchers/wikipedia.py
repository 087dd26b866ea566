"""
Wikipedia article source for WikiFeed.

Talks to the Wikipedia REST and Action APIs and normalizes every response
into the canonical Article shape. Public methods never raise: failures come
back as None, empty lists or empty dicts.
"""
import asyncio
import logging
from datetime import date
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp
import async_timeout

from wikifeed.core.article import Article
from wikifeed.core.cache import TieredCache
from wikifeed.utils.http import (
    BASE_DELAY,
    MAX_ATTEMPTS,
    REQUEST_TIMEOUT,
    RETRYABLE_EXCEPTIONS,
    RateLimiter,
    retry_with_backoff,
)

logger = logging.getLogger(__name__)

REST_BASE = "https://{language}.wikipedia.org/api/rest_v1"
ACTION_BASE = "https://{language}.wikipedia.org/w/api.php"
USER_AGENT = "wikifeed/0.1 (https://github.com/wikifeed/wikifeed)"
THUMBNAIL_SIZE = 300
MAX_CATEGORY_PAGES = 5


class WikipediaError(Exception):
    """Malformed response or MediaWiki error payload."""


class RateLimitedError(WikipediaError):
    """The API answered HTTP 429."""


def _is_permanent(error: Exception) -> bool:
    # Client errors other than 429 will not get better on retry
    if isinstance(error, aiohttp.ClientResponseError):
        return 400 <= error.status < 500 and error.status != 429
    return False


def article_url(title: str, language: str) -> str:
    return f"https://{language}.wikipedia.org/wiki/{quote(title.replace(' ', '_'))}"


def convert_summary(summary: Dict[str, Any], language: str) -> Optional[Article]:
    """
    Convert a REST page summary into an Article.

    Args:
        summary: Parsed ``page/summary`` payload
        language: Language the summary was fetched for

    Returns:
        Article, or None if the payload lacks a page id or title
    """
    if not summary or not summary.get('pageid') or not summary.get('title'):
        return None

    thumbnail = (summary.get('thumbnail') or {}).get('source')
    desktop = (summary.get('content_urls') or {}).get('desktop') or {}
    extract = summary.get('extract') or ''

    return Article(
        id=str(summary['pageid']),
        title=summary['title'],
        language=language,
        url=desktop.get('page') or article_url(summary['title'], language),
        excerpt=extract,
        image_url=thumbnail,
        thumbnail=thumbnail,
        content=extract,
        last_modified=summary.get('timestamp'),
    )


def convert_page(page: Dict[str, Any], language: str) -> Optional[Article]:
    """
    Convert an Action API page (formatversion=2) into an Article.

    Args:
        page: One entry of ``query.pages``
        language: Language the page was fetched for

    Returns:
        Article, or None for missing or invalid pages
    """
    if not page or page.get('missing') or page.get('invalid'):
        return None
    if not page.get('pageid') or not page.get('title'):
        return None

    thumbnail = (page.get('thumbnail') or {}).get('source')
    original = (page.get('original') or {}).get('source')
    extract = page.get('extract') or ''

    return Article(
        id=str(page['pageid']),
        title=page['title'],
        language=language,
        url=page.get('fullurl') or article_url(page['title'], language),
        excerpt=extract,
        image_url=original or thumbnail,
        thumbnail=thumbnail or original,
        content=extract,
        last_modified=page.get('touched'),
    )


class WikipediaSource:
    """
    Fetches articles, categories and images from Wikipedia.
    """
    def __init__(
        self,
        cache: Optional[TieredCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = REQUEST_TIMEOUT,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay: float = BASE_DELAY,
        user_agent: str = USER_AGENT,
    ):
        """
        Initialize the WikipediaSource.

        Args:
            cache: Cache for articles, summaries and images
            rate_limiter: Shared per-host throttle
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per request for transient failures
            base_delay: First retry delay in seconds
            user_agent: User-Agent header sent with every request
        """
        self.cache = cache
        self.rate_limiter = rate_limiter or RateLimiter()
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._session = None
        self.headers = {
            'User-Agent': user_agent,
            'Accept': 'application/json',
            'Accept-Encoding': 'gzip, deflate',
        }

    @property
    def session(self):
        """
        Lazy initialization of aiohttp session.

        Returns:
            aiohttp.ClientSession: The HTTP session
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(headers=self.headers)
        return self._session

    async def close_session(self):
        """Close aiohttp session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict]:
        """
        Perform one GET request.

        Returns:
            Parsed JSON, or None for 404

        Raises:
            aiohttp.ClientError, asyncio.TimeoutError, WikipediaError
        """
        domain = url.split('://', 1)[-1].split('/', 1)[0]
        await self.rate_limiter.acquire(domain)

        try:
            async with async_timeout.timeout(self.timeout):
                async with self.session.get(url, params=params) as response:
                    if response.status == 404:
                        self.rate_limiter.report_success(domain)
                        return None
                    if response.status == 429:
                        raise RateLimitedError(f"Rate limited by {domain}")
                    response.raise_for_status()
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, WikipediaError):
            self.rate_limiter.report_failure(domain)
            raise

        if not isinstance(data, dict):
            self.rate_limiter.report_failure(domain)
            raise WikipediaError(f"Unexpected response from {url}")
        if 'error' in data:
            error = data['error'] or {}
            self.rate_limiter.report_failure(domain)
            raise WikipediaError(f"{error.get('code', 'error')}: {error.get('info', 'unknown error')}")

        self.rate_limiter.report_success(domain)
        return data

    async def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict]:
        """
        GET with retries. Returns None once every attempt has failed.
        """
        try:
            return await retry_with_backoff(
                lambda: self._get_json(url, params),
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                exceptions=RETRYABLE_EXCEPTIONS + (WikipediaError,),
                giveup=_is_permanent,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, WikipediaError) as e:
            logger.warning(f"Request to {url} failed: {e}")
            return None

    async def _query(self, language: str, **params) -> Optional[Dict]:
        query = {
            'action': 'query',
            'format': 'json',
            'formatversion': '2',
        }
        query.update(params)
        return await self._request(ACTION_BASE.format(language=language), query)

    @staticmethod
    def _page_selector(article_id: str) -> Dict[str, str]:
        # Numeric ids are page ids, anything else is treated as a title
        if str(article_id).isdigit():
            return {'pageids': str(article_id)}
        return {'titles': str(article_id)}

    async def fetch_random(self, language: str) -> Optional[Article]:
        """
        Fetch one random article.

        Args:
            language: Wikipedia language code

        Returns:
            Article, or None on failure
        """
        try:
            summary = await self._request(f"{REST_BASE.format(language=language)}/page/random/summary")
            article = convert_summary(summary, language) if summary else None
            if article is None:
                return None

            if self.cache is not None:
                self.cache.set_summary(article.id, summary, language)

            if not article.has_image:
                try:
                    images = await self._lookup_images(article.id, language)
                    article.image_url = images.get('image_url')
                    article.thumbnail = images.get('thumbnail')
                except (aiohttp.ClientError, asyncio.TimeoutError, WikipediaError) as e:
                    logger.debug(f"Image lookup for {article.id} failed, marking pending: {e}")
                    article.image_pending = True

            return article
        except Exception as e:
            logger.warning(f"Error fetching random article: {e}")
            return None

    async def fetch_by_id(self, article_id: str, language: str) -> Optional[Article]:
        """
        Fetch a single article by page id (or title).

        Args:
            article_id: Page id or title
            language: Wikipedia language code

        Returns:
            Article, or None if missing or on failure
        """
        if self.cache is not None:
            cached = self.cache.get_article(article_id, language)
            if cached is not None:
                return cached

        try:
            data = await self._query(
                language,
                prop='extracts|pageimages|info',
                exintro='1',
                explaintext='1',
                piprop='thumbnail|original',
                pithumbsize=str(THUMBNAIL_SIZE),
                inprop='url',
                **self._page_selector(article_id),
            )
            pages = ((data or {}).get('query') or {}).get('pages') or []
            article = convert_page(pages[0], language) if pages else None
        except Exception as e:
            logger.warning(f"Error fetching article {article_id}: {e}")
            return None

        if article is not None and self.cache is not None:
            self.cache.set_article(article)
        return article

    async def fetch_categories(self, article_id: str, language: str) -> List[str]:
        """
        Fetch the visible categories of an article.

        Args:
            article_id: Page id or title
            language: Wikipedia language code

        Returns:
            Category names without namespace prefix; empty on failure
        """
        categories: List[str] = []
        params: Dict[str, str] = {
            'prop': 'categories',
            'cllimit': '500',
            'clshow': '!hidden',
            **self._page_selector(article_id),
        }

        try:
            for _ in range(MAX_CATEGORY_PAGES):
                data = await self._query(language, **params)
                if not data:
                    break
                for page in (data.get('query') or {}).get('pages') or []:
                    for category in page.get('categories') or []:
                        title = category.get('title', '')
                        categories.append(title.split(':', 1)[-1])

                continue_token = (data.get('continue') or {}).get('clcontinue')
                if not continue_token:
                    break
                params['clcontinue'] = continue_token
        except Exception as e:
            logger.warning(f"Error fetching categories for {article_id}: {e}")
            return []

        return categories

    async def search_by_category(self, category: str, language: str, limit: int = 10) -> List[Article]:
        """
        Fetch articles that are members of a category.

        Args:
            category: Category name without namespace prefix
            language: Wikipedia language code
            limit: Maximum number of members

        Returns:
            Articles tagged with the category; empty on failure
        """
        try:
            data = await self._query(
                language,
                generator='categorymembers',
                gcmtitle=f"Category:{category}",
                gcmtype='page',
                gcmnamespace='0',
                gcmlimit=str(limit),
                prop='extracts|pageimages|info',
                exintro='1',
                explaintext='1',
                exlimit=str(limit),
                piprop='thumbnail|original',
                pithumbsize=str(THUMBNAIL_SIZE),
                inprop='url',
            )
            pages = ((data or {}).get('query') or {}).get('pages') or []
        except Exception as e:
            logger.warning(f"Error searching category {category}: {e}")
            return []

        articles = []
        for page in pages[:limit]:
            article = convert_page(page, language)
            if article is None:
                continue
            article.categories = [category]
            articles.append(article)
        return articles

    async def _lookup_images(self, article_id: str, language: str) -> Dict[str, Optional[str]]:
        if self.cache is not None:
            cached = self.cache.get_images(article_id, language)
            if cached is not None:
                return cached

        data = await retry_with_backoff(
            lambda: self._get_json(ACTION_BASE.format(language=language), {
                'action': 'query',
                'format': 'json',
                'formatversion': '2',
                'prop': 'pageimages',
                'piprop': 'thumbnail|original',
                'pithumbsize': str(THUMBNAIL_SIZE),
                **self._page_selector(article_id),
            }),
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            exceptions=RETRYABLE_EXCEPTIONS + (WikipediaError,),
            giveup=_is_permanent,
        )
        pages = ((data or {}).get('query') or {}).get('pages') or []
        page = pages[0] if pages else {}
        thumbnail = (page.get('thumbnail') or {}).get('source')
        original = (page.get('original') or {}).get('source')
        images = {
            'image_url': original or thumbnail,
            'thumbnail': thumbnail or original,
        }

        if self.cache is not None:
            self.cache.set_images(article_id, images, language)
        return images

    async def fetch_images(self, article_id: str, language: str) -> Dict[str, Optional[str]]:
        """
        Fetch the lead image of an article.

        Returns:
            Dict with ``image_url`` and ``thumbnail``; empty on failure
        """
        try:
            return await self._lookup_images(article_id, language)
        except Exception as e:
            logger.warning(f"Error fetching images for {article_id}: {e}")
            return {}

    async def fetch_featured(self, language: str, limit: int = 5, day: Optional[date] = None) -> List[Article]:
        """
        Fetch today's featured article and most-read articles.

        Args:
            language: Wikipedia language code
            limit: Maximum number of articles
            day: Date of the feed; defaults to today

        Returns:
            Articles; empty on failure or where the feed is unavailable
        """
        day = day or date.today()
        url = f"{REST_BASE.format(language=language)}/feed/featured/{day:%Y/%m/%d}"
        try:
            data = await self._request(url)
            if not data:
                return []

            summaries = []
            if data.get('tfa'):
                summaries.append(data['tfa'])
            summaries.extend((data.get('mostread') or {}).get('articles') or [])
        except Exception as e:
            logger.warning(f"Error fetching featured content: {e}")
            return []

        articles = []
        for summary in summaries:
            article = convert_summary(summary, language)
            if article is not None:
                articles.append(article)
            if len(articles) >= limit:
                break
        return articles
