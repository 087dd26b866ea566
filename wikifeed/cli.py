"""
Command-line interface for WikiFeed.
"""
import sys
import argparse
import logging
import asyncio
from datetime import datetime
from typing import List, Optional
import tqdm
from dotenv import load_dotenv

from wikifeed.config import Config
from wikifeed.core.article import SUPPORTED_LANGUAGES, Article
from wikifeed.core.cache import TieredCache
from wikifeed.core.filters import is_acceptable
from wikifeed.core.session import ReaderSession, cache_ttls
from wikifeed.core.storage import BACKENDS, create_store
from wikifeed.fetchers.wikipedia import USER_AGENT, WikipediaSource
from wikifeed.utils.http import RateLimiter

logger = logging.getLogger(__name__)


def setup_logging(config: Config, verbose: bool = False) -> None:
    """
    Configure logging from the ``logging`` config section.

    Args:
        config: Loaded configuration
        verbose: Force DEBUG level
    """
    level = logging.DEBUG if verbose else getattr(logging, str(config.get('logging.level', 'INFO')).upper(), logging.INFO)
    handlers: List[logging.Handler] = [logging.StreamHandler()]

    log_file = config.get('logging.file')
    if log_file:
        log_file = str(log_file).replace('datetimestamp', datetime.now().strftime('%Y%m%d'))
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def parse_args(argv: Optional[List[str]] = None):
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(description="WikiFeed - personalized Wikipedia reading feed")
    parser.add_argument("--config", help="Path to a YAML or JSON config file")
    parser.add_argument("--db", help="Path to the SQLite cache database")
    parser.add_argument("--backend", choices=BACKENDS, help="Persistent storage backend")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    feed = subparsers.add_parser("feed", help="Load and print a page of the feed")
    feed.add_argument("--language", "-l", choices=SUPPORTED_LANGUAGES, help="Wikipedia language")
    feed.add_argument("--count", "-n", type=int, default=10, help="Number of articles to load")

    prefetch = subparsers.add_parser("prefetch", help="Warm the article cache for offline reading")
    prefetch.add_argument("--language", "-l", choices=SUPPORTED_LANGUAGES, help="Wikipedia language")
    prefetch.add_argument("--count", "-n", type=int, default=20, help="Number of articles to store")

    recommend = subparsers.add_parser("recommend", help="Generate recommendations from reading history")
    recommend.add_argument("--language", "-l", choices=SUPPORTED_LANGUAGES, help="Wikipedia language")

    subparsers.add_parser("likes", help="List liked articles")

    return parser.parse_args(argv)


def format_article(article: Article) -> str:
    marker = "*" if article.is_recommendation else "-"
    line = f"{marker} {article.title} ({article.url})"
    if article.excerpt:
        excerpt = article.excerpt if len(article.excerpt) <= 160 else article.excerpt[:157] + "..."
        line += f"\n    {excerpt}"
    return line


async def show_feed(session: ReaderSession, count: int) -> int:
    await session.refresh_recommendations()
    articles = await session.load_more(count)
    if not articles:
        logger.warning("No articles could be loaded")
        articles = session.load_offline(count)
        if articles:
            logger.info("Showing stored articles instead")

    for article in articles:
        print(format_article(article))
    return 0 if articles else 1


async def prefetch(source: WikipediaSource, cache: TieredCache, language: str, count: int) -> int:
    """
    Store ``count`` acceptable random articles in the persistent tier.

    Args:
        source: Wikipedia adapter
        cache: Cache writing through to the persistent tier
        language: Wikipedia language
        count: Articles to store

    Returns:
        Number of stored articles
    """
    stored = 0
    attempts = 0
    with tqdm.tqdm(total=count, desc=f"Prefetching {language} articles") as pbar:
        while stored < count and attempts < count * 3:
            attempts += 1
            try:
                article = await source.fetch_random(language)
            except Exception as e:
                logger.warning(f"Failed to fetch article: {e}")
                continue
            if article is None or not is_acceptable(article):
                continue
            if cache.set_article(article):
                stored += 1
                pbar.update(1)

    logger.info(f"Stored {stored} articles for offline reading")
    return stored


async def show_recommendations(session: ReaderSession) -> int:
    recommendations = await session.refresh_recommendations()
    if not recommendations:
        logger.warning("No recommendations available")
        return 1
    for rec in recommendations:
        print(f"{rec.score:.2f}  {rec.metadata.title or rec.article_id}  [{rec.reason}]")
    return 0


def show_likes(session: ReaderSession) -> int:
    liked = session.user_store.get_liked_articles()
    if not liked:
        print("No liked articles yet")
        return 0
    for record in liked:
        liked_at = datetime.fromtimestamp(record.timestamp / 1000).strftime('%Y-%m-%d %H:%M')
        print(f"{liked_at}  {record.article.title} ({record.article.language})")
    return 0


async def async_main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the application.
    """
    load_dotenv(override=True)

    args = parse_args(argv)
    config = Config(args.config)
    setup_logging(config, args.verbose)

    store = create_store(
        args.backend or config.get('storage.backend', 'sqlite'),
        args.db or config.get('storage.path', 'cache/wikifeed.db'),
    )
    rate_limiter = RateLimiter(config.get('rate_limiting.min_interval_seconds', 0.3))
    source = WikipediaSource(
        rate_limiter=rate_limiter,
        timeout=config.get('rate_limiting.timeout_seconds', 10),
        max_attempts=config.get('rate_limiting.max_attempts', 3),
        base_delay=config.get('rate_limiting.base_delay_seconds', 1.0),
        user_agent=config.get('wikipedia.user_agent') or USER_AGENT,
    )

    try:
        language = getattr(args, 'language', None)
        session = ReaderSession(source, store=store, config=config, language=language)
        if language:
            session.user_store.set_stored_language(language)

        if args.command == "likes":
            return show_likes(session)

        if args.command == "prefetch":
            cache = TieredCache(store, language=session.language, ttls=cache_ttls(config))
            stored = await prefetch(source, cache, session.language, args.count)
            return 0 if stored else 1

        async with session:
            if args.command == "feed":
                return await show_feed(session, args.count)
            if args.command == "recommend":
                return await show_recommendations(session)
        return 1
    finally:
        await source.close_session()
        store.close()


def main():
    """
    Entry point for the command-line script.
    """
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Process interrupted by user")
        return 1
    except Exception as e:
        logger.exception(f"An error occurred: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
