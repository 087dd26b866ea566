"""
Shared fakes for the WikiFeed tests.
"""
from typing import Dict, List, Optional

import pytest

from wikifeed.core.article import Article, Interaction, InteractionType

START_MS = 1_700_000_000_000

LONG_EXCERPT = (
    "This article describes a topic in enough detail to be worth reading. "
    "It has a proper introduction and more than one hundred characters."
)


class FakeClock:
    """Manually advanced clock returning epoch milliseconds."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_article(article_id: str, title: Optional[str] = None, language: str = 'en',
                 excerpt: str = LONG_EXCERPT, image: bool = True,
                 categories: Optional[List[str]] = None) -> Article:
    return Article(
        id=article_id,
        title=title or f"Article {article_id}",
        language=language,
        url=f"https://{language}.wikipedia.org/wiki/Article_{article_id}",
        excerpt=excerpt,
        thumbnail=f"https://upload.wikimedia.org/{article_id}.jpg" if image else None,
        categories=list(categories or []),
    )


def make_interaction(article_id: str, interaction_type: InteractionType = InteractionType.VIEW,
                     timestamp: int = START_MS, language: str = 'en') -> Interaction:
    return Interaction(article_id=article_id, type=interaction_type, timestamp=timestamp, language=language)


class FakeSource:
    """
    In-memory article source.

    ``fetch_random`` hands out queued articles first and, when ``generate``
    is set, synthesizes fresh ones afterwards.
    """

    def __init__(self, random_articles: Optional[List[Article]] = None, generate: bool = True,
                 articles: Optional[Dict[str, Article]] = None,
                 categories: Optional[Dict[str, object]] = None,
                 members: Optional[Dict[str, List[Article]]] = None,
                 featured: Optional[List[Article]] = None):
        self.random_articles = list(random_articles or [])
        self.generate = generate
        self.articles = dict(articles or {})
        self.categories = dict(categories or {})
        self.members = dict(members or {})
        self.featured = list(featured or [])
        self.random_calls = 0
        self.category_calls: List[str] = []
        self._counter = 0

    async def fetch_random(self, language: str) -> Optional[Article]:
        self.random_calls += 1
        if self.random_articles:
            return self.random_articles.pop(0)
        if not self.generate:
            return None
        self._counter += 1
        return make_article(f"r{self._counter}", f"Random article {self._counter}", language=language)

    async def fetch_by_id(self, article_id: str, language: str) -> Optional[Article]:
        article = self.articles.get(article_id)
        if article is not None and article.language == language:
            return article
        return None

    async def fetch_categories(self, article_id: str, language: str) -> List[str]:
        value = self.categories.get(article_id, [])
        if isinstance(value, Exception):
            raise value
        return list(value)

    async def search_by_category(self, category: str, language: str, limit: int = 10) -> List[Article]:
        self.category_calls.append(category)
        value = self.members.get(category, [])
        if isinstance(value, Exception):
            raise value
        return [a for a in value if a.language == language][:limit]

    async def fetch_featured(self, language: str, limit: int = 5, day=None) -> List[Article]:
        return [a for a in self.featured if a.language == language][:limit]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def source():
    return FakeSource()
