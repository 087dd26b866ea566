"""
Data model for WikiFeed: articles, interactions, recommendations and likes.
"""
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

SUPPORTED_LANGUAGES = (
    'en', 'es', 'fr', 'de', 'zh',
    'ja', 'ko', 'ru', 'it', 'pt',
    'ar', 'hi', 'nl', 'pl', 'id',
)
DEFAULT_LANGUAGE = 'en'

WORDS_PER_MINUTE = 200


def is_supported_language(code: Any) -> bool:
    """Return True if ``code`` is one of the supported Wikipedia languages."""
    return code in SUPPORTED_LANGUAGES


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def estimate_reading_time(text: Optional[str]) -> Optional[float]:
    """
    Estimate reading time in minutes, rounded to the nearest half minute.

    Args:
        text: Plain text to measure

    Returns:
        Minutes (at least 0.5), or None for empty text
    """
    if not text or not text.strip():
        return None
    word_count = len(text.split())
    minutes = round((word_count / WORDS_PER_MINUTE) * 2) / 2
    return max(0.5, minutes)


# Legacy camelCase keys written by older clients
_LEGACY_KEYS = {
    'imageUrl': 'image_url',
    'lastModified': 'last_modified',
    'imagePending': 'image_pending',
    'isRecommendation': 'is_recommendation',
}


@dataclass
class Article:
    """
    Represents a Wikipedia article in its canonical shape.
    """
    id: str
    title: str
    language: str
    url: str = ""
    excerpt: str = ""
    image_url: Optional[str] = None
    thumbnail: Optional[str] = None
    content: str = ""
    categories: List[str] = field(default_factory=list)
    last_modified: Optional[str] = None
    image_pending: bool = False
    score: Optional[float] = None  # Only set on recommendation inserts
    is_recommendation: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        """De-duplication key within a single list."""
        return (self.id, self.language)

    @property
    def has_image(self) -> bool:
        return bool(self.image_url or self.thumbnail)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Article":
        """
        Build an Article from a stored dictionary.

        Accepts the current snake_case layout as well as camelCase records
        and the numeric ``pageid`` used by older stored articles.

        Args:
            data: Stored article dictionary

        Returns:
            Article instance

        Raises:
            ValueError: If the record has no usable id or title
        """
        values = {}
        for key, value in data.items():
            values[_LEGACY_KEYS.get(key, key)] = value

        article_id = values.get('id')
        if article_id in (None, '') and values.get('pageid') is not None:
            article_id = values['pageid']
        if article_id in (None, '') or not values.get('title'):
            raise ValueError("Article record needs an id and a title")

        return cls(
            id=str(article_id),
            title=values['title'],
            language=values.get('language') or DEFAULT_LANGUAGE,
            url=values.get('url') or "",
            excerpt=values.get('excerpt') or "",
            image_url=values.get('image_url'),
            thumbnail=values.get('thumbnail'),
            content=values.get('content') or "",
            categories=list(values.get('categories') or []),
            last_modified=values.get('last_modified'),
            image_pending=bool(values.get('image_pending', False)),
            score=values.get('score'),
            is_recommendation=bool(values.get('is_recommendation', False)),
        )


class InteractionType(str, Enum):
    VIEW = 'view'
    LIKE = 'like'
    DISLIKE = 'dislike'
    CLICK = 'click'
    READ = 'read'
    SHARE = 'share'
    BOOKMARK = 'bookmark'


@dataclass(frozen=True)
class Interaction:
    """
    A single user action on an article. Never mutated once recorded.
    """
    article_id: str
    type: InteractionType
    timestamp: int
    language: str
    metadata: Optional[Dict[str, float]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'articleId': self.article_id,
            'type': self.type.value,
            'timestamp': self.timestamp,
            'language': self.language,
            'metadata': self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Interaction":
        return cls(
            article_id=str(data.get('articleId', data.get('article_id'))),
            type=InteractionType(data['type']),
            timestamp=int(data['timestamp']),
            language=data.get('language') or DEFAULT_LANGUAGE,
            metadata=data.get('metadata'),
        )


@dataclass(frozen=True)
class RecommendationMetadata:
    title: str
    categories: Tuple[str, ...] = ()
    excerpt: str = ""
    thumbnail: Optional[str] = None
    reading_time: Optional[float] = None
    popularity: Optional[float] = None


@dataclass(frozen=True)
class Recommendation:
    """
    A ranked suggestion. Superseded by later batches, never mutated.
    """
    article_id: str
    score: float
    reason: str
    language: str
    metadata: RecommendationMetadata

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['metadata']['categories'] = list(self.metadata.categories)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recommendation":
        meta = dict(data.get('metadata') or {})
        meta['categories'] = tuple(meta.get('categories') or ())
        return cls(
            article_id=str(data['article_id']),
            score=float(data['score']),
            reason=data.get('reason', ''),
            language=data.get('language') or DEFAULT_LANGUAGE,
            metadata=RecommendationMetadata(**meta),
        )


@dataclass
class LikedArticle:
    id: str
    timestamp: int
    article: Article

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'timestamp': self.timestamp,
            'article': self.article.to_dict(),
        }
