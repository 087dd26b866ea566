"""
Quality and diversity predicates for articles.

Every function in this module is pure: same input, same answer, no I/O.
"""
import re
from typing import Iterable, List, Sequence

from wikifeed.core.article import Article

MIN_EXCERPT_LENGTH = 100
DIVERSITY_WINDOW = 5

# Titles that never make a good feed entry
REJECTED_TITLE_PATTERNS = [
    re.compile(r'\(disambiguation\)', re.IGNORECASE),
    re.compile(r'^list of\b', re.IGNORECASE),
    re.compile(r'\bstub\b', re.IGNORECASE),
    re.compile(r'^file:', re.IGNORECASE),
    re.compile(r'^template:', re.IGNORECASE),
]

# Maintenance categories that carry no topical signal
NOISE_CATEGORY_PATTERNS = [
    re.compile(r'^CS1\b', re.IGNORECASE),
    re.compile(r'^Use\s+\w+(\s+\w+)?\s+(dates?|English)\b', re.IGNORECASE),
    re.compile(r'short description', re.IGNORECASE),
    re.compile(r'^Webarchive\b', re.IGNORECASE),
    re.compile(r'^Coordinates on Wikidata', re.IGNORECASE),
]

_CATEGORY_PREFIX = re.compile(r'^(Category|Kategori|Kategorie|Catégorie|Categoría):\s*', re.IGNORECASE)
_PARENTHETICAL = re.compile(r'\s*\([^)]*\)')
_PAGE_WORDS = re.compile(r'\b(articles?|pages?)\b', re.IGNORECASE)
_IDENTIFIERS = re.compile(r'\bwith\s+\w+\s+identifiers?\b', re.IGNORECASE)
_STUB_WORDS = re.compile(r'\b(stubs?|artikel|halaman)\b', re.IGNORECASE)
_LEADING_NUMBER = re.compile(r'^[0-9]+\s+')
_WHITESPACE = re.compile(r'\s+')


def is_acceptable(article: Article, require_image: bool = False) -> bool:
    """
    Decide whether a fetched article is fit for display.

    Args:
        article: Candidate article
        require_image: Also demand an image (recommendation candidates)

    Returns:
        True if the article passes every quality rule
    """
    if article is None:
        return False
    if not article.excerpt or len(article.excerpt) < MIN_EXCERPT_LENGTH:
        return False
    title = (article.title or '').strip()
    if not title:
        return False
    if any(pattern.search(title) for pattern in REJECTED_TITLE_PATTERNS):
        return False
    if require_image and not (article.image_url or article.thumbnail):
        return False
    return True


def is_diverse(candidate: Article, existing: Sequence[Article], window: int = DIVERSITY_WINDOW) -> bool:
    """
    Check a candidate against the last ``window`` accepted articles.

    Args:
        candidate: Article being considered
        existing: Already accepted articles, oldest first
        window: Number of trailing articles to compare against

    Returns:
        False if any recent article shares the id or (case-insensitive) title
    """
    size = min(window, len(existing))
    if size <= 0:
        return True
    title = (candidate.title or '').lower()
    for previous in existing[-size:]:
        if previous.id == candidate.id:
            return False
        if (previous.title or '').lower() == title:
            return False
    return True


def is_valid_recommendation(article: Article) -> bool:
    """Stricter check applied to recommendation candidates."""
    if article is None or not article.title or not article.excerpt:
        return False
    if len(article.excerpt) < MIN_EXCERPT_LENGTH:
        return False
    if ':' in article.title:
        return False
    if article.title.startswith('List of'):
        return False
    if article.title[0].isdigit():
        return False
    return True


def is_insertable(article: Article) -> bool:
    """Gate for putting a recommendation into the display feed."""
    return is_valid_recommendation(article) and is_acceptable(article, require_image=True)


def clean_category(category: str) -> str:
    """
    Normalize a raw category name.

    Strips the namespace prefix, parenthetical qualifiers and noise words.
    Pure maintenance categories normalize to an empty string.

    Args:
        category: Raw category title

    Returns:
        Cleaned category name, possibly empty
    """
    if not category:
        return ''

    name = _CATEGORY_PREFIX.sub('', category.strip())
    if any(pattern.search(name) for pattern in NOISE_CATEGORY_PATTERNS):
        return ''

    name = _PARENTHETICAL.sub('', name)
    name = _IDENTIFIERS.sub('', name)
    name = _PAGE_WORDS.sub('', name)
    name = _STUB_WORDS.sub('', name)
    name = _LEADING_NUMBER.sub('', name.strip())
    return _WHITESPACE.sub(' ', name).strip()


def relevant_categories(categories: Iterable[str]) -> List[str]:
    """
    Clean categories and keep the ones useful for recommendations.

    Args:
        categories: Raw category names

    Returns:
        Cleaned, de-duplicated categories in their original order
    """
    result = []
    seen = set()
    for raw in categories or []:
        name = clean_category(raw)
        if not name:
            continue
        lowered = name.lower()
        if 'wikidata' in lowered or 'hidden' in lowered:
            continue
        if lowered in seen:
            continue
        seen.add(lowered)
        result.append(name)
    return result
