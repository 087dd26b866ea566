"""
Persisted reader state: interaction history, likes, feedback, language and
offline articles.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from wikifeed.core.article import (
    Article,
    Interaction,
    LikedArticle,
    is_supported_language,
    now_ms,
)
from wikifeed.core.storage import BaseStore, read_versioned, write_versioned

logger = logging.getLogger(__name__)

NAMESPACE = 'wikifeed'

STORAGE_KEYS = {
    'interactions': 'interactions',
    'interaction_log': 'interaction_log',
    'liked_articles': 'liked_articles',
    'liked_ids': 'liked_ids',
    'language': 'language',
    'feedback': 'feedback',
    'last_cleanup': 'last_cleanup',
    'offline_articles': 'offline_articles',
}

DAY = 24 * 60 * 60 * 1000
HISTORY_SIZE = 50
HISTORY_DAYS = 15
LOG_SIZE = 500
LOG_DAYS = 30
FEEDBACK_SIZE = 100
CLEANUP_INTERVAL = 7 * DAY


class UserStore:
    """
    Reader state kept in a persistent backend under versioned keys.
    """
    def __init__(
        self,
        store: BaseStore,
        clock: Callable[[], int] = now_ms,
        history_size: int = HISTORY_SIZE,
        history_days: int = HISTORY_DAYS,
        log_size: int = LOG_SIZE,
        log_days: int = LOG_DAYS,
    ):
        self.store = store
        self.clock = clock
        self.history_size = history_size
        self.history_days = history_days
        self.log_size = log_size
        self.log_days = log_days

    def _read(self, name: str, default: Any) -> Any:
        return read_versioned(self.store, NAMESPACE, STORAGE_KEYS[name], default)

    def _write(self, name: str, value: Any) -> None:
        write_versioned(self.store, NAMESPACE, STORAGE_KEYS[name], value)

    def _load_interactions(self, name: str) -> List[Interaction]:
        interactions = []
        for item in self._read(name, []) or []:
            try:
                interactions.append(Interaction.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping unreadable interaction record: {e}")
        return interactions

    # Interactions

    def store_interaction(self, interaction: Interaction) -> None:
        """
        Append an interaction to the live history and the long-term log.

        The live history keeps the newest entries within the last
        ``history_days``; the log keeps up to ``log_size`` entries within
        ``log_days``.

        Args:
            interaction: Accepted interaction
        """
        now = self.clock()

        cutoff = now - self.history_days * DAY
        history = [i for i in self._load_interactions('interactions') if i.timestamp > cutoff]
        history = history[-(self.history_size - 1):] if self.history_size > 1 else []
        history.append(interaction)
        self._write('interactions', [i.to_dict() for i in history])

        log_cutoff = now - self.log_days * DAY
        log = [i for i in self._load_interactions('interaction_log') if i.timestamp > log_cutoff]
        log.append(interaction)
        self._write('interaction_log', [i.to_dict() for i in log[-self.log_size:]])

    def get_interactions(self) -> List[Interaction]:
        """Live interaction history, oldest first."""
        return self._load_interactions('interactions')

    def get_interaction_log(self) -> List[Interaction]:
        return self._load_interactions('interaction_log')

    def cleanup_old_data(self) -> None:
        """Drop interactions and feedback older than ``log_days``."""
        cutoff = self.clock() - self.log_days * DAY

        history = [i for i in self._load_interactions('interactions') if i.timestamp > cutoff]
        self._write('interactions', [i.to_dict() for i in history])

        log = [i for i in self._load_interactions('interaction_log') if i.timestamp > cutoff]
        self._write('interaction_log', [i.to_dict() for i in log])

        feedback = [f for f in self._read('feedback', []) or [] if f.get('timestamp', 0) > cutoff]
        self._write('feedback', feedback)

    def cleanup_storage(self) -> bool:
        """
        Run ``cleanup_old_data`` if the last cleanup is older than a week.

        Returns:
            True if a cleanup ran
        """
        now = self.clock()
        last_cleanup = self._read('last_cleanup', 0) or 0
        if now - last_cleanup < CLEANUP_INTERVAL:
            return False
        try:
            self.cleanup_old_data()
            self._write('last_cleanup', now)
        except Exception as e:
            logger.error(f"Error during storage cleanup: {e}")
            return False
        return True

    # Likes

    def get_liked_articles(self) -> List[LikedArticle]:
        """
        Load liked article records, migrating older layouts.

        Understands lists of ``{id, timestamp, article}`` records, bare
        article dicts and records carrying a numeric ``pageid``. Anything
        else is dropped with a warning.

        Returns:
            Liked article records, oldest first
        """
        raw = self._read('liked_articles', [])
        if not isinstance(raw, list):
            logger.warning("Unrecognized liked articles layout, starting empty")
            return []

        records = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                if isinstance(item.get('article'), dict):
                    article = Article.from_dict(item['article'])
                    record_id = str(item.get('id') or article.id)
                else:
                    article = Article.from_dict(item)
                    record_id = article.id
                records.append(LikedArticle(
                    id=record_id,
                    timestamp=int(item.get('timestamp') or self.clock()),
                    article=article,
                ))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable liked article record: {e}")
        return records

    def liked_ids(self) -> Set[str]:
        """
        Liked article ids, reconciled from the full records.

        The denormalized id list is rewritten whenever it disagrees with
        the records, so it never names an id without a record.
        """
        ids = {record.id for record in self.get_liked_articles()}
        stored = self._read('liked_ids', None)
        if not isinstance(stored, list) or set(map(str, stored)) != ids:
            self._write('liked_ids', sorted(ids))
        return ids

    def _save_liked(self, records: List[LikedArticle]) -> None:
        self._write('liked_articles', [r.to_dict() for r in records])
        self._write('liked_ids', sorted({r.id for r in records}))

    def store_liked_article(self, article: Article) -> None:
        record = LikedArticle(id=article.id, timestamp=self.clock(), article=article)
        records = self.get_liked_articles()
        for index, existing in enumerate(records):
            if existing.id == article.id:
                records[index] = record
                break
        else:
            records.append(record)
        self._save_liked(records)

    def remove_liked_article(self, article_id: str) -> None:
        records = [r for r in self.get_liked_articles() if r.id != article_id]
        self._save_liked(records)

    def is_liked(self, article_id: str) -> bool:
        return article_id in self.liked_ids()

    def toggle_like(self, article: Article) -> bool:
        """
        Like or unlike an article.

        Returns:
            True if the article is liked afterwards
        """
        if self.is_liked(article.id):
            self.remove_liked_article(article.id)
            return False
        self.store_liked_article(article)
        return True

    def get_liked_articles_data(self) -> List[Article]:
        return [record.article for record in self.get_liked_articles()]

    # Feedback

    def store_feedback(self, feedback: Dict[str, Any]) -> None:
        entries = self._read('feedback', []) or []
        entries.append(feedback)
        self._write('feedback', entries[-FEEDBACK_SIZE:])

    def get_feedback_history(self) -> List[Dict[str, Any]]:
        return self._read('feedback', []) or []

    # Language

    def get_stored_language(self) -> Optional[str]:
        language = self._read('language', None)
        return language if is_supported_language(language) else None

    def set_stored_language(self, language: str) -> None:
        if not is_supported_language(language):
            raise ValueError(f"Unsupported language: {language}")
        self._write('language', language)

    # Offline articles

    def store_offline_article(self, article: Article) -> None:
        articles = self.get_offline_articles()
        for index, existing in enumerate(articles):
            if existing.key == article.key:
                articles[index] = article
                break
        else:
            articles.append(article)
        self._write('offline_articles', [a.to_dict() for a in articles])

    def get_offline_articles(self) -> List[Article]:
        articles = []
        for item in self._read('offline_articles', []) or []:
            try:
                articles.append(Article.from_dict(item))
            except (TypeError, ValueError) as e:
                logger.debug(f"Skipping unreadable offline article: {e}")
        return articles

    def has_offline_content(self) -> bool:
        return bool(self._read('offline_articles', []))
