"""
Interaction recording with debouncing.
"""
import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from wikifeed.core.article import Article, Interaction, InteractionType, now_ms
from wikifeed.core.preferences import PreferenceModel
from wikifeed.core.user_store import UserStore

logger = logging.getLogger(__name__)

DEBOUNCE_MS = 1000
MIN_VIEW_MS = 2000

# Every toggle of these must register
UNDEBOUNCED_TYPES = {InteractionType.LIKE, InteractionType.DISLIKE}
# These update the preference model before ``record`` returns
IMMEDIATE_FEEDBACK_TYPES = {InteractionType.LIKE, InteractionType.DISLIKE, InteractionType.READ}


class InteractionRecorder:
    """
    Turns raw reader actions into persisted interactions.
    """
    def __init__(
        self,
        user_store: UserStore,
        preferences: Optional[PreferenceModel] = None,
        clock: Callable[[], int] = now_ms,
        debounce_ms: int = DEBOUNCE_MS,
        min_view_ms: int = MIN_VIEW_MS,
        listeners: Iterable[Callable[[Interaction], None]] = (),
    ):
        """
        Initialize the InteractionRecorder.

        Args:
            user_store: Where accepted interactions are persisted
            preferences: Model updated on like, dislike and read
            clock: Returns the current time in epoch milliseconds
            debounce_ms: Minimum spacing for repeated (article, type) pairs
            min_view_ms: Minimum spacing between views of one article
            listeners: Called with every accepted interaction
        """
        self.user_store = user_store
        self.preferences = preferences
        self.clock = clock
        self.debounce_ms = debounce_ms
        self.min_view_ms = min_view_ms
        self.listeners: List[Callable[[Interaction], None]] = list(listeners)
        self._last_accepted: Dict[Tuple[str, InteractionType], int] = {}

    def add_listener(self, listener: Callable[[Interaction], None]) -> None:
        self.listeners.append(listener)

    def record(
        self,
        article: Article,
        interaction_type: InteractionType,
        metadata: Optional[Dict[str, float]] = None,
    ) -> Optional[Interaction]:
        """
        Record an action on an article.

        Args:
            article: Article acted on
            interaction_type: Kind of action
            metadata: Optional timeSpent, scrollDepth, viewportTime, readPercentage

        Returns:
            The accepted Interaction, or None if it was dropped
        """
        if article is None or not article.id:
            return None

        interaction_type = InteractionType(interaction_type)
        now = self.clock()
        pair = (article.id, interaction_type)
        last = self._last_accepted.get(pair)

        if last is not None and interaction_type not in UNDEBOUNCED_TYPES:
            if now - last < self.debounce_ms:
                logger.debug(f"Debounced {interaction_type.value} on {article.id}")
                return None
            if interaction_type == InteractionType.VIEW and now - last < self.min_view_ms:
                logger.debug(f"View on {article.id} too soon after the previous one")
                return None

        interaction = Interaction(
            article_id=article.id,
            type=interaction_type,
            timestamp=now,
            language=article.language,
            metadata=dict(metadata) if metadata else None,
        )
        self._last_accepted[pair] = now

        try:
            self.user_store.store_interaction(interaction)
        except Exception as e:
            logger.error(f"Failed to persist interaction on {article.id}: {e}")

        for listener in self.listeners:
            try:
                listener(interaction)
            except Exception as e:
                logger.warning(f"Interaction listener failed: {e}")

        if self.preferences is not None and interaction_type in IMMEDIATE_FEEDBACK_TYPES:
            self.preferences.apply_interaction(article, interaction_type)

        return interaction

    def reset(self) -> None:
        self._last_accepted.clear()
