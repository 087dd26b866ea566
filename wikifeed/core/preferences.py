"""
Category preference model built from implicit feedback.
"""
import logging
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from wikifeed.core.article import (
    Article,
    Interaction,
    InteractionType,
    Recommendation,
    RecommendationMetadata,
)

logger = logging.getLogger(__name__)

# Live score multipliers for already surfaced recommendations
FEEDBACK_MULTIPLIERS = {
    InteractionType.LIKE: 1.5,
    InteractionType.DISLIKE: 0.5,
    InteractionType.READ: 1.2,
}

LIKE_WEIGHT = 2.0
DEFAULT_WEIGHT = 1.0


class PreferenceModel:
    """
    Tracks the scores of surfaced recommendations and per-category weights.

    ``apply_interaction`` nudges current scores right after feedback;
    ``update_from_history`` rebuilds category weights from the full
    interaction history.
    """
    def __init__(self):
        self.scores: Dict[str, float] = {}
        self.categories: Dict[str, List[str]] = {}
        self._recommendations: Dict[str, Recommendation] = {}
        self.category_weights: Dict[str, float] = defaultdict(float)
        self.disliked_categories: Dict[str, float] = defaultdict(float)

    def register(self, article_id: str, score: float, categories: Iterable[str]) -> None:
        self.scores[article_id] = score
        self.categories[article_id] = list(categories)

    def set_recommendations(self, recommendations: Sequence[Recommendation]) -> None:
        """Replace the surfaced set with a new batch."""
        self.scores.clear()
        self.categories.clear()
        self._recommendations.clear()
        for rec in recommendations:
            self.register(rec.article_id, rec.score, rec.metadata.categories)
            self._recommendations[rec.article_id] = rec

    def discard(self, article_id: str) -> None:
        self.scores.pop(article_id, None)
        self.categories.pop(article_id, None)
        self._recommendations.pop(article_id, None)

    def apply_interaction(self, article: Article, interaction_type: InteractionType) -> None:
        """
        Re-weight surfaced recommendations sharing a category with ``article``.

        Each shared category applies the multiplier once.

        Args:
            article: Article the reader acted on
            interaction_type: The action taken
        """
        multiplier = FEEDBACK_MULTIPLIERS.get(InteractionType(interaction_type), 1.0)
        if multiplier == 1.0 or not article.categories:
            return

        for category in article.categories:
            for article_id, score in list(self.scores.items()):
                if category in self.categories.get(article_id, ()):
                    self.scores[article_id] = score * multiplier
        logger.debug(f"Applied {interaction_type} feedback from {article.id} with x{multiplier}")

    def ranked(self) -> List[Recommendation]:
        """
        Surfaced recommendations ordered by their current score.

        Articles registered without a full recommendation get a minimal one.
        """
        result = []
        for article_id, score in sorted(self.scores.items(), key=lambda item: item[1], reverse=True):
            rec = self._recommendations.get(article_id)
            if rec is None:
                result.append(Recommendation(
                    article_id=article_id,
                    score=score,
                    reason='',
                    language='',
                    metadata=RecommendationMetadata(title='', categories=tuple(self.categories.get(article_id, ()))),
                ))
            else:
                result.append(Recommendation(
                    article_id=rec.article_id,
                    score=score,
                    reason=rec.reason,
                    language=rec.language,
                    metadata=rec.metadata,
                ))
        return result

    def update_from_history(
        self,
        interactions: Iterable[Interaction],
        categories_for: Callable[[str], Optional[Iterable[str]]],
    ) -> None:
        """
        Rebuild category weights from an interaction history.

        Args:
            interactions: Interaction history
            categories_for: Looks up the categories of an article id
        """
        self.category_weights.clear()
        self.disliked_categories.clear()
        for interaction in interactions:
            categories = categories_for(interaction.article_id)
            if not categories:
                continue
            for category in categories:
                if interaction.type == InteractionType.DISLIKE:
                    self.disliked_categories[category] += DEFAULT_WEIGHT
                elif interaction.type == InteractionType.LIKE:
                    self.category_weights[category] += LIKE_WEIGHT
                else:
                    self.category_weights[category] += DEFAULT_WEIGHT

    def top_categories(self, n: int = 5) -> List[str]:
        """Strongest categories, net of dislikes, best first."""
        net = {
            category: weight - self.disliked_categories.get(category, 0.0)
            for category, weight in self.category_weights.items()
        }
        ordered = sorted((c for c, w in net.items() if w > 0), key=lambda c: net[c], reverse=True)
        return ordered[:n]

    def reset(self) -> None:
        self.scores.clear()
        self.categories.clear()
        self._recommendations.clear()
        self.category_weights.clear()
        self.disliked_categories.clear()
