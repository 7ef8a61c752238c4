from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
import logging
from typing import Iterable

from .errors import InvalidLimit, InvalidUser
from .models import Book, PreferenceMap, ScoredCandidate
from .profile import calculate_from_history, clamp_affinity, update
from .scoring_weights import ScoringWeights, load_scoring_weights
from .stores import Catalog, HistoryStore, PreferenceDirectory, PreferenceStore
from .config import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    DEFAULT_LEARNING_RATE,
    DEFAULT_MIN_RATING,
    MIN_RATING_VALUE,
    MAX_RATING_VALUE,
    POPULARITY_CAP,
    EXPLANATION_AFFINITY_THRESHOLD,
    EXPLANATION_MAX_GENRES,
    HIGHLY_RATED_THRESHOLD,
)

logger = logging.getLogger(__name__)


def validate_request(user_id, limit: int | None = None) -> int:
    """
    Check a recommendation request and return the limit to use.

    - Missing or blank user id -> InvalidUser
    - limit <= 0 -> InvalidLimit
    - limit above MAX_LIMIT is capped
    - no limit -> DEFAULT_LIMIT
    """
    if user_id is None or not str(user_id).strip():
        raise InvalidUser(user_id)

    if limit is None:
        return DEFAULT_LIMIT
    if limit <= 0:
        raise InvalidLimit(limit)
    if limit > MAX_LIMIT:
        return MAX_LIMIT
    return limit


def select_candidates(
    catalog: Iterable[Book],
    read_ids: set[str],
    stated_preferences: set[str],
    min_rating: float,
) -> list[Book]:
    """
    Keep unread books rated at least ``min_rating`` that share a genre with
    the user's stated preferences. Catalog order is preserved.
    """
    return [
        book for book in catalog
        if book.id not in read_ids
        and book.average_rating >= min_rating
        and not book.genre_set.isdisjoint(stated_preferences)
    ]


def _genre_component(book: Book, preferences: PreferenceMap) -> float:
    # Genres without an entry contribute nothing (not the 0.5 update default)
    matched = [preferences[g] for g in book.genres if g in preferences]
    return max(matched) if matched else 0.0


def _quality_component(book: Book) -> float:
    span = MAX_RATING_VALUE - MIN_RATING_VALUE
    return clamp_affinity((book.average_rating - MIN_RATING_VALUE) / span)


def _popularity_component(book: Book) -> float:
    return min(book.rating_count, POPULARITY_CAP) / POPULARITY_CAP


def score_book(
    book: Book,
    preferences: PreferenceMap,
    weights: ScoringWeights | None = None,
) -> float:
    """
    Composite 0-1 score for one candidate.

    Weighted mean of genre affinity, book quality and popularity. The sum
    is divided by the total weight applied so custom weights that do not
    add up to 1.0 still produce a score in [0, 1].
    """
    weights = weights or ScoringWeights()
    components = {
        'genre': _genre_component(book, preferences),
        'quality': _quality_component(book),
        'popularity': _popularity_component(book),
    }

    score = 0.0
    weight_sum = 0.0
    for name, weight in weights.items():
        score += components[name] * weight
        weight_sum += weight

    if weight_sum <= 0:
        return 0.0
    return clamp_affinity(score / weight_sum)


def rank_candidates(scored: list[ScoredCandidate], limit: int) -> list[ScoredCandidate]:
    """Highest score first; equal scores keep their input order."""
    return sorted(scored, key=lambda c: -c.score)[:limit]


def match_percentage(score: float) -> int:
    """score * 100 as an integer, rounded half up on the score as printed (0.145 -> 15)."""
    return int((Decimal(str(score)) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def explain_recommendation(book: Book, preferences: PreferenceMap, score: float) -> str:
    """One-line human readable reason for recommending ``book``."""
    pct = match_percentage(score)
    genre_label = "/".join(book.genres)

    strong = [
        (genre, preferences[genre]) for genre in book.genres
        if preferences.get(genre, 0.0) > EXPLANATION_AFFINITY_THRESHOLD
    ]
    if strong:
        strong.sort(key=lambda x: -x[1])
        top = [genre for genre, _ in strong[:EXPLANATION_MAX_GENRES]]
        return (
            f"You might like this {genre_label} book because you enjoy "
            f"{' and '.join(top)} ({pct}% match)"
        )

    if book.average_rating > HIGHLY_RATED_THRESHOLD:
        return (
            f"Highly rated {genre_label} book ({book.average_rating:g}★) - "
            f"{pct}% match based on your preferences"
        )

    return f"Recommended {genre_label} book based on your reading patterns ({pct}% match)"


def recommendation_confidence(items: list[ScoredCandidate]) -> float:
    """Mean score of a ranked list; 0.0 when nothing was recommended."""
    if not items:
        return 0.0
    return sum(item.score for item in items) / len(items)


@dataclass
class RecommendationEngine:
    """
    Library boundary for recommendations.

    Holds references to caller-owned stores; it never caches preference
    maps itself, so one engine can serve many users concurrently.
    """
    catalog: Catalog
    history: HistoryStore
    preferences: PreferenceStore
    directory: PreferenceDirectory
    min_rating: float = DEFAULT_MIN_RATING
    learning_rate: float = DEFAULT_LEARNING_RATE
    weights: ScoringWeights | None = None

    @classmethod
    def with_saved_weights(cls, *args, weights_path=None, **kwargs) -> "RecommendationEngine":
        """Build an engine using weights from disk when a weights file exists."""
        return cls(*args, weights=load_scoring_weights(weights_path), **kwargs)

    def load_preferences(self, user_id: str, history: list[tuple[Book, float]]) -> PreferenceMap:
        """Stored map if there is one, otherwise derive it from history."""
        stored = self.preferences.get(user_id)
        if stored:
            return stored
        logger.debug(f"No stored preferences for {user_id}; deriving from {len(history)} ratings")
        return calculate_from_history(history)

    def get_recommendations(
        self,
        user_id: str,
        limit: int | None = None,
        include_reasons: bool = False,
    ) -> list[ScoredCandidate]:
        limit = validate_request(user_id, limit)

        history = self.history.get_rating_history(user_id)
        read_ids = {book.id for book, _ in history}
        preferences = self.load_preferences(user_id, history)
        stated = self.directory.get_stated_preferences(user_id)

        catalog = self.catalog.list_candidates(read_ids)
        candidates = select_candidates(catalog, read_ids, stated, self.min_rating)
        logger.debug(
            f"{user_id}: {len(candidates)}/{len(catalog)} candidates after filtering "
            f"({len(read_ids)} read, {len(stated)} stated genres)"
        )

        scored = [
            ScoredCandidate(book=book, score=score_book(book, preferences, self.weights))
            for book in candidates
        ]
        ranked = rank_candidates(scored, limit)

        if include_reasons:
            for item in ranked:
                item.explanation = explain_recommendation(item.book, preferences, item.score)

        return ranked

    def record_rating(self, user_id: str, book: Book, rating: float) -> PreferenceMap:
        """Return the user's map with ``rating`` applied. Not persisted here."""
        if user_id is None or not str(user_id).strip():
            raise InvalidUser(user_id)
        current = self.preferences.get(user_id)
        return update(current, book, rating, self.learning_rate)
