"""
Rating workflow: persist a new rating and keep derived state in sync.

The engine itself only computes the updated preference map. This service
performs the read-current -> update -> persist sequence and serializes it
per user and per book so concurrent ratings cannot overwrite each other's
preference or rating-stat updates.
"""

import logging
import threading
from collections import defaultdict

from .errors import AlreadyRated, BookNotFound, InvalidRating, InvalidUser
from .models import PreferenceMap
from .profile import calculate_from_history
from .recommender import RecommendationEngine
from .config import MIN_RATING_VALUE, MAX_RATING_VALUE

logger = logging.getLogger(__name__)


def validate_rating(rating) -> float:
    try:
        value = float(rating)
    except (TypeError, ValueError):
        raise InvalidRating(rating, MIN_RATING_VALUE, MAX_RATING_VALUE) from None
    if not MIN_RATING_VALUE <= value <= MAX_RATING_VALUE:
        raise InvalidRating(rating, MIN_RATING_VALUE, MAX_RATING_VALUE)
    return value


class RatingService:
    """Records ratings through an engine's stores."""

    def __init__(self, engine: RecommendationEngine):
        self.engine = engine
        self._locks_guard = threading.Lock()
        self._user_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._book_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._user_locks[user_id]

    def _book_lock_for(self, book_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._book_locks[book_id]

    def rate_book(self, user_id: str, book_id: str, rating) -> PreferenceMap:
        """
        Record ``rating`` for ``book_id`` and return the persisted preference map.

        The user lock is taken before the book lock. The book is read under
        its lock so concurrent raters of the same book each build on the
        latest rating stats. History, book stats and preferences are written
        inside one ``catalog.transaction()``.

        Raises:
            InvalidUser: blank user id
            InvalidRating: rating outside 1.0-5.0
            BookNotFound: unknown book id
            AlreadyRated: user rated this book before
        """
        if user_id is None or not str(user_id).strip():
            raise InvalidUser(user_id)
        value = validate_rating(rating)

        engine = self.engine
        if engine.catalog.get_book(book_id) is None:
            raise BookNotFound(book_id)

        with self._lock_for(user_id), self._book_lock_for(book_id):
            if engine.history.has_rated(user_id, book_id):
                raise AlreadyRated(user_id, book_id)

            book = engine.catalog.get_book(book_id)
            if book is None:
                raise BookNotFound(book_id)
            updated = engine.record_rating(user_id, book, value)

            with engine.catalog.transaction():
                engine.history.add_rating(user_id, book_id, value)
                engine.catalog.save_book(book.with_rating(value))
                engine.preferences.put(user_id, updated)

        logger.info(
            f"{user_id} rated '{book.title or book_id}' {value:g}; "
            f"{len(book.genres)} genre affinities updated"
        )
        return updated

    def rebuild_preferences(self, user_id: str) -> PreferenceMap:
        """Recompute the map from the full history and persist it."""
        if user_id is None or not str(user_id).strip():
            raise InvalidUser(user_id)

        engine = self.engine
        with self._lock_for(user_id):
            history = engine.history.get_rating_history(user_id)
            preferences = calculate_from_history(history)
            engine.preferences.put(user_id, preferences)

        logger.info(f"Rebuilt preferences for {user_id} from {len(history)} ratings")
        return preferences
