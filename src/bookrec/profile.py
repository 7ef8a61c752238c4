import logging
from collections import defaultdict
from statistics import mean
from typing import Iterable

from .errors import InvalidPreferences
from .models import Book, PreferenceMap, RatingEvent
from .config import (
    DEFAULT_AFFINITY,
    MAX_STATED_PREFERENCES,
    MIN_RATING_VALUE,
    MAX_RATING_VALUE,
    NEUTRAL_RATING,
)

logger = logging.getLogger(__name__)

# Width of the rating scale, used to map ratings onto [0, 1]
_RATING_SPAN = MAX_RATING_VALUE - MIN_RATING_VALUE
# Distance from neutral to either end, used to map ratings onto [-1, 1]
_HALF_SPAN = MAX_RATING_VALUE - NEUTRAL_RATING


def clamp_affinity(value: float) -> float:
    return max(0.0, min(1.0, value))


def _as_pair(entry: "RatingEvent | tuple[Book, float]") -> tuple[Book, float]:
    if isinstance(entry, RatingEvent):
        return entry.book, entry.rating
    book, rating = entry
    return book, rating


def calculate_from_history(
    ratings: Iterable["RatingEvent | tuple[Book, float]"],
) -> PreferenceMap:
    """
    Derive genre affinities from a user's full rating history (cold start).

    Every rating counts toward each genre of the rated book. A genre's
    affinity is its mean rating mapped from the 1-5 scale onto [0, 1]:

        affinity = clamp((mean - 1) / 4, 0, 1)

    Genres the user never rated are absent from the result.
    """
    observations: dict[str, list[float]] = defaultdict(list)
    for entry in ratings:
        book, rating = _as_pair(entry)
        for genre in book.genres:
            observations[genre].append(float(rating))

    preferences = {
        genre: clamp_affinity((mean(values) - MIN_RATING_VALUE) / _RATING_SPAN)
        for genre, values in observations.items()
    }
    logger.debug(f"Derived affinities for {len(preferences)} genres from history")
    return preferences


def update(
    current: PreferenceMap,
    book: Book,
    rating: float,
    learning_rate: float,
) -> PreferenceMap:
    """
    Fold one new rating into an existing preference map (online update).

    The rating is mapped to a signed signal in [-1, 1] (3 is neutral) and
    each of the book's genres moves by ``signal * learning_rate``. Genres
    not yet in the map start from 0.5. Returns a new map; ``current`` is
    left untouched.
    """
    signed = (rating - NEUTRAL_RATING) / _HALF_SPAN
    adjustment = signed * learning_rate

    updated = dict(current)
    for genre in book.genres:
        base = updated.get(genre, DEFAULT_AFFINITY)
        updated[genre] = clamp_affinity(base + adjustment)

    return updated


def top_genres(preferences: PreferenceMap, n: int = 10) -> list[tuple[str, float]]:
    """Highest-affinity genres first; equal affinities keep map order."""
    return sorted(preferences.items(), key=lambda x: -x[1])[:n]


def validate_stated_preferences(genres: Iterable[str]) -> list[str]:
    """Strip and de-duplicate stated genres; 1..MAX_STATED_PREFERENCES required."""
    cleaned = list(dict.fromkeys(g.strip() for g in genres if g and g.strip()))
    if not cleaned:
        raise InvalidPreferences("At least one genre preference is required")
    if len(cleaned) > MAX_STATED_PREFERENCES:
        raise InvalidPreferences(
            f"At most {MAX_STATED_PREFERENCES} genre preferences allowed (got {len(cleaned)})"
        )
    return cleaned
