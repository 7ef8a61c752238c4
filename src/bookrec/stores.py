"""
Collaborator interfaces consumed by the recommendation engine.

Each store is a separate capability so that callers can mix backends
(e.g. SQLite catalog with an in-memory preference store) and substitute
fakes in tests. In-memory implementations live here as well; the SQLite
ones are in ``database``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import nullcontext
from typing import Iterable

from .errors import BookNotFound
from .models import Book, PreferenceMap
from .profile import validate_stated_preferences

logger = logging.getLogger(__name__)


class Catalog(ABC):
    """Source of candidate books."""

    @abstractmethod
    def list_candidates(self, exclude_ids: Iterable[str] = ()) -> list[Book]:
        """Return catalog books in a stable order, skipping ``exclude_ids``."""
        ...

    @abstractmethod
    def get_book(self, book_id: str) -> Book | None:
        ...

    @abstractmethod
    def add_book(self, book: Book) -> Book:
        ...

    @abstractmethod
    def save_book(self, book: Book) -> None:
        """Replace the stored copy of an existing book (e.g. new rating stats)."""
        ...

    def transaction(self):
        """
        Context manager grouping several store writes into one unit.

        Backends sharing a connection with the other stores override this;
        the default groups nothing.
        """
        return nullcontext()


class HistoryStore(ABC):
    """Per-user rating history."""

    @abstractmethod
    def get_rating_history(self, user_id: str) -> list[tuple[Book, float]]:
        """Return (book, rating) pairs in the order they were recorded."""
        ...

    @abstractmethod
    def add_rating(self, user_id: str, book_id: str, rating: float) -> None:
        ...

    @abstractmethod
    def has_rated(self, user_id: str, book_id: str) -> bool:
        ...


class PreferenceStore(ABC):
    """Persisted genre affinity maps."""

    @abstractmethod
    def get(self, user_id: str) -> PreferenceMap:
        """Return the stored map, or an empty dict for unknown users."""
        ...

    @abstractmethod
    def put(self, user_id: str, preferences: PreferenceMap) -> None:
        ...


class PreferenceDirectory(ABC):
    """Genres a user explicitly said they like."""

    @abstractmethod
    def get_stated_preferences(self, user_id: str) -> set[str]:
        ...

    @abstractmethod
    def set_stated_preferences(self, user_id: str, genres: Iterable[str]) -> None:
        """Replace the stated set. Raises InvalidPreferences unless 1..MAX_STATED_PREFERENCES genres."""
        ...


class InMemoryCatalog(Catalog):
    def __init__(self, books: Iterable[Book] = ()):
        self._books: dict[str, Book] = {}
        for book in books:
            self._books[book.id] = book

    def list_candidates(self, exclude_ids: Iterable[str] = ()) -> list[Book]:
        excluded = set(exclude_ids)
        return [book for book in self._books.values() if book.id not in excluded]

    def get_book(self, book_id: str) -> Book | None:
        return self._books.get(book_id)

    def add_book(self, book: Book) -> Book:
        self._books[book.id] = book
        return book

    def save_book(self, book: Book) -> None:
        if book.id not in self._books:
            raise BookNotFound(book.id)
        self._books[book.id] = book


class InMemoryHistoryStore(HistoryStore):
    """Stores book ids and resolves them against the catalog on read."""

    def __init__(self, catalog: Catalog):
        self._catalog = catalog
        self._ratings: dict[str, list[tuple[str, float]]] = defaultdict(list)

    def get_rating_history(self, user_id: str) -> list[tuple[Book, float]]:
        history = []
        for book_id, rating in self._ratings.get(user_id, []):
            book = self._catalog.get_book(book_id)
            if book is None:
                logger.warning(f"Skipping rating of unknown book '{book_id}' for {user_id}")
                continue
            history.append((book, rating))
        return history

    def add_rating(self, user_id: str, book_id: str, rating: float) -> None:
        self._ratings[user_id].append((book_id, float(rating)))

    def has_rated(self, user_id: str, book_id: str) -> bool:
        return any(bid == book_id for bid, _ in self._ratings.get(user_id, []))


class InMemoryPreferenceStore(PreferenceStore):
    def __init__(self):
        self._maps: dict[str, PreferenceMap] = {}

    def get(self, user_id: str) -> PreferenceMap:
        return dict(self._maps.get(user_id, {}))

    def put(self, user_id: str, preferences: PreferenceMap) -> None:
        self._maps[user_id] = dict(preferences)


class InMemoryPreferenceDirectory(PreferenceDirectory):
    def __init__(self, stated: dict[str, Iterable[str]] | None = None):
        self._stated: dict[str, set[str]] = {
            user: set(genres) for user, genres in (stated or {}).items()
        }

    def get_stated_preferences(self, user_id: str) -> set[str]:
        return set(self._stated.get(user_id, set()))

    def set_stated_preferences(self, user_id: str, genres: Iterable[str]) -> None:
        self._stated[user_id] = set(validate_stated_preferences(genres))
