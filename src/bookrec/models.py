"""Value types shared by the recommender, stores and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

PreferenceMap = dict[str, float]


def _unique(labels) -> tuple[str, ...]:
    # Keep first occurrence order so explanations list genres as catalogued
    return tuple(dict.fromkeys(str(label) for label in labels or ()))


@dataclass(frozen=True)
class Book:
    """A catalog entry. Immutable; owned by the catalog store."""
    id: str
    title: str = ""
    author: str = ""
    genres: tuple[str, ...] = field(default_factory=tuple)
    average_rating: float = 0.0
    rating_count: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "genres", _unique(self.genres))
        object.__setattr__(self, "average_rating", float(self.average_rating or 0.0))
        object.__setattr__(self, "rating_count", max(0, int(self.rating_count or 0)))

    @property
    def genre_set(self) -> frozenset[str]:
        return frozenset(self.genres)

    def with_rating(self, rating: float) -> "Book":
        """Return a copy with ``rating`` folded into the running average."""
        if self.rating_count == 0:
            new_average = float(rating)
        else:
            total = self.average_rating * self.rating_count
            new_average = (total + rating) / (self.rating_count + 1)
        return replace(self, average_rating=new_average, rating_count=self.rating_count + 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "genres": list(self.genres),
            "average_rating": self.average_rating,
            "rating_count": self.rating_count,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Book":
        return cls(
            id=str(payload["id"]),
            title=payload.get("title", ""),
            author=payload.get("author", ""),
            genres=payload.get("genres", ()),
            average_rating=payload.get("average_rating", 0.0),
            rating_count=payload.get("rating_count", 0),
        )


@dataclass(frozen=True)
class RatingEvent:
    """A single rating of a book; genres come from the book itself."""
    book: Book
    rating: float


@dataclass
class ScoredCandidate:
    book: Book
    score: float
    explanation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.book.id,
            "title": self.book.title,
            "author": self.book.author,
            "genres": list(self.book.genres),
            "average_rating": self.book.average_rating,
            "rating_count": self.book.rating_count,
            "score": round(self.score, 4),
        }
        if self.explanation is not None:
            data["reason"] = self.explanation
        return data
