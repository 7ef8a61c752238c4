"""Exceptions raised by the recommendation engine and rating workflow."""


class RecommendationError(ValueError):
    """Base class for request validation failures."""


class InvalidUser(RecommendationError):
    """User identifier is empty or missing."""

    def __init__(self, user_id=None):
        super().__init__(f"Invalid user ID: {user_id!r}")
        self.user_id = user_id


class InvalidLimit(RecommendationError):
    """Requested number of recommendations is not positive."""

    def __init__(self, limit):
        super().__init__(f"Limit must be greater than 0 (got {limit})")
        self.limit = limit


class InvalidRating(RecommendationError):
    """Rating value falls outside the supported scale."""

    def __init__(self, rating, min_value: float, max_value: float):
        super().__init__(f"Rating must be between {min_value} and {max_value} (got {rating})")
        self.rating = rating


class InvalidPreferences(RecommendationError):
    """Stated genre preferences are empty or too many."""


class AlreadyRated(RecommendationError):
    """The user has already rated this book."""

    def __init__(self, user_id: str, book_id: str):
        super().__init__(f"User '{user_id}' has already rated book '{book_id}'")
        self.user_id = user_id
        self.book_id = book_id


class BookNotFound(LookupError):
    """Referenced book is not in the catalog."""

    def __init__(self, book_id: str):
        super().__init__(f"Book not found: {book_id}")
        self.book_id = book_id
