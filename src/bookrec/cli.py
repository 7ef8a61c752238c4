import argparse
import json
import logging
import sys
from contextlib import contextmanager
from pathlib import Path

from tqdm import tqdm

from .config import DB_PATH, DEFAULT_MIN_RATING, DEFAULT_LEARNING_RATE, ALGORITHM_VERSION
from .database import (
    Database,
    SqliteCatalog,
    SqliteHistoryStore,
    SqlitePreferenceStore,
    SqlitePreferenceDirectory,
)
from .errors import BookNotFound, InvalidLimit
from .models import Book
from .profile import top_genres, validate_stated_preferences
from .ratings import RatingService, validate_rating
from .recommender import (
    RecommendationEngine,
    recommendation_confidence,
)

logger = logging.getLogger(__name__)


def _validate_user(user_id: str) -> str:
    """Trim a user id; blank ids are rejected by the engine itself."""
    return user_id.strip()


def _parse_genres(values: list[str] | None) -> list[str]:
    """Accept both ``--genres a b`` and ``--genres a,b``."""
    genres: list[str] = []
    for value in values or []:
        genres.extend(part.strip() for part in value.split(",") if part.strip())
    return genres


def _arg_or_default(args: argparse.Namespace, name: str, default: float) -> float:
    value = getattr(args, name, None)
    return default if value is None else value


def _validate_average(value: float) -> float:
    """Catalog averages are 0.0 while unrated, else on the rating scale."""
    return 0.0 if value == 0 else validate_rating(value)


@contextmanager
def _open_engine(args: argparse.Namespace):
    db = Database(getattr(args, 'db', None) or DB_PATH)
    db.init_db()
    try:
        engine = RecommendationEngine.with_saved_weights(
            SqliteCatalog(db),
            SqliteHistoryStore(db),
            SqlitePreferenceStore(db),
            SqlitePreferenceDirectory(db),
            min_rating=_arg_or_default(args, 'min_rating', DEFAULT_MIN_RATING),
            learning_rate=_arg_or_default(args, 'learning_rate', DEFAULT_LEARNING_RATE),
            weights_path=getattr(args, 'weights', None),
        )
        yield engine
    finally:
        db.close()


def cmd_init_db(args: argparse.Namespace) -> None:
    """Create the database schema."""
    db = Database(args.db or DB_PATH)
    try:
        db.init_db()
    finally:
        db.close()
    logger.info(f"Initialized database at {db.db_path}")


def cmd_add_book(args: argparse.Namespace) -> None:
    _validate_average(args.avg_rating)
    book = Book(
        id=args.id,
        title=args.title,
        author=args.author,
        genres=_parse_genres(args.genres),
        average_rating=args.avg_rating,
        rating_count=args.rating_count,
    )
    with _open_engine(args) as engine:
        engine.catalog.add_book(book)
    logger.info(f"Added '{book.title}' ({', '.join(book.genres) or 'no genres'})")


def cmd_import(args: argparse.Namespace) -> None:
    """Import books from a JSON list of book objects."""
    path = Path(args.file)
    payload = json.loads(path.read_text())
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a JSON list of books")

    imported = 0
    skipped = 0
    with _open_engine(args) as engine:
        for entry in tqdm(payload, desc="Importing books", disable=args.quiet):
            try:
                book = Book.from_dict(entry)
                _validate_average(book.average_rating)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping invalid book entry {entry!r}: {e}")
                skipped += 1
                continue
            engine.catalog.add_book(book)
            imported += 1

    logger.info(f"Imported {imported} books ({skipped} skipped)")


def cmd_set_preferences(args: argparse.Namespace) -> None:
    user_id = _validate_user(args.user)
    genres = validate_stated_preferences(_parse_genres(args.genres))
    with _open_engine(args) as engine:
        engine.directory.set_stated_preferences(user_id, genres)
    logger.info(f"Stated preferences for {user_id}: {', '.join(genres)}")


def cmd_rate(args: argparse.Namespace) -> None:
    user_id = _validate_user(args.user)
    with _open_engine(args) as engine:
        preferences = RatingService(engine).rate_book(user_id, args.book_id, args.rating)

    logger.info(f"\nUpdated affinities for {user_id}:")
    for genre, score in top_genres(preferences, n=len(preferences)):
        logger.info(f"  {genre}: {score:.2f}")


def _output_recommendations(recs, args: argparse.Namespace, user_id: str) -> None:
    """Format and log recommendations in the requested format."""
    confidence = recommendation_confidence(recs)

    if args.format == 'json':
        output = {
            "recommendations": [r.to_dict() for r in recs],
            "confidence": round(confidence, 4),
            "total_count": len(recs),
            "algorithm_version": ALGORITHM_VERSION,
        }
        logger.info(json.dumps(output, indent=2, ensure_ascii=False))
        return

    if not recs:
        logger.info(f"No recommendations for {user_id}. Rate some books or set preferences first.")
        return

    logger.info(f"\nTop {len(recs)} recommendations for {user_id} (confidence {confidence:.0%}):")
    for i, r in enumerate(recs, 1):
        author = f" by {r.book.author}" if r.book.author else ""
        logger.info(f"{i}. {r.book.title or r.book.id}{author} - Score: {r.score:.2f}")
        if r.explanation:
            logger.info(f"   Why: {r.explanation}")


def cmd_recommend(args: argparse.Namespace) -> None:
    """Generate recommendations."""
    user_id = _validate_user(args.user)
    with _open_engine(args) as engine:
        recs = engine.get_recommendations(user_id, limit=args.limit, include_reasons=args.reasons)
    _output_recommendations(recs, args, user_id)


def cmd_profile(args: argparse.Namespace) -> None:
    """Show user's genre affinities."""
    user_id = _validate_user(args.user)
    if args.limit < 1:
        raise InvalidLimit(args.limit)
    with _open_engine(args) as engine:
        history = engine.history.get_rating_history(user_id)
        preferences = engine.load_preferences(user_id, history)
        stated = engine.directory.get_stated_preferences(user_id)

    logger.info(f"\nProfile for {user_id}")
    logger.info(f"  Books rated: {len(history)}")
    if history:
        avg = sum(rating for _, rating in history) / len(history)
        logger.info(f"  Average rating: {avg:.2f}★")
    if stated:
        logger.info(f"  Stated genres: {', '.join(sorted(stated))}")

    if preferences:
        logger.info("\nTop genres:")
        for genre, score in top_genres(preferences, n=args.limit):
            bar = "█" * int(round(score * 20))
            logger.info(f"  {genre}: {bar} ({score:.2f})")


def cmd_rebuild_profile(args: argparse.Namespace) -> None:
    """Recompute a user's affinities from their full rating history."""
    user_id = _validate_user(args.user)
    with _open_engine(args) as engine:
        preferences = RatingService(engine).rebuild_preferences(user_id)
    logger.info(f"Rebuilt {len(preferences)} genre affinities for {user_id}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Book Recommender")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--db", help=f"SQLite database path (default: {DB_PATH})")
    parser.add_argument("--weights", help="JSON file with scoring weights")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create the database schema")
    init_parser.set_defaults(func=cmd_init_db)

    add_parser = subparsers.add_parser("add-book", help="Add or replace a catalog book")
    add_parser.add_argument("id", help="Book identifier")
    add_parser.add_argument("title", help="Book title")
    add_parser.add_argument("author", help="Book author")
    add_parser.add_argument("--genres", nargs="+", required=True, help="Genre labels")
    add_parser.add_argument("--avg-rating", type=float, default=0.0, help="Current average rating")
    add_parser.add_argument("--rating-count", type=int, default=0, help="Number of ratings so far")
    add_parser.set_defaults(func=cmd_add_book)

    import_parser = subparsers.add_parser("import", help="Import books from JSON")
    import_parser.add_argument("file", help="Input JSON file path")
    import_parser.add_argument("--quiet", "-q", action="store_true", help="Hide progress bar")
    import_parser.set_defaults(func=cmd_import)

    prefs_parser = subparsers.add_parser("set-preferences", help="Set a user's stated genres")
    prefs_parser.add_argument("user", help="User id")
    prefs_parser.add_argument("genres", nargs="+", help="Preferred genres")
    prefs_parser.set_defaults(func=cmd_set_preferences)

    rate_parser = subparsers.add_parser("rate", help="Rate a book and update affinities")
    rate_parser.add_argument("user", help="User id")
    rate_parser.add_argument("book_id", help="Book identifier")
    rate_parser.add_argument("rating", type=float, help="Rating from 1.0 to 5.0")
    rate_parser.add_argument("--learning-rate", type=float, help="Online update step size")
    rate_parser.set_defaults(func=cmd_rate)

    rec_parser = subparsers.add_parser("recommend", help="Generate recommendations")
    rec_parser.add_argument("user", help="User id")
    rec_parser.add_argument("--limit", type=int, help="Number of recommendations (default 10, max 100)")
    rec_parser.add_argument("--reasons", action="store_true", help="Explain each recommendation")
    rec_parser.add_argument("--min-rating", type=float, help="Minimum average rating for candidates")
    rec_parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
    rec_parser.set_defaults(func=cmd_recommend)

    profile_parser = subparsers.add_parser("profile", help="Show user's genre affinities")
    profile_parser.add_argument("user", help="User id")
    profile_parser.add_argument("--limit", type=int, default=10, help="Number of genres to show")
    profile_parser.set_defaults(func=cmd_profile)

    rebuild_parser = subparsers.add_parser("rebuild-profile", help="Recompute affinities from rating history")
    rebuild_parser.add_argument("user", help="User id")
    rebuild_parser.set_defaults(func=cmd_rebuild_profile)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(message)s' if not args.verbose else '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        args.func(args)
    except (ValueError, BookNotFound, OSError) as e:
        logger.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
