import sqlite3
import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable

from .errors import BookNotFound
from .models import Book, PreferenceMap
from .profile import clamp_affinity, validate_stated_preferences
from .stores import Catalog, HistoryStore, PreferenceDirectory, PreferenceStore

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    One SQLite connection per thread, plus per-thread transaction depth.

    Connections are opened lazily and live until ``close_all``.
    """

    def __init__(self, db_path):
        self._db_path = db_path
        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._transaction_depth: dict[int, int] = {}

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection for the current thread, creating if necessary."""
        thread_id = threading.get_ident()
        with self._lock:
            conn = self._connections.get(thread_id)
            if conn is None:
                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._transaction_depth[thread_id] = 0
                logger.debug(f"Opened connection for thread {thread_id} ({len(self._connections)} open)")
            return conn

    def get_transaction_depth(self) -> int:
        return self._transaction_depth.get(threading.get_ident(), 0)

    def increment_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = self._transaction_depth.get(thread_id, 0) + 1

    def decrement_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._transaction_depth.get(thread_id, 1)
            self._transaction_depth[thread_id] = max(0, depth - 1)

    def close_all(self):
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")

            self._connections.clear()
            self._transaction_depth.clear()


SCHEMA = """
    CREATE TABLE IF NOT EXISTS books (
        id TEXT PRIMARY KEY,
        title TEXT,
        author TEXT,
        genres TEXT,            -- JSON list, catalog order
        avg_rating REAL DEFAULT 0.0,
        rating_count INTEGER DEFAULT 0,
        created_at TEXT,
        updated_at TEXT
    );

    CREATE TABLE IF NOT EXISTS user_ratings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
        rating REAL NOT NULL,
        created_at TEXT,
        UNIQUE (user_id, book_id)
    );

    CREATE TABLE IF NOT EXISTS user_preferences (
        user_id TEXT NOT NULL,
        genre TEXT NOT NULL,
        preference_score REAL NOT NULL,
        last_updated TEXT,
        PRIMARY KEY (user_id, genre)
    );

    CREATE TABLE IF NOT EXISTS user_stated_genres (
        user_id TEXT NOT NULL,
        genre TEXT NOT NULL,
        PRIMARY KEY (user_id, genre)
    );

    CREATE INDEX IF NOT EXISTS idx_ratings_user ON user_ratings(user_id, id);
    CREATE INDEX IF NOT EXISTS idx_books_rating ON books(avg_rating);
"""


def load_json(val):
    """Safely load JSON from db field."""
    if not val:
        return []
    if isinstance(val, list):
        return val
    try:
        return json.loads(val)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse JSON '{val[:50]}...': {e}")
        return []


def _row_to_book(row: sqlite3.Row) -> Book:
    return Book(
        id=row['id'],
        title=row['title'] or "",
        author=row['author'] or "",
        genres=load_json(row['genres']),
        average_rating=row['avg_rating'] or 0.0,
        rating_count=row['rating_count'] or 0,
    )


class Database:
    """
    Owns the connection pool for one SQLite file.

    Callers create one instance and hand it to the store classes below;
    there is no module-level pool.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._pool: ConnectionPool | None = None
        self._pool_lock = threading.Lock()

    def _get_pool(self) -> ConnectionPool:
        if self._pool is None:
            with self._pool_lock:
                if self._pool is None:
                    self.db_path.parent.mkdir(exist_ok=True, parents=True)
                    self._pool = ConnectionPool(self.db_path)
        return self._pool

    @contextmanager
    def get_db(self, read_only: bool = False):
        """
        Get database connection with proper transaction handling.

        Args:
            read_only: If True, skip commit on exit

        Only the outermost context commits/rollbacks; nested calls share
        the transaction.
        """
        pool = self._get_pool()
        conn = pool.get_connection()

        is_outermost = pool.get_transaction_depth() == 0
        pool.increment_transaction_depth()

        try:
            yield conn

            if is_outermost and not read_only:
                conn.commit()

        except Exception:
            if is_outermost:
                conn.rollback()
            raise

        finally:
            pool.decrement_transaction_depth()

    def init_db(self) -> None:
        with self.get_db() as conn:
            conn.executescript(SCHEMA)
        logger.debug(f"Schema ready at {self.db_path}")

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close_all()
            self._pool = None


class SqliteCatalog(Catalog):
    def __init__(self, db: Database):
        self.db = db

    def list_candidates(self, exclude_ids: Iterable[str] = ()) -> list[Book]:
        excluded = set(exclude_ids)
        with self.db.get_db(read_only=True) as conn:
            rows = conn.execute("SELECT * FROM books ORDER BY rowid").fetchall()
        return [_row_to_book(r) for r in rows if r['id'] not in excluded]

    def get_book(self, book_id: str) -> Book | None:
        with self.db.get_db(read_only=True) as conn:
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        return _row_to_book(row) if row else None

    def add_book(self, book: Book) -> Book:
        now = datetime.now().isoformat()
        with self.db.get_db() as conn:
            conn.execute("""
                INSERT INTO books (id, title, author, genres, avg_rating, rating_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    author = excluded.author,
                    genres = excluded.genres,
                    avg_rating = excluded.avg_rating,
                    rating_count = excluded.rating_count,
                    updated_at = excluded.updated_at
            """, (
                book.id, book.title, book.author, json.dumps(list(book.genres)),
                book.average_rating, book.rating_count, now, now,
            ))
        return book

    def save_book(self, book: Book) -> None:
        with self.db.get_db() as conn:
            cursor = conn.execute("""
                UPDATE books
                SET title = ?, author = ?, genres = ?, avg_rating = ?, rating_count = ?, updated_at = ?
                WHERE id = ?
            """, (
                book.title, book.author, json.dumps(list(book.genres)),
                book.average_rating, book.rating_count, datetime.now().isoformat(), book.id,
            ))
            if cursor.rowcount == 0:
                raise BookNotFound(book.id)

    def transaction(self):
        """One SQLite transaction for every store sharing this Database."""
        return self.db.get_db()

    def count(self) -> int:
        with self.db.get_db(read_only=True) as conn:
            return conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]


class SqliteHistoryStore(HistoryStore):
    def __init__(self, db: Database):
        self.db = db

    def get_rating_history(self, user_id: str) -> list[tuple[Book, float]]:
        with self.db.get_db(read_only=True) as conn:
            rows = conn.execute("""
                SELECT b.*, r.rating AS user_rating
                FROM user_ratings r
                JOIN books b ON b.id = r.book_id
                WHERE r.user_id = ?
                ORDER BY r.id
            """, (user_id,)).fetchall()
        return [(_row_to_book(r), r['user_rating']) for r in rows]

    def add_rating(self, user_id: str, book_id: str, rating: float) -> None:
        with self.db.get_db() as conn:
            conn.execute("""
                INSERT INTO user_ratings (user_id, book_id, rating, created_at)
                VALUES (?, ?, ?, ?)
            """, (user_id, book_id, float(rating), datetime.now().isoformat()))

    def has_rated(self, user_id: str, book_id: str) -> bool:
        with self.db.get_db(read_only=True) as conn:
            row = conn.execute(
                "SELECT 1 FROM user_ratings WHERE user_id = ? AND book_id = ?",
                (user_id, book_id),
            ).fetchone()
        return row is not None


class SqlitePreferenceStore(PreferenceStore):
    """One row per (user, genre), matching the map's key-presence semantics."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, user_id: str) -> PreferenceMap:
        with self.db.get_db(read_only=True) as conn:
            rows = conn.execute(
                "SELECT genre, preference_score FROM user_preferences WHERE user_id = ? ORDER BY genre",
                (user_id,),
            ).fetchall()
        return {r['genre']: r['preference_score'] for r in rows}

    def put(self, user_id: str, preferences: PreferenceMap) -> None:
        now = datetime.now().isoformat()
        with self.db.get_db() as conn:
            conn.execute("DELETE FROM user_preferences WHERE user_id = ?", (user_id,))
            conn.executemany("""
                INSERT INTO user_preferences (user_id, genre, preference_score, last_updated)
                VALUES (?, ?, ?, ?)
            """, [
                (user_id, genre, clamp_affinity(score), now)
                for genre, score in preferences.items()
            ])


class SqlitePreferenceDirectory(PreferenceDirectory):
    def __init__(self, db: Database):
        self.db = db

    def get_stated_preferences(self, user_id: str) -> set[str]:
        with self.db.get_db(read_only=True) as conn:
            rows = conn.execute(
                "SELECT genre FROM user_stated_genres WHERE user_id = ?", (user_id,)
            ).fetchall()
        return {r['genre'] for r in rows}

    def set_stated_preferences(self, user_id: str, genres: Iterable[str]) -> None:
        genres = validate_stated_preferences(genres)
        with self.db.get_db() as conn:
            conn.execute("DELETE FROM user_stated_genres WHERE user_id = ?", (user_id,))
            conn.executemany(
                "INSERT OR IGNORE INTO user_stated_genres (user_id, genre) VALUES (?, ?)",
                [(user_id, genre) for genre in genres],
            )
