import importlib
import sys
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from bookrec.models import Book  # noqa: E402
from bookrec.recommender import RecommendationEngine  # noqa: E402
from bookrec.stores import (  # noqa: E402
    InMemoryCatalog,
    InMemoryHistoryStore,
    InMemoryPreferenceDirectory,
    InMemoryPreferenceStore,
)


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("BOOKREC_DB", str(db_path))
    import bookrec.config as config

    importlib.reload(config)
    yield config
    monkeypatch.undo()
    importlib.reload(config)


@pytest.fixture
def fresh_db(tmp_path):
    """A Database on a temp file with the schema created; closed after use."""
    from bookrec.database import Database

    db = Database(tmp_path / "test.db")
    db.init_db()
    yield db
    db.close()


def make_book(book_id, genres, avg=4.0, count=100, title=None, author="Test Author"):
    return Book(
        id=book_id,
        title=title or book_id.replace("-", " ").title(),
        author=author,
        genres=genres,
        average_rating=avg,
        rating_count=count,
    )


@pytest.fixture
def memory_engine():
    """Engine wired to in-memory stores, with a small catalog."""
    catalog = InMemoryCatalog([
        make_book("dune", ["Science Fiction", "Adventure"], avg=4.3, count=900),
        make_book("emma", ["Romance", "Classics"], avg=3.9, count=400),
        make_book("rebecca", ["Mystery", "Romance"], avg=4.1, count=250),
        make_book("hyperion", ["Science Fiction"], avg=4.2, count=300),
        make_book("gone-girl", ["Mystery", "Thriller"], avg=4.0, count=1500),
    ])
    engine = RecommendationEngine(
        catalog=catalog,
        history=InMemoryHistoryStore(catalog),
        preferences=InMemoryPreferenceStore(),
        directory=InMemoryPreferenceDirectory(),
        min_rating=0.0,
        learning_rate=0.1,
    )
    return engine
