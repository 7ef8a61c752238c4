import json
import logging
import sys

import pytest

from bookrec import cli


@pytest.fixture
def db_args(tmp_path):
    return ["--db", str(tmp_path / "cli.db")]


def _run(db_args, *argv):
    return cli.main([*db_args, *argv])


def test_parse_genres_accepts_commas_and_spaces():
    assert cli._parse_genres(["Fiction,Mystery", " Poetry "]) == ["Fiction", "Mystery", "Poetry"]
    assert cli._parse_genres(None) == []


def test_main_dispatches_to_subcommand(monkeypatch):
    called = {}

    def fake_init(args):
        called["command"] = args.command

    monkeypatch.setattr(cli, "cmd_init_db", fake_init)
    monkeypatch.setattr(sys, "argv", ["prog", "init-db"])

    assert cli.main() == 0
    assert called["command"] == "init-db"


def test_cli_parses_recommend_args(monkeypatch):
    captured = {}

    def fake_recommend(args):
        captured.update(vars(args))

    monkeypatch.setattr(cli, "cmd_recommend", fake_recommend)
    cli.main(["recommend", "alice", "--limit", "5", "--reasons", "--format", "json", "--min-rating", "3.5"])

    assert captured["user"] == "alice"
    assert captured["limit"] == 5
    assert captured["reasons"] is True
    assert captured["format"] == "json"
    assert captured["min_rating"] == 3.5


def test_rate_and_recommend_end_to_end(db_args, caplog):
    caplog.set_level(logging.INFO, logger="bookrec")

    assert _run(db_args, "add-book", "dune", "Dune", "Frank Herbert",
                "--genres", "Science Fiction", "--avg-rating", "4.3", "--rating-count", "900") == 0
    assert _run(db_args, "add-book", "hyperion", "Hyperion", "Dan Simmons",
                "--genres", "Science Fiction", "--avg-rating", "4.2", "--rating-count", "300") == 0
    assert _run(db_args, "set-preferences", "alice", "Science Fiction") == 0
    assert _run(db_args, "rate", "alice", "dune", "5") == 0

    caplog.clear()
    assert _run(db_args, "recommend", "alice", "--reasons", "--format", "json") == 0

    payload = json.loads(caplog.records[-1].getMessage())
    assert [r["id"] for r in payload["recommendations"]] == ["hyperion"]
    assert "Science Fiction" in payload["recommendations"][0]["reason"]
    assert payload["total_count"] == 1


def test_import_books_from_json(db_args, tmp_path, caplog):
    caplog.set_level(logging.INFO, logger="bookrec")
    books = [
        {"id": "b1", "title": "One", "genres": ["Fiction"], "average_rating": 4.0, "rating_count": 10},
        {"title": "missing id"},
        {"id": "b2", "title": "Two", "genres": ["Mystery"]},
    ]
    path = tmp_path / "books.json"
    path.write_text(json.dumps(books))

    assert _run(db_args, "import", str(path), "--quiet") == 0
    assert any("Imported 2 books (1 skipped)" in r.getMessage() for r in caplog.records)


def test_validation_errors_exit_non_zero(db_args, caplog):
    assert _run(db_args, "recommend", "alice", "--limit", "0") == 1
    assert _run(db_args, "rate", "alice", "nope", "4") == 1
    assert any("Book not found" in r.getMessage() for r in caplog.records)


def test_profile_shows_cold_start_affinities(db_args, caplog):
    caplog.set_level(logging.INFO, logger="bookrec")
    _run(db_args, "add-book", "emma", "Emma", "Jane Austen", "--genres", "Romance,Classics")
    _run(db_args, "rate", "bob", "emma", "4")
    _run(db_args, "rebuild-profile", "bob")

    caplog.clear()
    assert _run(db_args, "profile", "bob") == 0

    messages = [r.getMessage() for r in caplog.records]
    assert any("Books rated: 1" in m for m in messages)
    assert any("Romance" in m and "(0.75)" in m for m in messages)


@pytest.mark.parametrize("content", ["{broken", '{"id": "b1"}'])
def test_import_rejects_malformed_files(db_args, tmp_path, caplog, content):
    path = tmp_path / "books.json"
    path.write_text(content)

    assert _run(db_args, "import", str(path), "--quiet") == 1
    assert any(r.levelno == logging.ERROR for r in caplog.records)


def test_import_missing_file_exits_non_zero(db_args, tmp_path):
    assert _run(db_args, "import", str(tmp_path / "nope.json"), "--quiet") == 1


def test_import_skips_out_of_range_averages(db_args, tmp_path, caplog):
    caplog.set_level(logging.INFO, logger="bookrec")
    books = [
        {"id": "b1", "genres": ["Fiction"], "average_rating": 9.0},
        {"id": "b2", "genres": ["Fiction"], "average_rating": 4.5},
    ]
    path = tmp_path / "books.json"
    path.write_text(json.dumps(books))

    assert _run(db_args, "import", str(path), "--quiet") == 0
    assert any("Imported 1 books (1 skipped)" in r.getMessage() for r in caplog.records)


@pytest.mark.parametrize("avg", ["7.0", "-2", "0.5"])
def test_add_book_rejects_average_off_scale(db_args, avg):
    assert _run(db_args, "add-book", "b1", "Title", "Author",
                "--genres", "Fiction", "--avg-rating", avg) == 1


def test_profile_rejects_non_positive_limit(db_args):
    assert _run(db_args, "profile", "bob", "--limit", "-1") == 1
    assert _run(db_args, "profile", "bob", "--limit", "0") == 1
