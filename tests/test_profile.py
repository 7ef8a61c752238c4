import pytest

from bookrec.errors import InvalidPreferences
from bookrec.models import RatingEvent
from bookrec.profile import calculate_from_history, top_genres, update, validate_stated_preferences
from conftest import make_book


def test_single_rating_maps_onto_unit_interval():
    book = make_book("b1", ["Fiction"])
    assert calculate_from_history([(book, 4.0)]) == {"Fiction": 0.75}


def test_rating_counts_toward_every_genre_of_book():
    book1 = make_book("b1", ["Fiction", "Romance"])
    book2 = make_book("b2", ["Fiction", "Mystery"])
    book3 = make_book("b3", ["Romance"])

    scores = calculate_from_history([(book1, 4.0), (book2, 5.0), (book3, 3.0)])

    # Fiction: mean 4.5 -> 0.875; Romance: mean 3.5 -> 0.625; Mystery: 5.0 -> 1.0
    assert scores["Fiction"] == pytest.approx(0.875)
    assert scores["Romance"] == pytest.approx(0.625)
    assert scores["Mystery"] == pytest.approx(1.0)


def test_history_accepts_rating_events_and_skips_unrated_genres():
    book = make_book("b1", ["Horror"])
    scores = calculate_from_history([RatingEvent(book=book, rating=1.0)])

    assert scores == {"Horror": 0.0}
    assert "Fiction" not in scores
    assert calculate_from_history([]) == {}


def test_out_of_scale_ratings_are_clamped():
    book = make_book("b1", ["Poetry"])
    assert calculate_from_history([(book, 7.0)]) == {"Poetry": 1.0}
    assert calculate_from_history([(book, 0.0)]) == {"Poetry": 0.0}


def test_update_starts_absent_genres_at_half():
    book = make_book("b1", ["Fiction"])
    assert update({}, book, rating=5.0, learning_rate=0.5) == {"Fiction": 1.0}

    lowered = update({}, book, rating=1.0, learning_rate=0.2)
    assert lowered["Fiction"] == pytest.approx(0.3)


def test_update_moves_existing_values_and_clamps():
    book = make_book("b1", ["Fiction", "Drama"])
    current = {"Fiction": 0.95, "Drama": 0.02, "Poetry": 0.4}

    up = update(current, book, rating=5.0, learning_rate=0.1)
    assert up["Fiction"] == 1.0
    assert up["Drama"] == pytest.approx(0.12)
    assert up["Poetry"] == 0.4

    down = update(current, book, rating=1.0, learning_rate=0.1)
    assert down["Drama"] == 0.0


def test_neutral_rating_still_creates_entry():
    book = make_book("b1", ["Essays"])
    assert update({}, book, rating=3.0, learning_rate=0.3) == {"Essays": 0.5}


def test_update_does_not_mutate_current():
    book = make_book("b1", ["Fiction"])
    current = {"Fiction": 0.4}

    first = update(current, book, rating=4.0, learning_rate=0.2)
    second = update(current, book, rating=4.0, learning_rate=0.2)

    assert current == {"Fiction": 0.4}
    assert first == second
    assert first is not second

    first["Fiction"] = 0.0
    assert second["Fiction"] == pytest.approx(0.5)


def test_top_genres_orders_by_affinity_then_map_order():
    prefs = {"a": 0.5, "b": 0.9, "c": 0.5, "d": 0.1}
    assert top_genres(prefs, n=3) == [("b", 0.9), ("a", 0.5), ("c", 0.5)]


def test_validate_stated_preferences():
    assert validate_stated_preferences([" Fantasy", "Fantasy", "", "Horror"]) == ["Fantasy", "Horror"]
    with pytest.raises(InvalidPreferences):
        validate_stated_preferences(["", "  "])
    with pytest.raises(InvalidPreferences):
        validate_stated_preferences([f"genre-{i}" for i in range(21)])
