import importlib

from bookrec import config


def test_env_overrides_and_validation(monkeypatch):
    monkeypatch.setenv("BOOKREC_LEARNING_RATE", "0.25")
    monkeypatch.setenv("BOOKREC_MIN_RATING", "-1")  # should clamp to min
    monkeypatch.setenv("BOOKREC_MAX_STATED_PREFERENCES", "0")  # min clamp

    cfg = importlib.reload(config)

    assert cfg.DEFAULT_LEARNING_RATE == 0.25
    assert cfg.DEFAULT_MIN_RATING == 0.0
    assert cfg.MAX_STATED_PREFERENCES == 1

    monkeypatch.undo()
    importlib.reload(config)


def test_db_path_respects_env(fresh_config, tmp_path):
    assert fresh_config.DB_PATH == tmp_path / "test.db"


def test_invalid_env_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("BOOKREC_LEARNING_RATE", "not-a-float")
    monkeypatch.setenv("BOOKREC_MIN_RATING", "oops")
    monkeypatch.setenv("BOOKREC_MAX_STATED_PREFERENCES", "bad-int")

    cfg = importlib.reload(config)

    assert cfg.DEFAULT_LEARNING_RATE == 0.1
    assert cfg.DEFAULT_MIN_RATING == 0.0
    assert cfg.MAX_STATED_PREFERENCES == 20

    monkeypatch.undo()
    importlib.reload(config)


def test_default_weights_sum_to_one():
    assert abs(sum(config.WEIGHTS.values()) - 1.0) < 1e-9
    assert config.DEFAULT_LIMIT == 10
    assert config.MAX_LIMIT == 100
