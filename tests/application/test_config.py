from pathlib import Path

import pytest
from pydantic import ValidationError

from cadence.application.config import AppConfig, config_files, resolve_config


def test_defaults(mock_home):
    config = resolve_config()
    assert config.backend == "sqlite"
    assert config.database_path == mock_home / ".local/share/cadence/cadence.sqlite3"
    assert config.learning_steps_minutes == [20, 60]
    assert config.relearning_steps_minutes == [20]
    assert config.graduate_interval_days == 1
    assert (config.min_ease_factor, config.max_ease_factor) == (1.3, 2.5)
    assert config.min_session_size == 3


def test_env_overrides(mock_home, monkeypatch):
    monkeypatch.setenv("CADENCE_BACKEND", "memory")
    monkeypatch.setenv("CADENCE_LEARNING_STEPS_MINUTES", "[1, 10]")
    monkeypatch.setenv("CADENCE_PORT", "9001")

    config = resolve_config()
    assert config.backend == "memory"
    assert config.learning_steps_minutes == [1, 10]
    assert config.port == 9001


def test_toml_file_is_read(mock_home):
    path = mock_home / ".config/cadence/config.toml"
    path.parent.mkdir(parents=True)
    path.write_text('database_path = "~/cards.db"\nrelearning_steps_minutes = [5, 30]\n')

    assert config_files()[0] == path
    config = resolve_config()
    assert config.database_path == mock_home / "cards.db"
    assert config.relearning_steps_minutes == [5, 30]


def test_env_beats_toml(mock_home, monkeypatch):
    path = mock_home / ".cadence.toml"
    path.write_text("port = 7000\n")
    monkeypatch.setenv("CADENCE_PORT", "7100")

    assert resolve_config().port == 7100


def test_cli_overrides_win_and_none_is_ignored(mock_home, monkeypatch):
    monkeypatch.setenv("CADENCE_HOST", "0.0.0.0")
    config = resolve_config({"host": None, "database_path": Path("/tmp/x.db")})
    assert config.host == "0.0.0.0"
    assert config.database_path == Path("/tmp/x.db")


@pytest.mark.parametrize(
    "overrides",
    [
        {"learning_steps_minutes": []},
        {"relearning_steps_minutes": [20, 0]},
        {"graduate_interval_days": 0},
        {"min_ease_factor": 2.6},
        {"default_ease_factor": 3.0},
        {"ease_factor_down": -0.1},
    ],
)
def test_invalid_settings_are_rejected(mock_home, overrides):
    with pytest.raises(ValidationError):
        AppConfig(**overrides)
