"""Tests for settings loading and database path resolution."""

from pathlib import Path

from roomchat.config import DEFAULT_ROOMS, SETTINGS_ENV_VAR, load_config


def test_defaults_when_settings_file_missing(tmp_path):
    """A missing settings file yields default settings."""
    cfg = load_config(settings_path=tmp_path / "absent.yaml")

    assert cfg.server.port == 3000
    assert cfg.logging.level == "info"
    assert cfg.rooms.catalog == DEFAULT_ROOMS
    assert cfg.history.default_limit == 100
    assert cfg.history.max_limit == 500


def test_values_read_from_yaml(tmp_path):
    settings_file = tmp_path / "roomchat.settings.yaml"
    settings_file.write_text(
        "server:\n"
        "  port: 4000\n"
        "  allowed_origins:\n"
        "    - http://localhost:5173\n"
        "logging:\n"
        "  level: debug\n"
        "rooms:\n"
        "  catalog:\n"
        "    - general\n"
        "    - random\n"
        "history:\n"
        "  default_limit: 20\n",
        encoding="utf-8",
    )

    cfg = load_config(settings_path=settings_file)

    assert cfg.server.port == 4000
    assert cfg.server.allowed_origins == ["http://localhost:5173"]
    assert cfg.logging.level == "debug"
    assert cfg.rooms.catalog == ["general", "random"]
    assert cfg.history.default_limit == 20


def test_blank_room_names_dropped(tmp_path):
    settings_file = tmp_path / "roomchat.settings.yaml"
    settings_file.write_text(
        "rooms:\n"
        "  catalog:\n"
        "    - general\n"
        "    - '  '\n"
        "    - ''\n",
        encoding="utf-8",
    )

    assert load_config(settings_path=settings_file).rooms.catalog == ["general"]


def test_relative_db_paths_resolve_from_settings_dir(tmp_path):
    """Relative database paths are anchored to the settings file directory."""
    settings_file = tmp_path / "roomchat.settings.yaml"
    settings_file.write_text(
        "history:\n"
        "  db_path: data/history.duckdb\n"
        "auth:\n"
        "  db_path: data/accounts.duckdb\n",
        encoding="utf-8",
    )

    cfg = load_config(settings_path=settings_file)

    assert Path(cfg.history.db_path) == tmp_path.resolve() / "data" / "history.duckdb"
    assert Path(cfg.auth.db_path) == tmp_path.resolve() / "data" / "accounts.duckdb"


def test_absolute_db_path_unchanged(tmp_path):
    absolute_path = tmp_path / "elsewhere" / "history.duckdb"
    settings_file = tmp_path / "roomchat.settings.yaml"
    settings_file.write_text(
        "history:\n"
        f"  db_path: {absolute_path}\n",
        encoding="utf-8",
    )

    cfg = load_config(settings_path=settings_file)
    assert Path(cfg.history.db_path) == absolute_path


def test_in_memory_db_path_unchanged(tmp_path):
    settings_file = tmp_path / "roomchat.settings.yaml"
    settings_file.write_text(
        "history:\n"
        "  db_path: ':memory:'\n",
        encoding="utf-8",
    )

    assert load_config(settings_path=settings_file).history.db_path == ":memory:"


def test_settings_path_from_environment(tmp_path, monkeypatch):
    settings_file = tmp_path / "custom.yaml"
    settings_file.write_text("server:\n  port: 8123\n", encoding="utf-8")
    monkeypatch.setenv(SETTINGS_ENV_VAR, str(settings_file))

    assert load_config().server.port == 8123
