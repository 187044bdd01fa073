"""Tests for application config loading."""

from pathlib import Path

from learnrun.config.app_config import (
    clear_config_cache,
    get_provider_config,
    load_app_config,
)
from learnrun.db.database import get_db_path


def write_config(tmp_path, text):
    (tmp_path / "missing-config.yaml").write_text(text, encoding="utf-8")
    clear_config_cache()


class TestDefaults:

    def test_missing_file_uses_defaults(self):
        config = load_app_config()
        assert config.run.max_attempts == 5
        assert config.run.mastery_threshold == 0.8
        assert config.run.feedback_enrichment is False
        assert config.run.default_provider == "lmstudio"
        assert config.db_path == Path("db/learnrun.db")
        assert set(config.providers) == {"lmstudio", "openai", "anthropic"}

    def test_cached(self):
        assert load_app_config() is load_app_config()


class TestOverrides:

    def test_partial_override(self, tmp_path):
        write_config(tmp_path, "run:\n  max_attempts: 3\npaths:\n  db_path: /tmp/x.db\n")
        config = load_app_config()

        assert config.run.max_attempts == 3
        assert config.run.mastery_threshold == 0.8
        assert config.db_path == Path("/tmp/x.db")

    def test_invalid_max_attempts_falls_back(self, tmp_path):
        write_config(tmp_path, "run:\n  max_attempts: 0\n")
        assert load_app_config().run.max_attempts == 5

    def test_provider_api_key_from_env(self, tmp_path, monkeypatch):
        write_config(
            tmp_path,
            "providers:\n  custom:\n    base_url: http://h/v1\n    default_model: m\n    api_key_env: CUSTOM_KEY\n",
        )
        monkeypatch.setenv("CUSTOM_KEY", "secret")

        provider = get_provider_config("custom")
        assert provider.default_model == "m"
        assert provider.get_api_key() == "secret"
        assert get_provider_config("lmstudio") is not None
        assert get_provider_config("nope") is None

    def test_empty_file(self, tmp_path):
        write_config(tmp_path, "")
        assert load_app_config().run.max_attempts == 5


class TestDbPath:

    def test_env_var_wins_over_config(self, tmp_path, monkeypatch):
        write_config(tmp_path, "paths:\n  db_path: from-config.db\n")
        assert get_db_path() == Path("from-config.db")

        monkeypatch.setenv("LEARNRUN_DB_PATH", str(tmp_path / "env.db"))
        assert get_db_path() == tmp_path / "env.db"

    def test_init_db_path_wins(self, db_path, monkeypatch):
        monkeypatch.setenv("LEARNRUN_DB_PATH", "/elsewhere.db")
        assert get_db_path() == db_path
