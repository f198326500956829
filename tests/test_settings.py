from pathlib import Path

from config.settings import Settings, _get_env_bool


def test_default_test_settings_are_valid(settings):
    assert settings.validate() == []


def test_collection_and_sqlite_paths(settings):
    assert settings.collection_path("users") == Path(settings.data_dir) / "users.json"
    assert settings.sqlite_full_path == str(Path(settings.data_dir) / "arena.db")

    settings.sqlite_path = "/tmp/custom.db"
    assert settings.sqlite_full_path == "/tmp/custom.db"


def test_validate_reports_problems(settings):
    settings.store_backend = "mongo"
    settings.llm_api_key = ""
    settings.price_poll_interval = 0
    settings.telegram_bot_token = "123:abc"

    problems = settings.validate()

    assert any("STORE_BACKEND" in p for p in problems)
    assert any("LLM_API_KEY" in p for p in problems)
    assert any("PRICE_POLL_INTERVAL" in p for p in problems)
    assert any("TELEGRAM" in p for p in problems)


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("SETTLING_DELAY", "1.5")
    monkeypatch.setenv("SERIALIZE_WRITES", "no")
    monkeypatch.setenv("SIGNAL_HISTORY_LIMIT", "25")

    fresh = Settings()

    assert fresh.data_dir == str(tmp_path)
    assert fresh.settling_delay == 1.5
    assert fresh.serialize_writes is False
    assert fresh.signal_history_limit == 25


def test_env_bool_parsing(monkeypatch):
    monkeypatch.setenv("FLAG_ON", "Yes")
    monkeypatch.delenv("FLAG_MISSING", raising=False)

    assert _get_env_bool("FLAG_ON", False) is True
    assert _get_env_bool("FLAG_MISSING", True) is True
