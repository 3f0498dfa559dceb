import pytest

from tokenfolio.config import Settings


def test_from_env_reads_environment(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./env.db")
    monkeypatch.setenv("HELIO_TIMEOUT", "3.5")
    monkeypatch.setenv("PORTFOLIO_TEMPLATES", "modern, neon")
    monkeypatch.setenv("LOG_FILE", "")

    settings = Settings.from_env()

    assert settings.database_url == "sqlite:///./env.db"
    assert settings.helio_timeout == 3.5
    assert settings.template_names == {"modern", "neon"}
    assert settings.log_file is None


def test_from_env_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)

    with pytest.raises(RuntimeError, match="DATABASE_URL is not set"):
        Settings.from_env()
