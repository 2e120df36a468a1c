"""Tests for Settings loading."""

import pytest
from pydantic import ValidationError

from riemap.config.settings import Environment, LogLevel, Settings
from riemap.ingestion.fetcher import SourceFetcher


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    # Keep a developer's .env and RIEMAP_* variables out of these tests.
    monkeypatch.chdir(tmp_path)
    for name in ("DATA_DIR", "DATABASE_URL", "MAX_CONCURRENT_JOBS", "ENVIRONMENT", "LOG_LEVEL"):
        monkeypatch.delenv(f"RIEMAP_{name}", raising=False)


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.DATA_DIR == "./data"
        assert settings.DATABASE_URL == ""
        assert settings.MAX_CONCURRENT_JOBS == 2
        assert settings.ENVIRONMENT is Environment.DEV
        assert settings.is_production is False

    def test_env_prefix(self, monkeypatch) -> None:
        monkeypatch.setenv("RIEMAP_DATA_DIR", "/srv/riemap")
        monkeypatch.setenv("RIEMAP_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("RIEMAP_ENVIRONMENT", "prod")

        settings = Settings()
        assert settings.DATA_DIR == "/srv/riemap"
        assert settings.LOG_LEVEL is LogLevel.DEBUG
        assert settings.is_production is True

    def test_dotenv_file(self, tmp_path) -> None:
        (tmp_path / ".env").write_text("RIEMAP_KEEP_VERSIONS=3\n", encoding="utf-8")
        assert Settings().KEEP_VERSIONS == 3

    def test_rejects_zero_concurrency(self, monkeypatch) -> None:
        monkeypatch.setenv("RIEMAP_MAX_CONCURRENT_JOBS", "0")
        with pytest.raises(ValidationError):
            Settings()

    def test_attempt_deadline_reaches_fetcher(self, monkeypatch) -> None:
        monkeypatch.setenv("RIEMAP_FETCH_ATTEMPT_TIMEOUT_SECONDS", "90")
        settings = Settings()
        assert settings.FETCH_ATTEMPT_TIMEOUT_SECONDS == 90.0
        assert SourceFetcher.from_settings(settings)._attempt_timeout == 90.0
