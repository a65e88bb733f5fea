"""Tests for settings and logging setup."""

import pytest
from pydantic import ValidationError
from covercheck.config import CoverCheckSettings, get_settings
from covercheck.logging_setup import configure_logging


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("STREAM_URL", "API_KEY", "REQUEST_TIMEOUT", "MATCH_THRESHOLD",
                 "BATCH_DELAY_SECONDS", "LOG_LEVEL", "EMBEDDING_MODEL"):
        monkeypatch.delenv(f"COVERCHECK_{name}", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    """Tests for CoverCheckSettings."""

    def test_defaults(self):
        """Defaults match the documented values."""
        settings = CoverCheckSettings(_env_file=None)
        assert settings.stream_url is None
        assert settings.api_key is None
        assert settings.request_timeout == 300
        assert settings.match_threshold == 45
        assert settings.batch_delay_seconds == pytest.approx(0.5)
        assert settings.embedding_model == "BAAI/bge-base-en-v1.5"
        assert settings.log_level == "INFO"

    def test_env_prefix(self, monkeypatch):
        """COVERCHECK_* environment variables are read."""
        monkeypatch.setenv("COVERCHECK_STREAM_URL", "https://api.example.test/stream")
        monkeypatch.setenv("COVERCHECK_MATCH_THRESHOLD", "60")
        settings = CoverCheckSettings(_env_file=None)
        assert settings.stream_url == "https://api.example.test/stream"
        assert settings.match_threshold == 60

    def test_blank_url_is_none(self):
        """An empty stream URL means not configured."""
        assert CoverCheckSettings(_env_file=None, stream_url="  ").stream_url is None

    @pytest.mark.parametrize("field,value", [
        ("stream_url", "ftp://example.test"),
        ("match_threshold", 120),
        ("batch_delay_seconds", -1),
        ("request_timeout", 0),
        ("log_level", "LOUD"),
    ])
    def test_invalid_values(self, field, value):
        """Out-of-range or malformed values are rejected."""
        with pytest.raises(ValidationError):
            CoverCheckSettings(_env_file=None, **{field: value})

    def test_log_level_normalized(self):
        """Log levels are upper-cased."""
        assert CoverCheckSettings(_env_file=None, log_level="debug").log_level == "DEBUG"

    def test_auth_headers(self):
        """A key produces bearer and apikey headers; the key stays secret in repr."""
        settings = CoverCheckSettings(_env_file=None, api_key="s3cret")
        assert settings.auth_headers() == {"Authorization": "Bearer s3cret", "apikey": "s3cret"}
        assert "s3cret" not in repr(settings)
        assert CoverCheckSettings(_env_file=None).auth_headers() == {}

    def test_get_settings_cached(self):
        """get_settings returns one shared instance."""
        assert get_settings() is get_settings()


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_installs_sink(self, capsys):
        """Messages at or above the level reach stderr."""
        from loguru import logger

        sink_id = configure_logging("warning")
        try:
            logger.info("hidden message")
            logger.warning("visible message")
            err = capsys.readouterr().err
            assert "visible message" in err
            assert "hidden message" not in err
        finally:
            logger.remove(sink_id)
