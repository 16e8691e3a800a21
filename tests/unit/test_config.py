"""Unit tests for configuration module."""

import pytest

from email_event_extractor.config import Settings, get_settings
from email_event_extractor.extraction.prompt import PROMPT_VERSION


class TestSettings:
    """Test suite for Settings class."""

    def test_default_settings(self) -> None:
        """Test that default settings are properly initialized."""
        settings = Settings()

        assert settings.ollama_host == "http://localhost:11434"
        assert settings.lookback_days == 60
        assert settings.neighbor_count == 3
        assert settings.log_level == "INFO"
        assert settings.allow_deterministic_vectors is False
        assert settings.max_root_depth == 64

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test loading settings from environment variables."""
        monkeypatch.setenv("EVENT_EXTRACTOR_OLLAMA_HOST", "http://custom:8080")
        monkeypatch.setenv("EVENT_EXTRACTOR_LOOKBACK_DAYS", "7")
        monkeypatch.setenv("EVENT_EXTRACTOR_SCRAPER_IDENTITY", "someone@example.edu")

        # Clear the cache to ensure fresh settings
        get_settings.cache_clear()

        settings = get_settings()

        assert settings.ollama_host == "http://custom:8080"
        assert settings.lookback_days == 7
        assert settings.scraper_identity == "someone@example.edu"

        # Clean up
        get_settings.cache_clear()

    def test_get_settings_returns_cached_instance(self) -> None:
        """Test that get_settings returns the same cached instance."""
        get_settings.cache_clear()

        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

        # Clean up
        get_settings.cache_clear()

    def test_extractor_version_tracks_prompt_and_models(self) -> None:
        """Changing either model yields a different extractor version."""
        base = Settings(screening_model="a", extraction_model="b")
        bumped = Settings(screening_model="a", extraction_model="c")

        assert base.extractor_version == f"{PROMPT_VERSION}:a:b"
        assert base.extractor_version != bumped.extractor_version

    def test_lookback_days_must_be_positive(self) -> None:
        with pytest.raises(Exception):  # Pydantic ValidationError
            Settings(lookback_days=0)
