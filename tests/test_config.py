"""
Tests for the deployment switches
Verifies: both flags read the same "1"-only convention at startup and in from_env()
"""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.config import AnalysisSettings, env_flag


class TestEnvFlag:
    def test_only_one_enables(self, monkeypatch):
        monkeypatch.setenv("ADVISORY_ENABLED", "true")
        assert env_flag("ADVISORY_ENABLED", "1") is False

        monkeypatch.setenv("ADVISORY_ENABLED", "1")
        assert env_flag("ADVISORY_ENABLED", "0") is True

    def test_default_when_unset(self, monkeypatch):
        monkeypatch.delenv("IMAGE_VALIDATION_ENABLED", raising=False)
        assert env_flag("IMAGE_VALIDATION_ENABLED", "0") is False
        assert env_flag("IMAGE_VALIDATION_ENABLED", "1") is True


class TestSettingsFromEnv:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("IMAGE_VALIDATION_ENABLED", raising=False)
        monkeypatch.delenv("ADVISORY_ENABLED", raising=False)

        settings = AnalysisSettings.from_env()

        assert settings.image_validation_enabled is False
        assert settings.advisory_enabled is True

    def test_flags_reread_at_call_time(self, monkeypatch):
        monkeypatch.setenv("IMAGE_VALIDATION_ENABLED", "1")
        monkeypatch.setenv("ADVISORY_ENABLED", "0")

        settings = AnalysisSettings.from_env()

        assert settings.image_validation_enabled is True
        assert settings.advisory_enabled is False
