"""Tests for Settings validation"""
import pytest
from pydantic import ValidationError

from app.core.config import Settings


class TestSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("BIOMETRIC_WORKER_ENABLED", raising=False)
        settings = Settings(_env_file=None)

        assert settings.BIOMETRIC_MATCH_THRESHOLD == pytest.approx(0.90)
        assert settings.BIOMETRIC_WORKER_BATCH_SIZE == 2
        assert settings.BIOMETRIC_WORKER_MAX_PHOTOS == 4
        assert settings.BIOMETRIC_WORKER_NO_PHOTOS_BACKOFF_TICKS == 15
        assert settings.BIOMETRIC_WORKER_INTERVAL_SECONDS == pytest.approx(8.0)
        assert settings.BIOMETRIC_WORKER_ENABLED is True

    def test_cors_origins_list(self):
        settings = Settings(_env_file=None, CORS_ORIGINS="https://a.example, https://b.example,")

        assert settings.cors_origins_list == ["https://a.example", "https://b.example"]

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("BIOMETRIC_WORKER_BATCH_SIZE", "5")

        assert Settings(_env_file=None).BIOMETRIC_WORKER_BATCH_SIZE == 5

    @pytest.mark.parametrize("field", [
        "BIOMETRIC_WORKER_INTERVAL_SECONDS",
        "BIOMETRIC_WORKER_BATCH_SIZE",
        "BIOMETRIC_WORKER_MAX_PHOTOS",
        "BIOMETRIC_WORKER_NO_PHOTOS_BACKOFF_TICKS",
        "MAX_UPLOAD_FILES",
        "MAX_UPLOAD_FILE_BYTES",
    ])
    def test_non_positive_rejected(self, field):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: 0})

    @pytest.mark.parametrize("threshold", [0.0, -0.5, 1.5])
    def test_match_threshold_range(self, threshold):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, BIOMETRIC_MATCH_THRESHOLD=threshold)
