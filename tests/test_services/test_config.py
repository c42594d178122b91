"""Tests for application configuration."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from imagesync.config import MIB, Settings
from imagesync.services.transform_service import TransformPolicy


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)
        assert s.debug is False
        assert s.port == 8000
        assert s.database_url == "sqlite+aiosqlite:///data/db/imagesync.db"
        assert s.max_image_size == 10 * MIB
        assert s.small_file_threshold == 2 * MIB
        assert s.max_transform_attempts == 3
        assert s.sync_interval_seconds == 0

    def test_settings_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAX_IMAGE_WIDTH", "1024")
        monkeypatch.setenv("STORAGE_BUCKET", "photos")
        monkeypatch.setenv("BASEROW_DATABASE_ID", "321013")
        s = Settings(_env_file=None)
        assert s.max_image_width == 1024
        assert s.storage_bucket == "photos"
        assert s.baserow_database_id == 321013

    def test_settings_from_fixture(self, test_settings: Settings) -> None:
        assert test_settings.debug is True
        assert test_settings.database_url.startswith("sqlite+aiosqlite:///")

    def test_invalid_quality_rejected(self) -> None:
        with pytest.raises(ValueError):
            Settings(_env_file=None, image_quality=0)


class TestPublicBaseUrl:
    def test_explicit_prefix_wins(self) -> None:
        s = Settings(_env_file=None, public_url_prefix="https://cdn.example.com/")
        assert s.public_base_url == "https://cdn.example.com"

    def test_falls_back_to_endpoint_and_bucket(self) -> None:
        s = Settings(
            _env_file=None,
            storage_endpoint_url="https://acct.r2.cloudflarestorage.com/",
            storage_bucket="images",
        )
        assert s.public_base_url == "https://acct.r2.cloudflarestorage.com/images"

    def test_falls_back_to_aws_bucket_url(self) -> None:
        s = Settings(_env_file=None, storage_bucket="images")
        assert s.public_base_url == "https://images.s3.amazonaws.com"


class TestRuntimeSecurity:
    def test_debug_skips_validation(self) -> None:
        Settings(_env_file=None, debug=True).validate_runtime_security()

    def test_missing_secrets_rejected(self) -> None:
        with pytest.raises(ValueError, match="SYNC_SECRET") as exc_info:
            Settings(_env_file=None).validate_runtime_security()
        assert "WEBHOOK_SECRET" in str(exc_info.value)

    def test_short_secret_rejected(self) -> None:
        s = Settings(_env_file=None, sync_secret="short", webhook_secret="w" * 32)
        with pytest.raises(ValueError, match="SYNC_SECRET"):
            s.validate_runtime_security()

    def test_strong_secrets_accepted(self) -> None:
        Settings(
            _env_file=None, sync_secret="s" * 32, webhook_secret="w" * 32
        ).validate_runtime_security()


class TestTransformPolicyFromSettings:
    def test_policy_mirrors_settings(self) -> None:
        s = Settings(
            _env_file=None,
            max_image_width=800,
            max_image_height=600,
            image_quality=70,
            max_transform_attempts=5,
            transform_timeout_seconds=5,
        )
        policy = TransformPolicy.from_settings(s)
        assert policy.max_width == 800
        assert policy.max_height == 600
        assert policy.quality == 70
        assert policy.max_attempts == 5
        assert policy.timeout_seconds == 5
        assert policy.max_image_size == s.max_image_size


class TestCliEntry:
    def test_cli_entry_uses_app_settings(self) -> None:
        """cli_entry() should use the global app's settings, not create a new Settings()."""
        from imagesync.main import app, cli_entry

        original_settings = getattr(app.state, "settings", None)
        app.state.settings = Settings(_env_file=None, host="127.0.0.1", port=9999, debug=True)

        try:
            with patch("uvicorn.run") as mock_run:
                cli_entry()

            mock_run.assert_called_once_with(
                "imagesync.main:app",
                host="127.0.0.1",
                port=9999,
                reload=True,
            )
        finally:
            app.state.settings = original_settings
