"""
Tests for settings validation and structured logging
"""
import json
import logging

import pytest

from app.core.config import Settings
from app.core.exceptions import ConfigurationError
from app.core.logging import JSONFormatter


class TestSettings:

    def test_defaults_are_complete(self):
        settings = Settings(DATABASE_URL="sqlite+aiosqlite://", STORAGE_PROVIDER="local")

        assert settings.missing_required() == []
        settings.validate_required()

    def test_missing_database_url(self):
        settings = Settings(DATABASE_URL="", STORAGE_PROVIDER="local")

        with pytest.raises(ConfigurationError) as exc_info:
            settings.validate_required()

        assert exc_info.value.details["missing"] == ["DATABASE_URL"]

    def test_s3_requires_credentials(self):
        settings = Settings(
            DATABASE_URL="sqlite+aiosqlite://",
            STORAGE_PROVIDER="s3",
            AWS_ACCESS_KEY_ID=None,
            AWS_SECRET_ACCESS_KEY=None,
            S3_BUCKET_NAME="uploads",
        )

        assert settings.missing_required() == ["AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"]

    def test_unknown_storage_provider(self):
        settings = Settings(DATABASE_URL="sqlite+aiosqlite://", STORAGE_PROVIDER="ftp")

        with pytest.raises(ConfigurationError):
            settings.validate_required()

    @pytest.mark.parametrize("raw, expected", [
        ('["https://a.example.com","https://b.example.com"]', ["https://a.example.com", "https://b.example.com"]),
        ("https://a.example.com, https://b.example.com", ["https://a.example.com", "https://b.example.com"]),
        ("https://a.example.com", ["https://a.example.com"]),
        ("", []),
    ])
    def test_cors_origins(self, raw, expected):
        assert Settings(CORS_ORIGINS=raw).CORS_ORIGINS == expected

    def test_suggester_configured(self):
        assert Settings(
            AZURE_OPENAI_API_KEY="k", AZURE_OPENAI_ENDPOINT="https://ai", AZURE_OPENAI_DEPLOYMENT="d"
        ).suggester_configured is True
        assert Settings(AZURE_OPENAI_API_KEY=None).suggester_configured is False

    def test_upload_limit(self):
        assert Settings(MAX_UPLOAD_SIZE_MB=2).max_upload_size_bytes == 2 * 1024 * 1024


class TestJSONFormatter:

    def test_extra_fields_are_included(self):
        record = logging.LogRecord("app.test", logging.INFO, __file__, 10, "Staged %d rows", (3,), None)
        record.import_id = 7

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Staged 3 rows"
        assert data["level"] == "INFO"
        assert data["import_id"] == 7
        assert "args" not in data
