"""Tests for dicom_gateway/config.py."""

from pathlib import Path

import pytest

from dicom_gateway.config import Settings, get_settings


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_environment_variables(monkeypatch):
    monkeypatch.delenv("APP_ENV", raising=False)
    monkeypatch.delenv("HEALTHIMAGING_OUTPUT_URI", raising=False)
    monkeypatch.delenv("PUBLIC_BASE_URL", raising=False)
    monkeypatch.setenv("NODE_ENV", "production")
    monkeypatch.setenv("S3_BUCKET_NAME", "dicom-bucket")
    monkeypatch.setenv("HEALTHIMAGING_DATASTORE_ID", "ds-1")
    monkeypatch.setenv("UPLOAD_DIR", "/tmp/dicom-uploads")
    monkeypatch.setenv("PORT", "8080")

    settings = get_settings()

    assert settings.is_production
    assert settings.bucket_name == "dicom-bucket"
    assert settings.datastore_id == "ds-1"
    assert settings.upload_dir == Path("/tmp/dicom-uploads")
    assert settings.base_url == "http://localhost:8080"
    assert settings.object_key("1-a.dcm") == "uploads/1-a.dcm"
    assert settings.output_uri() == "s3://dicom-bucket/healthimaging-output/"


def test_defaults():
    settings = Settings()

    assert not settings.is_production
    assert settings.max_upload_bytes == 50 * 1024 * 1024
    assert settings.signed_url_expiry == 3600
    assert settings.object_key("1-a.dcm") == "1-a.dcm"


def test_require():
    settings = Settings(queue_url="https://sqs/q")

    settings.require("queue_url")
    with pytest.raises(ValueError) as exc_info:
        settings.require("queue_url", "datastore_id", "import_role_arn")
    assert "datastore_id, import_role_arn" in str(exc_info.value)
