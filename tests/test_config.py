"""Tests for configuration loading and validation."""

import pytest

from prachar_engine.config import Config, ConfigError


def test_defaults(tmp_path, monkeypatch):
    for name in ("OUTPUT_DIR", "GENERATION_DEADLINE_SECONDS", "STORAGE_BACKEND", "TEXT_BACKEND"):
        monkeypatch.delenv(name, raising=False)

    config = Config(base_dir=tmp_path)

    assert config.output_dir == tmp_path / "output"
    assert config.deadline_seconds == 30.0
    assert config.storage_backend == "local"
    assert config.text_backend == "simulated"
    config.validate()


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("GENERATION_DEADLINE_SECONDS", "12.5")
    monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://cdn.example.com/")

    config = Config(base_dir=tmp_path)

    assert config.deadline_seconds == 12.5
    assert config.retry_max_attempts == 5
    assert config.public_base_url == "https://cdn.example.com"


def test_explicit_arguments_beat_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("GENERATION_DEADLINE_SECONDS", "12.5")

    config = Config(base_dir=tmp_path, deadline_seconds=3)

    assert config.deadline_seconds == 3.0


def test_non_numeric_environment_value(tmp_path, monkeypatch):
    monkeypatch.setenv("RETRY_BACKOFF_BASE_MS", "fast")

    with pytest.raises(ConfigError, match="RETRY_BACKOFF_BASE_MS"):
        Config(base_dir=tmp_path)


def test_validate_collects_every_problem(tmp_path):
    config = Config(base_dir=tmp_path, storage_backend="ftp", text_backend="gpt", video_format="avi")

    with pytest.raises(ConfigError) as excinfo:
        config.validate()

    message = str(excinfo.value)
    assert "STORAGE_BACKEND" in message
    assert "TEXT_BACKEND" in message
    assert "VIDEO_FORMAT" in message


def test_s3_backend_requires_bucket(tmp_path, monkeypatch):
    monkeypatch.delenv("S3_BUCKET", raising=False)
    config = Config(base_dir=tmp_path, storage_backend="s3")

    with pytest.raises(ConfigError, match="S3_BUCKET"):
        config.validate()


def test_get_platform(tmp_path):
    config = Config(base_dir=tmp_path)

    assert config.get_platform("linkedin")["caption_max_chars"] == 3000
    with pytest.raises(ConfigError, match="instagram, linkedin"):
        config.get_platform("tiktok")
