"""Unit tests for environment-driven configuration."""

from __future__ import annotations

import os

import pytest
from chunk_cache import CacheSettings, RemoteSettings
from chunk_cache.settings import (
    load_cache_settings_from_env,
    load_remote_settings_from_env,
)
from pydantic import ValidationError


class TestCacheSettings:
    """Test CacheSettings configuration."""

    def test_default_settings(self):
        """Test that CacheSettings has sensible defaults."""
        settings = CacheSettings()
        assert settings.path == "/var/cache/chunk-cache"
        assert settings.chunk_size == 10 * 1024 * 1024
        assert settings.preload_chunks == 0
        assert settings.verify_version is False
        assert settings.gateway == "s3"

    def test_load_from_env(self, cache_env_vars):
        """Test that cache settings load from environment."""
        settings = load_cache_settings_from_env()
        assert settings.path == cache_env_vars["CHUNK_CACHE_PATH"]
        assert settings.chunk_size == int(cache_env_vars["CHUNK_CACHE_CHUNK_SIZE"])
        assert settings.preload_chunks == 2
        assert settings.verify_version is True
        assert settings.gateway == "http"

    def test_rejects_unknown_gateway(self):
        original = os.environ.get("CHUNK_CACHE_GATEWAY")
        try:
            os.environ["CHUNK_CACHE_GATEWAY"] = "ftp"
            with pytest.raises(ValidationError):
                load_cache_settings_from_env()
        finally:
            if original is None:
                os.environ.pop("CHUNK_CACHE_GATEWAY", None)
            else:
                os.environ["CHUNK_CACHE_GATEWAY"] = original

    def test_rejects_negative_preload(self):
        with pytest.raises(ValidationError):
            CacheSettings(CHUNK_CACHE_PRELOAD_CHUNKS=-1)


class TestRemoteSettings:
    """Test RemoteSettings configuration."""

    def test_default_settings(self, monkeypatch):
        """Test that RemoteSettings has sensible defaults."""
        for name in (
            "AWS_ACCESS_KEY_ID",
            "AWS_SECRET_ACCESS_KEY",
            "AWS_SESSION_TOKEN",
            "AWS_REGION",
        ):
            monkeypatch.delenv(name, raising=False)
        settings = RemoteSettings()
        assert settings.endpoint is None
        assert settings.access_key is None
        assert settings.secret_key is None
        assert settings.region is None
        assert settings.bucket is None
        assert settings.addressing_style == "virtual"
        assert settings.timeout == 60.0

    def test_load_from_env(self, remote_env_vars):
        """Test that remote settings load from environment."""
        settings = load_remote_settings_from_env()
        assert settings.endpoint == remote_env_vars["CHUNK_CACHE_REMOTE_ENDPOINT"]
        assert (
            settings.access_key == remote_env_vars["CHUNK_CACHE_REMOTE_ACCESS_KEY_ID"]
        )
        assert (
            settings.secret_key
            == remote_env_vars["CHUNK_CACHE_REMOTE_SECRET_ACCESS_KEY"]
        )
        assert settings.region == remote_env_vars["CHUNK_CACHE_REMOTE_REGION"]
        assert settings.bucket == remote_env_vars["CHUNK_CACHE_REMOTE_BUCKET"]

    def test_aws_aliases(self, monkeypatch):
        """Test that standard AWS variables are honored."""
        monkeypatch.delenv("CHUNK_CACHE_REMOTE_ACCESS_KEY_ID", raising=False)
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "aws-access")
        monkeypatch.setenv("AWS_REGION", "ap-south-1")
        settings = load_remote_settings_from_env()
        assert settings.access_key == "aws-access"
        assert settings.region == "ap-south-1"

    def test_addressing_style_from_env(self):
        """Test that addressing_style can be configured from environment."""
        original = os.environ.get("CHUNK_CACHE_REMOTE_ADDRESSING_STYLE")
        try:
            os.environ["CHUNK_CACHE_REMOTE_ADDRESSING_STYLE"] = "path"
            settings = load_remote_settings_from_env()
            assert settings.addressing_style == "path"
        finally:
            if original is None:
                os.environ.pop("CHUNK_CACHE_REMOTE_ADDRESSING_STYLE", None)
            else:
                os.environ["CHUNK_CACHE_REMOTE_ADDRESSING_STYLE"] = original
