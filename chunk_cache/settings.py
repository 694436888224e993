from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheSettings(BaseSettings):
    """Configuration for the on-disk chunk cache."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    path: str = Field(
        default="/var/cache/chunk-cache",
        validation_alias="CHUNK_CACHE_PATH",
    )
    chunk_size: int = Field(
        default=10 * 1024 * 1024,
        validation_alias="CHUNK_CACHE_CHUNK_SIZE",
    )
    preload_chunks: int = Field(
        default=0,
        ge=0,
        validation_alias="CHUNK_CACHE_PRELOAD_CHUNKS",
    )
    verify_version: bool = Field(
        default=False,
        validation_alias="CHUNK_CACHE_VERIFY_VERSION",
    )
    gateway: Literal["s3", "http"] = Field(
        default="s3",
        validation_alias="CHUNK_CACHE_GATEWAY",
    )


class RemoteSettings(BaseSettings):
    """Configuration for the remote object store."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    endpoint: str | None = Field(
        default=None,
        validation_alias="CHUNK_CACHE_REMOTE_ENDPOINT",
    )
    access_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "CHUNK_CACHE_REMOTE_ACCESS_KEY_ID",
            "AWS_ACCESS_KEY_ID",
        ),
    )
    secret_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "CHUNK_CACHE_REMOTE_SECRET_ACCESS_KEY",
            "AWS_SECRET_ACCESS_KEY",
        ),
    )
    session_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "CHUNK_CACHE_REMOTE_SESSION_TOKEN",
            "AWS_SESSION_TOKEN",
        ),
    )
    region: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "CHUNK_CACHE_REMOTE_REGION",
            "AWS_REGION",
        ),
    )
    bucket: str | None = Field(
        default=None,
        validation_alias="CHUNK_CACHE_REMOTE_BUCKET",
    )
    addressing_style: Literal["auto", "virtual", "path"] = Field(
        default="virtual",
        validation_alias="CHUNK_CACHE_REMOTE_ADDRESSING_STYLE",
    )
    timeout: float = Field(
        default=60.0,
        gt=0,
        validation_alias="CHUNK_CACHE_REMOTE_TIMEOUT",
    )


def load_cache_settings_from_env() -> CacheSettings:
    """Load chunk cache settings from environment variables.

    Returns:
        CacheSettings instance populated from environment variables.
    """
    return CacheSettings()


def load_remote_settings_from_env() -> RemoteSettings:
    """Load remote object store settings from environment variables.

    Returns:
        RemoteSettings instance populated from environment variables.
    """
    return RemoteSettings()
