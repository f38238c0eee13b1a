from __future__ import annotations

import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_AUDIT_BATCH_SIZE,
    DEFAULT_AUDIT_MAX_RETRIES,
    DEFAULT_AUDIT_QUEUE_SIZE,
    DEFAULT_CHECK_INTERVAL_MINUTES,
    DEFAULT_ENGAGEMENT_DURATION_DAYS,
    DEFAULT_EXTENSION_URL,
    DEFAULT_GENERATION_TIMEOUT_SECONDS,
    DEFAULT_JOB_POLL_LIMIT,
    DEFAULT_LEASE_MINUTES,
    DEFAULT_PLATFORM,
)


class AIConfig(BaseModel):
    """Settings for the AI content provider."""

    default_provider: str = "gemini"
    timeout_seconds: Optional[float] = DEFAULT_GENERATION_TIMEOUT_SECONDS
    models: Dict[str, str] = Field(
        default_factory=lambda: {
            "gemini": "gemini-2.0-flash",
            "openai": "gpt-4o-mini",
            "anthropic": "claude-3-5-haiku-latest",
        }
    )
    api_keys: Dict[str, str] = Field(default_factory=dict)


class EngagementConfig(BaseModel):
    """Defaults for engagement tracking jobs."""

    duration_days: int = DEFAULT_ENGAGEMENT_DURATION_DAYS
    check_interval_minutes: int = DEFAULT_CHECK_INTERVAL_MINUTES
    poll_limit: int = DEFAULT_JOB_POLL_LIMIT


class ExtensionConfig(BaseModel):
    """Browser extension bridge settings."""

    api_key: Optional[str] = None
    lease_minutes: int = DEFAULT_LEASE_MINUTES
    platform: str = DEFAULT_PLATFORM
    fallback_url: str = DEFAULT_EXTENSION_URL


class AuditConfig(BaseModel):
    """Audit log writer settings."""

    enabled: bool = True
    queue_size: int = DEFAULT_AUDIT_QUEUE_SIZE
    batch_size: int = DEFAULT_AUDIT_BATCH_SIZE
    max_retries: int = DEFAULT_AUDIT_MAX_RETRIES


class LaunchGridConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    encryption_key: Optional[str] = None
    ai: AIConfig = AIConfig()
    engagement: EngagementConfig = EngagementConfig()
    extension: ExtensionConfig = ExtensionConfig()
    audit: AuditConfig = AuditConfig()


def load_config(path: Optional[str] = None) -> LaunchGridConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to LAUNCHGRID_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("LAUNCHGRID_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = LaunchGridConfig(**data)
    else:
        config = LaunchGridConfig()

    env_db_url = os.getenv("LAUNCHGRID_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_api_key = os.getenv("LAUNCHGRID_EXTENSION_API_KEY")
    if env_api_key:
        config.extension.api_key = env_api_key
    env_encryption_key = os.getenv("LAUNCHGRID_ENCRYPTION_KEY")
    if env_encryption_key:
        config.encryption_key = env_encryption_key
    return config
