"""
Application configuration management.

Connection settings and secrets come from environment variables (or `.env`);
projects, user mappings and team mappings come from a YAML file.
"""

import hashlib
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

from releasekit.models.mapping import PipelineConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_instance_name: str = "releasekit:"
    cache_ttl_seconds: Optional[int] = None

    # GitLab
    gitlab_url: str = "https://gitlab.com"
    gitlab_token: Optional[str] = None

    # Bitbucket
    bitbucket_url: str = "https://api.bitbucket.org/2.0"
    bitbucket_token: Optional[str] = None

    # Azure DevOps
    azure_devops_org_url: Optional[str] = None
    azure_devops_pat: Optional[str] = None

    # Application
    releasekit_config_file: str = "releasekit.yaml"
    dataset_hash: Optional[str] = None
    log_level: str = "INFO"
    http_timeout_seconds: float = 30.0


def _normalize_datetimes(node: Any) -> Any:
    """Give naive datetimes parsed by YAML an explicit UTC timezone."""
    if isinstance(node, datetime):
        return node if node.tzinfo else node.replace(tzinfo=timezone.utc)
    if isinstance(node, dict):
        return {key: _normalize_datetimes(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_normalize_datetimes(value) for value in node]
    return node


def load_pipeline_config(path: str) -> PipelineConfig:
    """
    Load and validate the pipeline YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        yaml.YAMLError: If the file is malformed
        pydantic.ValidationError: If the content does not match PipelineConfig
    """
    with open(Path(path), "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    return PipelineConfig.model_validate(_normalize_datetimes(raw))


def compute_dataset_hash(config: PipelineConfig) -> str:
    """
    Derive the dataset key of a run from its configuration.

    Two runs share cached stages only when their projects, fetch window and
    user, team and sort mappings are all the same.
    """
    fingerprint: Dict[str, Any] = config.model_dump(mode="json")
    canonical = json.dumps(fingerprint, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


# Global settings instance
settings = Settings()
