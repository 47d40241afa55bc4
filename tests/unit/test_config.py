"""
Unit tests for configuration management.
"""

import os
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from releasekit.config import Settings, compute_dataset_hash, load_pipeline_config
from releasekit.models.fetch_request import FetchMode
from releasekit.models.merge_request import SourceControlPlatform


PIPELINE_YAML = """
projects:
  - platform: GitLab
    project_path: group/api
  - platform: Bitbucket
    project_path: team/web
    fetch_mode: BranchDiff
    source_branch: release/20240101
    target_branch: main
fetch:
  target_branch: main
  start_date_time: 2024-01-01 00:00:00
  end_date_time: 2024-01-31T23:59:59Z
user_mappings:
  - display_name: Jane Doe
    gitlab_user_id: "7"
    bitbucket_user_id: "{abc-123}"
team_mappings:
  - original_team_name: Web\\Phoenix
    display_name: Phoenix
team_sort_rules:
  - team_display_name: Phoenix
    sort: 1
"""


def test_settings_loads_from_environment():
    """Test that settings can be loaded from environment variables."""
    with patch.dict(os.environ, {
        'REDIS_URL': 'redis://cache:6379/2',
        'REDIS_INSTANCE_NAME': 'rk:',
        'GITLAB_TOKEN': 'gl-token',
        'AZURE_DEVOPS_ORG_URL': 'https://dev.azure.com/contoso',
        'AZURE_DEVOPS_PAT': 'test_pat',
        'LOG_LEVEL': 'DEBUG',
        'CACHE_TTL_SECONDS': '3600',
    }):
        settings = Settings(_env_file=None)

        assert settings.redis_url == 'redis://cache:6379/2'
        assert settings.redis_instance_name == 'rk:'
        assert settings.gitlab_token == 'gl-token'
        assert settings.azure_devops_org_url == 'https://dev.azure.com/contoso'
        assert settings.azure_devops_pat == 'test_pat'
        assert settings.log_level == 'DEBUG'
        assert settings.cache_ttl_seconds == 3600


def test_settings_has_default_values():
    """Test that settings have appropriate default values."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None)

        assert settings.log_level == 'INFO'
        assert settings.releasekit_config_file == 'releasekit.yaml'
        assert settings.bitbucket_url == 'https://api.bitbucket.org/2.0'
        assert settings.cache_ttl_seconds is None
        assert settings.dataset_hash is None


class TestLoadPipelineConfig:
    """Test YAML pipeline configuration loading."""

    def test_loads_projects_and_mappings(self, tmp_path):
        path = tmp_path / "releasekit.yaml"
        path.write_text(PIPELINE_YAML, encoding="utf-8")

        config = load_pipeline_config(str(path))

        assert [p.platform for p in config.projects] == [
            SourceControlPlatform.GITLAB,
            SourceControlPlatform.BITBUCKET,
        ]
        assert config.projects[1].fetch_mode == FetchMode.BRANCH_DIFF
        assert config.user_mappings[0].bitbucket_user_id == "{abc-123}"
        assert config.team_mappings[0].original_team_name == "Web\\Phoenix"
        assert config.team_sort_rules[0].sort == 1

    def test_naive_dates_are_utc(self, tmp_path):
        path = tmp_path / "releasekit.yaml"
        path.write_text(PIPELINE_YAML, encoding="utf-8")

        config = load_pipeline_config(str(path))

        assert config.fetch.start_date_time == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert config.fetch.end_date_time.tzinfo is not None

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        config = load_pipeline_config(str(path))

        assert config.projects == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_pipeline_config(str(tmp_path / "nope.yaml"))

    def test_invalid_platform(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("projects:\n  - platform: GitHub\n    project_path: a/b\n", encoding="utf-8")

        with pytest.raises(ValidationError):
            load_pipeline_config(str(path))


class TestComputeDatasetHash:
    """Test dataset key derivation."""

    def _load(self, tmp_path, text):
        path = tmp_path / "cfg.yaml"
        path.write_text(text, encoding="utf-8")
        return load_pipeline_config(str(path))

    def test_stable_for_same_config(self, tmp_path):
        first = compute_dataset_hash(self._load(tmp_path, PIPELINE_YAML))
        second = compute_dataset_hash(self._load(tmp_path, PIPELINE_YAML))

        assert first == second
        assert len(first) == 16

    @pytest.mark.parametrize("field", ["user_mappings", "team_mappings", "team_sort_rules"])
    def test_mappings_change_hash(self, tmp_path, field):
        base = self._load(tmp_path, PIPELINE_YAML)
        assert getattr(base, field)
        changed = base.model_copy(update={field: []})

        assert compute_dataset_hash(base) != compute_dataset_hash(changed)

    def test_fetch_window_changes_hash(self, tmp_path):
        base = self._load(tmp_path, PIPELINE_YAML)
        fetch = base.fetch.model_copy(update={"target_branch": "develop"})
        changed = base.model_copy(update={"fetch": fetch})

        assert compute_dataset_hash(base) != compute_dataset_hash(changed)
