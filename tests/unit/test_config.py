"""Unit tests for environment-driven configuration."""

from pathlib import Path

import pytest

from strategy_sync.config import (
    ARCHIVE_REASON_ENV,
    LOG_FILE_ENV,
    LOG_LEVEL_ENV,
    ROOT_ENV,
    STORAGE_DIR_ENV,
    SYNC_REWORK_ENV,
    SyncPolicy,
    load_config,
)

ALL_ENV = (ROOT_ENV, STORAGE_DIR_ENV, LOG_LEVEL_ENV, LOG_FILE_ENV, SYNC_REWORK_ENV, ARCHIVE_REASON_ENV)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every Strategy Sync variable from the environment."""
    for name in ALL_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadConfig:
    """Test cases for load_config."""

    def test_defaults(self, clean_env):
        """Test the configuration with nothing set."""
        config = load_config()

        assert config.root is None
        assert config.storage_dir == ".strategy-sync"
        assert config.log_level == "INFO"
        assert config.log_file is None
        assert config.policy == SyncPolicy()

    def test_values_from_environment(self, clean_env, tmp_path):
        """Test reading every variable."""
        clean_env.setenv(ROOT_ENV, str(tmp_path))
        clean_env.setenv(STORAGE_DIR_ENV, ".sync-data")
        clean_env.setenv(LOG_LEVEL_ENV, "debug")
        clean_env.setenv(LOG_FILE_ENV, str(tmp_path / "sync.log"))
        clean_env.setenv(ARCHIVE_REASON_ENV, "pivot")

        config = load_config()

        assert config.root == tmp_path.resolve()
        assert config.storage_dir == ".sync-data"
        assert config.log_level == "DEBUG"
        assert config.log_file == Path(tmp_path / "sync.log")
        assert config.policy.archive_reason == "pivot"

    @pytest.mark.parametrize("raw,expected", [
        ("1", True), ("true", True), ("YES", True), ("on", True),
        ("0", False), ("false", False), ("", False),
    ])
    def test_rework_flag(self, clean_env, raw, expected):
        """Test the rework sync switch."""
        clean_env.setenv(SYNC_REWORK_ENV, raw)

        assert ("rework" in load_config().policy.sync_statuses) is expected


class TestSyncPolicy:
    """Test cases for SyncPolicy."""

    def test_default_policy(self):
        """Test that only approved sections sync by default."""
        policy = SyncPolicy()

        assert policy.sync_statuses == frozenset({"approved"})
        assert policy.archive_statuses == frozenset({"rejected"})
        assert policy.archive_reason == "strategy_rejected"

    def test_including_rework(self):
        """Test the rework-including policy."""
        assert SyncPolicy.including_rework().sync_statuses == frozenset({"approved", "rework"})

    def test_overlapping_statuses_are_refused(self):
        """Test that a status cannot both sync and archive."""
        with pytest.raises(ValueError, match="rejected"):
            SyncPolicy(sync_statuses=frozenset({"approved", "rejected"}))
