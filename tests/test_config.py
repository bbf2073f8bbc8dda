"""Unit tests for configuration loading."""

import json

import pytest

from pyccpm.config import Config, load_config
from pyccpm.exceptions import ConfigError
from pyccpm.models import ConflictStrategy


class TestLoadConfig:
    """Tests for load_config."""

    @pytest.fixture
    def home(self, tmp_path):
        """Create an empty tool home directory."""
        home = tmp_path / "ccpm"
        home.mkdir()
        return home

    def _write(self, home, data):
        (home / "config.json").write_text(json.dumps(data))

    def test_defaults(self, home):
        """Test defaults when no file or variables are present."""
        config = load_config(env={"CCPM_HOME": str(home)})
        assert config.home_dir == home
        assert config.state_file == home / "state.json"
        assert config.registry_file == home / "registry.json"
        assert config.locks_dir == home / "locks"
        assert config.conflict_strategy == ConflictStrategy.PROMPT
        assert config.max_workers == 3
        assert config.type_based_extensions == (".md",)

    def test_config_file_values(self, home, tmp_path):
        """Test that camelCase keys in config.json are applied."""
        self._write(
            home,
            {
                "targetDir": str(tmp_path / "claude"),
                "conflictStrategy": "overwrite",
                "maxWorkers": 5,
                "typeBasedExtensions": ["md", ".TXT"],
                "lockTimeout": 2.5,
                "stateWriteRetries": 1,
            },
        )
        config = load_config(env={"CCPM_HOME": str(home)})
        assert config.target_dir == tmp_path / "claude"
        assert config.conflict_strategy == ConflictStrategy.OVERWRITE
        assert config.max_workers == 5
        assert config.type_based_extensions == (".md", ".txt")
        assert config.lock_timeout == 2.5
        assert config.state_write_retries == 1

    def test_environment_overrides_file(self, home, tmp_path):
        """Test that environment variables win over the config file."""
        self._write(home, {"conflictStrategy": "overwrite", "maxWorkers": 5})
        config = load_config(
            env={
                "CCPM_HOME": str(home),
                "CCPM_CLAUDE_DIR": str(tmp_path / "target"),
                "CCPM_CONFLICT_STRATEGY": "skip",
                "CCPM_MAX_WORKERS": "2",
            }
        )
        assert config.target_dir == tmp_path / "target"
        assert config.conflict_strategy == ConflictStrategy.SKIP
        assert config.max_workers == 2

    def test_explicit_config_path(self, home, tmp_path):
        """Test loading an explicitly named config file."""
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"maxWorkers": 7}))
        config = load_config(config_path=path, env={"CCPM_HOME": str(home)})
        assert config.max_workers == 7

    def test_invalid_json(self, home):
        """Test that malformed JSON raises ConfigError."""
        (home / "config.json").write_text("{not json")
        with pytest.raises(ConfigError, match="Invalid JSON"):
            load_config(env={"CCPM_HOME": str(home)})

    def test_invalid_strategy(self, home):
        """Test that an unknown conflict strategy raises ConfigError."""
        self._write(home, {"conflictStrategy": "merge"})
        with pytest.raises(ConfigError, match="Invalid conflict strategy"):
            load_config(env={"CCPM_HOME": str(home)})

    def test_invalid_workers(self, home):
        """Test that a non-positive worker count raises ConfigError."""
        with pytest.raises(ConfigError, match="at least 1"):
            load_config(env={"CCPM_HOME": str(home), "CCPM_MAX_WORKERS": "0"})

    def test_invalid_extensions(self, home):
        """Test that an empty extension list raises ConfigError."""
        self._write(home, {"typeBasedExtensions": []})
        with pytest.raises(ConfigError, match="non-empty list"):
            load_config(env={"CCPM_HOME": str(home)})

    def test_non_object(self, home):
        """Test that a JSON array config is rejected."""
        self._write(home, [1, 2])
        with pytest.raises(ConfigError, match="JSON object"):
            load_config(env={"CCPM_HOME": str(home)})


class TestConfig:
    """Tests for the Config dataclass."""

    def test_derived_paths_follow_home(self, tmp_path):
        """Test that derived paths are computed from home_dir."""
        config = Config(home_dir=tmp_path)
        assert config.state_file.parent == tmp_path
        assert config.locks_dir.parent == tmp_path
