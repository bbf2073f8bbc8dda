"""Tests for state schema migrations."""

import pytest

from pyccpm.deploy.migrations import (
    CURRENT_VERSION,
    detect_version,
    migrate,
    migrate_v1_to_v2,
    migrate_v2_to_v3,
)
from pyccpm.exceptions import StateMigrationError
from pyccpm.models import DeploymentRecord

V1_STATE = {
    "version": "1.0.0",
    "repositories": {
        "agents-repo": {
            "lastSync": "2024-05-01T10:00:00Z",
            "lastCommit": "abc123",
            "deployedFiles": [
                {
                    "source": "a.md",
                    "target": "/home/u/.claude/agents/a.md",
                    "hash": "h1",
                    "deployedAt": "2024-05-01T10:00:00Z",
                },
                {"source": "b.md", "hash": "missing target"},
            ],
            "errors": ["warning"],
        }
    },
    "metadata": {
        "lastCleanup": "2024-04-01T00:00:00Z",
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-05-01T10:00:00Z",
    },
}

V2_STATE = {
    "version": {"version": "2.0.0", "format": "v2"},
    "deploymentStates": {
        "tools": {
            "repositoryId": "tools",
            "lastInstalled": "2024-06-01T00:00:00Z",
            "deployedFiles": [
                {
                    "path": "/home/u/.claude/commands/run.md",
                    "hash": "h2",
                    "source": "commands/run.md",
                    "type": "command",
                }
            ],
            "installationStatus": "installed",
            "errors": [],
            "metadata": {"lastCommitHash": "def456"},
        }
    },
    "metadata": {"createdAt": "2024-01-01T00:00:00Z", "lastUpdated": "2024-06-01T00:00:00Z"},
}


class TestDetectVersion:
    """Tests for detect_version."""

    def test_string_version(self):
        assert detect_version({"version": "1.0.0"}) == 1

    def test_format_object(self):
        assert detect_version({"version": {"format": "v2"}}) == 2

    def test_integer(self):
        assert detect_version({"version": 3}) == 3

    def test_missing_version(self):
        """Test that unversioned documents are treated as version 1."""
        assert detect_version({"repositories": {}}) == 1
        assert detect_version({}) == 1

    def test_bool_rejected(self):
        with pytest.raises(StateMigrationError):
            detect_version({"version": True})


class TestMigrations:
    """Tests for individual migration steps."""

    def test_v1_to_v2(self):
        """Test converting the first release format."""
        migrated = migrate_v1_to_v2(V1_STATE)
        state = migrated["deploymentStates"]["agents-repo"]
        assert migrated["version"] == 2
        assert state["lastInstalled"] == "2024-05-01T10:00:00Z"
        assert state["metadata"]["lastCommitHash"] == "abc123"
        assert state["deployedFiles"] == [
            {
                "path": "/home/u/.claude/agents/a.md",
                "hash": "h1",
                "deployedAt": "2024-05-01T10:00:00Z",
                "source": "a.md",
            }
        ]
        assert migrated["metadata"]["lastCleanup"] == "2024-04-01T00:00:00Z"
        assert migrated["metadata"]["createdAt"] == "2024-01-01T00:00:00Z"

    def test_v2_to_v3(self):
        """Test converting the second format into deployment records."""
        migrated = migrate_v2_to_v3(V2_STATE)
        assert migrated["version"] == 3
        record = DeploymentRecord.from_dict(migrated["sources"]["tools"])
        assert record.last_commit == "def456"
        assert record.last_deployed_at == "2024-06-01T00:00:00Z"
        deployed = record.deployed_files[0]
        assert str(deployed.target_absolute_path) == "/home/u/.claude/commands/run.md"
        assert deployed.content_hash == "h2"
        assert deployed.category.value == "commands"
        assert deployed.deployed_at == "2024-06-01T00:00:00Z"
        assert migrated["metadata"]["totalDeployedFiles"] == 1

    def test_does_not_mutate_input(self):
        """Test that migrations return new documents."""
        migrate_v1_to_v2(V1_STATE)
        assert V1_STATE["version"] == "1.0.0"


class TestMigrate:
    """Tests for the migration chain."""

    def test_v1_chain(self):
        """Test migrating version 1 all the way to the current version."""
        migrated, original = migrate(V1_STATE)
        assert original == 1
        assert migrated["version"] == CURRENT_VERSION
        record = DeploymentRecord.from_dict(migrated["sources"]["agents-repo"])
        assert [f.source_relative_path for f in record.deployed_files] == ["a.md"]
        assert record.last_errors == ["warning"]

    def test_current_unchanged(self):
        """Test that a current document passes through."""
        data = {"version": CURRENT_VERSION, "sources": {}, "metadata": {}}
        migrated, original = migrate(data)
        assert original == CURRENT_VERSION
        assert migrated is data

    def test_future_version(self):
        """Test that newer versions are refused."""
        with pytest.raises(StateMigrationError, match="newer"):
            migrate({"version": CURRENT_VERSION + 1})
