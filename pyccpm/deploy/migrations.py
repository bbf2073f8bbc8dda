"""Versioned migrations for the deployment state file.

Every migration is a total function taking the complete state document of
version N and returning a new document of version N + 1. They are applied
in order by :func:`migrate`.

Version 1 (first release)::

    {"version": "1.0.0",
     "repositories": {"<id>": {"lastSync", "lastCommit", "errors",
                               "deployedFiles": [{"source", "target",
                                                  "hash", "deployedAt"}]}},
     "metadata": {"lastCleanup", "createdAt", "updatedAt"}}

Version 2::

    {"version": 2,
     "deploymentStates": {"<id>": {"repositoryId", "lastInstalled", "errors",
                                   "deployedFiles": [{"path", "hash",
                                                      "deployedAt", "source",
                                                      "type"}],
                                   "metadata": {"lastCommitHash"}}},
     "metadata": {"lastCleanup", "createdAt", "lastUpdated", "lastMigration"}}

Version 3 (current)::

    {"version": 3,
     "sources": {"<id>": DeploymentRecord.to_dict()},
     "metadata": {"createdAt", "updatedAt", "lastCleanup",
                  "totalSources", "totalDeployedFiles"}}
"""

import logging
from typing import Any, Callable

from ..exceptions import StateMigrationError
from ..utils import utc_now_iso

logger = logging.getLogger(__name__)

CURRENT_VERSION = 3

_TYPE_TO_CATEGORY = {
    "command": "commands",
    "agent": "agents",
    "hook": "hooks",
    "commands": "commands",
    "agents": "agents",
    "hooks": "hooks",
}


def detect_version(data: dict[str, Any]) -> int:
    """Determine the schema version of a raw state document.

    Examples:
        >>> detect_version({"version": "1.0.0", "repositories": {}})
        1
        >>> detect_version({"version": {"version": "2.0.0", "format": "v2"}})
        2
        >>> detect_version({"version": 3, "sources": {}})
        3
    """
    version = data.get("version")
    if isinstance(version, bool):
        raise StateMigrationError(f"Unrecognized state version: {version!r}")
    if isinstance(version, int):
        return version
    if isinstance(version, dict):
        fmt = str(version.get("format", "v1")).lstrip("v")
        if fmt.isdigit():
            return int(fmt)
        raise StateMigrationError(f"Unrecognized state format: {version!r}")
    if isinstance(version, str):
        return 1
    if version is None:
        return 1 if "repositories" in data or not data else 2
    raise StateMigrationError(f"Unrecognized state version: {version!r}")


def migrate_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    """Convert a version 1 document to version 2."""
    now = utc_now_iso()
    old_meta = data.get("metadata") or {}
    repositories = data.get("repositories") or {}

    states: dict[str, Any] = {}
    for repo_id, repo_state in repositories.items():
        repo_state = repo_state or {}
        files = []
        for entry in repo_state.get("deployedFiles") or []:
            target = entry.get("target") or entry.get("path")
            if not target:
                continue
            files.append(
                {
                    "path": target,
                    "hash": entry.get("hash", ""),
                    "deployedAt": entry.get("deployedAt")
                    or repo_state.get("lastSync"),
                    "source": entry.get("source", ""),
                }
            )
        states[repo_id] = {
            "repositoryId": repo_id,
            "lastInstalled": repo_state.get("lastSync"),
            "deployedFiles": files,
            "installationStatus": "installed" if files else "uninstalled",
            "errors": list(repo_state.get("errors") or []),
            "metadata": {"lastCommitHash": repo_state.get("lastCommit")},
        }

    return {
        "version": 2,
        "deploymentStates": states,
        "metadata": {
            "lastCleanup": old_meta.get("lastCleanup"),
            "createdAt": old_meta.get("createdAt") or now,
            "lastUpdated": old_meta.get("updatedAt") or now,
            "lastMigration": now,
        },
    }


def migrate_v2_to_v3(data: dict[str, Any]) -> dict[str, Any]:
    """Convert a version 2 document to version 3."""
    now = utc_now_iso()
    old_meta = data.get("metadata") or {}
    states = data.get("deploymentStates") or {}

    sources: dict[str, Any] = {}
    for source_id, state in states.items():
        state = state or {}
        files = []
        for entry in state.get("deployedFiles") or []:
            target = entry.get("target") or entry.get("path")
            if not target:
                continue
            files.append(
                {
                    "sourceRelativePath": entry.get("source", ""),
                    "targetAbsolutePath": target,
                    "contentHash": entry.get("hash", ""),
                    "deployedAt": entry.get("deployedAt") or state.get("lastInstalled"),
                    "category": _TYPE_TO_CATEGORY.get(entry.get("type") or ""),
                }
            )
        state_meta = state.get("metadata") or {}
        sources[source_id] = {
            "sourceId": state.get("repositoryId") or source_id,
            "deployedFiles": files,
            "lastDeployedAt": state.get("lastInstalled"),
            "lastErrors": list(state.get("errors") or []),
            "lastCommit": state_meta.get("lastCommitHash"),
        }

    return {
        "version": 3,
        "sources": sources,
        "metadata": {
            "createdAt": old_meta.get("createdAt") or now,
            "updatedAt": old_meta.get("lastUpdated") or now,
            "lastCleanup": old_meta.get("lastCleanup"),
            "totalSources": len(sources),
            "totalDeployedFiles": sum(len(s["deployedFiles"]) for s in sources.values()),
        },
    }


MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: migrate_v1_to_v2,
    2: migrate_v2_to_v3,
}
"""Migration applied to each version to reach the next one"""


def migrate(data: dict[str, Any]) -> tuple[dict[str, Any], int]:
    """Bring a state document up to CURRENT_VERSION.

    Args:
        data: Raw state document of any known version

    Returns:
        (migrated document, version it was migrated from)

    Raises:
        StateMigrationError: If the version is unknown or newer than supported
    """
    original = detect_version(data)
    if original > CURRENT_VERSION:
        raise StateMigrationError(
            f"State version {original} is newer than supported version "
            f"{CURRENT_VERSION}"
        )

    version = original
    while version < CURRENT_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise StateMigrationError(f"No migration from state version {version}")
        logger.info(f"Migrating state from version {version} to {version + 1}")
        data = step(data)
        version += 1

    return data, original
