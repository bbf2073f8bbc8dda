"""Data models for sources, mappings and deployment records."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union


class Category(str, Enum):
    """Target subtree an artifact is deployed into."""

    COMMANDS = "commands"
    """Slash commands"""

    AGENTS = "agents"
    """Sub-agent definitions"""

    HOOKS = "hooks"
    """Hook scripts"""

    @classmethod
    def from_string(cls, value: Union[str, "Category"]) -> "Category":
        """Parse a category name, accepting singular forms.

        Args:
            value: Category name such as "agents" or "agent"

        Returns:
            Matching Category

        Raises:
            ValueError: If the name is unknown
        """
        if isinstance(value, Category):
            return value
        normalized = value.strip().lower()
        for category in cls:
            if normalized in (category.value, category.value.rstrip("s")):
                return category
        raise ValueError(f"Unknown category: {value}")


class DeploymentMode(str, Enum):
    """How a source tree is mapped onto the target tree."""

    AUTO_DETECT = "auto-detect"
    """Look for conventional commands/agents/hooks directories"""

    TYPE_BASED = "type-based"
    """Deploy the whole tree into a single category"""

    @classmethod
    def from_string(cls, value: Union[str, "DeploymentMode"]) -> "DeploymentMode":
        """Parse a deployment mode, accepting underscore and camelCase spellings.

        Raises:
            ValueError: If the mode is unknown
        """
        if isinstance(value, DeploymentMode):
            return value
        normalized = value.strip().lower().replace("_", "-")
        aliases = {
            "auto-detect": cls.AUTO_DETECT,
            "autodetect": cls.AUTO_DETECT,
            "auto": cls.AUTO_DETECT,
            "type-based": cls.TYPE_BASED,
            "typebased": cls.TYPE_BASED,
            "type": cls.TYPE_BASED,
        }
        if normalized not in aliases:
            raise ValueError(f"Unknown deployment mode: {value}")
        return aliases[normalized]


class ConflictStrategy(str, Enum):
    """Policy applied when a target file already exists with other content."""

    SKIP = "skip"
    """Keep the existing file"""

    OVERWRITE = "overwrite"
    """Replace the existing file"""

    PROMPT = "prompt"
    """Ask through the confirmation port"""


class ConflictDecision(str, Enum):
    """Outcome of conflict resolution for a single target path."""

    PROCEED = "proceed"
    SKIP = "skip"


@dataclass
class Source:
    """A registered source tree plus its deployment configuration.

    Examples:
        >>> source = Source(
        ...     id="agents-repo",
        ...     root_path="/repos/agents",
        ...     deployment_mode="type-based",
        ...     category="agents",
        ... )
        >>> source.deployment_mode
        <DeploymentMode.TYPE_BASED: 'type-based'>
    """

    id: str
    """Stable identifier assigned by the registry"""

    root_path: Optional[Path] = None
    """Local checkout path, None until the tree has been cloned"""

    deployment_mode: DeploymentMode = DeploymentMode.AUTO_DETECT
    """Mapping strategy for this source"""

    category: Optional[Category] = None
    """Single category used in type-based mode"""

    category_patterns: dict[Category, list[str]] = field(default_factory=dict)
    """Per-category glob overrides for auto-detect mode"""

    file_extensions: Optional[list[str]] = None
    """Extension allow-list override for type-based mode"""

    name: Optional[str] = None
    """Human-readable name (defaults to the id)"""

    commit: Optional[str] = None
    """Commit identifier of the checkout, supplied by the git collaborator"""

    def __post_init__(self) -> None:
        if self.root_path is not None and not isinstance(self.root_path, Path):
            self.root_path = Path(self.root_path).expanduser()
        self.deployment_mode = DeploymentMode.from_string(self.deployment_mode)
        if self.category is not None:
            self.category = Category.from_string(self.category)
        self.category_patterns = {
            Category.from_string(key): list(patterns)
            for key, patterns in self.category_patterns.items()
        }
        if self.file_extensions is not None:
            self.file_extensions = [_normalize_extension(e) for e in self.file_extensions]
        if self.name is None:
            self.name = self.id
        if self.deployment_mode == DeploymentMode.TYPE_BASED and self.category is None:
            raise ValueError(f"Type-based source '{self.id}' requires a category")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Source":
        """Create a Source from a registry entry.

        Accepts both snake_case keys and the camelCase keys written by
        earlier registry versions (localPath, deploymentMode, type,
        deployments).

        Args:
            data: Registry entry

        Returns:
            Source instance

        Raises:
            ValueError: If the entry has no id or invalid enum values
        """
        source_id = data.get("id")
        if not source_id:
            raise ValueError("Registry entry is missing 'id'")

        patterns = data.get("category_patterns", data.get("deployments")) or {}
        patterns = {key: value for key, value in patterns.items() if value}

        return cls(
            id=str(source_id),
            root_path=data.get("root_path", data.get("localPath")),
            deployment_mode=data.get(
                "deployment_mode", data.get("deploymentMode", "auto-detect")
            ),
            category=data.get("category", data.get("type")),
            category_patterns=patterns,
            file_extensions=data.get("file_extensions", data.get("fileExtensions")),
            name=data.get("name"),
            commit=data.get("commit", data.get("version")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert the source to a JSON-serializable dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "root_path": str(self.root_path) if self.root_path else None,
            "deployment_mode": self.deployment_mode.value,
            "category": self.category.value if self.category else None,
            "category_patterns": {
                key.value: patterns for key, patterns in self.category_patterns.items()
            },
            "file_extensions": self.file_extensions,
            "commit": self.commit,
        }


def _normalize_extension(extension: str) -> str:
    extension = extension.strip().lower()
    return extension if extension.startswith(".") else f".{extension}"


@dataclass(frozen=True)
class PatternMatch:
    """A source file selected for deployment."""

    source_relative_path: str
    """Path relative to the source root (forward slashes)"""

    category: Category
    """Category the file is deployed into"""

    target_relative_path: str
    """Path relative to the target root, starting with the category directory"""


@dataclass
class DeployedFile:
    """A file placed in the target tree by a deploy."""

    source_relative_path: str
    """Path of the file in the source tree (forward slashes)"""

    target_absolute_path: Path
    """Where the file was written"""

    content_hash: str
    """SHA-256 of the content as written, used to detect local edits"""

    deployed_at: str
    """ISO 8601 time the content was last written"""

    category: Optional[Category] = None
    """Category the file was deployed into, if known"""

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase form stored in the state file."""
        return {
            "sourceRelativePath": self.source_relative_path,
            "targetAbsolutePath": str(self.target_absolute_path),
            "contentHash": self.content_hash,
            "deployedAt": self.deployed_at,
            "category": self.category.value if self.category else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeployedFile":
        """Build from a state file entry.

        Raises:
            KeyError: If the entry has no targetAbsolutePath
        """
        category = data.get("category")
        return cls(
            source_relative_path=data.get("sourceRelativePath", ""),
            target_absolute_path=Path(data["targetAbsolutePath"]),
            content_hash=data.get("contentHash", ""),
            deployed_at=data.get("deployedAt", ""),
            category=Category.from_string(category) if category else None,
        )


@dataclass
class DeploymentRecord:
    """Everything currently deployed from one source."""

    source_id: str
    """Id of the source the files came from"""

    deployed_files: list[DeployedFile] = field(default_factory=list)
    """Complete list of files the source currently has in the target"""

    last_deployed_at: Optional[str] = None
    """ISO 8601 time of the last committed deploy"""

    last_errors: list[str] = field(default_factory=list)
    """Non-fatal errors reported by the last deploy"""

    last_commit: Optional[str] = None
    """Commit of the source checkout that was last deployed"""

    @property
    def targets(self) -> set[Path]:
        """Absolute target paths recorded for this source."""
        return {f.target_absolute_path for f in self.deployed_files}

    def find(self, target: Path) -> Optional[DeployedFile]:
        """Return the recorded entry for a target path, if any."""
        for deployed in self.deployed_files:
            if deployed.target_absolute_path == target:
                return deployed
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize with deployed files sorted by target path."""
        return {
            "sourceId": self.source_id,
            "deployedFiles": [
                f.to_dict()
                for f in sorted(
                    self.deployed_files, key=lambda f: str(f.target_absolute_path)
                )
            ],
            "lastDeployedAt": self.last_deployed_at,
            "lastErrors": list(self.last_errors),
            "lastCommit": self.last_commit,
        }

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], source_id: Optional[str] = None
    ) -> "DeploymentRecord":
        """Build from a state file record.

        Args:
            data: Record as stored under ``sources``
            source_id: Key the record is stored under, used when the record
                itself has no sourceId
        """
        return cls(
            source_id=data.get("sourceId") or source_id or "",
            deployed_files=[
                DeployedFile.from_dict(f) for f in data.get("deployedFiles") or []
            ],
            last_deployed_at=data.get("lastDeployedAt"),
            last_errors=list(data.get("lastErrors") or []),
            last_commit=data.get("lastCommit"),
        )


@dataclass
class DeployOptions:
    """Options for a single deploy run."""

    force: bool = False
    """Overwrite conflicting files without asking"""

    dry_run: bool = False
    """Compute and report decisions without touching disk"""

    conflict_strategy: ConflictStrategy = ConflictStrategy.PROMPT
    """Strategy used for conflicting target files"""

    def __post_init__(self) -> None:
        self.conflict_strategy = ConflictStrategy(self.conflict_strategy)

    @property
    def effective_strategy(self) -> ConflictStrategy:
        """Strategy after applying force."""
        if self.force:
            return ConflictStrategy.OVERWRITE
        return self.conflict_strategy


@dataclass
class DeploymentResult:
    """Outcome of deploying one source."""

    source_id: str
    deployed: list[DeployedFile] = field(default_factory=list)
    unchanged: list[DeployedFile] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    failed: list[Path] = field(default_factory=list)
    conflicts: list[Path] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source_id,
            "dryRun": self.dry_run,
            "deployed": [f.to_dict() for f in self.deployed],
            "unchanged": [str(f.target_absolute_path) for f in self.unchanged],
            "skipped": [str(p) for p in self.skipped],
            "failed": [str(p) for p in self.failed],
            "conflicts": [str(p) for p in self.conflicts],
            "removed": [str(p) for p in self.removed],
            "errors": list(self.errors),
        }


@dataclass
class BatchResult:
    """Outcome of deploying several sources."""

    results: dict[str, DeploymentResult] = field(default_factory=dict)
    """Per-source results for sources that completed"""

    errors: dict[str, str] = field(default_factory=dict)
    """Fatal error message per source that could not be deployed"""

    @property
    def has_failures(self) -> bool:
        return bool(self.errors) or any(r.has_failures for r in self.results.values())

    @property
    def total_failure(self) -> bool:
        """True when nothing succeeded at all."""
        if not self.results:
            return bool(self.errors)
        return all(
            r.has_failures and not r.deployed and not r.unchanged
            for r in self.results.values()
        )


@dataclass
class UninstallResult:
    """Outcome of removing everything a source deployed."""

    source_id: str
    removed: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    modified: list[Path] = field(default_factory=list)
    failed: list[Path] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source_id,
            "dryRun": self.dry_run,
            "removed": [str(p) for p in self.removed],
            "skipped": [str(p) for p in self.skipped],
            "modified": [str(p) for p in self.modified],
            "failed": [str(p) for p in self.failed],
        }


@dataclass
class StateReconstructResult:
    """Outcome of rebuilding the state store from the target tree."""

    success: bool
    message: str
    sources_processed: int = 0
    files_recovered: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class StateIssueKind(str, Enum):
    """Kind of inconsistency found by a state check."""

    UNREGISTERED_SOURCE = "unregistered-source"
    """Record for a source that is no longer registered"""

    OUTSIDE_TARGET = "outside-target"
    """Recorded path outside the target root"""

    MISSING_FILE = "missing-file"
    """Recorded path that no longer exists"""


@dataclass
class StateIssue:
    """One inconsistency between the state file and the world."""

    kind: StateIssueKind
    source_id: str
    path: Optional[Path] = None

    @property
    def message(self) -> str:
        if self.kind == StateIssueKind.UNREGISTERED_SOURCE:
            return f"Record for unregistered source {self.source_id}"
        if self.kind == StateIssueKind.OUTSIDE_TARGET:
            return f"{self.source_id}: {self.path} is outside the target root"
        return f"{self.source_id}: recorded file {self.path} is missing"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "source": self.source_id,
            "path": str(self.path) if self.path else None,
            "message": self.message,
        }
