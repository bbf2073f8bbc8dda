"""Mapping of source tree files onto target paths."""

import fnmatch
import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional

from ..exceptions import MappingError
from ..models import Category, DeploymentMode, PatternMatch, Source

logger = logging.getLogger(__name__)

NAMESPACE_DIR = ".claude"
"""Reserved namespace directory searched in auto-detect mode"""

NOISE_DIRS = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        "node_modules",
        "dist",
        "build",
        "__pycache__",
        ".venv",
        "venv",
        ".tox",
    }
)
"""Build and VCS directories never scanned"""

DEFAULT_EXTENSIONS: tuple[str, ...] = (".md",)
"""Type-based extension allow-list when nothing else is configured"""

_GLOB_CHARS = set("*?[")


def default_patterns(category: Category) -> list[str]:
    """Return the conventional auto-detect globs for a category.

    Examples:
        >>> default_patterns(Category.HOOKS)
        ['.claude/hooks/**', 'hooks/**']
    """
    return [f"{NAMESPACE_DIR}/{category.value}/**", f"{category.value}/**"]


@dataclass(frozen=True)
class _CompiledPattern:
    pattern: str
    root: str
    remainder: str

    def match(self, relative_path: str) -> Optional[str]:
        """Return the path below the pattern root, or None if it does not match."""
        if self.root:
            prefix = self.root + "/"
            if not relative_path.startswith(prefix):
                return None
            stripped = relative_path[len(prefix) :]
        else:
            stripped = relative_path

        if not stripped:
            return None
        if self.remainder in ("", "**", "**/*"):
            return stripped
        if self.remainder.startswith("**/"):
            tail = self.remainder[3:]
            if fnmatch.fnmatchcase(stripped, tail) or fnmatch.fnmatchcase(
                stripped, self.remainder
            ):
                return stripped
            return None
        if fnmatch.fnmatchcase(stripped, self.remainder):
            return stripped
        return None


def compile_pattern(pattern: str) -> _CompiledPattern:
    """Split a glob into its literal directory root and the glob remainder.

    Examples:
        >>> compile_pattern(".claude/commands/**").root
        '.claude/commands'
        >>> compile_pattern("agents/*.md").remainder
        '*.md'
    """
    parts = PurePosixPath(pattern.strip("/")).parts
    root_parts: list[str] = []
    for index, part in enumerate(parts):
        if _GLOB_CHARS & set(part):
            return _CompiledPattern(
                pattern=pattern,
                root="/".join(root_parts),
                remainder="/".join(parts[index:]),
            )
        root_parts.append(part)
    # Purely literal pattern: treat it as a directory root
    return _CompiledPattern(pattern=pattern, root="/".join(root_parts), remainder="")


class DeploymentMapper:
    """Computes which source files are deployed and where.

    The mapper never touches the target tree. Errors encountered while
    scanning (unreadable directories, dangling symlinks) only drop the
    offending path.

    Examples:
        >>> mapper = DeploymentMapper()
        >>> source = Source(id="agents-repo", root_path="/repos/agents",
        ...                 deployment_mode="type-based", category="agents")
        >>> matches = mapper.compute_mappings(source)  # doctest: +SKIP
    """

    def __init__(self, default_extensions: tuple[str, ...] = DEFAULT_EXTENSIONS):
        """Initialize deployment mapper.

        Args:
            default_extensions: Type-based allow-list used when a source does
                not configure its own
        """
        self.default_extensions = tuple(e.lower() for e in default_extensions)

    def compute_mappings(self, source: Source) -> list[PatternMatch]:
        """Compute the pattern matches for a source's current tree.

        Args:
            source: Source to map

        Returns:
            Pattern matches sorted by source path, then category

        Raises:
            MappingError: If the source has an unusable deployment mode
        """
        if source.root_path is None or not source.root_path.is_dir():
            logger.warning(f"Source {source.id} has no local tree, nothing to map")
            return []

        files = self.scan_files(source.root_path)

        if source.deployment_mode == DeploymentMode.AUTO_DETECT:
            matches = self._map_auto_detect(source, files)
        elif source.deployment_mode == DeploymentMode.TYPE_BASED:
            matches = self._map_type_based(source, files)
        else:
            raise MappingError(
                f"Unsupported deployment mode: {source.deployment_mode}"
            )

        logger.debug(f"Source {source.id}: {len(matches)} file(s) to deploy")
        return sorted(
            matches, key=lambda m: (m.source_relative_path, m.category.value)
        )

    def resolve_target(self, match: PatternMatch, target_root: Path) -> Path:
        """Return the absolute target path for a match."""
        return target_root.joinpath(*match.target_relative_path.split("/"))

    def scan_files(self, root: Path) -> list[str]:
        """List every readable regular file below root, skipping noise dirs.

        Args:
            root: Directory to scan

        Returns:
            Relative paths using forward slashes
        """
        files: list[str] = []
        self._scan(root, root, files)
        return sorted(files)

    def _scan(self, directory: Path, root: Path, files: list[str]) -> None:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.warning(f"Cannot read directory {directory}: {e}")
            return

        for entry in entries:
            path = Path(entry.path)
            try:
                if entry.is_dir():
                    if entry.name in NOISE_DIRS:
                        continue
                    if entry.is_symlink():
                        logger.debug(f"Not following directory symlink {path}")
                        continue
                    self._scan(path, root, files)
                elif entry.is_file():
                    if not os.access(path, os.R_OK):
                        logger.warning(f"Skipping unreadable file {path}")
                        continue
                    files.append(path.relative_to(root).as_posix())
                elif entry.is_symlink():
                    logger.warning(f"Skipping broken symlink {path}")
                else:
                    logger.debug(f"Skipping special file {path}")
            except OSError as e:
                logger.warning(f"Cannot inspect {path}: {e}")

    def _map_auto_detect(self, source: Source, files: list[str]) -> list[PatternMatch]:
        compiled = {
            category: [
                compile_pattern(p)
                for p in source.category_patterns.get(category)
                or default_patterns(category)
            ]
            for category in Category
        }

        # target path -> (pattern rank, match); lower rank wins
        chosen: dict[str, tuple[int, PatternMatch]] = {}
        for relative_path in files:
            matched_categories: list[Category] = []
            for category, patterns in compiled.items():
                for rank, pattern in enumerate(patterns):
                    stripped = pattern.match(relative_path)
                    if stripped is None:
                        continue
                    match = PatternMatch(
                        source_relative_path=relative_path,
                        category=category,
                        target_relative_path=f"{category.value}/{stripped}",
                    )
                    self._claim_target(chosen, rank, match)
                    matched_categories.append(category)
                    break

            if len(matched_categories) > 1:
                names = ", ".join(c.value for c in matched_categories)
                logger.warning(
                    f"{relative_path} matches several categories ({names}); "
                    "deploying to each"
                )
        return [match for _, match in chosen.values()]

    @staticmethod
    def _claim_target(
        chosen: dict[str, tuple[int, PatternMatch]], rank: int, match: PatternMatch
    ) -> None:
        """Keep one source file per target path.

        The file matched by the earlier pattern wins, so ``.claude/<category>``
        beats a bare ``<category>`` directory under the default patterns.
        Between equal ranks the first file in path order wins.
        """
        target = match.target_relative_path
        current = chosen.get(target)
        if current is None:
            chosen[target] = (rank, match)
            return

        current_rank, current_match = current
        if rank < current_rank:
            chosen[target] = (rank, match)
            winner, loser = match, current_match
        else:
            winner, loser = current_match, match
        logger.warning(
            f"{loser.source_relative_path} and {winner.source_relative_path} both "
            f"map to {target}; deploying {winner.source_relative_path}"
        )

    def _map_type_based(self, source: Source, files: list[str]) -> list[PatternMatch]:
        category = source.category
        if category is None:
            raise MappingError(
                f"Type-based source '{source.id}' requires a category"
            )

        extensions = (
            tuple(source.file_extensions)
            if source.file_extensions
            else self.default_extensions
        )

        matches: list[PatternMatch] = []
        for relative_path in files:
            if not self.passes_type_filters(relative_path, extensions):
                continue
            matches.append(
                PatternMatch(
                    source_relative_path=relative_path,
                    category=category,
                    target_relative_path=f"{category.value}/{relative_path}",
                )
            )
        return matches

    @staticmethod
    def passes_type_filters(relative_path: str, extensions: tuple[str, ...]) -> bool:
        """Apply the ordered type-based filters to one relative path.

        Examples:
            >>> DeploymentMapper.passes_type_filters("engineering/backend.md", (".md",))
            True
            >>> DeploymentMapper.passes_type_filters("README.md", (".md",))
            False
            >>> DeploymentMapper.passes_type_filters(".github/x.md", (".md",))
            False
        """
        parts = PurePosixPath(relative_path).parts
        if any(part in NOISE_DIRS for part in parts):
            return False
        if any(part.startswith(".") for part in parts):
            return False
        name = parts[-1]
        if name[:1].isupper():
            return False
        return PurePosixPath(name).suffix.lower() in extensions


def validate_category_patterns(source: Source) -> tuple[list[str], list[str]]:
    """Check a source's auto-detect globs for mistakes.

    Args:
        source: Source whose category_patterns are checked

    Returns:
        (errors, warnings)
    """
    errors: list[str] = []
    warnings: list[str] = []
    users: dict[str, list[str]] = {}

    for category, patterns in source.category_patterns.items():
        for pattern in patterns:
            if "[" in pattern and "]" not in pattern:
                errors.append(
                    f"Invalid pattern '{pattern}' in {category.value}: unmatched bracket"
                )
                continue
            if pattern in ("**", "**/*"):
                warnings.append(
                    f"Pattern '{pattern}' in {category.value} is very broad "
                    "and may cause conflicts"
                )
            users.setdefault(pattern, []).append(category.value)

    for pattern, categories in users.items():
        if len(categories) > 1:
            warnings.append(
                f"Pattern '{pattern}' is used by multiple categories: "
                f"{', '.join(categories)}"
            )

    return errors, warnings
