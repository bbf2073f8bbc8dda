"""Removal of files a source no longer deploys."""

import logging
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Optional

from ..models import DeploymentRecord
from ..utils import is_within, real_path
from .state import StateStore

logger = logging.getLogger(__name__)


class Reconciler:
    """Deletes orphaned target files and the empty directories they leave.

    An orphan is a path in the source's previous record that is absent from
    its new set of targets. Paths outside the target root and paths now
    recorded by another source are never deleted.
    """

    def __init__(self, store: StateStore, target_root: Path):
        """Initialize reconciler.

        Args:
            store: State store consulted for ownership and cleanup metadata
            target_root: Root of the target tree; nothing outside it is touched
        """
        self.store = store
        self.target_root = target_root

    def reconcile(
        self,
        source_id: str,
        new_targets: Iterable[Path],
        previous: Optional[DeploymentRecord],
        dry_run: bool = False,
    ) -> list[Path]:
        """Remove files deployed previously but not anymore.

        Args:
            source_id: Source being reconciled
            new_targets: Absolute target paths of the current mappings
            previous: Record as it was before this run's commit
            dry_run: Only report what would be removed

        Returns:
            Paths removed (or that would be removed in dry-run)
        """
        if previous is None:
            return []

        orphans = sorted(previous.targets - set(new_targets))
        removed: list[Path] = []

        for path in orphans:
            if not is_within(path, self.target_root):
                logger.warning(f"Refusing to remove {path}: outside {self.target_root}")
                continue
            if not os.path.lexists(path):
                logger.debug(f"Orphan {path} is already gone")
                continue
            other_owners = [o for o in self.store.owners_of(path) if o != source_id]
            if other_owners:
                logger.info(
                    f"Keeping {path}: now deployed by {', '.join(other_owners)}"
                )
                continue

            if dry_run:
                removed.append(path)
                continue

            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Failed to remove orphaned file {path}: {e}")
                continue
            logger.info(f"Removed orphaned file {path}")
            removed.append(path)
            self.prune_empty_dirs(path.parent)

        if removed and not dry_run:
            self.store.mark_cleanup()
        return removed

    def prune_empty_dirs(self, directory: Path) -> list[Path]:
        """Delete empty directories from directory upwards.

        Stops at the first non-empty directory or at the target root, which
        itself is never removed.

        Returns:
            Directories that were removed
        """
        pruned: list[Path] = []
        root = Path(os.path.realpath(self.target_root))
        current = directory
        while is_within(current, root) and real_path(current) != root:
            try:
                current.rmdir()
            except OSError:
                break
            logger.debug(f"Removed empty directory {current}")
            pruned.append(current)
            current = current.parent
        return pruned
