"""Conflict resolution for target files that already exist."""

import logging
from pathlib import Path
from typing import Optional

import click

from ..confirm import ConfirmationPort
from ..models import ConflictDecision, ConflictStrategy

logger = logging.getLogger(__name__)


class ConflictResolver:
    """Decides whether an existing, differing target file may be replaced.

    Only called for genuine conflicts: the target exists and its content
    differs from what is about to be written.
    """

    def __init__(self, confirmation: Optional[ConfirmationPort] = None):
        """Initialize conflict resolver.

        Args:
            confirmation: Port used by the prompt strategy. Without one,
                prompting degrades to skip.
        """
        self.confirmation = confirmation

    def resolve(self, target_path: Path, strategy: ConflictStrategy) -> ConflictDecision:
        """Resolve a conflict for one target path.

        Args:
            target_path: Existing target file
            strategy: Configured conflict strategy

        Returns:
            PROCEED to overwrite, SKIP to keep the existing file
        """
        if strategy == ConflictStrategy.SKIP:
            logger.info(f"Skipping existing file: {target_path}")
            return ConflictDecision.SKIP

        if strategy == ConflictStrategy.OVERWRITE:
            logger.info(f"Overwriting existing file: {target_path}")
            return ConflictDecision.PROCEED

        if strategy == ConflictStrategy.PROMPT:
            return self._prompt(target_path)

        raise ValueError(f"Unknown conflict strategy: {strategy}")

    def _prompt(self, target_path: Path) -> ConflictDecision:
        if self.confirmation is None or not self.confirmation.is_interactive():
            logger.warning(
                f"Cannot ask about {target_path} in a non-interactive session, skipping"
            )
            return ConflictDecision.SKIP

        try:
            answer = self.confirmation.ask_yes_no(
                f"File {target_path} already exists with different content. Overwrite?"
            )
        except (click.Abort, EOFError):
            logger.warning(f"No answer for {target_path}, skipping")
            return ConflictDecision.SKIP

        return ConflictDecision.PROCEED if answer else ConflictDecision.SKIP
