"""Confirmation port used for interactive conflict resolution.

The conflict resolver only depends on :class:`ConfirmationPort`; the
terminal implementation lives in :class:`ClickConfirmation` so tests and
batch runs can substitute :class:`StaticConfirmation`.
"""

import sys
from typing import Optional, Protocol, TextIO

import click


class ConfirmationPort(Protocol):
    """Synchronous yes/no question asked to the operator."""

    def is_interactive(self) -> bool:
        """Return True if a question can actually be answered."""
        ...

    def ask_yes_no(self, message: str) -> bool:
        """Ask a yes/no question and return the answer."""
        ...


class ClickConfirmation:
    """Asks questions on the terminal with click.confirm."""

    def __init__(self, default: bool = False, stream: Optional[TextIO] = None):
        """Initialize terminal confirmation.

        Args:
            default: Answer used when the operator just presses enter
            stream: Input stream checked for a TTY (defaults to sys.stdin)
        """
        self.default = default
        self._stream = stream

    def is_interactive(self) -> bool:
        stream = self._stream if self._stream is not None else sys.stdin
        try:
            return bool(stream) and stream.isatty()
        except (AttributeError, ValueError):
            return False

    def ask_yes_no(self, message: str) -> bool:
        return click.confirm(message, default=self.default)


class StaticConfirmation:
    """Answers every question with a fixed value.

    Used for batch/CI runs (``interactive=False``) and in tests.
    """

    def __init__(self, answer: bool = False, interactive: bool = True):
        self.answer = answer
        self.interactive = interactive
        self.questions: list[str] = []

    def is_interactive(self) -> bool:
        return self.interactive

    def ask_yes_no(self, message: str) -> bool:
        self.questions.append(message)
        return self.answer
