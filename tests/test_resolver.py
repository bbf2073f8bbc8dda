"""Tests for conflict resolution."""

from pathlib import Path
from unittest.mock import Mock

import click
import pytest

from pyccpm.confirm import ClickConfirmation, StaticConfirmation
from pyccpm.deploy.resolver import ConflictResolver
from pyccpm.models import ConflictDecision, ConflictStrategy

TARGET = Path("/home/u/.claude/agents/a.md")


class TestConflictResolver:
    """Tests for ConflictResolver strategies."""

    def test_skip(self):
        """Test that skip never proceeds and never asks."""
        port = StaticConfirmation(answer=True)
        resolver = ConflictResolver(port)
        assert resolver.resolve(TARGET, ConflictStrategy.SKIP) == ConflictDecision.SKIP
        assert port.questions == []

    def test_overwrite(self):
        """Test that overwrite always proceeds without asking."""
        port = StaticConfirmation(answer=False)
        resolver = ConflictResolver(port)
        assert (
            resolver.resolve(TARGET, ConflictStrategy.OVERWRITE)
            == ConflictDecision.PROCEED
        )
        assert port.questions == []

    @pytest.mark.parametrize(
        "answer,expected",
        [(True, ConflictDecision.PROCEED), (False, ConflictDecision.SKIP)],
    )
    def test_prompt_follows_answer(self, answer, expected):
        """Test that prompt follows the confirmation port exactly."""
        port = StaticConfirmation(answer=answer)
        resolver = ConflictResolver(port)
        assert resolver.resolve(TARGET, ConflictStrategy.PROMPT) == expected
        assert len(port.questions) == 1
        assert str(TARGET) in port.questions[0]

    def test_prompt_non_interactive_skips(self):
        """Test that an unanswerable prompt resolves to skip."""
        port = StaticConfirmation(answer=True, interactive=False)
        resolver = ConflictResolver(port)
        assert resolver.resolve(TARGET, ConflictStrategy.PROMPT) == ConflictDecision.SKIP
        assert port.questions == []

    def test_prompt_without_port_skips(self):
        """Test that prompting without any port resolves to skip."""
        resolver = ConflictResolver()
        assert resolver.resolve(TARGET, ConflictStrategy.PROMPT) == ConflictDecision.SKIP

    def test_prompt_aborted_skips(self):
        """Test that an aborted prompt resolves to skip."""
        port = Mock()
        port.is_interactive.return_value = True
        port.ask_yes_no.side_effect = click.Abort()
        resolver = ConflictResolver(port)
        assert resolver.resolve(TARGET, ConflictStrategy.PROMPT) == ConflictDecision.SKIP

    def test_prompt_eof_skips(self):
        """Test that end of input resolves to skip."""
        port = Mock()
        port.is_interactive.return_value = True
        port.ask_yes_no.side_effect = EOFError()
        resolver = ConflictResolver(port)
        assert resolver.resolve(TARGET, ConflictStrategy.PROMPT) == ConflictDecision.SKIP


class TestClickConfirmation:
    """Tests for the terminal confirmation port."""

    def test_not_interactive_without_tty(self):
        """Test that a non-TTY stream is not interactive."""
        stream = Mock()
        stream.isatty.return_value = False
        assert not ClickConfirmation(stream=stream).is_interactive()

    def test_interactive_with_tty(self):
        """Test that a TTY stream is interactive."""
        stream = Mock()
        stream.isatty.return_value = True
        assert ClickConfirmation(stream=stream).is_interactive()

    def test_closed_stream(self):
        """Test that a closed stream is not interactive."""
        stream = Mock()
        stream.isatty.side_effect = ValueError("I/O operation on closed file")
        assert not ClickConfirmation(stream=stream).is_interactive()
