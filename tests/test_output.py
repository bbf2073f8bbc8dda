"""Tests for the output formatter."""

import io
import json

from rich.console import Console

from pyccpm.output import OutputFormatter


def _formatter(**kwargs):
    out = io.StringIO()
    err = io.StringIO()
    formatter = OutputFormatter(
        console=Console(file=out, width=200),
        err_console=Console(file=err, width=200),
        **kwargs,
    )
    return formatter, out, err


class TestOutputFormatter:
    """Tests for OutputFormatter modes."""

    def test_info_and_error(self):
        formatter, out, err = _formatter()
        formatter.info("deploying")
        formatter.error("broken")
        assert "deploying" in out.getvalue()
        assert "broken" in err.getvalue()

    def test_quiet_keeps_errors(self):
        """Test that quiet mode suppresses everything but errors."""
        formatter, out, err = _formatter(quiet=True)
        formatter.info("deploying")
        formatter.warning("careful")
        formatter.error("broken")
        assert out.getvalue() == ""
        assert "careful" not in err.getvalue()
        assert "broken" in err.getvalue()

    def test_markup_in_messages_is_literal(self):
        """Test that brackets in paths are printed verbatim."""
        formatter, out, _ = _formatter()
        formatter.success("agents/[draft]/a.md")
        assert "agents/[draft]/a.md" in out.getvalue()

    def test_json_mode(self):
        """Test that JSON mode prints only JSON."""
        formatter, out, _ = _formatter(json_output=True)
        formatter.info("hidden")
        formatter.print_summary("Summary", [("a", "b")])
        formatter.output_json({"deployed": 2})
        assert json.loads(out.getvalue()) == {"deployed": 2}

    def test_summary_table(self):
        formatter, out, _ = _formatter()
        formatter.print_summary("Deployment Complete", [("Deployed", "2 files")])
        assert "Deployment Complete" in out.getvalue()
        assert "2 files" in out.getvalue()
