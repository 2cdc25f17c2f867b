"""Tests for the fmt module (stderr diagnostics)."""

import logging
from io import StringIO
from unittest.mock import patch

import pytest
from rich.console import Console
from rich.logging import RichHandler

from gptcli import fmt


def _capture(func, *args, quiet=False, **kwargs):
    """Call a fmt function with a captured console and return plain-text output."""
    buf = StringIO()
    old_console, old_quiet = fmt._console, fmt._quiet
    fmt._console = Console(file=buf, no_color=True, width=80)
    fmt._quiet = quiet
    try:
        func(*args, **kwargs)
    finally:
        fmt._console, fmt._quiet = old_console, old_quiet
    return buf.getvalue()


class TestTurnHeader:
    def test_contains_turn_and_tokens(self):
        out = _capture(fmt.turn_header, 3, 4200)
        assert "Turn 3" in out
        assert "4200 tokens" in out

    def test_quiet_suppresses(self):
        assert _capture(fmt.turn_header, 1, 10, quiet=True) == ""


class TestCommandError:
    def test_message_and_hint(self):
        out = _capture(fmt.command_error, "permission denied\n# GPT: I denied your request: 'no'")
        assert "permission denied" in out
        assert "# GPT: I denied your request" in out

    def test_shown_when_quiet(self):
        assert "boom" in _capture(fmt.command_error, "boom", quiet=True)


class TestMessages:
    def test_confirm_question_lists_choices(self):
        out = _capture(fmt.confirm_question, "Write the above contents to 'a.txt'?")
        assert "'a.txt'?" in out
        assert "(yes / no)" in out

    def test_warning(self):
        assert "Warning: careful" in _capture(fmt.warning, "careful")

    def test_error_shown_when_quiet(self):
        assert "Error: fatal" in _capture(fmt.error, "fatal", quiet=True)

    def test_info_quiet(self):
        assert "hello" in _capture(fmt.info, "hello")
        assert _capture(fmt.info, "hello", quiet=True) == ""

    def test_session_row_escapes_markup(self):
        out = _capture(fmt.session_row, "abc-123", "[bold]name[/bold]", "1700000000")
        assert "abc-123" in out
        assert "[bold]name[/bold]" in out

    def test_repl_banner(self):
        assert "Agent mode" in _capture(fmt.repl_banner, agent=True)
        assert "Interactive mode" in _capture(fmt.repl_banner)


class TestInit:
    def test_quiet_flag(self):
        old_console, old_quiet = fmt._console, fmt._quiet
        try:
            fmt.init(quiet=True)
            assert fmt._quiet is True
            fmt.init(no_color=True)
            assert fmt._quiet is False
            assert fmt._console.no_color
        finally:
            fmt._console, fmt._quiet = old_console, old_quiet

    @pytest.mark.parametrize("debug, level", [(True, logging.DEBUG), (False, logging.WARNING)])
    def test_init_logging(self, debug, level):
        with patch("logging.basicConfig") as basic_config:
            fmt.init_logging(debug)
        kwargs = basic_config.call_args.kwargs
        assert kwargs["level"] == level
        assert kwargs["force"] is True
        assert isinstance(kwargs["handlers"][0], RichHandler)
