"""User-facing diagnostics on stderr, rendered with Rich.

The model transcript itself never goes through here; see chat.Display.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)
_quiet = False


def init(*, color: bool = False, no_color: bool = False, quiet: bool = False) -> None:
    """Rebuild the console from --color, --no-color and --quiet before the first print."""
    global _console, _quiet
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)
    _quiet = quiet


def init_logging(debug: bool = False) -> None:
    """Route stdlib logging through Rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=_console, show_path=False)],
        force=True,
    )


# -- Agent turns --


def turn_header(n: int, token_est: int) -> None:
    if _quiet:
        return
    _console.print(Rule(f"Turn {n} (~{token_est} tokens)", style="cyan"))


def command_error(err: str) -> None:
    first, _, rest = err.partition("\n")
    header = Text()
    header.append("  \u2717 ", style="bold red")
    header.append(first, style="red")
    _console.print(header)
    if rest:
        _console.print(Text(f"    {rest}", style="dim"))


# -- Questions --


def confirm_question(question: str) -> None:
    _console.print(Text(f"{question} (yes / no)", style="bold yellow"))


# -- Messages --


def info(msg: str) -> None:
    if _quiet:
        return
    _console.print(Text(f"  {msg}", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  \u26a0 Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def session_row(session_id: str, name: str, updated: str) -> None:
    _console.print(f"[cyan]{escape(session_id)}[/cyan]  {escape(name)}  [dim]{updated}[/dim]")


def repl_banner(agent: bool = False) -> None:
    if _quiet:
        return
    mode = "Agent mode" if agent else "Interactive mode"
    _console.print(Text(f"{mode}. Press Ctrl-D to quit.", style="dim"))
