"""Commands the model may run in agent mode.

Each command is a CommandSpec with a handler taking an Invocation. Handlers
return the text fed back to the model as the next turn's input, or raise a
FixableError subclass that the session loop feeds back instead.
"""

import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import Callable

from .errors import ArgumentError, CommandFailedError, PermissionDeniedError
from .fetch import http_get

logger = logging.getLogger(__name__)

WRITE_FILE_MODE = 0o644


@dataclass(frozen=True)
class CommandSpec:
    name: str
    description: str
    handler: Callable[["Invocation"], str]
    args: str = ""
    accepts_body: bool = False

    def __str__(self) -> str:
        return f"{self.name} {self.args}".rstrip()


@dataclass
class Invocation:
    """A dispatched command: its spec, arguments (without the name) and body."""

    spec: CommandSpec
    args: list[str]
    body: object
    chat: object = field(repr=False, default=None)


class CommandRegistry:
    """Ordered, read-only set of commands."""

    def __init__(self, specs: list[CommandSpec]):
        self._specs = tuple(specs)

    def __iter__(self):
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def find(self, name: str) -> CommandSpec | None:
        """Return the first command whose name is exactly ``name``."""
        for spec in self._specs:
            if spec.name == name:
                return spec
        return None

    def describe(self) -> str:
        """Render the command list for the system prompt."""
        lines = []
        for spec in self._specs:
            lines.append(f"- command: {spec}")
            lines.append(f"  description: {spec.description}")
        return "\n".join(lines) + "\n"


# --- Handlers ---


def run_prompt(inv: Invocation) -> str:
    return inv.chat.get_prompt()


def safe_shell_command(command: str, *flags: str) -> Callable[[Invocation], str]:
    """Build a handler running a fixed program with the model's args appended."""

    def handler(inv: Invocation) -> str:
        argv = [command, *flags, *inv.args]
        try:
            proc = subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
            )
        except OSError as e:
            raise CommandFailedError(f"failed to run {command}: {e}") from e
        output = proc.stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise CommandFailedError(output)
        return output

    handler.__name__ = f"run_{command}"
    return handler


def run_write(inv: Invocation) -> str:
    if len(inv.args) > 1:
        raise ArgumentError(
            f"unexpected arg {inv.args[1]!r}",
            hint=(
                "The write command only accepts one filename arg. If you are trying "
                "to write this as output to the file, note that output must come on "
                "the line after the command."
            ),
        )
    if not inv.args or not inv.args[0]:
        raise ArgumentError(
            "missing file path",
            hint="Usage: write PATH, followed by the file contents on the next lines.",
        )
    path = inv.args[0]

    # Echo the body while reading it so the user sees exactly what gets written.
    parts: list[bytes] = []
    for chunk in inv.body:
        inv.chat.display.write(chunk)
        parts.append(chunk)
    data = b"".join(parts)
    logger.debug("Read all %d body bytes for %s. Confirming.", len(data), path)

    approved, reply = inv.chat.confirm(f"Write the above contents to {path!r}?")
    if not approved:
        raise PermissionDeniedError(
            "permission denied", hint=f"I denied your request: {reply!r}"
        )

    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, WRITE_FILE_MODE)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
    except OSError as e:
        raise CommandFailedError(str(e), hint="The file failed to write.") from e
    return ""


def run_http_get(inv: Invocation) -> str:
    if len(inv.args) != 1:
        raise ArgumentError(
            "expected exactly one URL arg",
            hint="Example curl command: curl https://google.com/search?q=Hello",
        )
    return http_get(inv.args[0])


COMMANDS = [
    CommandSpec(
        name="prompt",
        description="Requests the user for the next prompt and returns the result.",
        handler=run_prompt,
    ),
    CommandSpec(
        name="cat",
        args="FILES ...",
        description="Returns the concatenated contents of one or more files.",
        handler=safe_shell_command("cat"),
    ),
    CommandSpec(
        name="ls",
        args="PATH ...",
        description="Runs ls -la on the given paths and returns the result.",
        handler=safe_shell_command("ls", "-la"),
    ),
    CommandSpec(
        name="write",
        args="PATH",
        description=(
            "Writes a file with permissions 0644. For this command only, you are "
            "allowed to provide additional output on the lines following the "
            "command. Any additional lines are written to the file."
        ),
        handler=run_write,
        accepts_body=True,
    ),
    CommandSpec(
        name="curl",
        args="URL",
        description=(
            "Issue an HTTP GET request. You can use this for things like searching "
            "google or requesting from https://api.github.com. The first line will "
            "contain the response code. Next a blank line. Following that, the "
            "HTTP response body."
        ),
        handler=run_http_get,
    ),
]


def default_registry() -> CommandRegistry:
    return CommandRegistry(COMMANDS)
