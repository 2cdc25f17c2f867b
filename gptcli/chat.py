"""Conversation state, user input, and the plain (non-agent) chat loop."""

import logging
import os
import platform
import sys
import threading
from datetime import datetime

from . import fmt
from .errors import FixableError, TurnInterrupted
from .llm import Message, Role

logger = logging.getLogger(__name__)

USER_PS1 = "you> "
AI_PS1 = "gpt> "

AFFIRMATIVE_REPLIES = frozenset({"yes", "y", "ok"})


class Display:
    """Byte sink for the model transcript.

    Writes are serialized and flushed immediately so output from the reply
    parser and from command handlers shows up in the order it was produced.
    """

    def __init__(self, stream=None):
        if stream is None:
            stream = sys.stdout.buffer
        self._stream = stream
        self._lock = threading.Lock()

    def write(self, data: bytes | str) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8")
        if not data:
            return 0
        with self._lock:
            self._stream.write(data)
            self._stream.flush()
        return len(data)


def default_system_prompt(model: str) -> str:
    """Describe the session to the model: model name, start time, host OS."""
    lines = [
        "You are a helpful AI chat assistant being accessed through a command line tool.",
        f"Your underlying AI model name/version is: {model}",
        f"The chat session started at {datetime.now().astimezone()} local time.",
        f"The host OS is {sys.platform} ({platform.machine()}).",
    ]
    if sys.platform.startswith("linux"):
        try:
            with open("/etc/os-release", encoding="utf-8") as f:
                for line in f:
                    if line.startswith("PRETTY_NAME="):
                        name = line[len("PRETTY_NAME=") :].strip().strip('"')
                        lines.append(f"The host Linux distribution is {name}.")
                        break
        except OSError:
            pass
    return "\n".join(lines)


class Reply:
    """One streamed model reply.

    Iterating yields the raw byte chunks and accumulates them. Used as a
    context manager, the (prompt, reply) pair is committed to the chat
    history on normal exit or after a recoverable error, and discarded when
    the turn is interrupted or fails fatally.
    """

    def __init__(self, chat: "Chat", prompt: str, completion):
        self._chat = chat
        self.prompt = prompt
        self._completion = completion
        self._parts: list[bytes] = []

    def __iter__(self):
        for chunk in self._completion:
            self._parts.append(chunk)
            yield chunk

    @property
    def text(self) -> str:
        return b"".join(self._parts).decode("utf-8", errors="replace")

    def close(self) -> None:
        self._completion.close()

    def __enter__(self) -> "Reply":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
        if exc_type is None or issubclass(exc_type, FixableError):
            self._chat.record(self.prompt, self.text)
        else:
            logger.debug("Discarding reply after %s", exc_type.__name__)


class Chat:
    """Conversation history plus the user-facing input and output channels."""

    def __init__(
        self,
        client,
        messages: list[Message] | None = None,
        *,
        display: Display | None = None,
        interactive: bool | None = None,
        prompt_reader=None,
        confirm_reader=None,
    ):
        self.client = client
        self.messages: list[Message] = list(messages or [])
        self.display = display or Display()
        if interactive is None:
            interactive = sys.stdin.isatty()
        self.interactive = interactive
        if prompt_reader is None and not interactive:
            prompt_reader = sys.stdin
        self.prompt_reader = prompt_reader
        self.confirm_reader = confirm_reader or sys.stdin
        self._session = None
        self._input_lock = threading.Lock()
        self._eof = False

    # -- History ---------------------------------------------------------

    @property
    def system_prompt(self) -> str | None:
        if self.messages and self.messages[0].role is Role.SYSTEM:
            return self.messages[0].content
        return None

    @system_prompt.setter
    def system_prompt(self, content: str) -> None:
        system = Message(Role.SYSTEM, content)
        if self.messages and self.messages[0].role is Role.SYSTEM:
            self.messages[0] = system
        else:
            self.messages.insert(0, system)

    def record(self, prompt: str, reply: str) -> None:
        """Append one completed exchange to the history."""
        self.messages.extend(
            [Message(Role.USER, prompt), Message(Role.MODEL, reply)]
        )

    # -- Input -----------------------------------------------------------

    def _prompt_session(self):
        if self._session is None:
            from prompt_toolkit import PromptSession

            self._session = PromptSession()
        return self._session

    def _read_terminal(self, message: str) -> str:
        # Handlers prompt from their own thread; one prompt at a time.
        with self._input_lock:
            return self._prompt_session().prompt(message)

    def cancel_input(self) -> None:
        """Abort a terminal prompt left open by an interrupted command."""
        app = self._session.app if self._session is not None else None
        if app is None or not app.is_running or app.loop is None:
            return

        def _exit():
            if app.is_running and not app.is_done:
                app.exit(exception=TurnInterrupted("input cancelled"))

        logger.debug("Cancelling pending terminal prompt.")
        app.loop.call_soon_threadsafe(_exit)

    def get_prompt(self) -> str:
        """Return the next user prompt.

        Raises EOFError once the prompt source is exhausted, and
        KeyboardInterrupt when the user hits Ctrl-C at the prompt.
        """
        if self._eof:
            raise EOFError

        if self.prompt_reader is not None:
            text = self.prompt_reader.read()
            self.prompt_reader = None
            if not self.interactive:
                self._eof = True
            return text

        if self.interactive:
            return self._read_terminal(USER_PS1)

        self._eof = True
        return sys.stdin.read()

    def confirm(self, question: str) -> tuple[bool, str]:
        """Ask a yes/no question. Returns (approved, reply).

        Only an exact affirmative reply approves; anything else, including
        an empty reply, is a denial.
        """
        fmt.confirm_question(question)
        if self.interactive:
            reply = self._read_terminal("")
        else:
            reply = self.confirm_reader.readline()
        reply = reply.strip()
        if not reply:
            return False, "no"
        return reply in AFFIRMATIVE_REPLIES, reply

    # -- Output ----------------------------------------------------------

    def send(self, prompt: str) -> Reply:
        """Request a streamed reply to ``prompt`` given the history so far."""
        completion = self.client.get_completion(
            self.messages + [Message(Role.USER, prompt)]
        )
        return Reply(self, prompt, completion)

    # -- Plain chat loop -------------------------------------------------

    def run(self) -> None:
        """Prompt, stream each reply to the display, and repeat while interactive."""
        while True:
            try:
                self._read_and_answer()
            except (EOFError, KeyboardInterrupt):
                return
            if not self.interactive:
                return

    def _read_and_answer(self) -> None:
        prompt = self.get_prompt()
        try:
            with self.send(prompt) as reply:
                try:
                    for chunk in reply:
                        self.display.write(chunk)
                except KeyboardInterrupt:
                    raise TurnInterrupted from None
        except TurnInterrupted:
            # Keep the next prompt from overwriting partial output.
            self.display.write("\n")
            return
        if not reply.text.endswith("\n"):
            self.display.write("\n")
