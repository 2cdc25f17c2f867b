"""Incremental parser for agent replies.

A reply has the shape::

    # comment explaining the command
    command arg1 arg2
    optional body bytes ...

The parser is fed the reply as it streams in. As soon as the command line is
complete it starts the command's handler on its own thread, then forwards the
remaining bytes to the handler's body stream while they keep arriving.
"""

import enum
import logging
import re
import threading
from concurrent.futures import Future

from .chat import AI_PS1
from .commands import CommandRegistry, CommandSpec, Invocation
from .errors import DispatchError, FormatError, TurnInterrupted, UnknownCommandError

logger = logging.getLogger(__name__)

READ_CHUNK = 4096

_DELIM_RE = re.compile(rb"[ \n]")


class BodyStream:
    """Blocking byte pipe from the parser (writer) to a handler (reader)."""

    def __init__(self):
        self._buf = bytearray()
        self._cond = threading.Condition()
        self._eof = False
        self._aborted = False
        self._detached = False

    def write(self, data: bytes) -> bool:
        """Queue ``data`` for the reader. Returns False once the reader is gone."""
        with self._cond:
            if self._eof:
                raise ValueError("write to closed body stream")
            if self._detached:
                return False
            self._buf += data
            self._cond.notify_all()
            return True

    def close(self) -> None:
        with self._cond:
            self._eof = True
            self._cond.notify_all()

    def abort(self) -> None:
        """Wake the reader with TurnInterrupted instead of end-of-body."""
        with self._cond:
            self._aborted = True
            self._eof = True
            self._cond.notify_all()

    def detach(self, spill=None) -> None:
        """Stop accepting bytes once the reader has finished.

        Bytes the reader never consumed are handed to ``spill`` (a writer)
        while the lock is held, so they land before anything written after a
        refused write().
        """
        with self._cond:
            self._detached = True
            if self._buf and spill is not None:
                spill.write(bytes(self._buf))
            self._buf.clear()

    @property
    def closed(self) -> bool:
        return self._eof

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or everything until end-of-body if negative.

        With a positive size, returns as soon as any bytes are available.
        Returns b"" at end-of-body.
        """
        with self._cond:
            if size is None or size < 0:
                self._cond.wait_for(lambda: self._eof)
            else:
                self._cond.wait_for(lambda: self._buf or self._eof)
            if self._aborted:
                raise TurnInterrupted("reply interrupted")
            if size is None or size < 0:
                size = len(self._buf)
            data = bytes(self._buf[:size])
            del self._buf[:size]
            return data

    def __iter__(self):
        while True:
            chunk = self.read(READ_CHUNK)
            if not chunk:
                return
            yield chunk


class Phase(enum.Enum):
    COMMENT = "comment"
    TOKENS = "tokens"
    BODY = "body"


class ReplyParser:
    """Turns one streamed reply into one dispatched command invocation.

    Every consumed byte is mirrored to the chat display, except body bytes
    of a body-accepting command, which the handler echoes as it reads them.
    """

    def __init__(self, registry: CommandRegistry, chat):
        self.registry = registry
        self.chat = chat
        self.display = chat.display
        self.comment = b""
        self.tokens: list[str] = []
        self.args_done = False
        self.command: CommandSpec | None = None
        self.body: BodyStream | None = None
        self._buf = bytearray()
        self._future: Future | None = None

    @property
    def phase(self) -> Phase:
        if not self.comment.endswith(b"\n"):
            return Phase.COMMENT
        if not self.args_done:
            return Phase.TOKENS
        return Phase.BODY

    def handle(self, reply) -> str:
        """Consume a whole reply and return the command's result."""
        self.display.write(AI_PS1)
        try:
            for chunk in reply:
                self.feed(chunk)
            self.finalize()
            return self.result()
        except KeyboardInterrupt:
            self.abort()
            self.display.write("\n")
            raise TurnInterrupted("reply interrupted") from None

    def feed(self, data: bytes) -> None:
        self._buf += data
        self._consume(finalize=False)

    def finalize(self) -> None:
        """Signal end of stream: flush the last token and close the body."""
        self._consume(finalize=True)

    def result(self) -> str:
        """Block until the dispatched handler returns; re-raise its error."""
        if self._future is None:
            raise DispatchError("failed to parse command")
        self.display.write("\n")
        return self._future.result() or ""

    def abort(self) -> None:
        """Cancel the turn: wake a handler reading the body or waiting on input."""
        if self.body is not None:
            self.body.abort()
        cancel_input = getattr(self.chat, "cancel_input", None)
        if self._future is not None and cancel_input is not None:
            cancel_input()

    # -- Internals -------------------------------------------------------

    def _consume(self, finalize: bool) -> None:
        while self._buf and not self.args_done:
            if not self.comment and self._buf[0] != ord("#"):
                got = bytes(self._buf).decode("utf-8", errors="replace")
                raise FormatError(f"expected comment, got {got!r}")

            if not self.comment.endswith(b"\n"):
                self._consume_comment()
                continue

            m = _DELIM_RE.search(self._buf)
            if m is None:
                if not finalize:
                    break
                self._take_token(len(self._buf), delim=b"")
                continue
            self._take_token(m.start(), delim=m.group())

        if finalize and not self.args_done and self.tokens:
            self.args_done = True

        if self.args_done and self.command is None:
            self._dispatch()

        if self.args_done:
            self._forward_body(finalize)
        elif finalize:
            if not self.comment:
                raise FormatError("expected comment, got an empty reply")
            raise DispatchError("failed to parse command")

    def _consume_comment(self) -> None:
        idx = self._buf.find(b"\n")
        end = idx + 1 if idx >= 0 else len(self._buf)
        part = bytes(self._buf[:end])
        del self._buf[:end]
        self.comment += part
        self.display.write(part)
        if idx >= 0:
            self.display.write(AI_PS1)

    def _take_token(self, end: int, delim: bytes) -> None:
        token = bytes(self._buf[:end])
        consumed = end + len(delim)
        self.display.write(bytes(self._buf[:consumed]))
        del self._buf[:consumed]
        self.tokens.append(token.decode("utf-8", errors="replace"))
        if delim != b" ":
            self.args_done = True

    def _dispatch(self) -> None:
        name, args = self.tokens[0], self.tokens[1:]
        spec = self.registry.find(name)
        if spec is None:
            raise UnknownCommandError(f"invalid command {name!r}")

        self.command = spec
        self.body = BodyStream()
        if not spec.accepts_body:
            self.body.close()
        inv = Invocation(spec=spec, args=args, body=self.body, chat=self.chat)
        logger.debug("Dispatching %r with args %r", name, args)

        self._future = Future()
        self._future.set_running_or_notify_cancel()
        thread = threading.Thread(
            target=self._run_handler,
            args=(inv,),
            name=f"gpt-command-{name}",
            daemon=True,
        )
        thread.start()

    def _run_handler(self, inv: Invocation) -> None:
        try:
            result = inv.spec.handler(inv)
        except BaseException as e:  # handed to the waiting parser via the future
            inv.body.detach(spill=self.display)
            self._future.set_exception(e)
        else:
            inv.body.detach(spill=self.display)
            self._future.set_result(result)

    def _forward_body(self, finalize: bool) -> None:
        if self.command is None:
            raise DispatchError("failed to parse command")
        if self._buf:
            data = bytes(self._buf)
            self._buf.clear()
            # A finished handler no longer echoes its body, so show the rest here.
            if not (self.command.accepts_body and self.body.write(data)):
                self.display.write(data)
        if finalize:
            self.body.close()
            logger.debug("Reply complete; body stream closed.")
