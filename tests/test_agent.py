"""Tests for agent.py: the agent session loop driving scripted model replies."""

import _thread
import io
import threading

import pytest

from gptcli.agent import build_system_prompt, run_agent, run_turn
from gptcli.chat import Chat, Display
from gptcli.commands import CommandRegistry, CommandSpec, default_registry, run_prompt
from gptcli.errors import AgentError, CommandFailedError, TurnInterrupted
from gptcli.llm import Completion, Message, Role


@pytest.fixture(autouse=True)
def _no_tokenizer(monkeypatch):
    """Keep turn headers from loading the tiktoken encoding."""
    monkeypatch.setattr("gptcli.agent.estimate_tokens", lambda messages: 0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class ScriptedClient:
    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    def get_completion(self, messages):
        self.requests.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, bytes):
            # Split into small pieces to exercise the incremental parser.
            return Completion(iter([reply[i : i + 3] for i in range(0, len(reply), 3)]))
        return Completion(reply())


def _echo_registry(calls):
    def echo(inv):
        calls.append(list(inv.args))
        return "echo:" + " ".join(inv.args)

    def fail(inv):
        raise CommandFailedError("it broke")

    return CommandRegistry(
        [
            CommandSpec("prompt", "ask the user", run_prompt),
            CommandSpec("echo", "echo args back", echo, args="WORDS ..."),
            CommandSpec("fail", "always fails", fail),
        ]
    )


def _slow_command():
    """A command that blocks until released; Ctrl-C is sent once it starts."""
    started = threading.Event()
    release = threading.Event()

    def slow(inv):
        started.set()
        release.wait(timeout=5)
        return "too late"

    def interrupt_when_started():
        if started.wait(timeout=5):
            _thread.interrupt_main()

    threading.Thread(target=interrupt_when_started, daemon=True).start()
    return CommandSpec("slow", "takes a while", slow), release


def _chat(client, prompt="start"):
    chat = Chat(
        client,
        [Message(Role.SYSTEM, "base prompt")],
        display=Display(io.BytesIO()),
        interactive=False,
        prompt_reader=io.StringIO(prompt),
    )
    return chat


def _last_user(request):
    return [m for m in request if m.role is Role.USER][-1].content


# =========================================================================
# System prompt
# =========================================================================


class TestBuildSystemPrompt:
    def test_lists_every_command(self):
        prompt = build_system_prompt(default_registry())
        for name in ("prompt", "cat", "ls", "write", "curl"):
            assert f"- command: {name}" in prompt
        assert "- command: write PATH" in prompt
        assert "#{COMMANDS}" not in prompt

    def test_appends_base_prompt(self):
        prompt = build_system_prompt(default_registry(), "host info here")
        assert prompt.endswith("\n\nhost info here")

    def test_run_agent_installs_prompt(self):
        calls = []
        chat = _chat(ScriptedClient(b"# ask\nprompt\n"))
        run_agent(chat, _echo_registry(calls))
        system = chat.messages[0]
        assert system.role is Role.SYSTEM
        assert "- command: echo WORDS ..." in system.content
        assert system.content.endswith("base prompt")


# =========================================================================
# Single turns
# =========================================================================


class TestRunTurn:
    def test_returns_command_result(self):
        calls = []
        chat = _chat(ScriptedClient(b"# say hi\necho hello world\n"))
        result = run_turn(chat, _echo_registry(calls), "go")
        assert result == "echo:hello world"
        assert calls == [["hello", "world"]]
        assert chat.messages[1:] == [
            Message(Role.USER, "go"),
            Message(Role.MODEL, "# say hi\necho hello world\n"),
        ]

    def test_ctrl_c_while_command_runs_discards_turn(self):
        spec, release = _slow_command()
        chat = _chat(ScriptedClient(b"# wait\nslow\n"))
        try:
            with pytest.raises(TurnInterrupted):
                run_turn(chat, CommandRegistry([spec]), "go")
        finally:
            release.set()
        assert [m.role for m in chat.messages] == [Role.SYSTEM]

    def test_recoverable_error_becomes_next_input(self):
        calls = []
        chat = _chat(ScriptedClient(b"echo without comment\n"))
        result = run_turn(chat, _echo_registry(calls), "go")
        assert result.startswith("expected comment")
        assert "\n# GPT: " in result
        assert calls == []
        # The bad exchange stays in history so the model sees its mistake.
        assert chat.messages[-2] == Message(Role.USER, "go")
        assert chat.messages[-1].role is Role.MODEL
        assert "echo without comment\n".startswith(chat.messages[-1].content)

    def test_handler_failure_becomes_next_input(self):
        chat = _chat(ScriptedClient(b"# try\nfail\n"))
        result = run_turn(chat, _echo_registry([]), "go")
        assert result.startswith("it broke\n# GPT: ")

    def test_unknown_command_becomes_next_input(self):
        chat = _chat(ScriptedClient(b"# delete\nrm -rf /\n"))
        result = run_turn(chat, _echo_registry([]), "go")
        assert result.startswith("invalid command 'rm'")

    def test_fatal_error_propagates(self):
        chat = _chat(ScriptedClient(AgentError("network down")))
        with pytest.raises(AgentError, match="network down"):
            run_turn(chat, _echo_registry([]), "go")
        assert len(chat.messages) == 1

    def test_result_does_not_depend_on_earlier_failures(self):
        good = b"# say hi\necho same\n"
        fresh = run_turn(_chat(ScriptedClient(good)), _echo_registry([]), "go")

        chat = _chat(ScriptedClient(b"oops\n", good))
        registry = _echo_registry([])
        run_turn(chat, registry, "go")
        after_failure = run_turn(chat, registry, "retry")
        assert fresh == after_failure == "echo:same"


# =========================================================================
# Session loop
# =========================================================================


class TestRunAgent:
    def test_first_input_comes_from_prompt_source(self):
        client = ScriptedClient(b"# ask\nprompt\n")
        run_agent(_chat(client, prompt="list files"), _echo_registry([]))
        assert _last_user(client.requests[0]) == "list files"

    def test_command_result_feeds_next_turn(self):
        client = ScriptedClient(b"# one\necho a\n", b"# two\necho b\n", b"# done\nprompt\n")
        chat = _chat(client)
        run_agent(chat, _echo_registry([]))
        assert [_last_user(r) for r in client.requests] == ["start", "echo:a", "echo:b"]
        # The final prompt hit EOF, so its exchange is not in history.
        assert [m.content for m in chat.messages if m.role is Role.USER] == [
            "start",
            "echo:a",
        ]

    def test_error_text_is_reinjected(self):
        client = ScriptedClient(b"no comment here", b"# fixed\nprompt\n")
        run_agent(_chat(client), _echo_registry([]))
        retry_input = _last_user(client.requests[1])
        assert retry_input.startswith("expected comment")
        assert "# GPT:" in retry_input

    def test_interrupted_reply_is_discarded(self):
        def interrupted():
            yield b"# writing\necho partial"
            raise KeyboardInterrupt

        calls = []
        client = ScriptedClient(interrupted)
        chat = _chat(client)
        run_agent(chat, _echo_registry(calls))
        # Prompt source is exhausted after the interrupt, so the session ends.
        assert len(client.requests) == 1
        assert [m.role for m in chat.messages] == [Role.SYSTEM]

    def test_ctrl_c_during_slow_command_keeps_session(self):
        class ScriptedInputChat(Chat):
            def get_prompt(self):
                if not self.inputs:
                    raise EOFError
                return self.inputs.pop(0)

        client = ScriptedClient(b"# wait\nslow\n", b"# ask\nprompt\n")
        chat = ScriptedInputChat(
            client, [Message(Role.SYSTEM, "base")], display=Display(io.BytesIO()),
            interactive=False, prompt_reader=io.StringIO(""),
        )
        chat.inputs = ["start", "after interrupt"]
        spec, release = _slow_command()
        try:
            run_agent(chat, CommandRegistry([*_echo_registry([]), spec]))
        finally:
            release.set()
        assert [_last_user(r) for r in client.requests] == ["start", "after interrupt"]
        assert chat.inputs == []

    def test_fatal_error_ends_session(self):
        client = ScriptedClient(AgentError("quota exceeded"))
        with pytest.raises(AgentError):
            run_agent(_chat(client), _echo_registry([]))

    def test_keyboard_interrupt_at_prompt_ends_session(self):
        class InterruptingChat(Chat):
            def get_prompt(self):
                raise KeyboardInterrupt

        chat = InterruptingChat(
            ScriptedClient(), display=Display(io.BytesIO()), interactive=False,
            prompt_reader=io.StringIO(""),
        )
        run_agent(chat, _echo_registry([]))
        assert chat.messages[0].role is Role.SYSTEM
