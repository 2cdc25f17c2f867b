"""Agent mode: the model drives the command registry one reply at a time."""

import logging
from pathlib import Path

from . import fmt
from .commands import CommandRegistry, default_registry
from .errors import FixableError, TurnInterrupted
from .llm import estimate_tokens
from .parser import ReplyParser

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE_FILE = Path(__file__).parent / "agent_prompt.md"


def build_system_prompt(registry: CommandRegistry, base_prompt: str | None = None) -> str:
    """Render the agent prompt template with the registry's command list."""
    template = PROMPT_TEMPLATE_FILE.read_text(encoding="utf-8")
    content = template.replace("#{COMMANDS}", registry.describe(), 1)
    if base_prompt:
        content += "\n\n" + base_prompt
    return content


def run_turn(chat, registry: CommandRegistry, prompt: str) -> str:
    """Send ``prompt``, run the command in the reply, and return the next input.

    Recoverable errors come back as their formatted text so the model can
    correct itself. Fatal errors, EOFError, KeyboardInterrupt and
    TurnInterrupted propagate.
    """
    parser = ReplyParser(registry, chat)
    try:
        with chat.send(prompt) as reply:
            return parser.handle(reply)
    except FixableError as e:
        logger.debug("Recoverable error: %s", e.message)
        fmt.command_error(str(e))
        return str(e)


def run_agent(chat, registry: CommandRegistry | None = None) -> None:
    """Run the agent session loop until input is exhausted or the user quits."""
    if registry is None:
        registry = default_registry()
    chat.system_prompt = build_system_prompt(registry, chat.system_prompt)

    logger.debug("Beginning session.")
    turns = 0
    try:
        next_input = chat.get_prompt()
        while True:
            turns += 1
            fmt.turn_header(turns, estimate_tokens(chat.messages))
            try:
                next_input = run_turn(chat, registry, next_input)
            except TurnInterrupted:
                fmt.warning("reply interrupted, discarded from history")
                next_input = chat.get_prompt()
    except (EOFError, KeyboardInterrupt):
        logger.debug("Session ended after %d turns.", turns)
