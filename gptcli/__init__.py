"""gptcli: stream LLM chat completions in the terminal, with an optional tool-using agent mode."""

from .agent import run_agent
from .chat import Chat
from .commands import CommandRegistry, CommandSpec, default_registry
from .errors import AgentError, ConfigError, FixableError
from .llm import LiteLLMClient, Message, Role

__all__ = [
    "AgentError",
    "Chat",
    "CommandRegistry",
    "CommandSpec",
    "ConfigError",
    "FixableError",
    "LiteLLMClient",
    "Message",
    "Role",
    "default_registry",
    "run_agent",
]
