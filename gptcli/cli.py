import argparse
import io
import os
import sys
from importlib import metadata
from pathlib import Path

from . import fmt
from .agent import run_agent
from .chat import Chat, default_system_prompt
from .config import _UNSET, apply_config_to_args, load_config
from .errors import AgentError, ConfigError
from .llm import PROVIDERS, LiteLLMClient, Message, Role, default_model, is_gemini_model
from .session import SessionRecord, SessionStore, default_db_path

API_KEY_ENV_VARS = {
    "openai": ("OPENAI_API_KEY",),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "openrouter": ("OPENROUTER_API_KEY",),
}


def build_parser():
    parser = argparse.ArgumentParser(
        prog="gpt",
        usage="%(prog)s [options] [prompt ...]",
        description="Chat with an LLM from the command line, or let it drive a small set of tools in agent mode.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version.",
    )
    parser.add_argument(
        "prompt",
        nargs="*",
        help="Prompt text. If omitted, the prompt is read from --prompt-file or stdin.",
    )
    parser.add_argument(
        "--provider",
        choices=PROVIDERS,
        default=_UNSET,
        help="LLM provider (default: gemini for gemini-* models, else openai).",
    )
    parser.add_argument(
        "--model",
        default=_UNSET,
        help="gpt-* or gemini-* model to use.",
    )
    parser.add_argument(
        "-g",
        "--gemini",
        action="store_true",
        default=_UNSET,
        help="Use Gemini (takes precedence over the default OpenAI provider).",
    )
    parser.add_argument(
        "-t",
        "--thinking",
        action="store_true",
        default=_UNSET,
        help="Use a thinking model (Gemini pro or OpenAI o1/o3).",
    )
    parser.add_argument(
        "-5",
        dest="five",
        action="store_true",
        help="Shorthand for --model gpt-5.",
    )
    parser.add_argument(
        "--effort",
        default=_UNSET,
        help="Reasoning effort for models that support it.",
    )
    parser.add_argument(
        "--api-key",
        default=_UNSET,
        help="Provider API key. Defaults to the provider's environment variable.",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="Override the provider endpoint (lmstudio defaults to http://127.0.0.1:1234).",
    )
    parser.add_argument(
        "--system",
        default=_UNSET,
        help="System prompt. Defaults to a prompt containing basic OS and session info.",
    )
    parser.add_argument(
        "--prompt-file",
        default=None,
        help="Load the prompt from a file at this path. If unset, read from stdin.",
    )
    parser.add_argument(
        "--interactive",
        action="store_true",
        default=_UNSET,
        help="Keep the session interactive after loading --prompt-file or the prompt from args. stdin must be a terminal.",
    )
    parser.add_argument(
        "--agent",
        action="store_true",
        default=_UNSET,
        help="Function as an automated agent with access to tools.",
    )
    parser.add_argument(
        "--session",
        metavar="NAME",
        default=None,
        help="Resume the named session (if it exists) and save the conversation to it on exit.",
    )
    parser.add_argument(
        "--list-sessions",
        action="store_true",
        help="List saved sessions and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=_UNSET,
        help="Debug logging on stderr.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Suppress informational diagnostics.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Color diagnostics even when stderr is redirected.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Never color diagnostics.",
    )

    return parser


def resolve_provider(args) -> tuple[str, str]:
    """Pick (provider, model) from flags, falling back to per-provider defaults."""
    if args.five:
        args.model = "gpt-5"
    provider = args.provider
    if provider is None:
        if args.gemini or (args.model and is_gemini_model(args.model)):
            provider = "gemini"
        else:
            provider = "openai"
    model = args.model
    if not model:
        if provider in ("lmstudio", "openrouter"):
            raise ConfigError(f"--model is required when --provider is {provider}")
        model = default_model(provider, args.thinking)
    return provider, model


def resolve_api_key(provider: str, api_key: str | None) -> str | None:
    if api_key or provider not in API_KEY_ENV_VARS:
        return api_key
    env_vars = API_KEY_ENV_VARS[provider]
    for name in env_vars:
        value = os.environ.get(name)
        if value:
            return value
    raise ConfigError(f"missing {' or '.join(env_vars)} env var (or pass --api-key)")


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("gpt-cli")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    try:
        apply_config_to_args(args, load_config(Path.cwd()))
    except ConfigError as e:
        fmt.error(str(e))
        sys.exit(1)

    fmt.init(
        color=args.color,
        no_color=args.no_color or bool(os.environ.get("NO_COLOR")),
        quiet=args.quiet,
    )
    fmt.init_logging(args.debug)

    try:
        _run_main(args)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)


def _run_main(args):
    if args.list_sessions:
        with SessionStore(default_db_path(args.db_path)) as store:
            for record in store.list_sessions():
                fmt.session_row(record.session_id, record.name, str(record.updated_at_usec))
        return

    provider, model = resolve_provider(args)
    client = LiteLLMClient(
        provider,
        model,
        api_key=resolve_api_key(provider, args.api_key),
        base_url=args.base_url,
        reasoning_effort=args.effort,
    )
    fmt.info(f"Using {provider} model {model}")

    system = args.system if args.system is not None else default_system_prompt(model)
    messages = [Message(Role.SYSTEM, system)] if system else []

    store = None
    record = None
    if args.session:
        store = SessionStore(default_db_path(args.db_path))
        record = store.find_by_name(args.session) or SessionRecord(name=args.session)
        # The stored system prompt is stale; keep only the exchanges.
        messages += [m for m in record.messages if m.role is not Role.SYSTEM]

    prompt_reader = None
    interactive = None
    prompt_from_args = " ".join(args.prompt)
    if args.prompt_file:
        try:
            prompt_reader = open(args.prompt_file, encoding="utf-8")
        except OSError as e:
            raise AgentError(f"open {args.prompt_file}: {e}") from e
        interactive = args.interactive
    elif prompt_from_args:
        prompt_reader = io.StringIO(prompt_from_args)
        interactive = args.interactive

    chat = Chat(
        client, messages, interactive=interactive, prompt_reader=prompt_reader
    )
    try:
        if args.agent:
            fmt.repl_banner(agent=True)
            run_agent(chat)
        else:
            chat.run()
    finally:
        if prompt_reader is not None:
            prompt_reader.close()
        if store is not None:
            record.messages = chat.messages
            store.save(record)
            store.close()
            fmt.info(f"Session {record.name!r} saved ({record.session_id})")


if __name__ == "__main__":
    main()
