"""Completion sources: stream a model reply for a conversation history."""

import enum
import logging
import os
from dataclasses import dataclass
from typing import Iterator

import tiktoken

from .errors import AgentError

logger = logging.getLogger(__name__)

PROVIDERS = ("openai", "gemini", "openrouter", "lmstudio")

DEFAULT_MODEL = "gpt-4.1"
DEFAULT_VERIFIED_MODEL = "gpt-5.1"
DEFAULT_THINKING_MODEL = "o1"
DEFAULT_VERIFIED_THINKING_MODEL = "o3"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_GEMINI_THINKING_MODEL = "gemini-3-pro-preview"
DEFAULT_LMSTUDIO_URL = "http://127.0.0.1:1234"

_encoder = None


class Role(enum.Enum):
    SYSTEM = "system"
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class Message:
    role: Role
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(Role(data["role"]), data["content"])


def default_model(provider: str, thinking: bool = False) -> str:
    """Pick the default model for a provider."""
    if provider == "gemini":
        return DEFAULT_GEMINI_MODEL if not thinking else DEFAULT_GEMINI_THINKING_MODEL
    verified = os.environ.get("OPENAI_IDENTITY_VERIFIED", "").strip().lower()
    if verified in ("1", "true", "yes"):
        return DEFAULT_VERIFIED_THINKING_MODEL if thinking else DEFAULT_VERIFIED_MODEL
    return DEFAULT_THINKING_MODEL if thinking else DEFAULT_MODEL


def is_gemini_model(model: str) -> bool:
    return model.startswith("gemini-")


def _get_encoder():
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def estimate_tokens(messages: list[Message]) -> int:
    """Count tokens across all messages using tiktoken."""
    encoder = _get_encoder()
    total = sum(len(encoder.encode(m.content)) for m in messages)
    # Per-message overhead (role, separators), ~4 tokens each
    return total + 4 * len(messages)


class Completion:
    """A live model reply: iterate for UTF-8 byte chunks, close() to cancel."""

    def __init__(self, chunks: Iterator[bytes], closer=None):
        self._chunks = chunks
        self._closer = closer
        self.closed = False

    def __iter__(self) -> Iterator[bytes]:
        return self._chunks

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        close = getattr(self._chunks, "close", None)
        if close is not None:
            close()
        if self._closer is not None:
            self._closer()


def _convert_role(role: Role) -> str:
    if role is Role.MODEL:
        return "assistant"
    return role.value


class LiteLLMClient:
    """Completion source backed by LiteLLM, one routing rule per provider."""

    def __init__(
        self,
        provider: str,
        model: str,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        reasoning_effort: str | None = None,
    ):
        if provider not in PROVIDERS:
            raise AgentError(f"unknown provider {provider!r}")
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.reasoning_effort = reasoning_effort

    def _route(self) -> tuple[str, dict]:
        """Return the LiteLLM model string and connection kwargs."""
        if self.provider == "lmstudio":
            base = self.base_url or DEFAULT_LMSTUDIO_URL
            return f"openai/{self.model}", {
                "api_base": f"{base}/v1",
                "api_key": "lm-studio",
            }
        if self.provider == "openrouter":
            bare_id = self.model.removeprefix("openrouter/")
            model_str = f"openrouter/{bare_id}"
        elif self.provider == "gemini":
            model_str = f"gemini/{self.model.removeprefix('gemini/')}"
        else:
            model_str = f"openai/{self.model.removeprefix('openai/')}"
        kwargs = {"api_key": self.api_key}
        if self.base_url:
            kwargs["api_base"] = self.base_url
        return model_str, kwargs

    def get_completion(self, messages: list[Message]) -> Completion:
        """Start streaming a reply to ``messages``."""
        import litellm

        litellm.suppress_debug_info = True

        model_str, kwargs = self._route()
        if self.reasoning_effort:
            kwargs["reasoning_effort"] = self.reasoning_effort
        logger.debug("Requesting completion from %s (%d messages)", model_str, len(messages))

        try:
            response = litellm.completion(
                model=model_str,
                messages=[
                    {"role": _convert_role(m.role), "content": m.content}
                    for m in messages
                ],
                stream=True,
                **kwargs,
            )
        except Exception as e:
            raise AgentError(f"LLM call failed: {e}") from e

        return Completion(_iter_deltas(response), getattr(response, "close", None))


def _iter_deltas(response) -> Iterator[bytes]:
    try:
        for chunk in response:
            choices = getattr(chunk, "choices", None)
            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            content = getattr(delta, "content", None) if delta is not None else None
            if content:
                yield content.encode("utf-8")
    except Exception as e:
        raise AgentError(f"LLM stream failed: {e}") from e
