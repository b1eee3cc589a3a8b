from __future__ import annotations

import importlib
import json
import logging
import os
import threading
from concurrent.futures import Future, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Type, TypeVar, Union

from langchain_core.messages import BaseMessage, SystemMessage
from pydantic import BaseModel, ValidationError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class OracleError(RuntimeError):
    """The generation provider could not produce an answer."""


class ProviderError(OracleError):
    """The selected provider could not be set up."""


class UnsupportedProviderError(ProviderError):
    def __init__(self, provider: str) -> None:
        super().__init__(
            f"Unsupported AI provider: {provider}. "
            f"Available providers: {', '.join(sorted(PROVIDERS))}"
        )
        self.provider = provider


@dataclass(frozen=True)
class _Provider:
    module: str
    class_name: str
    package: str
    default_model: str
    api_key_env: str
    base_url: Optional[str] = None


PROVIDERS: Dict[str, _Provider] = {
    "openai": _Provider("langchain_openai", "ChatOpenAI", "langchain-openai", "gpt-4o-mini", "OPENAI_API_KEY"),
    "google": _Provider(
        "langchain_google_genai",
        "ChatGoogleGenerativeAI",
        "langchain-google-genai",
        "gemini-2.0-flash",
        "GOOGLE_API_KEY",
    ),
    "anthropic": _Provider(
        "langchain_anthropic", "ChatAnthropic", "langchain-anthropic", "claude-3-5-haiku-latest", "ANTHROPIC_API_KEY"
    ),
    "mistral": _Provider(
        "langchain_mistralai", "ChatMistralAI", "langchain-mistralai", "mistral-small-latest", "MISTRAL_API_KEY"
    ),
    "groq": _Provider("langchain_groq", "ChatGroq", "langchain-groq", "llama-3.1-8b-instant", "GROQ_API_KEY"),
    "xai": _Provider("langchain_xai", "ChatXAI", "langchain-xai", "grok-beta", "XAI_API_KEY"),
    "openrouter": _Provider(
        "langchain_openai",
        "ChatOpenAI",
        "langchain-openai",
        "openai/gpt-4o-mini",
        "OPENROUTER_API_KEY",
        base_url="https://openrouter.ai/api/v1",
    ),
}

_PROVIDER_ALIASES = {"gemini": "google", "goog": "google", "claude": "anthropic", "grok": "xai"}


def resolve_provider(provider: Optional[str] = None) -> str:
    """Pick the provider name from an explicit value or the environment.

    Env:
      - AISH_PROVIDER / LLM_PROVIDER: provider name
      - falls back to "google" when only GOOGLE_API_KEY is set, else "openai"
    """
    name = provider or os.getenv("AISH_PROVIDER") or os.getenv("LLM_PROVIDER")
    if not name:
        # Prefer Google if GOOGLE_API_KEY is present, otherwise default to OpenAI
        name = "google" if os.getenv("GOOGLE_API_KEY") and not os.getenv("OPENAI_API_KEY") else "openai"
    name = name.strip().lower()
    name = _PROVIDER_ALIASES.get(name, name)
    if name not in PROVIDERS:
        raise UnsupportedProviderError(name)
    return name


def resolve_model(provider: str, model: Optional[str] = None) -> str:
    return (
        model
        or os.getenv("AISH_MODEL")
        or os.getenv(f"{provider.upper()}_MODEL")
        or PROVIDERS[provider].default_model
    )


def get_llm(provider: Optional[str] = None, model: Optional[str] = None):
    """Return a LangChain chat model for the selected provider.

    Provider packages are imported lazily so only the one in use must be installed.
    """
    name = resolve_provider(provider)
    spec = PROVIDERS[name]
    try:
        mod = importlib.import_module(spec.module)
    except ModuleNotFoundError as exc:
        raise ProviderError(
            f"{spec.package} is not installed. Install it to use the {name} provider:\n"
            f"  pip install {spec.package}"
        ) from exc
    chat_cls = getattr(mod, spec.class_name)
    kwargs: Dict[str, Any] = {"model": resolve_model(name, model), "temperature": 0}
    if spec.base_url:
        kwargs["base_url"] = spec.base_url
        kwargs["api_key"] = os.getenv(spec.api_key_env)
    LOGGER.debug("creating chat model provider=%s model=%s", name, kwargs["model"])
    try:
        return chat_cls(**kwargs)
    except Exception as exc:
        raise ProviderError(f"Failed to create model for provider: {name}: {exc}") from exc


@dataclass(frozen=True)
class Parsed(Generic[T]):
    data: T
    raw_text: str


@dataclass(frozen=True)
class Unparseable:
    raw_text: str
    reason: str


StructuredResult = Union[Parsed, Unparseable]


def extract_json(text: str) -> Any:
    """Best-effort JSON extraction from a model reply.

    Strips Markdown code fences, then falls back to the outermost ``{...}`` span.
    Raises ``ValueError`` when nothing parses.
    """
    body = text.strip()
    if body.startswith("```"):
        lines = body.splitlines()
        body = "\n".join(lines[1:])
        if body.rstrip().endswith("```"):
            body = body.rstrip()[:-3]
        body = body.strip()
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        pass
    try:
        start = body.index("{")
        end = body.rindex("}") + 1
    except ValueError as exc:
        raise ValueError("no JSON object in model reply") from exc
    try:
        return json.loads(body[start:end])
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON in model reply: {exc}") from exc


def message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return str(content)


_STATUS_MESSAGES = {
    401: "Invalid API key. Please check your API key configuration.",
    403: "Access forbidden. Please check your API key permissions.",
    404: "Model not found. Please check the model name.",
    429: "Rate limit exceeded. Please try again later.",
    500: "AI service error. Please try again later.",
}


def describe_error(exc: BaseException) -> str:
    """Human-readable message for a provider exception."""
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "response", None), "status_code", None)
    if isinstance(status, int) and status in _STATUS_MESSAGES:
        return _STATUS_MESSAGES[status]
    return str(exc) or exc.__class__.__name__


def _call_in_background(fn: Callable[..., Any], *args: Any) -> Future:
    """Run ``fn`` on a daemon thread; an abandoned call never blocks interpreter exit."""
    future: Future = Future()

    def target() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(*args))
        except Exception as exc:
            future.set_exception(exc)

    threading.Thread(target=target, name="aish-llm", daemon=True).start()
    return future


class LangChainOracle:
    """Structured and plain-text generation on top of a LangChain chat model."""

    def __init__(self, llm, timeout_seconds: float = 30.0) -> None:
        self.llm = llm
        self.timeout_seconds = timeout_seconds

    def _invoke(self, system_prompt: str, messages: Sequence[BaseMessage]) -> str:
        payload = [SystemMessage(content=system_prompt), *messages]
        future = _call_in_background(self.llm.invoke, payload)
        try:
            reply = future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError as exc:
            raise OracleError(f"LLM request timed out after {self.timeout_seconds:g}s") from exc
        except OracleError:
            raise
        except Exception as exc:
            raise OracleError(describe_error(exc)) from exc
        return message_text(reply)

    def generate_text(self, system_prompt: str, messages: Sequence[BaseMessage]) -> str:
        return self._invoke(system_prompt, messages)

    def generate_structured(
        self,
        schema: Type[T],
        system_prompt: str,
        messages: Sequence[BaseMessage],
    ) -> StructuredResult:
        raw = self._invoke(system_prompt, messages)
        return parse_structured(schema, raw)


def parse_structured(schema: Type[T], raw: str) -> StructuredResult:
    try:
        data = extract_json(raw)
    except ValueError as exc:
        LOGGER.warning("unparseable %s reply: %s", schema.__name__, exc)
        return Unparseable(raw_text=raw, reason=str(exc))
    try:
        return Parsed(data=schema.model_validate(data), raw_text=raw)
    except ValidationError as exc:
        LOGGER.warning("%s reply failed validation: %s", schema.__name__, exc)
        return Unparseable(raw_text=raw, reason=str(exc))
