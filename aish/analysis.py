"""
Oracle client: turns a request (or a failed run) into a structured analysis.

Prompts embed the live environment (OS, date, cwd) so the model proposes
commands valid for this machine.
"""

from __future__ import annotations

import datetime as _dt
import logging
import os
import platform
import sys
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Type

from langchain_core.messages import BaseMessage, HumanMessage

from .llm import OracleError, Parsed, StructuredResult, T
from .models import CommandAnalysis, FailureAnalysis, LastError

LOGGER = logging.getLogger(__name__)


class Oracle(Protocol):
    def generate_structured(
        self, schema: Type[T], system_prompt: str, messages: Sequence[BaseMessage]
    ) -> StructuredResult: ...

    def generate_text(self, system_prompt: str, messages: Sequence[BaseMessage]) -> str: ...


SYSTEM_PROMPT = "You are a shell command expert. You MUST respond with valid JSON only, no other text or formatting."

FALLBACK_SYSTEM_PROMPT = (
    "You are a shell command expert. Analyze command failures and provide helpful explanations and solutions."
)


@dataclass(frozen=True)
class EnvironmentContext:
    os_type: str
    os_release: str
    platform: str
    arch: str
    date: str
    cwd: str

    @classmethod
    def capture(cls) -> "EnvironmentContext":
        return cls(
            os_type=platform.system(),
            os_release=platform.release(),
            platform=sys.platform,
            arch=platform.machine(),
            date=_dt.date.today().isoformat(),
            cwd=os.getcwd(),
        )

    def describe(self) -> str:
        return (
            "Environment Context:\n"
            f"OS: {self.os_type} {self.os_release} ({self.platform} {self.arch})\n"
            f"Date: {self.date}\n"
            f"CWD: {self.cwd}"
        )


_ANALYSIS_INSTRUCTIONS = (
    "Instructions:\n"
    "- Only propose commands valid for this OS.\n"
    "- Avoid Linux-specific /proc paths on macOS (darwin).\n"
    "- Prefer portable POSIX utilities when possible.\n"
    "- If the user's request is impossible without additional tools or privileges, still produce a safe "
    "explanatory command (e.g., an echo) and keep isDangerous=false."
)

_FAILURE_RULES = (
    "Validation Rules:\n"
    "- Suggest only commands valid for this OS.\n"
    "- Avoid Linux-specific /proc paths on macOS.\n"
    "- If hardware metrics or privileged data are requested and unavailable without new tools, return "
    "alternativeCommand null with a concise explanation unless a standard built-in utility suffices.\n"
    "- Prefer safe existence checks (test -f, test -d) before operations.\n"
    "- Never hallucinate files or system paths."
)

_ANALYSIS_SHAPE = """Return a JSON object with these exact fields:
{
  "command": "the shell command to execute",
  "explanation": "brief explanation of what the command does",
  "isDangerous": false,
  "requiresExternalPackages": false,
  "externalPackages": [],
  "needsInteractiveMode": false
}"""

_CLASSIFICATION_RULES = """Set isDangerous to true ONLY for commands that could cause irreversible system damage or data loss (like rm -rf /, format, dd, etc.).
Common development operations like removing lock files, node_modules, build artifacts, caches or temporary files are NOT dangerous.
Set requiresExternalPackages to true and list packages if external tools are needed.
Set needsInteractiveMode to true only if the user's intent is clearly to open/run an interactive program (like "open vim", "start nano", "run python interactively", "launch htop", etc.). If unsure, assume false.

For file searches, search in the user's home directory (~) rather than system-wide (/) to avoid permission issues and long execution times."""

_FAILURE_SHAPE = """Return a JSON object with these exact fields:
{
  "explanation": "brief explanation of why the command failed (1-2 sentences max)",
  "solution": "how to fix the issue or what the user should do (1-2 sentences max)",
  "alternativeCommand": "alternative command to try (or null ONLY if absolutely no alternative exists)",
  "needsInteractiveMode": false
}"""

_FAILURE_POLICY = """IMPORTANT: You should ALMOST ALWAYS provide an alternativeCommand that attempts to fulfill the user's original request. Look at the error message and suggest a command that will work. For example:
- If a flag isn't recognized, suggest the command without that flag or with an equivalent
- If permission denied, suggest with sudo or in a different directory
- If a tool doesn't exist, suggest an alternative tool that achieves the same goal
- If a file/directory doesn't exist, suggest creating it or using a different path

Only return null for alternativeCommand in cases where:
- The user needs to install software first and there is no safe install command
- The request is physically impossible (e.g., accessing hardware that doesn't exist)
- The command requires user-specific information you don't have

IMPORTANT: Set needsInteractiveMode to true ONLY if ALL of these conditions are met:
1. The failure was clearly caused by missing TTY/terminal (errors like "not a terminal", "no tty", input/output redirection issues)
2. The alternative command you're suggesting is an interactive program (vim, nano, htop, etc.)
3. Double-check: Does this alternative command actually need TTY to function properly?

If you're unsure about ANY of these conditions, set needsInteractiveMode to false. Be extremely conservative.

Be very concise and helpful. Keep explanations short. JSON only:"""


def build_command_prompt(query: str, has_history: bool, env: EnvironmentContext) -> str:
    if has_history:
        ask = f'Based on our conversation, analyze this request and generate an appropriate shell command: "{query}"'
    else:
        ask = f'Analyze this user query and generate an appropriate shell command: "{query}"'
    return "\n\n".join(
        [
            env.describe(),
            _ANALYSIS_INSTRUCTIONS,
            ask,
            _ANALYSIS_SHAPE,
            _CLASSIFICATION_RULES,
            "JSON only:",
        ]
    )


def build_failure_prompt(error: LastError, query: str, env: EnvironmentContext) -> str:
    details = (
        "A command failed with the following details:\n\n"
        f"Command: {error.command}\n"
        f"Exit Code: {error.exit_code}\n"
        f"Standard Output: {error.stdout or '(none)'}\n"
        f"Standard Error: {error.stderr or '(none)'}\n"
        f'Original User Query: "{query}"\n\n'
        "Based on our conversation history (if any) and these details, analyze the failure."
    )
    return "\n\n".join([env.describe(), _FAILURE_RULES, details, _FAILURE_SHAPE, _FAILURE_POLICY])


def build_fallback_prompt(error: LastError, query: str, env: EnvironmentContext) -> str:
    return (
        f"{env.describe()}\n\n{_FAILURE_RULES}\n\n"
        f"A command failed: {error.command}\n"
        f"Exit Code: {error.exit_code}\n"
        f"Error: {error.stderr}\n"
        f'Original user query: "{query}"\n\n'
        "Briefly explain why it failed and how to fix it (1-2 sentences max)."
    )


def analyze_command(
    oracle: Oracle,
    query: str,
    history: Sequence[BaseMessage],
    env: Optional[EnvironmentContext] = None,
) -> CommandAnalysis:
    env = env or EnvironmentContext.capture()
    messages: List[BaseMessage] = [
        *history,
        HumanMessage(content=build_command_prompt(query, bool(history), env)),
    ]
    result = oracle.generate_structured(CommandAnalysis, SYSTEM_PROMPT, messages)
    if not isinstance(result, Parsed):
        LOGGER.warning("command analysis unparseable: %s", result.reason)
        raise OracleError("Failed to analyze command")
    return result.data


def analyze_failure(
    oracle: Oracle,
    error: LastError,
    query: str,
    history: Sequence[BaseMessage],
    env: Optional[EnvironmentContext] = None,
) -> FailureAnalysis:
    env = env or EnvironmentContext.capture()
    messages: List[BaseMessage] = [*history, HumanMessage(content=build_failure_prompt(error, query, env))]
    result = oracle.generate_structured(FailureAnalysis, SYSTEM_PROMPT, messages)
    if isinstance(result, Parsed):
        return result.data

    LOGGER.info("failure analysis unparseable, using plain-text fallback")
    fallback: List[BaseMessage] = [*history, HumanMessage(content=build_fallback_prompt(error, query, env))]
    text = oracle.generate_text(FALLBACK_SYSTEM_PROMPT, fallback)
    return FailureAnalysis.from_plain_text(text)
