from __future__ import annotations

import json
from typing import Any, List, Optional

import pytest

from aish.analysis import EnvironmentContext
from aish.approval import UserAction, UserDecision
from aish.llm import Parsed, Unparseable
from aish.models import CommandAnalysis, ExecutionResult


FIXED_ENV = EnvironmentContext(
    os_type="Linux",
    os_release="6.1.0",
    platform="linux",
    arch="x86_64",
    date="2026-01-02",
    cwd="/home/tester/project",
)


class FakeOracle:
    """Scripted oracle: pops one answer per call from the queue for the schema."""

    def __init__(self, analyses: Optional[List[Any]] = None, failures: Optional[List[Any]] = None, text: str = "") -> None:
        self.analyses = list(analyses or [])
        self.failures = list(failures or [])
        self.text = text
        self.structured_calls: List[tuple] = []
        self.text_calls: List[tuple] = []

    def generate_structured(self, schema, system_prompt, messages):
        self.structured_calls.append((schema, system_prompt, list(messages)))
        queue = self.analyses if schema is CommandAnalysis else self.failures
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, (Parsed, Unparseable)):
            return item
        return Parsed(data=schema.model_validate(item), raw_text=json.dumps(item))

    def generate_text(self, system_prompt, messages):
        self.text_calls.append((system_prompt, list(messages)))
        return self.text


class FakeExecutor:
    def __init__(self, results: List[ExecutionResult]) -> None:
        self.results = list(results)
        self.calls: List[dict] = []

    def run(self, command, *, needs_interactive_mode=False, is_sudo_retry=False, cancel=None):
        self.calls.append(
            {
                "command": command,
                "needs_interactive_mode": needs_interactive_mode,
                "is_sudo_retry": is_sudo_retry,
            }
        )
        return self.results.pop(0)

    @property
    def commands(self) -> List[str]:
        return [c["command"] for c in self.calls]


class FakeGate:
    def __init__(self, decisions: List[UserDecision]) -> None:
        self.decisions = list(decisions)
        self.asked: List[str] = []

    def ask(self, command: str) -> UserDecision:
        self.asked.append(command)
        return self.decisions.pop(0)


def analysis(command: str, dangerous: bool = False, **extra: Any) -> dict:
    payload = {"command": command, "explanation": f"runs {command}", "isDangerous": dangerous}
    payload.update(extra)
    return payload


def failure(alternative: Optional[str], explanation: str = "it failed", solution: str = "try again") -> dict:
    return {
        "explanation": explanation,
        "solution": solution,
        "alternativeCommand": alternative,
        "needsInteractiveMode": False,
    }


def ok(stdout: str = "") -> ExecutionResult:
    return ExecutionResult(exit_code=0, stdout=stdout, stderr="")


def failed(code: int = 1, stderr: str = "boom", stdout: str = "") -> ExecutionResult:
    return ExecutionResult(exit_code=code, stdout=stdout, stderr=stderr)


APPROVE = UserDecision(UserAction.APPROVE)
REJECT = UserDecision(UserAction.REJECT)


def modify(text: str) -> UserDecision:
    return UserDecision(UserAction.MODIFY, text)


@pytest.fixture
def fixed_env() -> EnvironmentContext:
    return FIXED_ENV
