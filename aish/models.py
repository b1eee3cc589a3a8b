"""Value types exchanged between the oracle, the executor and the state machine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TIMEOUT_EXIT_CODE = 124
INTERRUPT_EXIT_CODE = 130


class _OracleModel(BaseModel):
    # The oracle answers in camelCase JSON; Python code uses snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class CommandAnalysis(_OracleModel):
    command: str = Field(description="The shell command to execute")
    explanation: str = Field(description="Brief explanation of what the command does")
    is_dangerous: bool = Field(description="Whether the command is potentially dangerous or destructive")
    requires_external_packages: bool = Field(
        default=False,
        description="Whether the command requires external packages to be installed",
    )
    external_packages: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="List of external packages required, if any",
    )
    needs_interactive_mode: bool = Field(
        default=False,
        description="Whether the user's intent is to run an interactive program that needs TTY",
    )

    @field_validator("external_packages", mode="before")
    @classmethod
    def _none_is_empty(cls, value):
        return frozenset() if value is None else value


class FailureAnalysis(_OracleModel):
    explanation: str = Field(description="Brief explanation of why the command failed")
    solution: str = Field(description="How to fix the issue or what the user should do")
    alternative_command: Optional[str] = Field(
        default=None,
        description="Alternative command to try - should almost always be provided unless truly impossible",
    )
    needs_interactive_mode: bool = Field(
        default=False,
        description=(
            "Whether the alternative command needs TTY/interactive mode - only true if the failure "
            "was clearly due to missing TTY and the alternative requires it"
        ),
    )

    @field_validator("alternative_command", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_plain_text(cls, text: str) -> "FailureAnalysis":
        """Degenerate analysis built from a plain-text fallback answer."""
        return cls(
            explanation=text.strip(),
            solution="See explanation above",
            alternative_command=None,
            needs_interactive_mode=False,
        )


@dataclass(frozen=True)
class ExecutionResult:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class LastError:
    """Captured result of the most recent failed run."""

    command: str
    exit_code: int
    stdout: str
    stderr: str

    @classmethod
    def from_result(cls, command: str, result: ExecutionResult) -> "LastError":
        return cls(
            command=command,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
        )


@dataclass(frozen=True)
class FailureRecord:
    command: str
    exit_code: int
    stdout: str
    stderr: str
    explanation: Optional[str] = None
    solution: Optional[str] = None
    alternative_command: Optional[str] = None

    @classmethod
    def from_error(
        cls,
        error: LastError,
        explanation: Optional[str] = None,
        solution: Optional[str] = None,
        alternative_command: Optional[str] = None,
    ) -> "FailureRecord":
        return cls(
            command=error.command,
            exit_code=error.exit_code,
            stdout=error.stdout,
            stderr=error.stderr,
            explanation=explanation,
            solution=solution,
            alternative_command=alternative_command,
        )
