from __future__ import annotations

import operator
from typing import Annotated, List, Optional

from langchain_core.messages import BaseMessage
from typing_extensions import TypedDict

from .models import CommandAnalysis, FailureRecord, LastError


class Phase:
    ANALYZING = "analyzing"
    CONFIRMING = "confirming"
    EXECUTING = "executing"
    FAILED = "failed"
    SUCCESS = "success"
    ABORTED = "aborted"


TERMINAL_PHASES = (Phase.SUCCESS, Phase.ABORTED)


class AbortReason:
    DANGEROUS_COMMAND = "dangerous-command"
    TIMEOUT = "timeout"
    MAX_TRIES_EXCEEDED = "max-tries-exceeded"
    SUDO_AUTH_FAILED = "sudo-auth-failed"
    NO_ALTERNATIVE = "no-alternative"
    USER_REJECTED = "user-rejected"
    USER_ABORTED = "user-aborted"
    MISSING_ANALYSIS = "missing-analysis"
    MISSING_ERROR_CONTEXT = "missing-error-context"
    FAILURE_ANALYSIS_ERROR = "failure-analysis-error"
    UNEXPECTED_ERROR = "unexpected-error"


def keep_first(current: Optional[str], new: Optional[str]) -> Optional[str]:
    # first writer wins
    return current if current else new


class CommandContext(TypedDict, total=False):
    # machine state
    phase: str

    # request
    query: str
    original_query: str
    conversation_history: Annotated[List[BaseMessage], operator.add]

    # latest proposal, replaced wholesale
    current_analysis: Optional[CommandAnalysis]

    # set by a failed run, read by the failed handler
    last_error: Optional[LastError]

    # sudo retry bookkeeping
    is_sudo_retry: bool
    sudo_attempts: int

    # loop guard
    attempt_count: int
    max_tries: int
    failures: Annotated[List[FailureRecord], operator.add]

    # session-wide flags
    auto_approve: bool
    json_mode: bool

    aborted_reason: Annotated[Optional[str], keep_first]


def is_terminal(state: CommandContext) -> bool:
    return state.get("phase") in TERMINAL_PHASES
