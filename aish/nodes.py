from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from .analysis import EnvironmentContext, Oracle, analyze_command, analyze_failure
from .approval import ConfirmationGate, UserAction
from .executor import CancellationToken, ProcessExecutor
from .guard import DEFAULT_MAX_TRIES, LoopGuard
from .models import (
    INTERRUPT_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    CommandAnalysis,
    FailureAnalysis,
    FailureRecord,
    LastError,
)
from .safety import is_permission_error, is_sudo_auth_failure
from .state import AbortReason, CommandContext, Phase
from .ux import Reporter

LOGGER = logging.getLogger(__name__)

Update = Dict[str, Any]


@dataclass
class EngineDeps:
    """Collaborators shared by every state handler of one session."""

    oracle: Oracle
    gate: ConfirmationGate
    executor: ProcessExecutor
    reporter: Reporter
    cancel: CancellationToken = field(default_factory=CancellationToken)
    environment: Callable[[], EnvironmentContext] = EnvironmentContext.capture


def _abort(reason: str, **extra: Any) -> Update:
    return {**extra, "phase": Phase.ABORTED, "aborted_reason": reason}


def _guard(state: CommandContext) -> LoopGuard:
    return LoopGuard(max_tries=state.get("max_tries", DEFAULT_MAX_TRIES))


def modification_turns(state: CommandContext, analysis: CommandAnalysis, text: str) -> List[BaseMessage]:
    query = state.get("query", "")
    if query == state.get("original_query"):
        asked = f"I want to: {query}"
    else:
        asked = f"Based on our previous discussion, I want to: {query}"
    return [
        HumanMessage(content=asked),
        AIMessage(content=f"I suggest this command: {analysis.command}\n\nExplanation: {analysis.explanation}"),
        HumanMessage(content=text),
    ]


def failure_turns(error: LastError, analysis: FailureAnalysis) -> List[BaseMessage]:
    head = f"The command failed with exit code {error.exit_code}. Error: {error.stderr}"
    if analysis.alternative_command:
        body = (
            f"{head}\n\nI suggest this alternative: {analysis.alternative_command}"
            f"\n\nExplanation: {analysis.explanation}"
        )
    else:
        body = f"{head}\n\nExplanation: {analysis.explanation}\n\nSolution: {analysis.solution}"
    return [HumanMessage(content="Execute the command"), AIMessage(content=body)]


def handle_analyzing(state: CommandContext, deps: EngineDeps) -> Update:
    with deps.reporter.status("Writing command"):
        analysis = analyze_command(
            deps.oracle,
            state["query"],
            state.get("conversation_history") or [],
            deps.environment(),
        )
    deps.reporter.analysis(analysis)

    if analysis.is_dangerous:
        LOGGER.info("blocked dangerous command: %s", analysis.command)
        return _abort(AbortReason.DANGEROUS_COMMAND, current_analysis=analysis)
    return {"current_analysis": analysis, "phase": Phase.CONFIRMING}


def handle_confirming(state: CommandContext, deps: EngineDeps) -> Update:
    analysis = state.get("current_analysis")
    if analysis is None:
        return _abort(AbortReason.MISSING_ANALYSIS)

    if state.get("auto_approve"):
        return {"phase": Phase.EXECUTING}

    decision = deps.gate.ask(analysis.command)
    if decision.action is UserAction.APPROVE:
        return {"phase": Phase.EXECUTING}
    if decision.action is UserAction.MODIFY and decision.text:
        deps.reporter.refining(decision.text)
        return {
            "conversation_history": modification_turns(state, analysis, decision.text),
            "query": decision.text,
            "phase": Phase.ANALYZING,
        }
    return _abort(AbortReason.USER_REJECTED)


def handle_executing(state: CommandContext, deps: EngineDeps) -> Update:
    analysis = state.get("current_analysis")
    if analysis is None:
        return _abort(AbortReason.MISSING_ANALYSIS)

    result = deps.executor.run(
        analysis.command,
        needs_interactive_mode=analysis.needs_interactive_mode,
        is_sudo_retry=bool(state.get("is_sudo_retry")),
        cancel=deps.cancel,
    )
    if result.exit_code == INTERRUPT_EXIT_CODE:
        deps.reporter.interrupted()

    if result.ok:
        return {"is_sudo_retry": False, "sudo_attempts": 0, "phase": Phase.SUCCESS}
    return {
        "is_sudo_retry": False,
        "last_error": LastError.from_result(analysis.command, result),
        "attempt_count": state.get("attempt_count", 0) + 1,
        "phase": Phase.FAILED,
    }


def handle_failed(state: CommandContext, deps: EngineDeps) -> Update:
    error = state.get("last_error")
    analysis = state.get("current_analysis")
    if error is None or analysis is None:
        return _abort(AbortReason.MISSING_ERROR_CONTEXT)

    reporter = deps.reporter
    guard = _guard(state)
    attempts = state.get("attempt_count", 0)

    if error.exit_code == TIMEOUT_EXIT_CODE:
        reporter.timed_out()
        record = FailureRecord.from_error(
            error,
            explanation="Command timed out",
            solution="Increase timeout or optimize command",
        )
        return _abort(AbortReason.TIMEOUT, failures=[record])

    if is_sudo_auth_failure(error.stderr):
        reporter.sudo_auth_failed()
        sudo_attempts = state.get("sudo_attempts", 0) + 1
        update: Update = {
            "sudo_attempts": sudo_attempts,
            "failures": [
                FailureRecord.from_error(error, explanation="Authentication failed (incorrect sudo password)")
            ],
        }
        if guard.sudo_exhausted(sudo_attempts):
            reporter.sudo_exhausted(sudo_attempts)
            return _abort(AbortReason.SUDO_AUTH_FAILED, **update)
        if guard.exhausted(attempts):
            reporter.max_tries(guard.max_tries)
            return _abort(AbortReason.MAX_TRIES_EXCEEDED, **update)
        reporter.sudo_retry()
        # same command again, no re-confirmation
        return {**update, "is_sudo_retry": True, "phase": Phase.EXECUTING}

    if is_permission_error(error.stderr):
        reporter.permission_error()

    try:
        with reporter.status("Analyzing failure"):
            failure = analyze_failure(
                deps.oracle,
                error,
                state.get("query", ""),
                state.get("conversation_history") or [],
                deps.environment(),
            )
    except Exception as exc:
        LOGGER.warning("failure analysis raised: %s", exc, exc_info=True)
        reporter.analysis_error(exc)
        return _abort(AbortReason.FAILURE_ANALYSIS_ERROR, failures=[FailureRecord.from_error(error)])

    reporter.failure_analysis(failure)
    update = {
        "conversation_history": failure_turns(error, failure),
        "failures": [
            FailureRecord.from_error(
                error,
                explanation=failure.explanation,
                solution=failure.solution,
                alternative_command=failure.alternative_command,
            )
        ],
    }

    if guard.exhausted(attempts):
        reporter.max_tries(guard.max_tries)
        return _abort(AbortReason.MAX_TRIES_EXCEEDED, **update)

    if failure.alternative_command:
        alternative = analysis.model_copy(
            update={
                "command": failure.alternative_command,
                "explanation": failure.solution,
                "needs_interactive_mode": failure.needs_interactive_mode,
            }
        )
        next_phase = Phase.EXECUTING if state.get("auto_approve") else Phase.CONFIRMING
        return {**update, "current_analysis": alternative, "phase": next_phase}

    reporter.no_alternative()
    if state.get("auto_approve"):
        return _abort(AbortReason.NO_ALTERNATIVE, **update)

    decision = deps.gate.ask("Try a different approach?")
    if decision.action is UserAction.MODIFY and decision.text:
        reporter.refining(decision.text)
        return {**update, "query": decision.text, "phase": Phase.ANALYZING}
    return _abort(AbortReason.USER_ABORTED, **update)
