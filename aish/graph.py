from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from langgraph.errors import GraphRecursionError
from langgraph.graph import END, START, StateGraph

from .analysis import Oracle
from .approval import ConfirmationGate
from .executor import CancellationToken, ProcessExecutor
from .guard import DEFAULT_MAX_TRIES
from .nodes import (
    EngineDeps,
    Update,
    handle_analyzing,
    handle_confirming,
    handle_executing,
    handle_failed,
)
from .state import AbortReason, CommandContext, Phase, is_terminal
from .ux import Reporter, emit_summary

LOGGER = logging.getLogger(__name__)

DEFAULT_STEP_LIMIT = 200

Handler = Callable[[CommandContext, EngineDeps], Update]

HANDLERS: Dict[str, Handler] = {
    Phase.ANALYZING: handle_analyzing,
    Phase.CONFIRMING: handle_confirming,
    Phase.EXECUTING: handle_executing,
    Phase.FAILED: handle_failed,
}


def route(state: CommandContext) -> str:
    if is_terminal(state):
        return END
    return state.get("phase", Phase.ANALYZING)


def _guarded(phase: str, handler: Handler, deps: EngineDeps) -> Callable[[CommandContext], Update]:
    def node(state: CommandContext) -> Update:
        LOGGER.debug("entering %s (attempts=%s)", phase, state.get("attempt_count", 0))
        try:
            return handler(state, deps)
        except Exception as exc:
            LOGGER.exception("%s handler failed", phase)
            deps.reporter.error(exc)
            # a reason set earlier in the session wins over this one
            return {"phase": Phase.ABORTED, "aborted_reason": AbortReason.UNEXPECTED_ERROR}

    node.__name__ = f"{phase}_node"
    return node


def build_graph(deps: EngineDeps):
    g = StateGraph(CommandContext)
    path_map = {phase: phase for phase in HANDLERS}
    path_map[END] = END

    for phase, handler in HANDLERS.items():
        g.add_node(phase, _guarded(phase, handler, deps))

    # every state hands control back to the router; terminal phases end the run
    g.add_conditional_edges(START, route, path_map)
    for phase in HANDLERS:
        g.add_conditional_edges(phase, route, path_map)

    return g.compile()


def initial_context(
    query: str,
    max_tries: int = DEFAULT_MAX_TRIES,
    auto_approve: bool = False,
    json_mode: bool = False,
) -> CommandContext:
    return {
        "phase": Phase.ANALYZING,
        "query": query,
        "original_query": query,
        "conversation_history": [],
        "current_analysis": None,
        "last_error": None,
        "is_sudo_retry": False,
        "sudo_attempts": 0,
        "attempt_count": 0,
        "max_tries": max_tries,
        "failures": [],
        "auto_approve": auto_approve,
        "json_mode": json_mode,
        "aborted_reason": None,
    }


def run_session(app, context: CommandContext, step_limit: int = DEFAULT_STEP_LIMIT) -> CommandContext:
    """Drive the compiled graph to a terminal phase and return the final context."""
    final: CommandContext = context
    try:
        for values in app.stream(context, {"recursion_limit": step_limit}, stream_mode="values"):
            final = values
    except GraphRecursionError:
        LOGGER.warning("session stopped after %d steps", step_limit)
        final = {
            **final,
            "phase": Phase.ABORTED,
            "aborted_reason": final.get("aborted_reason") or AbortReason.UNEXPECTED_ERROR,
        }
    return final


class CommandEngine:
    """One natural-language request in, one finished session out."""

    def __init__(
        self,
        oracle: Oracle,
        *,
        gate: Optional[ConfirmationGate] = None,
        executor: Optional[ProcessExecutor] = None,
        reporter: Optional[Reporter] = None,
        max_tries: int = DEFAULT_MAX_TRIES,
        auto_approve: bool = False,
        json_mode: bool = False,
        verbose: bool = False,
        step_limit: int = DEFAULT_STEP_LIMIT,
    ) -> None:
        self.max_tries = max_tries
        self.auto_approve = auto_approve
        self.json_mode = json_mode
        self.step_limit = step_limit
        self.deps = EngineDeps(
            oracle=oracle,
            gate=gate or ConfirmationGate(),
            executor=executor or ProcessExecutor(),
            reporter=reporter or Reporter(verbose=verbose, json_mode=json_mode),
            cancel=CancellationToken(),
        )
        self.app = build_graph(self.deps)

    def run(self, query: str) -> CommandContext:
        context = initial_context(
            query,
            max_tries=self.max_tries,
            auto_approve=self.auto_approve,
            json_mode=self.json_mode,
        )
        final = run_session(self.app, context, self.step_limit)
        LOGGER.info(
            "session finished phase=%s reason=%s attempts=%s",
            final.get("phase"),
            final.get("aborted_reason"),
            final.get("attempt_count"),
        )
        if self.json_mode:
            emit_summary(final)
        return final
