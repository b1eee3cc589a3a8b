from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Optional

from prompt_toolkit import PromptSession


class UserAction(enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    MODIFY = "modify"


@dataclass(frozen=True)
class UserDecision:
    action: UserAction
    text: Optional[str] = None


APPROVE_TOKENS = ("y", "yes")
REJECT_TOKENS = ("", "n", "no")


def interpret_response(response: str) -> UserDecision:
    """Map a raw answer to the ``[y/N/modify]`` prompt onto a decision.

    Anything longer than one character that is not a yes/no token is a
    modification request and keeps the user's text (trimmed, original case).
    A lone unrecognized character rejects.
    """
    stripped = response.strip()
    token = stripped.lower()
    if token in APPROVE_TOKENS:
        return UserDecision(UserAction.APPROVE)
    if token in REJECT_TOKENS:
        return UserDecision(UserAction.REJECT)
    if len(token) > 1:
        return UserDecision(UserAction.MODIFY, stripped)
    return UserDecision(UserAction.REJECT)


class ConfirmationGate:
    """Interactive y/N/modify prompt in front of every execution.

    ``prompt`` is any callable taking the message and returning the typed line;
    by default a prompt_toolkit session is used.
    """

    SUFFIX = "[y/N/modify]"

    def __init__(self, prompt: Optional[Callable[[str], str]] = None) -> None:
        self._prompt = prompt
        self._session: Optional[PromptSession] = None

    def _read(self, message: str) -> str:
        if self._prompt is not None:
            return self._prompt(message)
        if self._session is None:
            self._session = PromptSession()
        return self._session.prompt(message)

    def ask(self, command: str) -> UserDecision:
        try:
            answer = self._read(f"{command} {self.SUFFIX} ")
        except EOFError:
            # Ctrl-D / closed stdin behaves like an empty answer
            answer = ""
        return interpret_response(answer)
