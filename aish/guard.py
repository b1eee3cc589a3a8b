from __future__ import annotations

from dataclasses import dataclass


MAX_SUDO_ATTEMPTS = 3
DEFAULT_MAX_TRIES = 3


@dataclass(frozen=True)
class LoopGuard:
    """Retry ceilings for one session.

    ``attempt_count`` only grows on a completed non-zero execution, so rejected
    or blocked commands never consume a try. Sudo password attempts have their
    own hard ceiling that applies regardless of ``max_tries``.
    """

    max_tries: int = DEFAULT_MAX_TRIES
    max_sudo_attempts: int = MAX_SUDO_ATTEMPTS

    def exhausted(self, attempt_count: int) -> bool:
        return attempt_count >= self.max_tries

    def sudo_exhausted(self, sudo_attempts: int) -> bool:
        return sudo_attempts >= self.max_sudo_attempts
