"""
Pattern-based classifiers for command text and process output.

All helpers are pure (string in, classification out). The sudo detection is a
plain word-boundary match: a command that merely mentions the word, e.g.
``echo "run sudo later"``, is also reported as using sudo. Callers accept that
false positive; the worst outcome is an unnecessary password prompt.

Pipe detection is just as coarse: ``||`` and a quoted ``|`` also count as a
pipe, which only moves such sudo commands onto the pre-authentication path.
"""

from __future__ import annotations

import re
from typing import List


SUDO_PATTERN = re.compile(r"\bsudo\b")

# Localized "Password:" prompts printed by sudo/su on various systems.
PASSWORD_PROMPTS: List[str] = [
    "Password",
    "Mot de passe",
    "Contraseña",
    "Passwort",
    "パスワード",
    "密码",
    "Пароль",
]

PASSWORD_PROMPT_PATTERN = re.compile(
    r"^(?:" + "|".join(re.escape(p) for p in PASSWORD_PROMPTS) + r"):[ \t]*$",
    re.MULTILINE,
)

# "[sudo] password for alice: " may share a chunk with the real output
SUDO_PROMPT_PATTERN = re.compile(r"\[sudo\][^:\n]*:[ \t]*")

SUDO_AUTH_FAILURE_MARKERS: List[str] = [
    "Sorry, try again",
    "incorrect password",
    "authentication failure",
]

PERMISSION_ERROR_MARKERS: List[str] = [
    "Permission denied",
    "Operation not permitted",
    "Sorry, try again",
    "sudo: 3 incorrect password attempts",
    "authentication failure",
]


def uses_sudo(command: str) -> bool:
    return bool(SUDO_PATTERN.search(command))


def has_pipe(command: str) -> bool:
    return "|" in command


def inject_sudo_stdin(command: str) -> str:
    """Rewrite every ``sudo`` so it reads the password from standard input."""
    return SUDO_PATTERN.sub("sudo -S", command)


def is_password_prompt(text: str) -> bool:
    """True when an output chunk is a sudo/localized password prompt."""
    return "[sudo]" in text or bool(PASSWORD_PROMPT_PATTERN.search(text))


def strip_password_prompts(text: str) -> str:
    return PASSWORD_PROMPT_PATTERN.sub("", SUDO_PROMPT_PATTERN.sub("", text))


def is_sudo_auth_failure(stderr: str) -> bool:
    return any(marker in stderr for marker in SUDO_AUTH_FAILURE_MARKERS)


def is_permission_error(stderr: str) -> bool:
    return any(marker in stderr for marker in PERMISSION_ERROR_MARKERS)


__all__ = [
    "PASSWORD_PROMPTS",
    "uses_sudo",
    "has_pipe",
    "inject_sudo_stdin",
    "is_password_prompt",
    "strip_password_prompts",
    "is_sudo_auth_failure",
    "is_permission_error",
]
