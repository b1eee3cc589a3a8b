"""Session settings merged from CLI flags, environment variables and ``.env``."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .executor import DEFAULT_MAX_CAPTURE, default_shell
from .graph import DEFAULT_STEP_LIMIT
from .guard import DEFAULT_MAX_TRIES

DEFAULT_LLM_TIMEOUT = 30.0


def _to_positive_int(value: object, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default


def _to_positive_float(value: object, default: Optional[float]) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


@dataclass(frozen=True)
class Settings:
    provider: Optional[str] = None
    model: Optional[str] = None
    timeout: Optional[float] = None
    force_tty: bool = False
    verbose: bool = False
    auto_approve: bool = False
    max_tries: int = DEFAULT_MAX_TRIES
    json_mode: bool = False
    llm_timeout: float = DEFAULT_LLM_TIMEOUT
    shell: Optional[str] = None
    max_capture: int = DEFAULT_MAX_CAPTURE
    step_limit: int = DEFAULT_STEP_LIMIT

    @classmethod
    def from_sources(
        cls,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        force_tty: bool = False,
        verbose: bool = False,
        auto_approve: bool = False,
        max_tries: Optional[int] = None,
        json_mode: bool = False,
        env: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        """Flags win over environment values, which win over defaults."""
        env = os.environ if env is None else env
        return cls(
            provider=provider,
            model=model,
            timeout=_to_positive_float(timeout, None) or _to_positive_float(env.get("AISH_TIMEOUT"), None),
            force_tty=force_tty,
            verbose=verbose,
            auto_approve=auto_approve,
            max_tries=(
                max_tries
                if max_tries is not None
                else _to_positive_int(env.get("AISH_MAX_TRIES"), DEFAULT_MAX_TRIES)
            ),
            json_mode=json_mode,
            llm_timeout=_to_positive_float(env.get("AISH_LLM_TIMEOUT"), DEFAULT_LLM_TIMEOUT) or DEFAULT_LLM_TIMEOUT,
            shell=env.get("AISH_SHELL") or default_shell(),
            max_capture=_to_positive_int(env.get("AISH_MAX_CAPTURE"), DEFAULT_MAX_CAPTURE),
            step_limit=_to_positive_int(env.get("AISH_STEP_LIMIT"), DEFAULT_STEP_LIMIT),
        )
