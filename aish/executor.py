"""
Subprocess supervision for a single generated command.

One run spawns ``<shell> -c 'set -o pipefail; <command>'`` and races four
outcomes: normal exit, timeout, cancellation (Ctrl-C or an explicit
``CancellationToken.cancel()``) and spawn failure. The first outcome to land in
the run's result slot decides the ``ExecutionResult``; the others are dropped.

Captured runs get their own process group, so a timeout or cancellation
terminates every stage of a pipeline, not just the wrapper shell. Runs in TTY
mode stay in the terminal's process group.
"""

from __future__ import annotations

import codecs
import logging
import os
import shutil
import signal
import subprocess
import sys
import threading
from typing import Any, Callable, Dict, List, Optional, TextIO

from prompt_toolkit import prompt as pt_prompt

from .models import INTERRUPT_EXIT_CODE, TIMEOUT_EXIT_CODE, ExecutionResult
from .safety import has_pipe, inject_sudo_stdin, is_password_prompt, strip_password_prompts, uses_sudo

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_CAPTURE = 100_000
INTERACTIVE_STDOUT = "Interactive command completed"
_POLL_INTERVAL = 0.1
_READ_SIZE = 4096


def default_shell() -> str:
    return shutil.which("bash") or "sh"


def ask_sudo_password(message: str) -> str:
    try:
        return pt_prompt(message, is_password=True)
    except EOFError:
        return ""


class CancellationToken:
    """Per-session cancellation flag observed by the executor's wait loop."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def reset(self) -> None:
        self._event.clear()


class _ResultSlot:
    """Single-assignment holder; later resolutions are ignored."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._result: Optional[ExecutionResult] = None
        self.outcome: Optional[str] = None

    def resolve(self, outcome: str, build: Callable[[], ExecutionResult]) -> bool:
        with self._lock:
            if self._ready.is_set():
                return False
            self._result = build()
            self.outcome = outcome
            self._ready.set()
            return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    @property
    def result(self) -> ExecutionResult:
        assert self._result is not None
        return self._result


def _tail(text: str, limit: int) -> str:
    if limit > 0 and len(text) > limit:
        return text[-limit:]
    return text


class _Run:
    """Book-keeping for one spawned process."""

    def __init__(
        self,
        proc: subprocess.Popen,
        *,
        interactive: bool,
        password: Optional[str],
        deliver_password: bool,
        out: TextIO,
        err: TextIO,
        max_capture: int,
        own_group: bool = False,
    ) -> None:
        self.proc = proc
        self.interactive = interactive
        self.own_group = own_group
        self.password = password
        self.deliver_password = deliver_password
        self.out = out
        self.err = err
        self.max_capture = max_capture
        self.slot = _ResultSlot()
        self._stdout: List[str] = []
        self._stderr: List[str] = []
        self._lock = threading.Lock()
        self._separated = False
        self._password_sent = False
        self.readers: List[threading.Thread] = []

    # --- captured output

    def stdout(self) -> str:
        if self.interactive:
            return INTERACTIVE_STDOUT
        with self._lock:
            return _tail("".join(self._stdout), self.max_capture)

    def stderr(self) -> str:
        if self.interactive:
            return ""
        with self._lock:
            return _tail("".join(self._stderr), self.max_capture)

    # --- streaming

    def _separate(self, sink: TextIO) -> None:
        # one blank line between the password prompt and the first real output
        with self._lock:
            if self.password is None or self._separated:
                return
            self._separated = True
        sink.write("\n")

    def _on_stdout(self, text: str) -> None:
        visible = strip_password_prompts(text)
        if visible.strip():
            self._separate(self.out)
        if visible:
            self.out.write(visible)
            self.out.flush()
        with self._lock:
            self._stdout.append(visible)

    def _on_stderr(self, text: str) -> None:
        prompted = is_password_prompt(text)
        visible = strip_password_prompts(text)
        if visible.strip():
            self._separate(self.err)
        if visible:
            self.err.write(visible)
            self.err.flush()
        with self._lock:
            self._stderr.append(visible)
        if prompted and self.deliver_password and not self._password_sent:
            self._password_sent = True
            self._send_password()

    def _send_password(self) -> None:
        stdin = self.proc.stdin
        if stdin is None:
            return
        try:
            stdin.write((self.password or "").encode("utf-8") + b"\n")
            stdin.flush()
            stdin.close()
        except (BrokenPipeError, OSError) as exc:
            LOGGER.debug("could not deliver sudo password: %s", exc)

    def _pump(self, stream, handle: Callable[[str], None]) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        fd = stream.fileno()
        while True:
            try:
                chunk = os.read(fd, _READ_SIZE)
            except OSError:
                break
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                handle(text)
        rest = decoder.decode(b"", final=True)
        if rest:
            handle(rest)

    def start_readers(self) -> None:
        if self.interactive:
            return
        for stream, handle in ((self.proc.stdout, self._on_stdout), (self.proc.stderr, self._on_stderr)):
            if stream is None:
                continue
            t = threading.Thread(target=self._pump, args=(stream, handle), daemon=True)
            t.start()
            self.readers.append(t)

    def close_pipes(self) -> None:
        for stream in (self.proc.stdin, self.proc.stdout, self.proc.stderr):
            if stream is None:
                continue
            try:
                stream.close()
            except OSError as exc:
                LOGGER.debug("could not close pipe: %s", exc)

    def wait_for_exit(self) -> None:
        code = self.proc.wait()
        if code < 0:
            # killed by signal N; report 128+N like a shell does
            code = 128 - code
        for t in self.readers:
            t.join()
        self.close_pipes()
        self.slot.resolve(
            "exit",
            lambda: ExecutionResult(exit_code=code, stdout=self.stdout(), stderr=self.stderr()),
        )

    def terminate(self) -> None:
        try:
            if self.own_group:
                # the group outlives the shell while any pipeline stage is alive
                os.killpg(self.proc.pid, signal.SIGTERM)
            else:
                self.proc.terminate()
        except (ProcessLookupError, OSError) as exc:
            LOGGER.debug("terminate failed: %s", exc)


class ProcessExecutor:
    """Runs generated commands with sudo, timeout and interrupt handling.

    ``timeout`` is in seconds; ``None`` or a non-positive value disables it.
    ``force_tty`` makes every run inherit the terminal instead of capturing.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        force_tty: bool = False,
        shell: Optional[str] = None,
        password_prompt: Optional[Callable[[str], str]] = None,
        max_capture: int = DEFAULT_MAX_CAPTURE,
        out: Optional[TextIO] = None,
        err: Optional[TextIO] = None,
    ) -> None:
        self.timeout = timeout if timeout and timeout > 0 else None
        self.force_tty = force_tty
        self.shell = shell or default_shell()
        self.password_prompt = password_prompt or ask_sudo_password
        self.max_capture = max_capture
        self.out = out
        self.err = err

    def authenticate_sudo(self, password: str) -> ExecutionResult:
        """Refresh cached sudo credentials without running anything."""
        try:
            proc = subprocess.run(
                ["sudo", "-S", "-v"],
                input=password + "\n",
                capture_output=True,
                text=True,
            )
        except OSError as exc:
            return ExecutionResult(exit_code=1, stdout="", stderr=str(exc))
        return ExecutionResult(
            exit_code=proc.returncode,
            stdout="",
            stderr=strip_password_prompts(proc.stderr or ""),
        )

    def run(
        self,
        command: str,
        *,
        needs_interactive_mode: bool = False,
        is_sudo_retry: bool = False,
        cancel: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        cancel = cancel or CancellationToken()
        interactive = self.force_tty or needs_interactive_mode
        password: Optional[str] = None
        deliver_password = False

        if uses_sudo(command) and not interactive:
            message = "Enter sudo password (retry): " if is_sudo_retry else "Enter sudo password: "
            password = self.password_prompt(message)
            if has_pipe(command):
                # stdin is shared with the pipeline, so authenticate up front
                # and let the real command use the cached credentials
                auth = self.authenticate_sudo(password)
                if not auth.ok:
                    return auth
            else:
                command = inject_sudo_stdin(command)
                deliver_password = True

        return self._spawn(command, interactive, password, deliver_password, cancel)

    def _spawn(
        self,
        command: str,
        interactive: bool,
        password: Optional[str],
        deliver_password: bool,
        cancel: CancellationToken,
    ) -> ExecutionResult:
        argv = [self.shell, "-c", f"set -o pipefail; {command}"]
        LOGGER.debug("spawning %r (interactive=%s)", argv, interactive)
        group: Dict[str, Any] = {}
        if not interactive:
            if password is not None:
                # sudo caches credentials per controlling terminal, so keep it
                group["preexec_fn"] = os.setpgrp
            else:
                group["start_new_session"] = True
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if deliver_password else None,
                stdout=None if interactive else subprocess.PIPE,
                stderr=None if interactive else subprocess.PIPE,
                **group,
            )
        except OSError as exc:
            LOGGER.warning("spawn failed: %s", exc)
            return ExecutionResult(exit_code=1, stdout="", stderr=str(exc))

        run = _Run(
            proc,
            interactive=interactive,
            password=password,
            deliver_password=deliver_password,
            out=self.out or sys.stdout,
            err=self.err or sys.stderr,
            max_capture=self.max_capture,
            own_group=bool(group),
        )
        run.start_readers()
        threading.Thread(target=run.wait_for_exit, daemon=True).start()

        timer: Optional[threading.Timer] = None
        if self.timeout is not None:
            timer = threading.Timer(self.timeout, self._on_timeout, args=(run,))
            timer.daemon = True
            timer.start()

        try:
            try:
                while not run.slot.wait(_POLL_INTERVAL):
                    if cancel.cancelled:
                        self._on_interrupt(run)
            except KeyboardInterrupt:
                cancel.cancel()
                self._on_interrupt(run)
            run.slot.wait()
        finally:
            if timer is not None:
                timer.cancel()
            if cancel.cancelled:
                cancel.reset()

        LOGGER.info("command finished outcome=%s exit_code=%s", run.slot.outcome, run.slot.result.exit_code)
        return run.slot.result

    def _on_timeout(self, run: _Run) -> None:
        seconds = self.timeout or 0
        resolved = run.slot.resolve(
            "timeout",
            lambda: ExecutionResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=run.stdout(),
                stderr=run.stderr() + f"\nCommand timed out after {seconds:g} seconds",
            ),
        )
        if resolved:
            run.terminate()

    def _on_interrupt(self, run: _Run) -> None:
        resolved = run.slot.resolve(
            "interrupt",
            lambda: ExecutionResult(
                exit_code=INTERRUPT_EXIT_CODE,
                stdout=run.stdout(),
                stderr=run.stderr() + "\nCommand interrupted by user",
            ),
        )
        if resolved:
            run.terminate()
