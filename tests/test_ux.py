import io
import json

from rich.console import Console

from aish.models import CommandAnalysis, FailureAnalysis, FailureRecord, LastError
from aish.state import AbortReason, Phase
from aish.ux import Reporter, build_summary, emit_summary, exit_code_for


def human_reporter(verbose=False):
    buffer = io.StringIO()
    console = Console(file=buffer, force_terminal=False, color_system=None, width=200)
    return Reporter(verbose=verbose, console=console), buffer


def test_analysis_output_and_blocked_marker():
    reporter, buffer = human_reporter(verbose=True)
    reporter.analysis(
        CommandAnalysis(
            command="rm -rf /",
            explanation="deletes everything",
            is_dangerous=True,
            requires_external_packages=True,
            external_packages={"coreutils"},
        )
    )
    text = buffer.getvalue()
    assert "rm -rf /" in text
    assert "deletes everything" in text
    assert "Requires external packages: coreutils" in text
    assert "[BLOCKED]" in text


def test_markup_in_commands_is_printed_literally():
    reporter, buffer = human_reporter()
    reporter.analysis(CommandAnalysis(command="echo [bold]x[/bold]", explanation="e", is_dangerous=False))
    assert "echo [bold]x[/bold]" in buffer.getvalue()


def test_failure_analysis_solution_only_when_verbose():
    quiet, quiet_buf = human_reporter()
    loud, loud_buf = human_reporter(verbose=True)
    analysis = FailureAnalysis(explanation="bad flag", solution="drop it", alternative_command="ls")
    quiet.failure_analysis(analysis)
    loud.failure_analysis(analysis)
    assert "Solution: drop it" not in quiet_buf.getvalue()
    assert "Solution: drop it" in loud_buf.getvalue()
    assert "ls" in quiet_buf.getvalue()


def test_json_mode_reporter_is_silent():
    buffer = io.StringIO()
    reporter = Reporter(json_mode=True, console=Console(file=buffer))
    reporter.analysis(CommandAnalysis(command="ls", explanation="e", is_dangerous=True))
    reporter.max_tries(3)
    reporter.error(RuntimeError("boom"))
    with reporter.status("Writing command"):
        pass
    assert buffer.getvalue() == ""


def test_status_without_terminal_is_a_no_op():
    reporter, buffer = human_reporter()
    with reporter.status("Writing command"):
        pass
    assert buffer.getvalue() == ""


def aborted_context():
    error = LastError(command="sudo ls /root", exit_code=1, stdout="", stderr="Sorry, try again.")
    return {
        "phase": Phase.ABORTED,
        "query": "look in root",
        "original_query": "look in root",
        "current_analysis": CommandAnalysis(command="sudo ls /root", explanation="lists root", is_dangerous=False),
        "last_error": error,
        "attempt_count": 1,
        "failures": [FailureRecord.from_error(error, explanation="Authentication failed (incorrect sudo password)")],
        "aborted_reason": AbortReason.SUDO_AUTH_FAILED,
    }


def test_summary_omits_absent_failure_fields():
    summary = build_summary(aborted_context())
    assert summary["status"] == "aborted"
    assert summary["success"] is False
    assert summary["abortedReason"] == "sudo-auth-failed"
    assert summary["failures"] == [
        {
            "command": "sudo ls /root",
            "exitCode": 1,
            "explanation": "Authentication failed (incorrect sudo password)",
            "stdout": "",
            "stderr": "Sorry, try again.",
        }
    ]
    assert summary["alternativesTried"] == 0


def test_summary_falls_back_to_last_error_command():
    context = aborted_context()
    context["current_analysis"] = None
    summary = build_summary(context)
    assert summary["finalCommand"] == "sudo ls /root"
    assert summary["explanation"] is None


def test_success_summary_hides_reason():
    context = {"phase": Phase.SUCCESS, "query": "q", "original_query": "q", "aborted_reason": "timeout"}
    summary = build_summary(context)
    assert summary["abortedReason"] is None
    assert summary["attempts"] == 0


def test_emit_summary_is_one_compact_line():
    stream = io.StringIO()
    emit_summary(aborted_context(), stream)
    text = stream.getvalue()
    assert text.endswith("\n")
    assert text.count("\n") == 1
    assert ": " not in text.split('"stderr"')[0]
    assert json.loads(text)["originalQuery"] == "look in root"


def test_exit_codes():
    assert exit_code_for({"phase": Phase.SUCCESS}) == 0
    assert exit_code_for(aborted_context()) == 1
    timed_out = {**aborted_context(), "last_error": LastError("sleep 9", 124, "", "")}
    assert exit_code_for(timed_out) == 124
    assert exit_code_for({"phase": Phase.ABORTED, "aborted_reason": AbortReason.USER_REJECTED}) == 1
