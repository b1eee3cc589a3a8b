import pytest
from langchain_core.messages import AIMessage, HumanMessage

from aish.analysis import (
    FALLBACK_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    EnvironmentContext,
    analyze_command,
    analyze_failure,
    build_command_prompt,
    build_failure_prompt,
)
from aish.llm import OracleError, Unparseable
from aish.models import CommandAnalysis, FailureAnalysis, LastError

from .conftest import FakeOracle, analysis, failure


ERROR = LastError(command="ls --colour=sometimes", exit_code=2, stdout="", stderr="ls: invalid argument")


def test_environment_description(fixed_env):
    text = fixed_env.describe()
    assert "OS: Linux 6.1.0 (linux x86_64)" in text
    assert "Date: 2026-01-02" in text
    assert "CWD: /home/tester/project" in text


def test_capture_reads_live_environment(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    env = EnvironmentContext.capture()
    assert env.cwd == str(tmp_path)
    assert env.os_type


def test_command_prompt_wording_depends_on_history(fixed_env):
    fresh = build_command_prompt("list files", False, fixed_env)
    follow_up = build_command_prompt("list files", True, fixed_env)
    assert 'Analyze this user query and generate an appropriate shell command: "list files"' in fresh
    assert 'Based on our conversation, analyze this request' in follow_up
    assert fresh.startswith("Environment Context:")
    assert fresh.rstrip().endswith("JSON only:")


def test_failure_prompt_includes_run_details(fixed_env):
    prompt = build_failure_prompt(ERROR, "list files", fixed_env)
    assert "Command: ls --colour=sometimes" in prompt
    assert "Exit Code: 2" in prompt
    assert "Standard Output: (none)" in prompt
    assert "Standard Error: ls: invalid argument" in prompt
    assert 'Original User Query: "list files"' in prompt


def test_analyze_command_sends_history_then_prompt(fixed_env):
    oracle = FakeOracle(analyses=[analysis("ls -la")])
    history = [HumanMessage(content="I want to: list"), AIMessage(content="ls"), HumanMessage(content="all")]

    result = analyze_command(oracle, "all", history, fixed_env)

    assert isinstance(result, CommandAnalysis)
    assert result.command == "ls -la"
    schema, system_prompt, messages = oracle.structured_calls[0]
    assert schema is CommandAnalysis
    assert system_prompt == SYSTEM_PROMPT
    assert messages[:3] == history
    assert "Based on our conversation" in messages[3].content


def test_analyze_command_unparseable_raises(fixed_env):
    oracle = FakeOracle(analyses=[Unparseable(raw_text="nope", reason="no JSON object in model reply")])
    with pytest.raises(OracleError, match="Failed to analyze command"):
        analyze_command(oracle, "list files", [], fixed_env)


def test_analyze_failure_structured(fixed_env):
    oracle = FakeOracle(failures=[failure("ls --color=auto")])
    result = analyze_failure(oracle, ERROR, "list files", [], fixed_env)
    assert result.alternative_command == "ls --color=auto"
    assert oracle.text_calls == []


def test_analyze_failure_falls_back_to_plain_text(fixed_env):
    oracle = FakeOracle(
        failures=[Unparseable(raw_text="garbled", reason="bad")],
        text="  The option is spelled --color.  ",
    )
    result = analyze_failure(oracle, ERROR, "list files", [], fixed_env)

    assert result == FailureAnalysis.from_plain_text("The option is spelled --color.")
    assert result.solution == "See explanation above"
    assert result.alternative_command is None
    system_prompt, messages = oracle.text_calls[0]
    assert system_prompt == FALLBACK_SYSTEM_PROMPT
    assert "Briefly explain why it failed" in messages[-1].content


def test_failure_analysis_blank_alternative_is_none():
    parsed = FailureAnalysis.model_validate({"explanation": "e", "solution": "s", "alternativeCommand": "   "})
    assert parsed.alternative_command is None
    assert parsed.needs_interactive_mode is False
