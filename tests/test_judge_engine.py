import os
import shutil
import sys
import time

import pytest
from conftest import COMPILED, FakeCapabilities, FakeRunner

from sandbox_judge.config import Settings
from sandbox_judge.core.exceptions import (
    EmptySourceError,
    ExecutionInfrastructureError,
    InvalidTestCasesError,
    SourceTooLargeError,
    ToolchainUnavailableError,
    UnsupportedLanguageError,
)
from sandbox_judge.schemas.execution import ErrorType, ExecutionResult
from sandbox_judge.schemas.submission import TestCase, Verdict
from sandbox_judge.services.judge_engine import JudgeEngine

posix_only = pytest.mark.skipif(os.name != "posix", reason="host sandbox relies on POSIX rlimits")

ADD_ONE = "print(int(input()) + 1)"


def add_one(command, stdin):
    """Behaves like ADD_ONE, and reports compile success for compiled languages"""
    if command[0] == "sh":
        return COMPILED
    try:
        return ExecutionResult(stdout=f"{int(stdin) + 1}\n", runtime_ms=5, memory_kb=int(stdin) * 10)
    except ValueError:
        return ExecutionResult(stderr="ValueError: invalid literal for int()", exit_code=1, runtime_ms=3)


def _engine(settings, respond=add_one, capabilities=None):
    runner = FakeRunner(respond)
    engine = JudgeEngine(settings, capabilities=capabilities or FakeCapabilities(), runner=runner)
    return engine, runner


def test_all_cases_pass(host_settings):
    engine, _ = _engine(host_settings)
    verdict = engine.execute(ADD_ONE, "python", [{"input": "1", "expected_output": "2"}, TestCase(input="41", expected_output="42")])
    assert verdict.status == Verdict.ACCEPTED
    assert verdict.passed is True
    assert verdict.visible_passed is True
    assert verdict.tests_passed == 2
    assert verdict.total_execution_time_ms == 10
    assert verdict.peak_memory_kb == 410


def test_results_keep_test_case_order_under_parallelism(scratch_root):
    settings = Settings(
        EXECUTION_MODE="host", TEMP_DIR=str(scratch_root), TESTCASE_CONCURRENCY=4, HOST_ISOLATE_NETWORK=False
    )
    engine, _ = _engine(settings)
    cases = [{"input": str(i), "expected_output": str(i + 1)} for i in range(20)]
    verdict = engine.execute(ADD_ONE, "python", cases)
    assert [r.input for r in verdict.test_case_results] == [str(i) for i in range(20)]
    assert verdict.passed is True


def test_wrong_answer_and_runtime_error_aggregate(host_settings):
    engine, _ = _engine(host_settings)
    verdict = engine.execute(
        ADD_ONE,
        "python",
        [
            {"input": "1", "expected_output": "2"},
            {"input": "1", "expected_output": "3"},
            {"input": "oops", "expected_output": "0"},
        ],
    )
    statuses = [r.status for r in verdict.test_case_results]
    assert statuses == [Verdict.ACCEPTED, Verdict.WRONG_ANSWER, Verdict.RUNTIME_ERROR]
    assert verdict.status == Verdict.RUNTIME_ERROR
    assert verdict.test_case_results[2].error == "ValueError: invalid literal for int()"
    assert verdict.test_case_results[2].exit_code == 1


def test_timeout_yields_time_limit_exceeded(host_settings):
    def hang(command, stdin):
        return ExecutionResult(
            stdout="partial",
            stderr="Time limit exceeded",
            exit_code=124,
            timed_out=True,
            error_type=ErrorType.TIME_LIMIT_EXCEEDED,
        )

    engine, _ = _engine(host_settings, hang)
    verdict = engine.execute("while True: pass", "python", [{"input": "", "expected_output": "x"}])
    assert verdict.status == Verdict.TIME_LIMIT_EXCEEDED
    assert verdict.test_case_results[0].actual_output == "partial"


def test_compilation_error_short_circuits(host_settings):
    def broken(command, stdin):
        return ExecutionResult(exit_code=1, stderr="main.cpp:1:5: error: expected ';'")

    engine, runner = _engine(host_settings, broken)
    verdict = engine.execute("int main( {", "cpp", [{"input": "1", "expected_output": "2"}] * 3)
    assert verdict.status == Verdict.COMPILATION_ERROR
    assert verdict.passed is False
    assert verdict.test_case_results == []
    assert verdict.compile_output == "main.cpp:1:5: error: expected ';'"
    assert len(runner.calls) == 1


def test_hidden_cases_are_masked(host_settings):
    engine, _ = _engine(host_settings)
    verdict = engine.execute(
        ADD_ONE,
        "python",
        [
            {"input": "1", "expected_output": "2"},
            {"input": "7", "expected_output": "9", "hidden": True},
            {"input": "bad", "expected_output": "9", "hidden": True},
        ],
    )
    visible, hidden_wrong, hidden_crash = verdict.test_case_results
    assert visible.input == "1"
    assert hidden_wrong.input == "Hidden"
    assert hidden_wrong.expected_output == "Hidden"
    assert hidden_wrong.actual_output == "Incorrect"
    assert hidden_crash.error == "Runtime Error"
    assert verdict.visible_passed is True
    assert verdict.passed is False


def test_per_case_timeout_overrides_option(host_settings):
    engine, runner = _engine(host_settings)
    engine.execute(
        ADD_ONE,
        "python",
        [{"input": "1", "expected_output": "2", "timeout_ms": 500}, {"input": "1", "expected_output": "2"}],
        {"timeout_ms": 1500},
    )
    assert [call["timeout_ms"] for call in runner.calls] == [500, 1500]
    assert all(call["accounting"] for call in runner.calls)


def test_relaxed_option_ignores_case(host_settings):
    def shout(command, stdin):
        return ExecutionResult(stdout="YES \n")

    engine, _ = _engine(host_settings, shout)
    strict = engine.execute("print('YES ')", "python", [{"input": "", "expected_output": "yes"}])
    relaxed = engine.execute(
        "print('YES ')", "python", [{"input": "", "expected_output": "yes"}], {"compare_mode": "relaxed"}
    )
    assert strict.status == Verdict.WRONG_ANSWER
    assert relaxed.status == Verdict.ACCEPTED


def test_scratch_directories_are_removed(host_settings, scratch_root):
    engine, _ = _engine(host_settings)
    engine.execute(ADD_ONE, "python", [{"input": "1", "expected_output": "2"}])
    engine.execute("int main( {", "cpp", [{"input": "1", "expected_output": "2"}])
    assert list(scratch_root.iterdir()) == []


def test_client_errors_are_raised_before_running(scratch_root):
    settings = Settings(EXECUTION_MODE="host", TEMP_DIR=str(scratch_root), MAX_CODE_SIZE=16)
    engine, runner = _engine(settings)
    case = [{"input": "1", "expected_output": "2"}]

    with pytest.raises(UnsupportedLanguageError):
        engine.execute("print(1)", "cobol", case)
    with pytest.raises(EmptySourceError):
        engine.execute("  \n\x00", "python", case)
    with pytest.raises(SourceTooLargeError):
        engine.execute("x" * 17, "python", case)
    with pytest.raises(InvalidTestCasesError):
        engine.execute("print(1)", "python", [])
    assert runner.calls == []


def test_runtime_toolchain_fault_names_the_overridden_binary(host_settings):
    def vanished(command, stdin):
        return ExecutionResult(stderr="gone", exit_code=127, error_type=ErrorType.TOOLCHAIN_UNAVAILABLE)

    engine, _ = _engine(host_settings, respond=vanished)
    with pytest.raises(ToolchainUnavailableError) as exc_info:
        engine.execute(ADD_ONE, "python", [{"input": "1", "expected_output": "2"}])
    assert exc_info.value.missing == [sys.executable]


def test_missing_toolchain_raises_for_execute_but_not_run_once(host_settings):
    engine, runner = _engine(host_settings, capabilities=FakeCapabilities(missing=["g++"]))
    with pytest.raises(ToolchainUnavailableError) as exc_info:
        engine.execute("int main(){}", "cpp", [{"input": "", "expected_output": ""}])
    assert exc_info.value.missing == ["g++"]

    result = engine.run_once("int main(){}", "cpp")
    assert result.exit_code == 127
    assert result.error_type == ErrorType.TOOLCHAIN_UNAVAILABLE
    assert "g++" in result.stderr
    assert runner.calls == []


def test_runner_infrastructure_fault_is_raised(host_settings):
    def spawn_failure(command, stdin):
        return ExecutionResult(exit_code=126, stderr="Process spawn failed", error_type=ErrorType.INFRASTRUCTURE_ERROR)

    engine, _ = _engine(host_settings, spawn_failure)
    with pytest.raises(ExecutionInfrastructureError) as exc_info:
        engine.execute(ADD_ONE, "python", [{"input": "1", "expected_output": "2"}])
    assert exc_info.value.details == {"language": "python", "phase": "run"}


def test_run_once_compares_with_run_policy(host_settings):
    def spaced(command, stdin):
        return ExecutionResult(stdout="1  2\n3\n")

    engine, _ = _engine(host_settings, spaced)
    assert engine.run_once("print(1)", "python", expected_output="1 2 3").passed is True
    assert engine.run_once("print(1)", "python").passed is None


def test_run_once_reports_compile_and_runtime_errors(host_settings):
    def broken(command, stdin):
        if command[0] == "sh":
            return ExecutionResult(exit_code=1, stderr="error: expected ';'")
        return ExecutionResult(exit_code=1)

    engine, _ = _engine(host_settings, broken)
    compiled = engine.run_once("int main( {", "c")
    assert compiled.error_type == ErrorType.COMPILE_ERROR
    assert compiled.stderr == "error: expected ';'"

    crashed = engine.run_once("raise SystemExit(1)", "python")
    assert crashed.error_type == ErrorType.RUNTIME_ERROR


@posix_only
def test_python_end_to_end_on_host(host_settings):
    engine = JudgeEngine(host_settings)
    verdict = engine.execute(ADD_ONE, "python", [{"input": "41", "expected_output": "42"}])
    assert verdict.status == Verdict.ACCEPTED
    assert verdict.test_case_results[0].actual_output == "42\n"


@posix_only
def test_python_timeout_end_to_end_on_host(host_settings):
    engine = JudgeEngine(host_settings)
    started = time.monotonic()
    verdict = engine.execute(
        "while True:\n    pass\n", "python", [{"input": "", "expected_output": "", "timeout_ms": 1000}]
    )
    elapsed = time.monotonic() - started
    assert verdict.status == Verdict.TIME_LIMIT_EXCEEDED
    assert verdict.test_case_results[0].exit_code == 124
    assert elapsed < 1.5


@posix_only
def test_program_mimicking_a_missing_toolchain_is_a_runtime_error(host_settings):
    code = "import sys\nsys.stderr.write('time: cannot run foo')\nsys.exit(127)\n"
    verdict = JudgeEngine(host_settings).execute(code, "python", [{"input": "", "expected_output": ""}])
    assert verdict.status == Verdict.RUNTIME_ERROR
    assert verdict.test_case_results[0].exit_code == 127


@posix_only
@pytest.mark.skipif(shutil.which("g++") is None, reason="g++ not installed")
def test_cpp_syntax_error_end_to_end_on_host(host_settings):
    engine = JudgeEngine(host_settings)
    verdict = engine.execute("int main( {", "cpp", [{"input": "", "expected_output": ""}])
    assert verdict.status == Verdict.COMPILATION_ERROR
    assert "error" in verdict.compile_output


@posix_only
@pytest.mark.skipif(shutil.which("javac") is None or shutil.which("java") is None, reason="JDK not installed")
def test_java_without_public_class_runs_as_main(scratch_root):
    settings = Settings(
        EXECUTION_MODE="host",
        TEMP_DIR=str(scratch_root),
        SANDBOX_PIDS_LIMIT=4096,
        HOST_ISOLATE_NETWORK=False,
        COMPILE_TIMEOUT_MS=60000,
        RUN_TIMEOUT_MS=20000,
    )
    code = (
        "import java.util.Scanner;\n"
        "class Main {\n"
        "  public static void main(String[] args) {\n"
        "    System.out.println(new Scanner(System.in).nextInt() * 2);\n"
        "  }\n"
        "}\n"
    )
    verdict = JudgeEngine(settings).execute(code, "java", [{"input": "21", "expected_output": "42"}])
    assert verdict.status == Verdict.ACCEPTED


def test_module_level_entry_points_are_exported():
    import sandbox_judge

    assert callable(sandbox_judge.execute)
    assert callable(sandbox_judge.run_once)
