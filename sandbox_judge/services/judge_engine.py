"""Engine facade: validate a request, judge it, and sanitize the verdict"""

import logging
from functools import lru_cache
from typing import Any, Dict, Optional, Sequence, Union

from sandbox_judge.config import Settings, get_settings
from sandbox_judge.core.exceptions import (
    EmptySourceError,
    InvalidTestCasesError,
    SourceTooLargeError,
    ToolchainUnavailableError,
)
from sandbox_judge.core.metrics import EXECUTIONS_TOTAL
from sandbox_judge.schemas.execution import (
    TOOLCHAIN_MISSING_EXIT_CODE,
    ErrorType,
    ExecuteOptions,
    ExecutionResult,
)
from sandbox_judge.schemas.submission import SubmissionVerdict, TestCase
from sandbox_judge.services.capabilities import ToolchainCapabilities
from sandbox_judge.services.comparator import RUN_COMPARE, compare
from sandbox_judge.services.compiler import Compiler
from sandbox_judge.services.language_registry import LanguageRegistry
from sandbox_judge.services.process_runner import ProcessRunner, create_process_runner
from sandbox_judge.services.sanitizer import sanitize_all
from sandbox_judge.services.test_runner import TestCaseRunner

logger = logging.getLogger(__name__)

TestCaseInput = Union[TestCase, Dict[str, Any]]


class JudgeEngine:
    """Entry point for judged submissions and free-form runs"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[LanguageRegistry] = None,
        capabilities: Optional[ToolchainCapabilities] = None,
        runner: Optional[ProcessRunner] = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry or LanguageRegistry.from_settings(self.settings)
        self.capabilities = capabilities or ToolchainCapabilities(self.settings)
        self.runner = runner or create_process_runner(self.settings, self.capabilities)
        self.compiler = Compiler(self.runner, self.settings)
        self.test_runner = TestCaseRunner(self.runner, self.compiler, self.settings)

    def _validate_code(self, code: str) -> str:
        # Remove null bytes that might cause issues
        code = (code or "").replace("\x00", "")
        if not code.strip():
            raise EmptySourceError()
        size = len(code.encode("utf-8"))
        if size > self.settings.MAX_CODE_SIZE:
            raise SourceTooLargeError(size, self.settings.MAX_CODE_SIZE)
        return code

    @staticmethod
    def _coerce_test_cases(test_cases: Optional[Sequence[TestCaseInput]]) -> list:
        if not test_cases:
            raise InvalidTestCasesError()
        coerced = []
        for index, tc in enumerate(test_cases):
            if isinstance(tc, TestCase):
                coerced.append(tc)
            elif isinstance(tc, dict):
                try:
                    coerced.append(TestCase.model_validate(tc))
                except ValueError as e:
                    raise InvalidTestCasesError(f"Test case {index} is invalid: {e}")
            else:
                raise InvalidTestCasesError(f"Test case {index} must be an object")
        return coerced

    def _prepare(self, code: str, language: str):
        code = self._validate_code(code)
        spec = self.registry.resolve(language)
        return code, spec

    def execute(
        self,
        code: str,
        language: str,
        test_cases: Sequence[TestCaseInput],
        options: Optional[Union[ExecuteOptions, Dict[str, Any]]] = None,
    ) -> SubmissionVerdict:
        """
        Judge ``code`` against every test case.

        Args:
            code: Submitted source text
            language: Language id or alias
            test_cases: Ordered test cases (models or plain dicts)
            options: Timeout and comparison overrides

        Returns:
            SubmissionVerdict with hidden cases masked

        Raises:
            JudgeClientError: Bad language, empty/oversized code or no test cases.
            ToolchainUnavailableError: The configured toolchain is not present.
            ExecutionInfrastructureError: Scratch directory or spawn failure.
        """
        code, spec = self._prepare(code, language)
        cases = self._coerce_test_cases(test_cases)
        if isinstance(options, dict):
            options = ExecuteOptions.model_validate(options)

        self.capabilities.require(spec)

        logger.info("Judging submission language=%s test_cases=%d", spec.id.value, len(cases))
        verdict = self.test_runner.run_all(spec, code, cases, options)
        verdict = verdict.model_copy(
            update={"test_case_results": sanitize_all(cases, verdict.test_case_results)}
        )

        EXECUTIONS_TOTAL.labels(spec.id.value, verdict.status.value).inc()
        logger.info(
            "Judged submission language=%s status=%s passed=%d/%d time_ms=%d",
            spec.id.value,
            verdict.status.value,
            verdict.tests_passed,
            verdict.total_tests,
            verdict.total_execution_time_ms,
        )
        return verdict

    @staticmethod
    def _missing_toolchain_result(error: ToolchainUnavailableError) -> ExecutionResult:
        return ExecutionResult(
            stderr=error.message,
            exit_code=TOOLCHAIN_MISSING_EXIT_CODE,
            error_type=ErrorType.TOOLCHAIN_UNAVAILABLE,
        )

    def run_once(
        self,
        code: str,
        language: str,
        stdin: str = "",
        expected_output: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> ExecutionResult:
        """
        Run code once and return raw output, no verdict.
        Used for free-form test runs so users can experiment.

        A missing toolchain comes back as exit code 127 rather than an exception.
        """
        code, spec = self._prepare(code, language)
        try:
            self.capabilities.require(spec)
            with self.test_runner.session(spec, code) as session:
                compiled = session.compile_result
                if not compiled.success:
                    EXECUTIONS_TOTAL.labels(spec.id.value, "compile_error").inc()
                    return ExecutionResult(
                        stderr=compiled.diagnostics,
                        exit_code=compiled.exit_code or 1,
                        runtime_ms=compiled.runtime_ms,
                        timed_out=compiled.timed_out,
                        error_type=ErrorType.COMPILE_ERROR,
                    )
                result = session.execute(stdin or "", timeout_ms)
        except ToolchainUnavailableError as e:
            EXECUTIONS_TOTAL.labels(spec.id.value, ErrorType.TOOLCHAIN_UNAVAILABLE).inc()
            return self._missing_toolchain_result(e)

        update: Dict[str, Any] = {}
        if result.error_type is None and result.exit_code != 0:
            update["error_type"] = ErrorType.RUNTIME_ERROR
        if expected_output is not None:
            update["passed"] = result.exit_code == 0 and compare(result.stdout, expected_output, RUN_COMPARE)
        if update:
            result = result.model_copy(update=update)

        EXECUTIONS_TOTAL.labels(spec.id.value, result.error_type or "ok").inc()
        logger.info(
            "Run finished language=%s exit_code=%s runtime_ms=%s",
            spec.id.value,
            result.exit_code,
            result.runtime_ms,
        )
        return result


@lru_cache()
def get_judge_engine() -> JudgeEngine:
    """Get cached engine built from the environment settings"""
    return JudgeEngine(get_settings())


def execute(
    code: str,
    language: str,
    test_cases: Sequence[TestCaseInput],
    options: Optional[Union[ExecuteOptions, Dict[str, Any]]] = None,
) -> SubmissionVerdict:
    return get_judge_engine().execute(code, language, test_cases, options)


def run_once(
    code: str,
    language: str,
    stdin: str = "",
    expected_output: Optional[str] = None,
    timeout_ms: Optional[int] = None,
) -> ExecutionResult:
    return get_judge_engine().run_once(code, language, stdin, expected_output, timeout_ms)
