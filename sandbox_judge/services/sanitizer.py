"""Mask hidden test case details before results leave the engine"""

from typing import List, Sequence

from sandbox_judge.schemas.submission import TestCase, TestCaseResult

HIDDEN = "Hidden"


def sanitize(test_case: TestCase, result: TestCaseResult) -> TestCaseResult:
    if not test_case.hidden:
        return result
    # stderr can echo the hidden input, so the verdict name replaces it
    return result.model_copy(
        update={
            "input": HIDDEN,
            "expected_output": HIDDEN,
            "actual_output": "Correct" if result.passed else "Incorrect",
            "error": result.status.value if result.error else None,
        }
    )


def sanitize_all(test_cases: Sequence[TestCase], results: Sequence[TestCaseResult]) -> List[TestCaseResult]:
    return [sanitize(tc, result) for tc, result in zip(test_cases, results)]
