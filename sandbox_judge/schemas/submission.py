"""Submission judging schemas"""

import json
from enum import Enum
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


class Verdict(str, Enum):
    """Judging outcome for a test case or a whole submission"""
    ACCEPTED = "Accepted"
    WRONG_ANSWER = "Wrong Answer"
    TIME_LIMIT_EXCEEDED = "Time Limit Exceeded"
    RUNTIME_ERROR = "Runtime Error"
    COMPILATION_ERROR = "Compilation Error"


def format_stdin(test_input: Any) -> str:
    """Convert test case input to stdin text.

    Examples:
        "5" -> "5"
        [10] -> "10\\n"
        ["abc", "def"] -> "abc\\ndef\\n"
        [[1,2,3], [4,5,6]] -> "1 2 3\\n4 5 6\\n"
    """
    if test_input is None:
        return ""
    if isinstance(test_input, str):
        return test_input

    lines = []
    if isinstance(test_input, list):
        for item in test_input:
            if isinstance(item, list):
                lines.append(" ".join(str(x) for x in item))
            else:
                lines.append(str(item))
    else:
        lines.append(str(test_input))

    return "\n".join(lines) + "\n"


class TestCase(BaseModel):
    """A single judged input/expected-output pair"""
    input: str = ""
    expected_output: str = Field(
        "", validation_alias=AliasChoices("expected_output", "expectedOutput", "expected", "output")
    )
    hidden: bool = Field(False, validation_alias=AliasChoices("hidden", "is_hidden", "isHidden"))
    timeout_ms: Optional[int] = Field(
        None, gt=0, validation_alias=AliasChoices("timeout_ms", "timeoutMs")
    )

    __test__ = False

    @field_validator("input", mode="before")
    @classmethod
    def _coerce_input(cls, v):
        return format_stdin(v)

    @field_validator("expected_output", mode="before")
    @classmethod
    def _coerce_expected(cls, v):
        if v is None:
            return ""
        if isinstance(v, (list, dict)):
            return json.dumps(v)
        return str(v)


class TestCaseResult(BaseModel):
    """Per-case judging result"""
    input: str
    expected_output: str
    actual_output: str
    passed: bool
    status: Verdict
    runtime_ms: int = 0
    memory_kb: Optional[int] = None
    exit_code: int = 0
    error: Optional[str] = None

    __test__ = False


class SubmissionVerdict(BaseModel):
    """Aggregate verdict for one submission"""
    status: Verdict
    language: str
    passed: bool
    visible_passed: bool
    tests_passed: int = 0
    total_tests: int = 0
    total_execution_time_ms: int = 0
    peak_memory_kb: Optional[int] = None
    compile_output: Optional[str] = None
    test_case_results: List[TestCaseResult] = Field(default_factory=list)
