"""Pydantic schemas for engine inputs and results"""

from sandbox_judge.schemas.language import Language, parse_language
from sandbox_judge.schemas.execution import (
    CompareOptions,
    CompileResult,
    ErrorType,
    ExecuteOptions,
    ExecutionResult,
    ResourceLimits,
)
from sandbox_judge.schemas.submission import SubmissionVerdict, TestCase, TestCaseResult, Verdict

__all__ = [
    "Language", "parse_language",
    "CompareOptions", "CompileResult", "ErrorType", "ExecuteOptions", "ExecutionResult", "ResourceLimits",
    "SubmissionVerdict", "TestCase", "TestCaseResult", "Verdict",
]
