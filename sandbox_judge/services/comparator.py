"""Output comparison and verdict classification"""

import re
from typing import Iterable

from sandbox_judge.schemas.execution import TIMEOUT_EXIT_CODE, CompareOptions
from sandbox_judge.schemas.submission import Verdict

# Judged submissions: exact match after CRLF normalization and trailing-newline trim
JUDGE_COMPARE = CompareOptions()
# Interactive runs: whitespace-insensitive, case-sensitive
RUN_COMPARE = CompareOptions(ignore_whitespace=True)

_WHITESPACE = re.compile(r"\s+")

_PRIORITY = {
    Verdict.COMPILATION_ERROR: 4,
    Verdict.TIME_LIMIT_EXCEEDED: 3,
    Verdict.RUNTIME_ERROR: 2,
    Verdict.WRONG_ANSWER: 1,
    Verdict.ACCEPTED: 0,
}


def normalize(text: str, options: CompareOptions) -> str:
    value = (text or "").replace("\r\n", "\n")
    if options.trim_trailing_newlines:
        value = value.rstrip("\n")
    if options.ignore_whitespace:
        value = _WHITESPACE.sub(" ", value).strip()
    if options.ignore_case:
        value = value.lower()
    return value


def compare(actual: str, expected: str, options: CompareOptions = JUDGE_COMPARE) -> bool:
    """
    Compare program output with the expected output.

    Examples:
        compare("3\\r\\n", "3") -> True
        compare("1  2\\n3", "1 2 3", RUN_COMPARE) -> True
        compare("YES", "yes") -> False
    """
    return normalize(actual, options) == normalize(expected, options)


def classify_case(exit_code: int, passed: bool) -> Verdict:
    if exit_code == TIMEOUT_EXIT_CODE:
        return Verdict.TIME_LIMIT_EXCEEDED
    if exit_code != 0:
        return Verdict.RUNTIME_ERROR
    return Verdict.ACCEPTED if passed else Verdict.WRONG_ANSWER


def aggregate_status(verdicts: Iterable[Verdict]) -> Verdict:
    """Most severe verdict wins; no verdicts means Accepted."""
    return max(verdicts, key=lambda v: _PRIORITY[v], default=Verdict.ACCEPTED)
