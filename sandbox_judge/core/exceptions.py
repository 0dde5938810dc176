"""Custom exception classes for the engine"""

from typing import Any, Dict, List, Optional

from sandbox_judge.schemas.execution import TOOLCHAIN_MISSING_EXIT_CODE


class JudgeException(Exception):
    """Base exception for all engine errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "details": self.details,
        }


# Client errors: rejected before any process is spawned
class JudgeClientError(JudgeException):
    """Request can never be judged as submitted"""
    def __init__(self, message: str, status_code: int = 400, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=status_code, details=details)


class UnsupportedLanguageError(JudgeClientError):
    """Language id is not in the registry"""
    def __init__(self, language: str, supported: Optional[List[str]] = None):
        super().__init__(
            f"Unsupported language: {language}",
            details={"language": language, "supported": supported or []},
        )


class EmptySourceError(JudgeClientError):
    """Submitted source is empty"""
    def __init__(self):
        super().__init__("Source code must not be empty", status_code=422)


class SourceTooLargeError(JudgeClientError):
    """Submitted source exceeds MAX_CODE_SIZE"""
    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Source code is {size} bytes, limit is {limit}",
            status_code=422,
            details={"size": size, "limit": limit},
        )


class InvalidTestCasesError(JudgeClientError):
    """Test case list is unusable"""
    def __init__(self, message: str = "No test cases provided"):
        super().__init__(message, status_code=422)


# Configuration faults
class ToolchainUnavailableError(JudgeException):
    """Neither the container runtime nor the host toolchain is present"""

    exit_code = TOOLCHAIN_MISSING_EXIT_CODE

    def __init__(self, missing: List[str], language: Optional[str] = None):
        self.missing = list(missing)
        names = ", ".join(self.missing) or "unknown"
        suffix = f" for {language}" if language else ""
        super().__init__(
            f"Toolchain unavailable{suffix}: missing {names}",
            status_code=503,
            details={"missing": self.missing, "language": language, "exit_code": self.exit_code},
        )


# Infrastructure faults
class ExecutionInfrastructureError(JudgeException):
    """Scratch directory or process spawn failure unrelated to a missing toolchain"""
    def __init__(self, message: str, language: Optional[str] = None, phase: Optional[str] = None):
        super().__init__(
            message,
            status_code=500,
            details={"language": language, "phase": phase},
        )
