"""Process execution schemas"""

from typing import Optional

from pydantic import BaseModel, Field

TIMEOUT_EXIT_CODE = 124
TOOLCHAIN_MISSING_EXIT_CODE = 127
SPAWN_FAILED_EXIT_CODE = 126
TIME_LIMIT_MESSAGE = "Time limit exceeded"


class ErrorType:
    """Values carried in ExecutionResult.error_type"""
    TIME_LIMIT_EXCEEDED = "time_limit_exceeded"
    RUNTIME_ERROR = "runtime_error"
    COMPILE_ERROR = "compile_error"
    TOOLCHAIN_UNAVAILABLE = "toolchain_unavailable"
    INFRASTRUCTURE_ERROR = "infrastructure_error"


class ResourceLimits(BaseModel):
    """Per-run sandbox ceilings"""
    cpus: float = Field(1.0, gt=0)
    memory_mb: int = Field(512, ge=16)
    pids: int = Field(256, ge=1)

    class Config:
        frozen = True


class ExecutionResult(BaseModel):
    """Outcome of a single process invocation"""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    runtime_ms: int = 0
    memory_kb: Optional[int] = None
    cpu_time_ms: Optional[int] = None
    timed_out: bool = False
    error_type: Optional[str] = None
    passed: Optional[bool] = None


class CompileResult(BaseModel):
    """Outcome of the compilation stage"""
    success: bool
    diagnostics: str = ""
    exit_code: int = 0
    runtime_ms: int = 0
    timed_out: bool = False
    error_type: Optional[str] = None


class CompareOptions(BaseModel):
    """Output normalization rules"""
    ignore_whitespace: bool = False
    ignore_case: bool = False
    trim_trailing_newlines: bool = True

    class Config:
        frozen = True

    @classmethod
    def from_mode(cls, mode: str) -> "CompareOptions":
        """strict: exact after newline trim; relaxed: ignore whitespace and case"""
        if str(mode or "").strip().lower() == "relaxed":
            return cls(ignore_whitespace=True, ignore_case=True)
        return cls()


class ExecuteOptions(BaseModel):
    """Caller options for a judged submission"""
    timeout_ms: Optional[int] = Field(None, gt=0)
    ignore_whitespace: Optional[bool] = None
    ignore_case: Optional[bool] = None
    compare_mode: Optional[str] = None

    def compare_options(self, default_mode: str = "strict") -> CompareOptions:
        base = CompareOptions.from_mode(self.compare_mode or default_mode)
        return CompareOptions(
            ignore_whitespace=(
                self.ignore_whitespace if self.ignore_whitespace is not None else base.ignore_whitespace
            ),
            ignore_case=self.ignore_case if self.ignore_case is not None else base.ignore_case,
            trim_trailing_newlines=base.trim_trailing_newlines,
        )
