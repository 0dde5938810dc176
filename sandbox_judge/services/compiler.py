"""Compilation stage for compiled languages"""

import logging
import shlex
import time
from typing import Optional

from sandbox_judge.config import Settings
from sandbox_judge.core.metrics import PHASE_DURATION
from sandbox_judge.schemas.execution import TOOLCHAIN_MISSING_EXIT_CODE, CompileResult, ErrorType, ResourceLimits
from sandbox_judge.services.language_registry import LanguageSpec
from sandbox_judge.services.process_runner import ProcessRunner
from sandbox_judge.services.workspace import Workspace

logger = logging.getLogger(__name__)

COMPILED_SENTINEL = "__COMPILED__"


class Compiler:
    """Runs a language's compile command inside the evaluation workspace"""

    def __init__(self, runner: ProcessRunner, settings: Settings):
        self.runner = runner
        self.settings = settings

    def build_command(self, spec: LanguageSpec, source_file: str, limits: ResourceLimits) -> Optional[list]:
        argv = spec.compile_argv(source_file, limits)
        if argv is None:
            return None
        if not self.settings.use_containers:
            argv = [self.settings.resolve_binary(argv[0]), *argv[1:]]
        # Only a success marker goes through the shell; every argument is quoted
        return ["sh", "-c", f"{shlex.join(argv)} && echo {COMPILED_SENTINEL}"]

    def compile(
        self,
        spec: LanguageSpec,
        source_file: str,
        workspace: Workspace,
        limits: Optional[ResourceLimits] = None,
    ) -> CompileResult:
        """
        Compile ``source_file`` in place.

        Interpreted languages succeed immediately. Compiler diagnostics are
        returned, not raised.
        """
        limits = limits or self.settings.limits_for(spec.id.value)
        command = self.build_command(spec, source_file, limits)
        if command is None:
            return CompileResult(success=True)

        started = time.monotonic()
        result = self.runner.run(
            command,
            "",
            self.settings.COMPILE_TIMEOUT_MS,
            workspace,
            language=spec.id.value,
            image=spec.image,
            limits=limits,
        )
        PHASE_DURATION.labels(spec.id.value, "compile").observe(time.monotonic() - started)

        error_type = result.error_type
        if error_type is None and result.exit_code == TOOLCHAIN_MISSING_EXIT_CODE and "not found" in result.stderr:
            # sh could not find the compiler
            error_type = ErrorType.TOOLCHAIN_UNAVAILABLE
        if error_type in (ErrorType.TOOLCHAIN_UNAVAILABLE, ErrorType.INFRASTRUCTURE_ERROR):
            return CompileResult(
                success=False,
                diagnostics=result.stderr.strip(),
                exit_code=result.exit_code,
                runtime_ms=result.runtime_ms,
                error_type=error_type,
            )

        if result.timed_out:
            logger.info("Compilation timed out language=%s", spec.id.value)
            return CompileResult(
                success=False,
                diagnostics="Compilation timed out",
                exit_code=result.exit_code,
                runtime_ms=result.runtime_ms,
                timed_out=True,
                error_type=ErrorType.COMPILE_ERROR,
            )

        if result.exit_code == 0 and COMPILED_SENTINEL in result.stdout:
            return CompileResult(success=True, runtime_ms=result.runtime_ms)

        diagnostics = result.stderr.strip()
        if not diagnostics:
            diagnostics = result.stdout.replace(COMPILED_SENTINEL, "").strip()
        logger.info("Compilation failed language=%s exit_code=%s", spec.id.value, result.exit_code)
        return CompileResult(
            success=False,
            diagnostics=diagnostics or "Compilation failed",
            exit_code=result.exit_code or 1,
            runtime_ms=result.runtime_ms,
            error_type=ErrorType.COMPILE_ERROR,
        )
