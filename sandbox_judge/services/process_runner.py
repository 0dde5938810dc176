"""Resource-bounded process runner - containerized and direct-host execution"""

import logging
import os
import signal
import subprocess
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from sandbox_judge.config import Settings
from sandbox_judge.core.metrics import RUNS_TOTAL
from sandbox_judge.schemas.execution import (
    SPAWN_FAILED_EXIT_CODE,
    TIME_LIMIT_MESSAGE,
    TIMEOUT_EXIT_CODE,
    TOOLCHAIN_MISSING_EXIT_CODE,
    ErrorType,
    ExecutionResult,
    ResourceLimits,
)
from sandbox_judge.services.capabilities import ToolchainCapabilities
from sandbox_judge.services.telemetry import parse_time_report, resolve_runtime
from sandbox_judge.services.workspace import Workspace

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024
_KILL_GRACE_SECONDS = 2.0
_SLOT_WAIT_SECONDS = 60.0
_SIGXCPU = getattr(signal, "SIGXCPU", None)


class _PipeCapture:
    """Drains one child pipe on its own thread, keeping at most ``limit`` bytes."""

    def __init__(self, stream, limit: int):
        self._stream = stream
        self._limit = limit
        self._buffer = bytearray()
        self.truncated = False
        self._thread = threading.Thread(target=self._drain, daemon=True)
        self._thread.start()

    def _drain(self) -> None:
        try:
            while True:
                chunk = self._stream.read(_READ_CHUNK)
                if not chunk:
                    break
                room = self._limit - len(self._buffer)
                if room > 0:
                    self._buffer.extend(chunk[:room])
                if len(chunk) > room:
                    self.truncated = True
        except (OSError, ValueError):
            pass
        finally:
            try:
                self._stream.close()
            except OSError:
                pass

    def join(self, timeout: float) -> None:
        self._thread.join(timeout)

    def text(self) -> str:
        return bytes(self._buffer).decode("utf-8", errors="replace")


def _feed_stdin(stream, payload: bytes) -> None:
    try:
        if payload:
            stream.write(payload)
    except (BrokenPipeError, OSError, ValueError):
        # Child exited without reading all of its input
        pass
    finally:
        try:
            stream.close()
        except OSError:
            pass


def _kill_process_group(proc: subprocess.Popen) -> None:
    """Unconditionally kill the child and everything it spawned."""
    if os.name == "nt":
        try:
            proc.kill()
        except OSError:
            pass
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


def _normalize_exit_code(returncode: Optional[int]) -> int:
    if returncode is None:
        return 1
    if returncode < 0:
        # Killed by a signal: report it the way a shell would
        return 128 - returncode
    return returncode


@dataclass
class _Outcome:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    elapsed_ms: int = 0
    timed_out: bool = False
    spawn_error: Optional[str] = None
    binary_missing: bool = False


class ProcessRunner:
    """
    Runs one command under CPU, memory, process-count, network and wall-clock bounds.

    Never raises for child-level failures: timeouts, crashes and spawn
    failures all come back as an ExecutionResult.
    """

    mode = "base"

    def __init__(self, settings: Settings, capabilities: Optional[ToolchainCapabilities] = None):
        self.settings = settings
        self.capabilities = capabilities or ToolchainCapabilities(settings)
        # Limit concurrent child processes to prevent resource exhaustion
        self._slots = threading.BoundedSemaphore(max(1, settings.EXECUTION_MAX_PROCESSES))

    # -- hooks for the concrete modes --------------------------------------

    def _prepare(
        self,
        command: Sequence[str],
        workspace: Workspace,
        usage_name: Optional[str],
        language: Optional[str],
        image: Optional[str],
        limits: ResourceLimits,
        timeout_s: float,
    ) -> "_Invocation":
        raise NotImplementedError

    def _deadline_seconds(self, timeout_ms: int) -> float:
        return timeout_ms / 1000.0

    def _accounting_supported(self, image: Optional[str]) -> bool:
        return self.capabilities.accounting_available()

    def _classify_failure(self, outcome: _Outcome, invocation: "_Invocation") -> Optional[str]:
        return None

    def _retry_without_accounting(self, outcome: _Outcome, image: Optional[str], usage_text: Optional[str]) -> bool:
        return False

    # -- public contract ----------------------------------------------------

    def run(
        self,
        command: Sequence[str],
        stdin: str,
        timeout_ms: Optional[int],
        workspace: Workspace,
        *,
        language: Optional[str] = None,
        image: Optional[str] = None,
        limits: Optional[ResourceLimits] = None,
        accounting: bool = False,
    ) -> ExecutionResult:
        """
        Execute ``command`` inside ``workspace`` and capture its output.

        Args:
            command: Argument vector (never shell-interpreted)
            stdin: Payload written to the child's standard input, then closed
            timeout_ms: Wall-clock budget; the process group is killed when it expires
            workspace: Scratch directory owned by the caller
            language: Language id, used for rlimit exemptions and logging
            image: Container image (containerized mode only)
            limits: Sandbox ceilings; defaults come from settings
            accounting: Wrap the command with the resource-accounting tool

        Returns:
            ExecutionResult
        """
        timeout_ms = int(timeout_ms or self.settings.RUN_TIMEOUT_MS)
        limits = limits or self.settings.limits_for(language or "")
        use_accounting = accounting and self._accounting_supported(image)

        if not self._slots.acquire(timeout=_SLOT_WAIT_SECONDS):
            logger.error("No execution slot free after %.0fs language=%s", _SLOT_WAIT_SECONDS, language)
            RUNS_TOTAL.labels(self.mode, "no_slot").inc()
            return ExecutionResult(
                stderr="Execution capacity exhausted, try again later",
                exit_code=SPAWN_FAILED_EXIT_CODE,
                error_type=ErrorType.INFRASTRUCTURE_ERROR,
            )
        try:
            result = self._run_once(command, stdin, timeout_ms, workspace, language, image, limits, use_accounting)
        finally:
            self._slots.release()

        RUNS_TOTAL.labels(self.mode, result.error_type or "exited").inc()
        return result

    def _run_once(
        self,
        command: Sequence[str],
        stdin: str,
        timeout_ms: int,
        workspace: Workspace,
        language: Optional[str],
        image: Optional[str],
        limits: ResourceLimits,
        use_accounting: bool,
    ) -> ExecutionResult:
        usage_name = workspace.usage_file() if use_accounting else None
        invocation = self._prepare(
            command, workspace, usage_name, language, image, limits, timeout_ms / 1000.0
        )
        outcome = self._supervise(invocation, stdin, self._deadline_seconds(timeout_ms))
        usage_text = workspace.read_and_discard(usage_name) if usage_name else None

        if usage_name and self._retry_without_accounting(outcome, image, usage_text):
            logger.info("Accounting wrapper missing in image %s, rerunning without it", image)
            invocation = self._prepare(command, workspace, None, language, image, limits, timeout_ms / 1000.0)
            outcome = self._supervise(invocation, stdin, self._deadline_seconds(timeout_ms))
            usage_text = None

        return self._to_result(outcome, usage_text, invocation)

    def _supervise(self, invocation: "_Invocation", stdin: str, deadline_s: float) -> _Outcome:
        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                invocation.argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=invocation.cwd,
                env=invocation.env,
                preexec_fn=invocation.preexec_fn,
                start_new_session=(os.name != "nt"),
                bufsize=0,
            )
        except FileNotFoundError as e:
            logger.error("Executable not found: %s", invocation.argv[0])
            return _Outcome(
                stderr=f"Toolchain unavailable: '{invocation.argv[0]}' not found ({e.strerror})",
                exit_code=TOOLCHAIN_MISSING_EXIT_CODE,
                spawn_error=str(e),
                binary_missing=True,
            )
        except OSError as e:
            logger.error("Process spawn failed for %s: %s", invocation.argv[0], e)
            return _Outcome(
                stderr=f"Process spawn failed: {e}",
                exit_code=SPAWN_FAILED_EXIT_CODE,
                spawn_error=str(e),
            )

        stdout = _PipeCapture(proc.stdout, self.settings.MAX_OUTPUT_BYTES)
        stderr = _PipeCapture(proc.stderr, self.settings.MAX_OUTPUT_BYTES)
        feeder = threading.Thread(
            target=_feed_stdin, args=(proc.stdin, (stdin or "").encode("utf-8")), daemon=True
        )
        feeder.start()

        timed_out = False
        try:
            proc.wait(timeout=deadline_s)
        except subprocess.TimeoutExpired:
            timed_out = True
            invocation.on_timeout(proc)
            try:
                proc.wait(timeout=_KILL_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                logger.error("Process %s survived SIGKILL for %.1fs", proc.pid, _KILL_GRACE_SECONDS)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        # Reap anything the program left running in its group
        _kill_process_group(proc)
        for capture in (stdout, stderr):
            capture.join(_KILL_GRACE_SECONDS)
        feeder.join(_KILL_GRACE_SECONDS)

        if stdout.truncated or stderr.truncated:
            logger.warning("Output truncated at %d bytes", self.settings.MAX_OUTPUT_BYTES)

        return _Outcome(
            stdout=stdout.text(),
            stderr=stderr.text(),
            exit_code=_normalize_exit_code(proc.returncode),
            elapsed_ms=elapsed_ms,
            timed_out=timed_out,
        )

    def _to_result(
        self, outcome: _Outcome, usage_text: Optional[str], invocation: Optional["_Invocation"] = None
    ) -> ExecutionResult:
        if outcome.spawn_error is not None:
            return ExecutionResult(
                stderr=outcome.stderr,
                exit_code=outcome.exit_code,
                error_type=(
                    ErrorType.TOOLCHAIN_UNAVAILABLE if outcome.binary_missing else ErrorType.INFRASTRUCTURE_ERROR
                ),
            )

        cpu_exhausted = _SIGXCPU is not None and outcome.exit_code == 128 + _SIGXCPU
        if outcome.timed_out or cpu_exhausted:
            stderr = outcome.stderr.rstrip()
            return ExecutionResult(
                stdout=outcome.stdout,
                stderr=f"{stderr}\n{TIME_LIMIT_MESSAGE}" if stderr else TIME_LIMIT_MESSAGE,
                exit_code=TIMEOUT_EXIT_CODE,
                runtime_ms=outcome.elapsed_ms,
                timed_out=True,
                error_type=ErrorType.TIME_LIMIT_EXCEEDED,
            )

        usage = parse_time_report(usage_text)
        return ExecutionResult(
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            exit_code=outcome.exit_code,
            runtime_ms=resolve_runtime(usage, outcome.elapsed_ms),
            memory_kb=usage.memory_kb,
            cpu_time_ms=usage.cpu_time_ms,
            error_type=self._classify_failure(outcome, invocation) if invocation else None,
        )


@dataclass
class _Invocation:
    argv: List[str]
    cwd: Optional[str] = None
    env: Optional[Dict[str, str]] = None
    preexec_fn: Optional[Callable[[], None]] = None
    on_timeout: Callable[[subprocess.Popen], None] = _kill_process_group
    # What the caller asked to run, before any wrapper
    program: str = ""
    workspace: Optional[Workspace] = None
    image: Optional[str] = None


class HostProcessRunner(ProcessRunner):
    """Runs pre-installed toolchains directly, bounded by POSIX rlimits"""

    mode = "host"

    @staticmethod
    def _sanitize_env() -> Dict[str, str]:
        """
        Return a constrained environment for child processes.
        """
        allowed_keys = {
            "PATH",
            "HOME",
            "LANG",
            "LC_ALL",
            "TMPDIR",
            "JAVA_HOME",
            "SystemRoot",
            "WINDIR",
        }
        sanitized = {}
        for key in allowed_keys:
            value = os.environ.get(key)
            if value:
                sanitized[key] = value
        return sanitized

    def _resource_preexec(self, language: Optional[str], limits: ResourceLimits, timeout_s: float):
        """
        Apply per-process resource limits on Unix.
        """
        if os.name == "nt":
            return None
        try:
            import resource
        except ImportError:
            return None

        mem_bytes = max(16, limits.memory_mb) * 1024 * 1024
        pids = max(1, limits.pids)
        # CPU budget sits above the wall clock so the supervisor's deadline fires first
        cpu_soft = max(1, int(timeout_s + 0.999)) + 1
        cpu_hard = cpu_soft + 1

        def _set_limits():
            resource.setrlimit(resource.RLIMIT_CPU, (cpu_soft, cpu_hard))

            # Address space.
            # JVM and V8 (Node.js) may require larger virtual address reservations
            # than their effective heap usage (code cache/code range metadata).
            # Their heaps are bounded by VM flags instead.
            if language not in {"java", "javascript"}:
                resource.setrlimit(resource.RLIMIT_AS, (mem_bytes, mem_bytes))

            # Prevent fork bombs.
            try:
                resource.setrlimit(resource.RLIMIT_NPROC, (pids, pids))
            except (ValueError, OSError):
                pass

            # File size and open file handles.
            try:
                resource.setrlimit(resource.RLIMIT_FSIZE, (10 * 1024 * 1024, 10 * 1024 * 1024))
                resource.setrlimit(resource.RLIMIT_NOFILE, (256, 256))
            except (ValueError, OSError):
                pass

        return _set_limits

    def _prepare(self, command, workspace, usage_name, language, image, limits, timeout_s) -> _Invocation:
        argv = [self.settings.resolve_binary(command[0]), *command[1:]]
        if usage_name:
            argv = [self.settings.TIME_BIN, "-v", "-o", str(workspace.path / usage_name), *argv]
        if self.settings.HOST_ISOLATE_NETWORK:
            argv = [self.settings.resolve_binary(self.settings.UNSHARE_BIN), "--net", "--map-root-user", *argv]
        return _Invocation(
            argv=argv,
            cwd=str(workspace.path),
            env=self._sanitize_env(),
            preexec_fn=self._resource_preexec(language, limits, timeout_s),
            program=command[0],
            workspace=workspace,
        )

    def _program_present(self, invocation: _Invocation) -> bool:
        program = invocation.program
        if "/" in program and not os.path.isabs(program) and invocation.workspace is not None:
            return (invocation.workspace.path / program).exists()
        return self.capabilities.binary_available(program, fresh=True)

    def _classify_failure(self, outcome: _Outcome, invocation: _Invocation) -> Optional[str]:
        # GNU time reports an unrunnable command as "time: cannot run <cmd>".
        # The program can print the same text, so only a fresh lookup decides.
        if outcome.exit_code == TOOLCHAIN_MISSING_EXIT_CODE and "cannot run" in outcome.stderr:
            if not self._program_present(invocation):
                return ErrorType.TOOLCHAIN_UNAVAILABLE
        return None


class ContainerProcessRunner(ProcessRunner):
    """Runs each command in a fresh, disposable container"""

    mode = "docker"

    _DOCKER_RUN_FAILED = 125

    def __init__(self, settings: Settings, capabilities: Optional[ToolchainCapabilities] = None):
        super().__init__(settings, capabilities)
        self._images_without_accounting = set()
        self._images_lock = threading.Lock()

    def _deadline_seconds(self, timeout_ms: int) -> float:
        return (timeout_ms + max(0, self.settings.CONTAINER_STARTUP_GRACE_MS)) / 1000.0

    def _accounting_supported(self, image: Optional[str]) -> bool:
        if not self.capabilities.accounting_available():
            return False
        with self._images_lock:
            return image not in self._images_without_accounting

    def build_command(
        self,
        command: Sequence[str],
        workspace: Workspace,
        image: str,
        limits: ResourceLimits,
        name: str,
        usage_name: Optional[str] = None,
    ) -> List[str]:
        workdir = self.settings.CONTAINER_WORKDIR
        argv = [
            self.settings.DOCKER_BIN, "run", "--rm", "-i",
            "--name", name,
            "--network", "none",
            "--cpus", str(limits.cpus),
            "--memory", f"{limits.memory_mb}m",
            "--memory-swap", f"{limits.memory_mb}m",
            "--pids-limit", str(limits.pids),
            "--cap-drop", "ALL",
            "--security-opt", "no-new-privileges",
            "--env", "HOME=/tmp",
            "-v", f"{workspace.path}:{workdir}:rw",
            "-w", workdir,
        ]
        if hasattr(os, "getuid"):
            # Files written to the mount stay removable by the engine
            argv += ["--user", f"{os.getuid()}:{os.getgid()}"]
        argv.append(image)
        if usage_name:
            argv += [self.settings.TIME_BIN, "-v", "-o", f"{workdir}/{usage_name}"]
        argv += list(command)
        return argv

    def _remove_container(self, name: str) -> None:
        try:
            subprocess.run(
                [self.settings.DOCKER_BIN, "rm", "-f", name],
                capture_output=True,
                timeout=10,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.error("Could not remove container %s: %s", name, e)

    def _prepare(self, command, workspace, usage_name, language, image, limits, timeout_s) -> _Invocation:
        if not image:
            raise ValueError("Containerized execution requires an image")
        name = f"judge-{uuid.uuid4().hex[:16]}"

        def on_timeout(proc: subprocess.Popen) -> None:
            self._remove_container(name)
            _kill_process_group(proc)

        return _Invocation(
            argv=self.build_command(command, workspace, image, limits, name, usage_name),
            on_timeout=on_timeout,
            program=command[0],
            workspace=workspace,
            image=image,
        )

    def _classify_failure(self, outcome: _Outcome, invocation: _Invocation) -> Optional[str]:
        # Exit codes and stderr come from the program as much as from docker,
        # so a fault is only reported once a fresh check confirms it
        capabilities = self.capabilities
        if outcome.exit_code == TOOLCHAIN_MISSING_EXIT_CODE and "executable file not found" in outcome.stderr:
            if not capabilities.docker_available(fresh=True):
                return ErrorType.TOOLCHAIN_UNAVAILABLE
            if not capabilities.image_has_binary(invocation.image, invocation.program, fresh=True):
                return ErrorType.TOOLCHAIN_UNAVAILABLE
        if outcome.exit_code == self._DOCKER_RUN_FAILED and outcome.stderr.lstrip().startswith("docker:"):
            if not capabilities.docker_available(fresh=True):
                return ErrorType.TOOLCHAIN_UNAVAILABLE
            if not capabilities.image_available(invocation.image, fresh=True):
                return ErrorType.INFRASTRUCTURE_ERROR
        return None

    def _retry_without_accounting(self, outcome: _Outcome, image: Optional[str], usage_text: Optional[str]) -> bool:
        if usage_text or outcome.timed_out:
            return False
        if outcome.exit_code not in (126, TOOLCHAIN_MISSING_EXIT_CODE):
            return False
        if self.settings.TIME_BIN not in outcome.stderr:
            return False
        if self.capabilities.image_has_binary(image, self.settings.TIME_BIN):
            return False
        with self._images_lock:
            self._images_without_accounting.add(image)
        return True


def create_process_runner(
    settings: Settings, capabilities: Optional[ToolchainCapabilities] = None
) -> ProcessRunner:
    if settings.use_containers:
        return ContainerProcessRunner(settings, capabilities)
    return HostProcessRunner(settings, capabilities)
