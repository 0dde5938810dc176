import sys
from typing import Callable, List, Optional

import pytest

from sandbox_judge.config import Settings
from sandbox_judge.core.exceptions import ToolchainUnavailableError
from sandbox_judge.schemas.execution import ExecutionResult

COMPILED = ExecutionResult(stdout="__COMPILED__\n")


class FakeRunner:
    """Stands in for a process runner; ``respond(command, stdin)`` decides each result"""

    def __init__(self, respond: Callable[[List[str], str], ExecutionResult]):
        self.respond = respond
        self.calls = []

    def run(self, command, stdin, timeout_ms, workspace, **kwargs):
        self.calls.append(
            {"command": list(command), "stdin": stdin, "timeout_ms": timeout_ms, "workspace": workspace, **kwargs}
        )
        return self.respond(list(command), stdin)


class FakeCapabilities:
    def __init__(self, missing: Optional[List[str]] = None):
        self.missing = missing or []

    def accounting_available(self) -> bool:
        return False

    def require(self, spec) -> None:
        if self.missing:
            raise ToolchainUnavailableError(self.missing, language=spec.id.value)


@pytest.fixture
def scratch_root(tmp_path):
    root = tmp_path / "scratch"
    root.mkdir()
    return root


@pytest.fixture
def host_settings(scratch_root):
    return Settings(
        EXECUTION_MODE="host",
        TEMP_DIR=str(scratch_root),
        TOOLCHAIN_OVERRIDES={"python3": sys.executable},
        SANDBOX_PIDS_LIMIT=4096,
        RESOURCE_ACCOUNTING=False,
        HOST_ISOLATE_NETWORK=False,
    )


@pytest.fixture
def docker_settings(scratch_root):
    return Settings(EXECUTION_MODE="docker", TEMP_DIR=str(scratch_root))
