"""Toolchain and container runtime availability checks with a short-lived cache"""

import logging
import shlex
import shutil
import subprocess
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sandbox_judge.config import Settings
from sandbox_judge.core.exceptions import ToolchainUnavailableError
from sandbox_judge.services.language_registry import LanguageSpec

logger = logging.getLogger(__name__)

Check = Callable[[Sequence[str]], bool]

_CHECK_TIMEOUT_SECONDS = 15


def _run_check(command: Sequence[str]) -> bool:
    try:
        result = subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            timeout=_CHECK_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("Check %s failed: %s", command[0], e)
        return False
    return result.returncode == 0


class ToolchainCapabilities:
    """Answers "can this language run here right now?" for the configured mode"""

    def __init__(
        self,
        settings: Settings,
        which: Callable[[str], Optional[str]] = shutil.which,
        run_check: Check = _run_check,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self._which = which
        self._run_check = run_check
        self._clock = clock
        self._ttl = max(0.0, float(settings.CAPABILITY_CACHE_TTL_SECONDS))
        self._cache: Dict[str, Tuple[float, bool]] = {}
        self._lock = threading.Lock()

    def invalidate(self) -> None:
        with self._lock:
            self._cache.clear()

    def _cached(self, key: str, check: Callable[[], bool], fresh: bool = False) -> bool:
        now = self._clock()
        if not fresh:
            with self._lock:
                hit = self._cache.get(key)
                if hit is not None and now - hit[0] < self._ttl:
                    return hit[1]

        available = check()
        with self._lock:
            self._cache[key] = (now, available)
        return available

    def binary_available(self, name: str, fresh: bool = False) -> bool:
        path = self.settings.resolve_binary(name)
        return self._cached(f"bin:{path}", lambda: self._which(path) is not None, fresh)

    def docker_available(self, fresh: bool = False) -> bool:
        docker = self.settings.DOCKER_BIN

        def check() -> bool:
            if self._which(docker) is None:
                return False
            return self._run_check([docker, "version", "--format", "{{.Server.Version}}"])

        return self._cached(f"docker:{docker}", check, fresh)

    def image_available(self, image: str, fresh: bool = False) -> bool:
        docker = self.settings.DOCKER_BIN
        return self._cached(
            f"image:{image}",
            lambda: self._run_check([docker, "image", "inspect", "--format", "{{.Id}}", image]),
            fresh,
        )

    def image_has_binary(self, image: str, name: str, fresh: bool = False) -> bool:
        """Whether ``name`` resolves inside ``image``, checked in a throwaway container"""
        docker = self.settings.DOCKER_BIN
        command = [
            docker, "run", "--rm", "--network", "none", "--entrypoint", "sh",
            image, "-c", f"command -v {shlex.quote(name)}",
        ]
        return self._cached(f"image-bin:{image}:{name}", lambda: self._run_check(command), fresh)

    def accounting_available(self) -> bool:
        """Whether runs should be wrapped with the accounting tool"""
        if not self.settings.RESOURCE_ACCOUNTING:
            return False
        if self.settings.use_containers:
            # Checked per image at run time
            return True
        return self._cached(
            f"bin:{self.settings.TIME_BIN}",
            lambda: self._which(self.settings.TIME_BIN) is not None,
        )

    def missing_for(self, spec: LanguageSpec) -> List[str]:
        if self.settings.use_containers:
            if self.docker_available():
                return []
            return [f"{self.settings.DOCKER_BIN} (container runtime)"]

        required = list(spec.toolchain)
        if spec.requires_compilation:
            required.append("sh")
        if self.settings.HOST_ISOLATE_NETWORK:
            required.append(self.settings.UNSHARE_BIN)
        return [name for name in required if not self.binary_available(name)]

    def require(self, spec: LanguageSpec) -> None:
        """
        Fail fast when the toolchain for ``spec`` is unavailable.

        Raises:
            ToolchainUnavailableError: Naming every missing dependency.
        """
        missing = self.missing_for(spec)
        if missing:
            logger.error("Toolchain unavailable for %s: missing %s", spec.id.value, ", ".join(missing))
            raise ToolchainUnavailableError(missing, language=spec.id.value)
