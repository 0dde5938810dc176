"""Ephemeral scratch directories for a single evaluation"""

import logging
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sandbox_judge.core.exceptions import ExecutionInfrastructureError

logger = logging.getLogger(__name__)


class Workspace:
    """Exclusively-owned scratch directory"""

    def __init__(self, path: str):
        self.path = Path(path)

    def write_source(self, filename: str, code: str) -> Path:
        target = self.path / filename
        target.write_text(code, encoding="utf-8")
        return target

    def usage_file(self) -> str:
        """Fresh name for one run's accounting artifact"""
        return f".usage-{uuid.uuid4().hex[:12]}.txt"

    def read_and_discard(self, name: str) -> Optional[str]:
        target = self.path / name
        try:
            return target.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None
        finally:
            try:
                target.unlink()
            except OSError:
                pass

    def __repr__(self) -> str:
        return f"Workspace({str(self.path)!r})"


@contextmanager
def scratch_workspace(
    base_dir: str,
    language: Optional[str] = None,
    phase: str = "prepare",
) -> Iterator[Workspace]:
    """
    Create a fresh scratch directory and remove it on every exit path.

    Raises:
        ExecutionInfrastructureError: If the directory cannot be created.
    """
    try:
        Path(base_dir).mkdir(parents=True, exist_ok=True)
        path = tempfile.mkdtemp(prefix=f"judge-{language or 'run'}-", dir=base_dir)
    except OSError as e:
        logger.error("Scratch directory creation failed language=%s phase=%s: %s", language, phase, e)
        raise ExecutionInfrastructureError(
            f"Could not create scratch directory: {e}", language=language, phase=phase
        )

    try:
        yield Workspace(path)
    finally:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning("Scratch cleanup failed for %s: %s", path, e)
