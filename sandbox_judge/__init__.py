"""Sandboxed multi-language code execution and judging engine"""

from sandbox_judge.services.judge_engine import JudgeEngine, execute, get_judge_engine, run_once

__version__ = "1.0.0"

__all__ = ["JudgeEngine", "execute", "get_judge_engine", "run_once", "__version__"]
