"""Engine configuration management"""

import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from sandbox_judge.schemas.execution import ResourceLimits

_EXECUTION_MODE_ALIASES = {
    "docker": "docker",
    "container": "docker",
    "containerized": "docker",
    "host": "host",
    "local": "host",
    "direct": "host",
}


class Settings(BaseSettings):
    """Engine settings with environment variable support"""

    # Execution mode: docker | host
    EXECUTION_MODE: str = "docker"
    DOCKER_BIN: str = "docker"
    CONTAINER_WORKDIR: str = "/code"
    CONTAINER_STARTUP_GRACE_MS: int = 2000

    # Timeouts
    RUN_TIMEOUT_MS: int = 3000
    COMPILE_TIMEOUT_MS: int = 8000

    # Default sandbox limits, overridable per language through LANGUAGE_LIMITS.
    # LANGUAGE_LIMITS={"java": {"memory_mb": 768, "pids": 512}}
    SANDBOX_CPUS: float = 1.0
    SANDBOX_MEMORY_MB: int = 512
    SANDBOX_PIDS_LIMIT: int = 256
    LANGUAGE_LIMITS: Dict[str, Dict[str, float]] = Field(default_factory=dict)

    # Container images per language id, e.g. LANGUAGE_IMAGES={"python": "python:3.12-slim"}
    LANGUAGE_IMAGES: Dict[str, str] = Field(default_factory=dict)

    # Host-mode binary overrides, e.g. TOOLCHAIN_OVERRIDES={"g++": "/opt/gcc/bin/g++"}
    TOOLCHAIN_OVERRIDES: Dict[str, str] = Field(default_factory=dict)
    HOST_ISOLATE_NETWORK: bool = True
    UNSHARE_BIN: str = "unshare"

    # Resource accounting
    RESOURCE_ACCOUNTING: bool = True
    TIME_BIN: str = "/usr/bin/time"

    # Input/output bounds
    MAX_CODE_SIZE: int = 51200
    MAX_OUTPUT_BYTES: int = 1024 * 1024
    TEMP_DIR: str = ""

    # Concurrency
    EXECUTION_MAX_PROCESSES: int = 10
    TESTCASE_CONCURRENCY: int = 1
    CAPABILITY_CACHE_TTL_SECONDS: float = 30.0

    # Output comparison for judged submissions: strict | relaxed
    COMPARISON_MODE: str = "strict"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("EXECUTION_MODE", mode="before")
    @classmethod
    def _normalize_execution_mode(cls, value: Any) -> Any:
        """
        Accept common spellings of the two execution modes.

        Examples:
            EXECUTION_MODE=container -> docker
            EXECUTION_MODE=local -> host
        """
        if not isinstance(value, str):
            return value
        mode = _EXECUTION_MODE_ALIASES.get(value.strip().lower())
        if mode is None:
            raise ValueError("EXECUTION_MODE must be one of: docker, host")
        return mode

    @field_validator("COMPARISON_MODE", mode="before")
    @classmethod
    def _normalize_comparison_mode(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        mode = value.strip().lower()
        if mode not in {"strict", "relaxed"}:
            raise ValueError("COMPARISON_MODE must be one of: strict, relaxed")
        return mode

    @property
    def use_containers(self) -> bool:
        return self.EXECUTION_MODE == "docker"

    def get_temp_dir(self) -> str:
        """Resolve the scratch root - system temp dir when unset"""
        if not self.TEMP_DIR:
            return str(Path(tempfile.gettempdir()) / "sandbox-judge")
        return self.TEMP_DIR

    def limits_for(self, language: str) -> ResourceLimits:
        """Merge the default sandbox limits with the per-language override."""
        override = self.LANGUAGE_LIMITS.get(language, {})
        return ResourceLimits(
            cpus=float(override.get("cpus", self.SANDBOX_CPUS)),
            memory_mb=int(override.get("memory_mb", self.SANDBOX_MEMORY_MB)),
            pids=int(override.get("pids", self.SANDBOX_PIDS_LIMIT)),
        )

    def resolve_binary(self, name: str) -> str:
        return self.TOOLCHAIN_OVERRIDES.get(name, name)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
