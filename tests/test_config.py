import pytest
from pydantic import ValidationError

from sandbox_judge.config import Settings


def test_execution_mode_aliases():
    assert Settings(EXECUTION_MODE="container").EXECUTION_MODE == "docker"
    assert Settings(EXECUTION_MODE="LOCAL").EXECUTION_MODE == "host"
    assert Settings(EXECUTION_MODE="direct").use_containers is False


def test_execution_mode_rejects_unknown_value():
    with pytest.raises(ValidationError):
        Settings(EXECUTION_MODE="vm")


def test_comparison_mode_validation():
    assert Settings(COMPARISON_MODE="Relaxed").COMPARISON_MODE == "relaxed"
    with pytest.raises(ValidationError):
        Settings(COMPARISON_MODE="fuzzy")


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("RUN_TIMEOUT_MS", "1500")
    monkeypatch.setenv("EXECUTION_MODE", "host")
    settings = Settings()
    assert settings.RUN_TIMEOUT_MS == 1500
    assert settings.use_containers is False


def test_limits_for_merges_language_override():
    settings = Settings(SANDBOX_MEMORY_MB=256, LANGUAGE_LIMITS={"java": {"memory_mb": 768, "cpus": 2}})
    java = settings.limits_for("java")
    assert java.memory_mb == 768
    assert java.cpus == 2.0
    assert java.pids == settings.SANDBOX_PIDS_LIMIT
    assert settings.limits_for("python").memory_mb == 256


def test_temp_dir_defaults_under_system_temp():
    assert Settings(TEMP_DIR="").get_temp_dir().endswith("sandbox-judge")
    assert Settings(TEMP_DIR="/srv/judge").get_temp_dir() == "/srv/judge"


def test_resolve_binary_uses_overrides():
    settings = Settings(TOOLCHAIN_OVERRIDES={"g++": "/opt/gcc/bin/g++"})
    assert settings.resolve_binary("g++") == "/opt/gcc/bin/g++"
    assert settings.resolve_binary("gcc") == "gcc"


def test_host_network_isolation_is_on_by_default(monkeypatch):
    monkeypatch.delenv("HOST_ISOLATE_NETWORK", raising=False)
    assert Settings().HOST_ISOLATE_NETWORK is True
