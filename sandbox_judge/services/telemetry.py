"""Parse resource accounting output (GNU ``time -v``) into runtime/memory telemetry"""

import math
import re
from dataclasses import dataclass
from typing import Optional

_MAX_RSS = re.compile(r"Maximum resident set size \(kbytes\):\s*(\d+)", re.IGNORECASE)
_USER_TIME = re.compile(r"User time \(seconds\):\s*([\d.]+)", re.IGNORECASE)
_SYSTEM_TIME = re.compile(r"System time \(seconds\):\s*([\d.]+)", re.IGNORECASE)
_ELAPSED = re.compile(r"Elapsed \(wall clock\) time.*?\):\s*([\d:.]+)", re.IGNORECASE)


@dataclass(frozen=True)
class ResourceUsage:
    memory_kb: Optional[int] = None
    cpu_time_ms: Optional[int] = None
    wall_time_ms: Optional[int] = None


def _to_float(raw: str) -> Optional[float]:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def _to_millis(seconds: float) -> Optional[int]:
    millis = seconds * 1000
    if not math.isfinite(millis):
        return None
    return int(round(millis))


def parse_clock(raw: str) -> Optional[float]:
    """
    Convert ``h:mm:ss``, ``m:ss.ss`` or plain seconds into seconds.

    Examples:
        "0:00.25" -> 0.25
        "1:02:03" -> 3723.0
    """
    parts = (raw or "").strip().split(":")
    if not parts or len(parts) > 3:
        return None
    seconds = 0.0
    for part in parts:
        value = _to_float(part)
        if value is None or value < 0:
            return None
        seconds = seconds * 60 + value
    if not math.isfinite(seconds):
        return None
    return seconds


def parse_time_report(text: Optional[str]) -> ResourceUsage:
    """Extract peak RSS, user+system CPU time and wall time; any missing field is None."""
    if not text:
        return ResourceUsage()

    memory_kb = None
    match = _MAX_RSS.search(text)
    if match:
        memory_kb = int(match.group(1))

    cpu_time_ms = None
    user = _USER_TIME.search(text)
    system = _SYSTEM_TIME.search(text)
    if user and system:
        user_s = _to_float(user.group(1))
        system_s = _to_float(system.group(1))
        if user_s is not None and system_s is not None:
            cpu_time_ms = _to_millis(user_s + system_s)

    wall_time_ms = None
    elapsed = _ELAPSED.search(text)
    if elapsed:
        seconds = parse_clock(elapsed.group(1))
        if seconds is not None:
            wall_time_ms = _to_millis(seconds)

    return ResourceUsage(
        memory_kb=memory_kb,
        cpu_time_ms=cpu_time_ms,
        wall_time_ms=wall_time_ms,
    )


def resolve_runtime(usage: ResourceUsage, coarse_ms: int) -> int:
    """Prefer measured wall-clock time, else the supervisor's coarse timing."""
    if usage.wall_time_ms is not None:
        return usage.wall_time_ms
    return coarse_ms
