"""Prometheus metrics for the execution engine"""

from prometheus_client import Counter, Histogram

EXECUTIONS_TOTAL = Counter(
    "sandbox_judge_executions_total",
    "Judged submissions by language and verdict",
    ["language", "status"],
)
RUNS_TOTAL = Counter(
    "sandbox_judge_process_runs_total",
    "Sandboxed process invocations by execution mode and outcome",
    ["mode", "outcome"],
)
PHASE_DURATION = Histogram(
    "sandbox_judge_phase_duration_seconds",
    "Wall-clock duration of compile/run phases",
    ["language", "phase"],
)
