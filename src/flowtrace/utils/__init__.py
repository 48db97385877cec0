"""Utility helpers."""

from flowtrace.utils.timing import (
    StageTiming,
    RunTimings,
    TraceProgress,
    get_run_timings,
    reset_run_timings,
    timed_stage,
)

__all__ = [
    "StageTiming",
    "RunTimings",
    "TraceProgress",
    "get_run_timings",
    "reset_run_timings",
    "timed_stage",
]
