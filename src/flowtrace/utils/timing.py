"""
Run timings and tracing progress.

A tracing run is split into named stages (loading, tracing) whose wall
times are collected in a ``RunTimings``. ``TraceProgress`` follows a
``trace_many`` loop: seeds done, points produced, how the lines ended, and
how often the evaluator's cached cell answered a query.
"""

from __future__ import annotations

import time
import logging
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger("flowtrace.timing")


@dataclass
class StageTiming:
    """Wall time of one stage of a run."""
    stage: str
    seconds: float = 0.0
    ok: bool = False
    error: Optional[str] = None

    def __str__(self) -> str:
        state = "ok" if self.ok else f"failed ({self.error})"
        return f"{self.stage}: {self.seconds:.3f}s {state}"


@dataclass
class RunTimings:
    """Stage timings of the current run."""
    stages: list[StageTiming] = field(default_factory=list)
    started: float = field(default_factory=time.perf_counter)

    def record(self, timing: StageTiming) -> None:
        self.stages.append(timing)
        logger.info(str(timing))

    def elapsed(self) -> float:
        """Seconds since the run started."""
        return time.perf_counter() - self.started


_run_timings: Optional[RunTimings] = None


def get_run_timings() -> RunTimings:
    global _run_timings
    if _run_timings is None:
        _run_timings = RunTimings()
    return _run_timings


def reset_run_timings() -> RunTimings:
    """Start a new run."""
    global _run_timings
    _run_timings = RunTimings()
    return _run_timings


@contextmanager
def timed_stage(stage: str):
    """
    Time a stage of the current run.

    The timing is recorded whether or not the stage raises; exceptions
    propagate.

    Yields:
        StageTiming filled in on exit
    """
    timing = StageTiming(stage=stage)
    start = time.perf_counter()
    try:
        yield timing
        timing.ok = True
    except Exception as e:
        timing.error = str(e)
        raise
    finally:
        timing.seconds = time.perf_counter() - start
        get_run_timings().record(timing)


class TraceProgress:
    """
    Progress of a loop tracing many seeds.

    Args:
        total_seeds: Number of seeds the loop will trace
        evaluator: Object exposing ``cache_hits`` and ``cache_misses``; when
            given, the hit rate of the queries made during the loop is
            reported
        log_interval: Minimum seconds between progress messages
    """

    def __init__(self, total_seeds: int, evaluator=None, log_interval: float = 5.0):
        self.total_seeds = total_seeds
        self.evaluator = evaluator
        self.log_interval = log_interval
        self.seeds_done = 0
        self.points = 0
        self.terminations: Counter = Counter()
        self.started = time.perf_counter()
        self._last_log = self.started
        self._hits0, self._misses0 = self._counters()

    def _counters(self) -> tuple[int, int]:
        if self.evaluator is None:
            return 0, 0
        return self.evaluator.cache_hits, self.evaluator.cache_misses

    @property
    def cache_hits(self) -> int:
        return self._counters()[0] - self._hits0

    @property
    def cache_misses(self) -> int:
        return self._counters()[1] - self._misses0

    @property
    def hit_rate(self) -> Optional[float]:
        """Fraction of queries resolved in the cached cell, None without queries."""
        queries = self.cache_hits + self.cache_misses
        if self.evaluator is None or queries == 0:
            return None
        return self.cache_hits / queries

    def update(self, line) -> None:
        """Count one traced streamline."""
        self.seeds_done += 1
        self.points += line.num_points
        self.terminations[line.termination.value] += 1

        now = time.perf_counter()
        if now - self._last_log >= self.log_interval:
            self._log_progress(now)
            self._last_log = now

    def _describe_rate(self) -> str:
        rate = self.hit_rate
        return "n/a" if rate is None else f"{100 * rate:.1f}%"

    def _log_progress(self, now: float) -> None:
        elapsed = now - self.started
        remaining = (self.total_seeds - self.seeds_done) * elapsed / max(self.seeds_done, 1)
        logger.info(f"Traced {self.seeds_done}/{self.total_seeds} seeds, {self.points} points, "
                    f"cache hit rate {self._describe_rate()} - ~{remaining:.1f}s remaining")

    def finish(self) -> float:
        """Log the totals and return the elapsed seconds."""
        elapsed = time.perf_counter() - self.started
        endings = ", ".join(f"{name}={count}" for name, count in sorted(self.terminations.items()))
        logger.info(f"Traced {self.seeds_done} streamlines ({self.points} points) in {elapsed:.3f}s, "
                    f"cache hit rate {self._describe_rate()}" + (f" [{endings}]" if endings else ""))
        return elapsed
