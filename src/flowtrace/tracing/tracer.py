"""
Streamline tracing through a vector field.

The tracer steps a seed point with a fixed-step integrator until the line
leaves the domain, stalls, or hits the step/length limits. Leaving the
domain is the normal way for a line to end: the field raises
``OutsideDomainError`` and the tracer records ``OUT_OF_DOMAIN``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from flowtrace.config import TracerConfig
from flowtrace.core.dataset import as_point
from flowtrace.errors import OutsideDomainError
from flowtrace.evaluator import CachingVelocityEvaluator
from flowtrace.fields import FunctionSet, EvaluationStatus
from flowtrace.tracing.integrators import get_integrator
from flowtrace.utils.timing import TraceProgress

logger = logging.getLogger("flowtrace.tracing.tracer")


class TerminationReason(Enum):
    """Why a streamline stopped."""
    OUT_OF_DOMAIN = "out_of_domain"
    MAX_STEPS = "max_steps"
    MAX_LENGTH = "max_length"
    STAGNATION = "stagnation"


@dataclass
class Streamline:
    """
    A traced line.

    Attributes:
        points: Nx3 positions, in order of increasing integration time
        vectors: Nx3 field vectors at the positions
        times: Integration time of each point (0 at the seed)
        termination: Why the forward (or only) part stopped
        backward_termination: Why the backward part stopped, if traced
        seed_index: Position of the seed in ``points``
    """
    points: np.ndarray
    vectors: np.ndarray
    times: np.ndarray
    termination: TerminationReason
    backward_termination: Optional[TerminationReason] = None
    seed_index: int = 0

    @property
    def num_points(self) -> int:
        return len(self.points)

    @property
    def length(self) -> float:
        """Arc length of the polyline."""
        if len(self.points) < 2:
            return 0.0
        return float(np.linalg.norm(np.diff(self.points, axis=0), axis=1).sum())

    def __repr__(self) -> str:
        return f"Streamline({self.num_points} points, length={self.length:.4g}, {self.termination.value})"


class StreamTracer:
    """
    Integrate streamlines through a ``FunctionSet``.

    With a ``CachingVelocityEvaluator`` and ``snap_exit_points`` enabled, a
    line that leaves the domain gets one last point: its would-be next
    position snapped onto the last resolved cell, so it ends on the
    boundary instead of up to one step short of it.
    """

    def __init__(self, field: FunctionSet, config: Optional[TracerConfig] = None):
        self.field = field
        self.config = config or TracerConfig()
        self.integrator = get_integrator(self.config.integrator)
        self.last_progress: Optional[TraceProgress] = None

    def trace(self, seed) -> Streamline:
        """Trace one streamline from a seed point."""
        seed = as_point(seed)
        direction = self.config.direction

        if direction == "forward":
            points, vectors, times, reason = self._integrate(seed, 1.0)
            line = Streamline(points, vectors, times, reason)
        elif direction == "backward":
            points, vectors, times, reason = self._integrate(seed, -1.0)
            line = Streamline(points[::-1], vectors[::-1], times[::-1], reason,
                              seed_index=max(len(points) - 1, 0))
        else:
            b_points, b_vectors, b_times, b_reason = self._integrate(seed, -1.0)
            f_points, f_vectors, f_times, f_reason = self._integrate(seed, 1.0)
            # Both halves start at the seed; keep it once
            line = Streamline(
                points=np.concatenate([b_points[:0:-1], f_points]),
                vectors=np.concatenate([b_vectors[:0:-1], f_vectors]),
                times=np.concatenate([b_times[:0:-1], f_times]),
                termination=f_reason,
                backward_termination=b_reason,
                seed_index=max(len(b_points) - 1, 0),
            )

        logger.debug(f"Traced from {seed}: {line}")
        return line

    def trace_many(self, seeds: Sequence) -> list[Streamline]:
        """
        Trace one streamline per seed.

        The counts of the run (points, endings, cache hit rate) are kept in
        ``last_progress``.
        """
        evaluator = self.field if isinstance(self.field, CachingVelocityEvaluator) else None
        progress = TraceProgress(len(seeds), evaluator=evaluator)
        lines = []
        for seed in seeds:
            line = self.trace(seed)
            lines.append(line)
            progress.update(line)
        progress.finish()

        self.last_progress = progress
        return lines

    def _integrate(self, seed: np.ndarray, sign: float):
        cfg = self.config
        dt = sign * cfg.step_size
        max_length = cfg.max_length if cfg.max_length is not None else np.inf

        x = seed.copy()
        t = 0.0
        v, status = self.field.function_values(np.append(x, t))
        if status is not EvaluationStatus.OK:
            empty = np.empty((0, 3))
            return empty, empty.copy(), np.empty(0), TerminationReason.OUT_OF_DOMAIN

        points, vectors, times = [x], [v], [t]
        length = 0.0
        reason = TerminationReason.MAX_STEPS

        for _ in range(cfg.max_steps):
            if np.linalg.norm(v) <= cfg.terminal_speed:
                reason = TerminationReason.STAGNATION
                break

            try:
                x_next = self.integrator.step(self.field, x, t, dt)
                v_next = self.field.evaluate(np.append(x_next, t + dt))
            except OutsideDomainError:
                reason = TerminationReason.OUT_OF_DOMAIN
                exit_point = self._exit_point(x + dt * v)
                if exit_point is not None and np.any(exit_point != x):
                    exit_vector, exit_status = self.field.function_values(np.append(exit_point, t + dt))
                    points.append(exit_point)
                    vectors.append(exit_vector if exit_status is EvaluationStatus.OK else v)
                    times.append(t + dt)
                break

            segment = float(np.linalg.norm(x_next - x))
            if length + segment > max_length:
                reason = TerminationReason.MAX_LENGTH
                break

            x, v, t = x_next, v_next, t + dt
            length += segment
            points.append(x)
            vectors.append(v)
            times.append(t)

        return np.array(points), np.array(vectors), np.array(times), reason

    def _exit_point(self, candidate: np.ndarray) -> Optional[np.ndarray]:
        if not self.config.snap_exit_points or not isinstance(self.field, CachingVelocityEvaluator):
            return None
        if self.field.last_cell_id is None:
            return None
        return self.field.snap_point_on_cell(candidate)
