"""
Vector fields evaluated at a point, as consumed by the integrators.

A field maps ``(x, y, z, t)`` to ``(u, v, w)``. Failing evaluations raise
``OutsideDomainError``; ``function_values`` offers the same call as a
``(vector, status)`` pair for callers that prefer status codes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

import numpy as np

from flowtrace.errors import OutsideDomainError


class EvaluationStatus(Enum):
    """Outcome of a field evaluation."""
    OK = "ok"
    OUTSIDE_DOMAIN = "outside_domain"


class FunctionSet(ABC):
    """Abstract vector field of four independent variables."""

    n_independent_variables: int = 4  # x, y, z, t (t reserved for time-varying fields)
    n_functions: int = 3  # u, v, w

    @abstractmethod
    def evaluate(self, point) -> np.ndarray:
        """
        Evaluate the field.

        Args:
            point: ``(x, y, z)`` or ``(x, y, z, t)``

        Returns:
            Vector of length ``n_functions``

        Raises:
            OutsideDomainError: If the field is undefined at the point
        """
        pass

    def function_values(self, point) -> tuple[Optional[np.ndarray], EvaluationStatus]:
        """Evaluate without raising: ``(vector, OK)`` or ``(None, OUTSIDE_DOMAIN)``."""
        try:
            return self.evaluate(point), EvaluationStatus.OK
        except OutsideDomainError:
            return None, EvaluationStatus.OUTSIDE_DOMAIN

    def __call__(self, point) -> np.ndarray:
        return self.evaluate(point)


class AnalyticField(FunctionSet):
    """
    Field given by a Python callable, optionally limited to a bounding box.

    Useful as a reference solution and for driving the tracer without a mesh.
    """

    def __init__(
        self,
        func: Callable[[np.ndarray], np.ndarray],
        bounds: Optional[tuple[np.ndarray, np.ndarray]] = None,
        name: str = "analytic",
    ):
        self.func = func
        self.bounds = None if bounds is None else (
            np.asarray(bounds[0], dtype=np.float64), np.asarray(bounds[1], dtype=np.float64)
        )
        self.name = name

    def evaluate(self, point) -> np.ndarray:
        x = np.asarray(point, dtype=np.float64).ravel()[:3]
        if self.bounds is not None and not (np.all(x >= self.bounds[0]) and np.all(x <= self.bounds[1])):
            raise OutsideDomainError(x, 1)
        return np.asarray(self.func(x), dtype=np.float64)

    def __repr__(self) -> str:
        return f"AnalyticField('{self.name}')"
