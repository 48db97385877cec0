"""
Fixed-step explicit integrators for ``dx/dt = v(x, t)``.

Each step evaluates the field at one or more stage points; an
``OutsideDomainError`` from any stage propagates to the caller.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from flowtrace.fields import FunctionSet


def _velocity(field: FunctionSet, x: np.ndarray, t: float) -> np.ndarray:
    return np.asarray(field.evaluate(np.append(x, t)), dtype=np.float64)


class Integrator(ABC):
    """Abstract base class for one-step integration schemes."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def order(self) -> int:
        pass

    @abstractmethod
    def step(self, field: FunctionSet, x: np.ndarray, t: float, dt: float) -> np.ndarray:
        """
        Advance one step.

        Args:
            field: Vector field to integrate
            x: Current position
            t: Current time
            dt: Step size (negative integrates backward)

        Returns:
            Position after the step
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class Euler(Integrator):
    """Forward Euler, first order."""

    name = "euler"
    order = 1

    def step(self, field: FunctionSet, x: np.ndarray, t: float, dt: float) -> np.ndarray:
        return x + dt * _velocity(field, x, t)


class RungeKutta2(Integrator):
    """Explicit midpoint rule, second order."""

    name = "rk2"
    order = 2

    def step(self, field: FunctionSet, x: np.ndarray, t: float, dt: float) -> np.ndarray:
        k1 = _velocity(field, x, t)
        k2 = _velocity(field, x + 0.5 * dt * k1, t + 0.5 * dt)
        return x + dt * k2


class RungeKutta4(Integrator):
    """Classic fourth-order Runge-Kutta."""

    name = "rk4"
    order = 4

    def step(self, field: FunctionSet, x: np.ndarray, t: float, dt: float) -> np.ndarray:
        k1 = _velocity(field, x, t)
        k2 = _velocity(field, x + 0.5 * dt * k1, t + 0.5 * dt)
        k3 = _velocity(field, x + 0.5 * dt * k2, t + 0.5 * dt)
        k4 = _velocity(field, x + dt * k3, t + dt)
        return x + dt / 6.0 * (k1 + 2.0 * k2 + 2.0 * k3 + k4)


def get_integrator(name: str) -> Integrator:
    """Factory function to get an integrator by name."""
    integrators = {
        "euler": Euler,
        "rk2": RungeKutta2,
        "rk4": RungeKutta4,
    }

    if name not in integrators:
        available = ", ".join(integrators.keys())
        raise ValueError(f"Unknown integrator: {name}. Available: {available}")

    return integrators[name]()
