"""Streamline integration."""

from flowtrace.tracing.integrators import (
    Integrator,
    Euler,
    RungeKutta2,
    RungeKutta4,
    get_integrator,
)
from flowtrace.tracing.tracer import StreamTracer, Streamline, TerminationReason

__all__ = [
    "Integrator",
    "Euler",
    "RungeKutta2",
    "RungeKutta4",
    "get_integrator",
    "StreamTracer",
    "Streamline",
    "TerminationReason",
]
