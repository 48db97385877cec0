"""
Exceptions raised by the velocity evaluator and its collaborators.
"""

from __future__ import annotations


class FlowTraceError(Exception):
    """Base class for all flowtrace errors."""
    pass


class OutsideDomainError(FlowTraceError):
    """Raised when a query point is not contained by any attached data set.

    Recoverable: integrators treat it as the trajectory leaving the domain.
    """

    def __init__(self, point, num_datasets: int = 0):
        self.point = point
        self.num_datasets = num_datasets
        coords = ", ".join(f"{c:.6g}" for c in point)
        super().__init__(
            f"Point ({coords}) is outside all {num_datasets} attached data set(s)"
        )


class NoActiveCellError(FlowTraceError):
    """Raised when an operation needs a cached cell but none is available."""
    pass


class DataSetIndexError(FlowTraceError, IndexError):
    """Raised when a data set index does not refer to an attached data set."""

    def __init__(self, index: int, num_datasets: int):
        self.index = index
        self.num_datasets = num_datasets
        super().__init__(
            f"Data set index {index} out of range (0..{num_datasets - 1})"
            if num_datasets else f"Data set index {index} out of range (no data sets attached)"
        )
