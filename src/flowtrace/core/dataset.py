"""
Mesh data set interface consumed by the velocity evaluator.

Every concrete mesh representation (unstructured grid, image data,
rectilinear grid) is wrapped by one adapter implementing this interface.
The evaluator only ever talks to a mesh through these four capabilities:

- ``contains_point``: containment test against one cell
- ``find_cell_near``: cell location seeded with a neighbouring cell
- ``find_cell_global``: full-data-set cell location
- ``interpolate_at``: blend per-node vectors with cell weights
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np


# Containment tolerance relative to the data set's bounding-box diagonal
TOLERANCE_SCALE = 1e-8


@dataclass
class CellHit:
    """Outcome of testing a point against a cell of a data set."""
    cell_id: int
    inside: bool
    pcoords: np.ndarray
    weights: np.ndarray
    closest: np.ndarray
    dist2: float


class MeshDataSet(ABC):
    """
    Abstract mesh collaborator.

    Implementations must be safe for concurrent read-only use once their
    locator structures are built (see ``build_locator``); they never hold
    per-query state.
    """

    tolerance_scale: float = TOLERANCE_SCALE
    name: str = "unnamed"
    # Named (num_points, 3) vector arrays
    point_data: dict[str, np.ndarray]

    @property
    @abstractmethod
    def num_cells(self) -> int:
        pass

    @property
    @abstractmethod
    def num_points(self) -> int:
        pass

    @property
    @abstractmethod
    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        """Axis-aligned bounding box (min, max)."""
        pass

    @abstractmethod
    def contains_point(
        self,
        cell_id: int,
        x: np.ndarray,
        pcoords_guess: Optional[np.ndarray] = None,
    ) -> CellHit:
        """
        Test whether a point lies in a cell.

        Args:
            cell_id: Cell to test
            x: Query point
            pcoords_guess: Parametric estimate from a previous query, if any

        Returns:
            CellHit; ``inside`` tells the outcome, the closest point and
            distance are filled either way.
        """
        pass

    @abstractmethod
    def find_cell_near(self, x: np.ndarray, hint_cell_id: Optional[int] = None) -> Optional[CellHit]:
        """Locate the cell containing ``x`` starting from a neighbouring cell."""
        pass

    @abstractmethod
    def find_cell_global(self, x: np.ndarray) -> Optional[CellHit]:
        """Locate the cell containing ``x`` by searching the whole data set."""
        pass

    @abstractmethod
    def cell_point_ids(self, cell_id: int) -> np.ndarray:
        """Node indices of a cell, in the cell type's node order."""
        pass

    def build_locator(self) -> None:
        """Build any lazily created search structures up front."""
        pass

    @property
    def length(self) -> float:
        """Bounding box diagonal length."""
        min_b, max_b = self.bounds
        return float(np.linalg.norm(max_b - min_b))

    @property
    def tolerance(self) -> float:
        """Distance below which a point counts as lying in a cell."""
        return self.tolerance_scale * self.length

    @property
    def vector_names(self) -> list[str]:
        return list(self.point_data.keys())

    @property
    def active_vectors(self) -> Optional[str]:
        """Name of the vector array interpolated by default."""
        names = self.vector_names
        return names[0] if names else None

    def get_vectors(self, array_name: Optional[str] = None) -> np.ndarray:
        """Get a point-data vector array by name (default: the active one)."""
        name = array_name or self.active_vectors
        if name is None:
            raise KeyError(f"Data set '{self.name}' has no vector arrays")
        try:
            return self.point_data[name]
        except KeyError:
            available = ", ".join(self.vector_names)
            raise KeyError(f"No vector array '{name}' in data set '{self.name}'. Available: {available}") from None

    def interpolate_at(
        self,
        cell_id: int,
        weights: np.ndarray,
        array_name: Optional[str] = None,
    ) -> np.ndarray:
        """Blend the per-node vectors of a cell with interpolation weights."""
        vectors = self.get_vectors(array_name)
        return np.asarray(weights, dtype=np.float64) @ vectors[self.cell_point_ids(cell_id)]

    def in_bounds(self, x: np.ndarray) -> bool:
        """Whether ``x`` lies in the padded bounding box."""
        min_b, max_b = self.bounds
        tol = self.tolerance
        x = np.asarray(x, dtype=np.float64)[:3]
        return bool(np.all(x >= min_b - tol) and np.all(x <= max_b + tol))


def as_point(x) -> np.ndarray:
    """Spatial part of a query point as a float array of length 3."""
    x = np.asarray(x, dtype=np.float64).ravel()
    if x.shape[0] < 3:
        raise ValueError(f"Query point needs at least 3 coordinates, got {x.shape[0]}")
    return x[:3]


def validate_vectors(point_data: dict, num_points: int) -> dict[str, np.ndarray]:
    """Normalise named vector arrays to ``(num_points, 3)`` float arrays."""
    validated = {}
    for name, values in (point_data or {}).items():
        values = np.asarray(values, dtype=np.float64)
        if values.ndim != 2 or values.shape[0] != num_points or values.shape[1] not in (2, 3):
            raise ValueError(
                f"Vector array '{name}' must be {num_points}x3, got shape {values.shape}"
            )
        if values.shape[1] == 2:
            values = np.column_stack([values, np.zeros(num_points)])
        validated[name] = values
    return validated
