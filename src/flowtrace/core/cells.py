"""
Linear cell types and their isoparametric maps.

Every cell maps parametric coordinates in the unit reference domain to
physical space through its shape functions. Inverting that map for a query
point gives the parametric coordinates and interpolation weights used by the
data sets; clamping the parametric coordinates to the reference domain gives
the closest point on the cell.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

import numpy as np


# Parametric slack when deciding whether coordinates lie in the reference domain
PARAMETRIC_TOLERANCE = 1e-9
MAX_ITERATIONS = 20
CONVERGENCE = 1e-12
DIVERGED = 1e6


class CellType(IntEnum):
    """Supported cell types (numbered as in the VTK file formats)."""
    TRIANGLE = 5
    QUAD = 9
    TETRA = 10
    HEXAHEDRON = 12


@dataclass
class CellPosition:
    """Result of locating a physical point relative to one cell."""
    pcoords: np.ndarray  # Parametric coordinates (may lie outside the reference domain)
    weights: np.ndarray  # Shape function values at pcoords
    closest: np.ndarray  # Closest point of the cell to the query point
    dist2: float  # Squared distance from the query point to closest
    converged: bool = True


class Cell(ABC):
    """
    Abstract base class for a linear cell type.

    Subclasses provide the shape functions, their parametric derivatives and
    the reference-domain projection; inversion of the isoparametric map is
    shared.
    """

    cell_type: CellType
    num_points: int
    dimension: int

    @property
    @abstractmethod
    def parametric_center(self) -> np.ndarray:
        """Parametric coordinates of the cell centre."""
        pass

    @staticmethod
    @abstractmethod
    def shape_functions(pcoords: np.ndarray) -> np.ndarray:
        """Shape function values ``[N1, ..., Nn]`` at the parametric coordinates."""
        pass

    @staticmethod
    @abstractmethod
    def shape_derivatives(pcoords: np.ndarray) -> np.ndarray:
        """Derivatives dNi/dr_j as an ``(num_points, dimension)`` array."""
        pass

    @abstractmethod
    def parametric_inside(self, pcoords: np.ndarray, tol: float = PARAMETRIC_TOLERANCE) -> bool:
        """Whether the parametric coordinates lie in the reference domain."""
        pass

    @abstractmethod
    def clamp(self, pcoords: np.ndarray) -> np.ndarray:
        """Closest parametric point of the reference domain."""
        pass

    def evaluate_location(self, points: np.ndarray, pcoords: np.ndarray) -> np.ndarray:
        """Map parametric coordinates to physical space."""
        return self.shape_functions(pcoords) @ np.asarray(points, dtype=np.float64)

    def evaluate_position(
        self,
        points: np.ndarray,
        x: np.ndarray,
        guess: Optional[np.ndarray] = None,
    ) -> CellPosition:
        """
        Find the parametric coordinates of a physical point.

        Uses Gauss-Newton iteration on the isoparametric map, which also
        handles 2-D cells embedded in 3-D (the residual then includes the
        out-of-plane distance).

        Args:
            points: ``(num_points, 3)`` node coordinates of the cell
            x: Query point
            guess: Initial parametric estimate (defaults to the cell centre)

        Returns:
            CellPosition with parametric coordinates, weights and closest point
        """
        points = np.asarray(points, dtype=np.float64)
        x = np.asarray(x, dtype=np.float64)[:3]

        if guess is None:
            pcoords = self.parametric_center.copy()
        else:
            pcoords = np.array(guess, dtype=np.float64)
            if pcoords.shape != (self.dimension,) or not np.all(np.isfinite(pcoords)):
                pcoords = self.parametric_center.copy()

        converged = False
        for _ in range(MAX_ITERATIONS):
            residual = x - self.shape_functions(pcoords) @ points
            jacobian = points.T @ self.shape_derivatives(pcoords)
            step = np.linalg.lstsq(jacobian, residual, rcond=None)[0]
            pcoords = pcoords + step

            if not np.all(np.isfinite(pcoords)) or np.abs(pcoords).max() > DIVERGED:
                pcoords = self.parametric_center.copy()
                break
            if np.abs(step).max() < CONVERGENCE:
                converged = True
                break

        if self.parametric_inside(pcoords):
            closest_pcoords = pcoords
        else:
            closest_pcoords = self.clamp(pcoords)

        closest = self.evaluate_location(points, closest_pcoords)
        dist2 = float(np.sum((x - closest) ** 2))

        return CellPosition(
            pcoords=pcoords,
            weights=self.shape_functions(pcoords),
            closest=closest,
            dist2=dist2,
            converged=converged,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


def _project_to_simplex(bary: np.ndarray) -> np.ndarray:
    """Euclidean projection of barycentric coordinates onto the unit simplex."""
    u = np.sort(bary)[::-1]
    css = np.cumsum(u)
    ks = np.arange(1, len(bary) + 1)
    rho = ks[u - (css - 1.0) / ks > 0][-1]
    theta = (css[rho - 1] - 1.0) / rho
    return np.maximum(bary - theta, 0.0)


class _SimplexCell(Cell):
    """Shared shape functions for triangles and tetrahedra."""

    @property
    def parametric_center(self) -> np.ndarray:
        return np.full(self.dimension, 1.0 / (self.dimension + 1))

    @staticmethod
    def shape_functions(pcoords: np.ndarray) -> np.ndarray:
        pcoords = np.asarray(pcoords, dtype=np.float64)
        return np.concatenate(([1.0 - pcoords.sum()], pcoords))

    @staticmethod
    def shape_derivatives(pcoords: np.ndarray) -> np.ndarray:
        dim = len(pcoords)
        return np.vstack([-np.ones(dim), np.eye(dim)])

    def parametric_inside(self, pcoords: np.ndarray, tol: float = PARAMETRIC_TOLERANCE) -> bool:
        return bool(np.all(pcoords >= -tol) and pcoords.sum() <= 1.0 + tol)

    def clamp(self, pcoords: np.ndarray) -> np.ndarray:
        bary = self.shape_functions(pcoords)
        return _project_to_simplex(bary)[1:]


class _TensorCell(Cell):
    """Shared shape functions for quads and hexahedra (tensor-product corners)."""

    corners: np.ndarray

    @property
    def parametric_center(self) -> np.ndarray:
        return np.full(self.dimension, 0.5)

    def shape_functions(self, pcoords: np.ndarray) -> np.ndarray:
        factors = np.where(self.corners == 1, pcoords, 1.0 - np.asarray(pcoords))
        return factors.prod(axis=1)

    def shape_derivatives(self, pcoords: np.ndarray) -> np.ndarray:
        factors = np.where(self.corners == 1, pcoords, 1.0 - np.asarray(pcoords))
        signs = np.where(self.corners == 1, 1.0, -1.0)
        derivs = np.empty_like(factors)
        for d in range(self.dimension):
            derivs[:, d] = signs[:, d] * np.delete(factors, d, axis=1).prod(axis=1)
        return derivs

    def parametric_inside(self, pcoords: np.ndarray, tol: float = PARAMETRIC_TOLERANCE) -> bool:
        return bool(np.all(pcoords >= -tol) and np.all(pcoords <= 1.0 + tol))

    def clamp(self, pcoords: np.ndarray) -> np.ndarray:
        return np.clip(pcoords, 0.0, 1.0)


class Triangle(_SimplexCell):
    """Three-node linear triangle, pcoords ``(r, s)``, weights ``[1 - r - s, r, s]``."""
    cell_type = CellType.TRIANGLE
    num_points = 3
    dimension = 2


class Tetra(_SimplexCell):
    """Four-node linear tetrahedron, pcoords ``(r, s, t)``."""
    cell_type = CellType.TETRA
    num_points = 4
    dimension = 3


class Quad(_TensorCell):
    """Four-node bilinear quadrilateral (counter-clockwise node order)."""
    cell_type = CellType.QUAD
    num_points = 4
    dimension = 2
    corners = np.array([[0, 0], [1, 0], [1, 1], [0, 1]])


class Hexahedron(_TensorCell):
    """Eight-node trilinear hexahedron (bottom face, then top face)."""
    cell_type = CellType.HEXAHEDRON
    num_points = 8
    dimension = 3
    corners = np.array([
        [0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0],
        [0, 0, 1], [1, 0, 1], [1, 1, 1], [0, 1, 1],
    ])


_CELLS: dict[CellType, Cell] = {
    CellType.TRIANGLE: Triangle(),
    CellType.QUAD: Quad(),
    CellType.TETRA: Tetra(),
    CellType.HEXAHEDRON: Hexahedron(),
}


def get_cell(cell_type) -> Cell:
    """Get the cell implementation for a cell type (enum, VTK id or name)."""
    if isinstance(cell_type, str):
        try:
            cell_type = CellType[cell_type.upper()]
        except KeyError:
            available = ", ".join(t.name.lower() for t in CellType)
            raise ValueError(f"Unknown cell type: {cell_type}. Available: {available}") from None
    try:
        return _CELLS[CellType(int(cell_type))]
    except ValueError:
        raise ValueError(f"Unsupported cell type id: {cell_type}") from None


def cell_for_num_points(num_points: int, dimension: int = 3) -> Cell:
    """Guess the cell type from the number of nodes per cell."""
    if num_points == 3:
        return _CELLS[CellType.TRIANGLE]
    if num_points == 8:
        return _CELLS[CellType.HEXAHEDRON]
    if num_points == 4:
        return _CELLS[CellType.TETRA] if dimension == 3 else _CELLS[CellType.QUAD]
    raise ValueError(f"Cannot infer cell type from {num_points} nodes per cell")
