"""
Structured grid adapters: image data and rectilinear grids.

Both are axis-aligned lattices of hexahedra (or quads when one axis is
flat), so cell location reduces to a per-axis lookup: arithmetic for the
uniform spacing of an image, a binary search for rectilinear coordinates.
The hint cell of an adjacency-seeded search is therefore not needed; near
and global searches cost the same.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from flowtrace.core.cells import CellType, get_cell
from flowtrace.core.dataset import (
    MeshDataSet, CellHit, TOLERANCE_SCALE, as_point, validate_vectors,
)


class _AxisLayout:
    """Point/cell indexing of a lattice defined by three coordinate axes.

    Points are numbered with x varying fastest, cells likewise. Axes holding
    a single coordinate are flat and contribute no parametric direction.
    """

    def __init__(self, axes: Sequence[np.ndarray], spacing: Optional[np.ndarray] = None):
        self.axes = [np.asarray(a, dtype=np.float64).ravel() for a in axes]
        self.dims = tuple(len(a) for a in self.axes)
        self.spacing = spacing

        for d, axis in enumerate(self.axes):
            if len(axis) == 0:
                raise ValueError(f"Axis {d} has no coordinates")
            if len(axis) > 1 and np.any(np.diff(axis) <= 0):
                raise ValueError(f"Axis {d} coordinates must be strictly increasing")

        self.active = [d for d in range(3) if self.dims[d] > 1]
        if len(self.active) < 2:
            raise ValueError(f"Structured grids need at least two non-flat axes, got dimensions {self.dims}")

        self.cell_dims = tuple(max(n - 1, 1) for n in self.dims)
        self.cell = get_cell(CellType.HEXAHEDRON if len(self.active) == 3 else CellType.QUAD)

        # Lattice offsets of each cell node, in the cell type's node order
        self.offsets = np.zeros((self.cell.num_points, 3), dtype=np.int64)
        for j, d in enumerate(self.active):
            self.offsets[:, d] = self.cell.corners[:, j]

    @property
    def num_points(self) -> int:
        return int(np.prod(self.dims))

    @property
    def num_cells(self) -> int:
        return int(np.prod(self.cell_dims))

    @property
    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        return (
            np.array([a[0] for a in self.axes]),
            np.array([a[-1] for a in self.axes]),
        )

    def cell_ijk(self, cell_id: int) -> np.ndarray:
        nx, ny, _ = self.cell_dims
        if not 0 <= cell_id < self.num_cells:
            raise IndexError(f"Cell id {cell_id} out of range (0..{self.num_cells - 1})")
        return np.array([cell_id % nx, (cell_id // nx) % ny, cell_id // (nx * ny)], dtype=np.int64)

    def cell_id(self, ijk: np.ndarray) -> int:
        nx, ny, _ = self.cell_dims
        return int(ijk[0] + nx * (ijk[1] + ny * ijk[2]))

    def cell_point_ids(self, cell_id: int) -> np.ndarray:
        nx, ny, _ = self.dims
        lattice = self.cell_ijk(cell_id) + self.offsets
        return lattice[:, 0] + nx * (lattice[:, 1] + ny * lattice[:, 2])

    def locate_axis(self, d: int, value: float) -> int:
        """Index of the cell interval along an active axis holding ``value``."""
        axis = self.axes[d]
        if self.spacing is not None:
            i = int(np.floor((value - axis[0]) / self.spacing[d]))
        else:
            i = int(np.searchsorted(axis, value, side="right")) - 1
        return min(max(i, 0), len(axis) - 2)

    def locate(self, x: np.ndarray, tol: float) -> Optional[int]:
        """Id of the cell whose padded extent holds ``x``, or None."""
        ijk = np.zeros(3, dtype=np.int64)
        for d in range(3):
            axis = self.axes[d]
            if x[d] < axis[0] - tol or x[d] > axis[-1] + tol:
                return None
            if d in self.active:
                ijk[d] = self.locate_axis(d, x[d])
        return self.cell_id(ijk)

    def evaluate(self, cell_id: int, x: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray, float]:
        """Parametric coordinates, weights, closest point and squared distance."""
        ijk = self.cell_ijk(cell_id)
        pcoords = np.empty(len(self.active))
        closest = np.array([a[0] for a in self.axes])
        for j, d in enumerate(self.active):
            lo, hi = self.axes[d][ijk[d]], self.axes[d][ijk[d] + 1]
            pcoords[j] = (x[d] - lo) / (hi - lo)
            closest[d] = lo + min(max(pcoords[j], 0.0), 1.0) * (hi - lo)
        dist2 = float(np.sum((x - closest) ** 2))
        return pcoords, self.cell.shape_functions(pcoords), closest, dist2

    def points(self) -> np.ndarray:
        grids = np.meshgrid(*self.axes, indexing="ij")
        return np.stack([g.ravel(order="F") for g in grids], axis=1)


class _LatticeAccess:
    """Cell access shared by the structured adapters through their layout."""

    _layout: _AxisLayout

    @property
    def dimensions(self) -> tuple[int, int, int]:
        return self._layout.dims

    @property
    def num_points(self) -> int:
        return self._layout.num_points

    @property
    def num_cells(self) -> int:
        return self._layout.num_cells

    @property
    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        return self._layout.bounds

    @property
    def cell_type(self) -> CellType:
        return self._layout.cell.cell_type

    @property
    def points(self) -> np.ndarray:
        """Node positions, x varying fastest."""
        return self._layout.points()

    def cell_point_ids(self, cell_id: int) -> np.ndarray:
        return self._layout.cell_point_ids(int(cell_id))

    def contains_point(
        self,
        cell_id: int,
        x: np.ndarray,
        pcoords_guess: Optional[np.ndarray] = None,
    ) -> CellHit:
        # Axis-aligned cells invert exactly; the guess is not needed
        pcoords, weights, closest, dist2 = self._layout.evaluate(int(cell_id), as_point(x))
        return CellHit(
            cell_id=int(cell_id),
            inside=dist2 <= self.tolerance ** 2,
            pcoords=pcoords,
            weights=weights,
            closest=closest,
            dist2=dist2,
        )

    def find_cell_near(self, x: np.ndarray, hint_cell_id: Optional[int] = None) -> Optional[CellHit]:
        return self._lookup(x)

    def find_cell_global(self, x: np.ndarray) -> Optional[CellHit]:
        return self._lookup(x)

    def _lookup(self, x: np.ndarray) -> Optional[CellHit]:
        x = as_point(x)
        cell_id = self._layout.locate(x, self.tolerance)
        if cell_id is None:
            return None
        hit = self.contains_point(cell_id, x)
        return hit if hit.inside else None


@dataclass(eq=False)
class ImageGrid(_LatticeAccess, MeshDataSet):
    """
    Uniformly spaced lattice (image data).

    Attributes:
        dimensions: Number of points along x, y, z (one axis may be 1)
        origin: Position of point (0, 0, 0)
        spacing: Point spacing along each axis
        point_data: Named vector arrays, x varying fastest
    """
    dimensions: tuple = (2, 2, 2)
    origin: tuple = (0.0, 0.0, 0.0)
    spacing: tuple = (1.0, 1.0, 1.0)
    point_data: dict = field(default_factory=dict)
    name: str = "unnamed"
    metadata: dict = field(default_factory=dict)
    tolerance_scale: float = TOLERANCE_SCALE

    def __post_init__(self):
        dims = tuple(int(n) for n in self.dimensions)
        origin = np.asarray(self.origin, dtype=np.float64)
        spacing = np.asarray(self.spacing, dtype=np.float64)
        if len(dims) != 3 or origin.shape != (3,) or spacing.shape != (3,):
            raise ValueError("dimensions, origin and spacing need three components each")
        if np.any(spacing <= 0):
            raise ValueError(f"Spacing must be positive, got {spacing}")

        axes = [origin[d] + spacing[d] * np.arange(dims[d]) for d in range(3)]
        self._layout = _AxisLayout(axes, spacing=spacing)
        self.dimensions = dims
        self.origin = tuple(float(v) for v in origin)
        self.spacing = tuple(float(v) for v in spacing)
        self.point_data = validate_vectors(self.point_data, self._layout.num_points)

    def __repr__(self) -> str:
        return f"ImageGrid('{self.name}', dimensions={self.dimensions})"


@dataclass(eq=False)
class RectilinearGrid(_LatticeAccess, MeshDataSet):
    """
    Axis-aligned lattice with arbitrary monotonic coordinates per axis.

    Attributes:
        x_coords, y_coords, z_coords: Strictly increasing axis coordinates
        point_data: Named vector arrays, x varying fastest
    """
    x_coords: np.ndarray = field(default_factory=lambda: np.array([0.0, 1.0]))
    y_coords: np.ndarray = field(default_factory=lambda: np.array([0.0, 1.0]))
    z_coords: np.ndarray = field(default_factory=lambda: np.array([0.0]))
    point_data: dict = field(default_factory=dict)
    name: str = "unnamed"
    metadata: dict = field(default_factory=dict)
    tolerance_scale: float = TOLERANCE_SCALE

    def __post_init__(self):
        self._layout = _AxisLayout([self.x_coords, self.y_coords, self.z_coords])
        self.x_coords, self.y_coords, self.z_coords = self._layout.axes
        self.point_data = validate_vectors(self.point_data, self._layout.num_points)

    def __repr__(self) -> str:
        return f"RectilinearGrid('{self.name}', dimensions={self.dimensions})"
