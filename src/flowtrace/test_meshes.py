"""
Synthetic meshes and analytic fields for testing and benchmarking.

Grids span an axis-aligned box and carry a ``velocity`` array sampled from
a field callable. Linear fields are reproduced exactly by the linear cells,
so interpolated values can be checked against the callable.
"""

from __future__ import annotations

from itertools import permutations
from typing import Callable, Optional, Sequence

import numpy as np

from flowtrace.core.cells import CellType
from flowtrace.core.structured import ImageGrid, RectilinearGrid
from flowtrace.core.unstructured import UnstructuredGrid

Field = Callable[[np.ndarray], np.ndarray]

UNIT_BOX = ((0.0, 0.0, 0.0), (1.0, 1.0, 1.0))

# Hexahedron corner offsets in node order
_HEX_OFFSETS = [
    (0, 0, 0), (1, 0, 0), (1, 1, 0), (0, 1, 0),
    (0, 0, 1), (1, 0, 1), (1, 1, 1), (0, 1, 1),
]


def uniform_field(vector: Sequence[float] = (1.0, 0.0, 0.0)) -> Field:
    """Constant field."""
    vector = np.asarray(vector, dtype=np.float64)

    def field(points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64)
        return np.broadcast_to(vector, points[..., :3].shape).copy()

    return field


def rotation_field(omega: float = 1.0, center: Sequence[float] = (0.5, 0.5, 0.0)) -> Field:
    """Solid-body rotation about the z axis through ``center``: ``v = omega * (-y, x, 0)``."""
    center = np.asarray(center, dtype=np.float64)

    def field(points: np.ndarray) -> np.ndarray:
        rel = np.asarray(points, dtype=np.float64)[..., :3] - center
        v = np.zeros_like(rel)
        v[..., 0] = -omega * rel[..., 1]
        v[..., 1] = omega * rel[..., 0]
        return v

    return field


def shear_field(rate: float = 1.0) -> Field:
    """Plane shear flow ``v = (rate * y, 0, 0)``."""
    def field(points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64)[..., :3]
        v = np.zeros_like(points)
        v[..., 0] = rate * points[..., 1]
        return v

    return field


def _lattice(divisions: Sequence[int], bounds) -> tuple[np.ndarray, tuple[int, ...]]:
    """Nodes of a regular lattice, x varying fastest, and the node counts per axis."""
    lo, hi = np.asarray(bounds[0], dtype=np.float64), np.asarray(bounds[1], dtype=np.float64)
    axes = [np.linspace(lo[d], hi[d], divisions[d] + 1) for d in range(len(divisions))]
    grids = np.meshgrid(*axes, indexing="ij")
    points = np.stack([g.ravel(order="F") for g in grids], axis=1)
    return points, tuple(n + 1 for n in divisions)


def _node_index(i, j, k, counts) -> int:
    nx, ny = counts[0], counts[1]
    return i + nx * (j + ny * k)


def _sample(field: Optional[Field], points: np.ndarray) -> dict:
    return {"velocity": (field or uniform_field())(points)}


def create_hex_box(
    divisions: Sequence[int] = (4, 4, 4),
    bounds=UNIT_BOX,
    field: Optional[Field] = None,
    name: str = "hex_box",
) -> UnstructuredGrid:
    """Box split into hexahedra."""
    points, counts = _lattice(divisions, bounds)
    nx, ny, nz = divisions

    cells = []
    for k in range(nz):
        for j in range(ny):
            for i in range(nx):
                cells.append([_node_index(i + a, j + b, k + c, counts) for a, b, c in _HEX_OFFSETS])

    return UnstructuredGrid(
        points=points,
        cells=np.array(cells),
        cell_type=CellType.HEXAHEDRON,
        point_data=_sample(field, points),
        name=name,
    )


def create_tetra_box(
    divisions: Sequence[int] = (4, 4, 4),
    bounds=UNIT_BOX,
    field: Optional[Field] = None,
    name: str = "tetra_box",
) -> UnstructuredGrid:
    """
    Box split into tetrahedra.

    Each hexahedron is cut into six tetrahedra sharing its main diagonal
    (Kuhn subdivision), which keeps the mesh conforming across cells.
    """
    points, counts = _lattice(divisions, bounds)
    nx, ny, nz = divisions
    unit = np.eye(3, dtype=np.int64)

    cells = []
    for k in range(nz):
        for j in range(ny):
            for i in range(nx):
                origin = np.array([i, j, k])
                for order in permutations(range(3)):
                    path = [origin]
                    for axis in order:
                        path.append(path[-1] + unit[axis])
                    cells.append([_node_index(*p, counts) for p in path])

    return UnstructuredGrid(
        points=points,
        cells=np.array(cells),
        cell_type=CellType.TETRA,
        point_data=_sample(field, points),
        name=name,
    )


def create_triangle_plate(
    divisions: Sequence[int] = (4, 4),
    bounds=((0.0, 0.0), (1.0, 1.0)),
    field: Optional[Field] = None,
    name: str = "triangle_plate",
) -> UnstructuredGrid:
    """Rectangle in the z = 0 plane split into triangles."""
    points2d, counts = _lattice(divisions, bounds)
    points = np.column_stack([points2d, np.zeros(len(points2d))])
    nx, ny = divisions

    cells = []
    for j in range(ny):
        for i in range(nx):
            n00 = _node_index(i, j, 0, counts)
            n10 = _node_index(i + 1, j, 0, counts)
            n11 = _node_index(i + 1, j + 1, 0, counts)
            n01 = _node_index(i, j + 1, 0, counts)
            cells.append([n00, n10, n11])
            cells.append([n00, n11, n01])

    return UnstructuredGrid(
        points=points,
        cells=np.array(cells),
        cell_type=CellType.TRIANGLE,
        point_data=_sample(field, points),
        name=name,
    )


def create_image_grid(
    dimensions: Sequence[int] = (5, 5, 5),
    origin: Sequence[float] = (0.0, 0.0, 0.0),
    spacing: Sequence[float] = (0.25, 0.25, 0.25),
    field: Optional[Field] = None,
    name: str = "image",
) -> ImageGrid:
    """Uniform lattice (unit box by default)."""
    grid = ImageGrid(dimensions=tuple(dimensions), origin=tuple(origin), spacing=tuple(spacing), name=name)
    grid.point_data = _sample(field, grid.points)
    return grid


def create_rectilinear_grid(
    x_coords: Sequence[float] = (0.0, 0.1, 0.3, 0.6, 1.0),
    y_coords: Sequence[float] = (0.0, 0.5, 1.0),
    z_coords: Sequence[float] = (0.0, 0.2, 1.0),
    field: Optional[Field] = None,
    name: str = "rectilinear",
) -> RectilinearGrid:
    """Lattice with uneven spacing per axis (unit box by default)."""
    grid = RectilinearGrid(
        x_coords=np.asarray(x_coords, dtype=np.float64),
        y_coords=np.asarray(y_coords, dtype=np.float64),
        z_coords=np.asarray(z_coords, dtype=np.float64),
        name=name,
    )
    grid.point_data = _sample(field, grid.points)
    return grid
