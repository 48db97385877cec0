"""
Unstructured grid adapter.

Explicit points and homogeneous cell connectivity, like the triangle/quad
meshes elsewhere in the pipeline but carrying volumetric cells and nodal
vector data. Point location uses a k-d tree over the nodes plus
point-to-cell links, so a global search only tests the cells attached to
the nearest nodes before falling back to a bounding-box scan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from scipy.spatial import cKDTree

from flowtrace.core.cells import CellType, get_cell, cell_for_num_points
from flowtrace.core.dataset import (
    MeshDataSet, CellHit, TOLERANCE_SCALE, as_point, validate_vectors,
)

logger = logging.getLogger("flowtrace.core.unstructured")


@dataclass(eq=False)
class UnstructuredGrid(MeshDataSet):
    """
    Unstructured mesh with nodal vector data.

    Attributes:
        points: Nx3 array of node positions (Nx2 is padded with z = 0)
        cells: MxK array of node indices, one row per cell
        cell_type: Cell type of every row (inferred from K when omitted)
        point_data: Named Nx3 vector arrays
        name: Optional mesh identifier
        metadata: Additional mesh properties
        tolerance_scale: Containment tolerance relative to the bounds diagonal
        max_walk_rings: Neighbour rings visited by the adjacency walk
        max_walk_cells: Containment tests the walk may run before giving up
        locator_neighbors: Nearest nodes whose cells a global search tests first
    """
    points: np.ndarray
    cells: np.ndarray
    cell_type: Optional[CellType] = None
    point_data: dict = field(default_factory=dict)
    name: str = "unnamed"
    metadata: dict = field(default_factory=dict)
    tolerance_scale: float = TOLERANCE_SCALE
    max_walk_rings: int = 2
    max_walk_cells: int = 64
    locator_neighbors: int = 8

    _locator: Optional[cKDTree] = field(default=None, init=False, repr=False)
    _link_offsets: Optional[np.ndarray] = field(default=None, init=False, repr=False)
    _link_cells: Optional[np.ndarray] = field(default=None, init=False, repr=False)
    _cell_min: Optional[np.ndarray] = field(default=None, init=False, repr=False)
    _cell_max: Optional[np.ndarray] = field(default=None, init=False, repr=False)
    _bounds: Optional[tuple] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        """Validate and normalize mesh data."""
        self.points = np.asarray(self.points, dtype=np.float64)
        self.cells = np.asarray(self.cells, dtype=np.int64)

        if self.points.ndim == 2 and self.points.shape[1] == 2:
            self.points = np.column_stack([self.points, np.zeros(len(self.points))])
        if self.points.ndim != 2 or self.points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got shape {self.points.shape}")
        if self.cells.ndim != 2 or self.cells.shape[0] == 0:
            raise ValueError(f"Cells must be a non-empty MxK array, got shape {self.cells.shape}")

        if self.cell_type is None:
            flat = bool(np.ptp(self.points[:, 2]) == 0.0)
            self.cell = cell_for_num_points(self.cells.shape[1], dimension=2 if flat else 3)
        else:
            self.cell = get_cell(self.cell_type)
        self.cell_type = self.cell.cell_type

        if self.cells.shape[1] != self.cell.num_points:
            raise ValueError(
                f"{self.cell_type.name.lower()} cells need {self.cell.num_points} nodes, "
                f"got {self.cells.shape[1]}"
            )
        if self.cells.min() < 0 or self.cells.max() >= len(self.points):
            raise ValueError(f"Cell connectivity references nodes outside 0..{len(self.points) - 1}")

        self.point_data = validate_vectors(self.point_data, len(self.points))

    @property
    def num_points(self) -> int:
        return len(self.points)

    @property
    def num_cells(self) -> int:
        return len(self.cells)

    @property
    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        if self._bounds is None:
            self._bounds = (self.points.min(axis=0), self.points.max(axis=0))
        return self._bounds

    @property
    def locator(self) -> cKDTree:
        """k-d tree over the nodes (built on first use)."""
        if self._locator is None:
            self._locator = cKDTree(self.points)
        return self._locator

    def build_locator(self) -> None:
        """Build the k-d tree, cell links and cell bounds."""
        self._locator = self.locator
        self._build_links()
        self._build_cell_bounds()
        logger.info(
            f"Built locator for '{self.name}': {self.num_points} points, "
            f"{self.num_cells} {self.cell_type.name.lower()} cells"
        )

    def _build_links(self) -> None:
        if self._link_offsets is not None:
            return
        flat = self.cells.ravel()
        owners = np.repeat(np.arange(self.num_cells), self.cells.shape[1])
        order = np.argsort(flat, kind="stable")
        counts = np.bincount(flat, minlength=self.num_points)
        self._link_cells = owners[order]
        self._link_offsets = np.concatenate([[0], np.cumsum(counts)])

    def _build_cell_bounds(self) -> None:
        if self._cell_min is not None:
            return
        cell_points = self.points[self.cells]
        self._cell_min = cell_points.min(axis=1)
        self._cell_max = cell_points.max(axis=1)

    def point_cells(self, point_id: int) -> np.ndarray:
        """Ids of the cells using a node."""
        self._build_links()
        return self._link_cells[self._link_offsets[point_id]:self._link_offsets[point_id + 1]]

    def cell_neighbors(self, cell_id: int) -> np.ndarray:
        """Ids of the cells sharing at least one node with a cell."""
        linked = np.concatenate([self.point_cells(pid) for pid in self.cells[cell_id]])
        neighbors = np.unique(linked)
        return neighbors[neighbors != cell_id]

    def cell_point_ids(self, cell_id: int) -> np.ndarray:
        return self.cells[cell_id]

    def cell_center(self, cell_id: int) -> np.ndarray:
        return self.points[self.cells[cell_id]].mean(axis=0)

    def contains_point(
        self,
        cell_id: int,
        x: np.ndarray,
        pcoords_guess: Optional[np.ndarray] = None,
    ) -> CellHit:
        position = self.cell.evaluate_position(
            self.points[self.cells[cell_id]], as_point(x), pcoords_guess
        )
        return CellHit(
            cell_id=int(cell_id),
            inside=position.dist2 <= self.tolerance ** 2,
            pcoords=position.pcoords,
            weights=position.weights,
            closest=position.closest,
            dist2=position.dist2,
        )

    def find_cell_near(self, x: np.ndarray, hint_cell_id: Optional[int] = None) -> Optional[CellHit]:
        """
        Walk outward from a hint cell through node-sharing neighbours.

        Ring 0 is the hint itself; each further ring adds the not yet
        visited cells that share a node with the previous ring. Within a
        ring, cells closer to the query point are tested first. The walk
        stops after ``max_walk_cells`` containment tests.

        Returns:
            CellHit of the first containing cell, or None when the walk is
            exhausted (or no hint was given).
        """
        if hint_cell_id is None:
            return None
        x = as_point(x)

        visited = {int(hint_cell_id)}
        ring = [int(hint_cell_id)]
        tested = 0
        for depth in range(self.max_walk_rings + 1):
            for cell_id in ring:
                if tested >= self.max_walk_cells:
                    return None
                tested += 1
                hit = self.contains_point(cell_id, x)
                if hit.inside:
                    return hit
            if depth == self.max_walk_rings:
                break

            candidates = set()
            for cell_id in ring:
                candidates.update(int(c) for c in self.cell_neighbors(cell_id))
            candidates -= visited
            if not candidates:
                break
            visited |= candidates
            ring = sorted(candidates, key=lambda c: float(np.sum((self.cell_center(c) - x) ** 2)))

        return None

    def find_cell_global(self, x: np.ndarray) -> Optional[CellHit]:
        """
        Locate the containing cell anywhere in the grid.

        Tests the cells attached to the nearest nodes first, then every
        cell whose bounding box holds the point.
        """
        x = as_point(x)
        if not self.in_bounds(x):
            return None

        k = min(self.locator_neighbors, self.num_points)
        _, nearest = self.locator.query(x, k=k)
        tested: set[int] = set()
        for point_id in np.atleast_1d(nearest):
            for cell_id in self.point_cells(int(point_id)):
                cell_id = int(cell_id)
                if cell_id in tested:
                    continue
                tested.add(cell_id)
                hit = self.contains_point(cell_id, x)
                if hit.inside:
                    return hit

        self._build_cell_bounds()
        tol = self.tolerance
        mask = np.all((self._cell_min - tol <= x) & (x <= self._cell_max + tol), axis=1)
        for cell_id in np.flatnonzero(mask):
            cell_id = int(cell_id)
            if cell_id in tested:
                continue
            hit = self.contains_point(cell_id, x)
            if hit.inside:
                return hit

        return None

    def __repr__(self) -> str:
        return (
            f"UnstructuredGrid('{self.name}', {self.num_points} points, "
            f"{self.num_cells} {self.cell_type.name.lower()} cells)"
        )
