"""
Caching velocity evaluator.

Turns one or more meshes with nodal vectors into a continuous vector field
for streamline integration. Point location is the dominant cost of
integrating over large meshes, and consecutive integration points are
almost always close to each other, so every evaluation escalates through
three stages and stops at the first success:

1. intra-cell: is the point still in the cell found last time?
2. inter-cell: walk outward from that cell through its neighbours
3. global: search the whole data set (k-d tree / lattice lookup)

Each attached data set keeps its own cache entry; the data set that
resolved the previous point is tried first.

Not thread safe: cache entries change on every call. Build one evaluator
per thread (``new_instance``) over the same read-only meshes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, TYPE_CHECKING

import numpy as np

from flowtrace.core.dataset import MeshDataSet, CellHit, as_point
from flowtrace.errors import OutsideDomainError, NoActiveCellError, DataSetIndexError
from flowtrace.fields import FunctionSet

if TYPE_CHECKING:
    from flowtrace.config import EvaluatorConfig

logger = logging.getLogger("flowtrace.evaluator")


class ResolutionStage(Enum):
    """Stage that located the cell for the last successful evaluation."""
    INTRA_CELL = "intra_cell"
    INTER_CELL = "inter_cell"
    GLOBAL = "global"


@dataclass
class CacheEntry:
    """
    Last resolved cell of one data set.

    When ``valid``, ``pcoords`` and ``weights`` belong to the last point
    resolved against ``cell_id``. A seeded entry has a cell but no valid
    weights until the next successful containment test.
    """
    cell_id: Optional[int] = None
    pcoords: Optional[np.ndarray] = None
    weights: Optional[np.ndarray] = None
    valid: bool = False

    def store(self, hit: CellHit) -> None:
        self.cell_id = hit.cell_id
        self.pcoords = np.array(hit.pcoords, dtype=np.float64)
        self.weights = np.array(hit.weights, dtype=np.float64)
        self.valid = True

    def seed(self, cell_id: Optional[int]) -> None:
        self.cell_id = None if cell_id is None else int(cell_id)
        self.pcoords = None
        self.weights = None
        self.valid = False

    def clear(self) -> None:
        self.seed(None)


class CachingVelocityEvaluator(FunctionSet):
    """
    Vector field interpolated from mesh data sets with staged cell caching.

    Data sets are borrowed, not owned: the caller keeps them alive for the
    evaluator's lifetime and must not change their topology while cell ids
    are cached for them.

    Attributes:
        caching: Use the cached cell (stages 1 and 2); when off every
            evaluation runs a global search
        normalize_vector: Return unit vectors
        vectors: Name of the point-data array to interpolate (None = each
            data set's active vectors)
        cache_hits: Evaluations resolved by the intra-cell stage
        cache_misses: Evaluations that needed a search (or failed)
        last_stage: Stage of the last successful evaluation
    """

    def __init__(
        self,
        datasets: Optional[Sequence[MeshDataSet]] = None,
        caching: bool = True,
        normalize_vector: bool = False,
        vectors: Optional[str] = None,
    ):
        self._datasets: list[MeshDataSet] = []
        self._cache: list[CacheEntry] = []
        self._active = 0

        self.caching = caching
        self.normalize_vector = normalize_vector
        self.vectors = vectors

        self.cache_hits = 0
        self.cache_misses = 0
        self.last_stage: Optional[ResolutionStage] = None

        for dataset in datasets or []:
            self.add_dataset(dataset)

    @classmethod
    def from_config(
        cls,
        config: EvaluatorConfig,
        datasets: Optional[Sequence[MeshDataSet]] = None,
    ) -> CachingVelocityEvaluator:
        """Create an evaluator from an ``EvaluatorConfig``."""
        return cls(
            datasets=datasets,
            caching=config.caching,
            normalize_vector=config.normalize_vector,
            vectors=config.vectors,
        )

    # ------------------------------------------------------------------
    # Data sets and cache state
    # ------------------------------------------------------------------

    def add_dataset(self, dataset: MeshDataSet) -> int:
        """
        Attach a data set with an empty cache entry.

        Returns:
            Index of the new data set
        """
        if not isinstance(dataset, MeshDataSet):
            raise TypeError(f"Expected a MeshDataSet, got {type(dataset).__name__}")
        self._datasets.append(dataset)
        self._cache.append(CacheEntry())
        logger.debug(f"Attached data set {len(self._datasets) - 1}: {dataset!r}")
        return len(self._datasets) - 1

    @property
    def num_datasets(self) -> int:
        return len(self._datasets)

    @property
    def datasets(self) -> tuple[MeshDataSet, ...]:
        return tuple(self._datasets)

    @property
    def last_dataset_index(self) -> int:
        """Data set tried first by the next evaluation."""
        return self._active

    @property
    def last_dataset(self) -> Optional[MeshDataSet]:
        return self._datasets[self._active] if self._datasets else None

    @property
    def last_cell_id(self) -> Optional[int]:
        return self._cache[self._active].cell_id if self._cache else None

    @property
    def last_weights(self) -> Optional[np.ndarray]:
        """Interpolation weights of the last resolved point (None if not valid)."""
        entry = self._cache[self._active] if self._cache else None
        if entry is None or not entry.valid:
            return None
        return entry.weights.copy()

    @property
    def last_pcoords(self) -> Optional[np.ndarray]:
        """Parametric coordinates of the last resolved point (None if not valid)."""
        entry = self._cache[self._active] if self._cache else None
        if entry is None or not entry.valid:
            return None
        return entry.pcoords.copy()

    def cache_entry(self, dataset_index: int) -> CacheEntry:
        """Cache entry of a data set."""
        self._check_index(dataset_index)
        return self._cache[dataset_index]

    def _check_index(self, dataset_index: int) -> None:
        if not 0 <= dataset_index < len(self._datasets):
            raise DataSetIndexError(dataset_index, len(self._datasets))

    def set_last_cell_id(self, cell_id: Optional[int], dataset_index: Optional[int] = None) -> None:
        """
        Seed the cache with a cell known to contain the next point.

        The seeded data set becomes active. Its weights are left invalid, so
        the next evaluation still runs the containment test on the seeded
        cell; it only skips the searches. ``None`` clears the entry.

        Args:
            cell_id: Cell id in the data set, or None
            dataset_index: Data set to seed (default: the active one)

        Raises:
            DataSetIndexError: If ``dataset_index`` is out of range
            ValueError: If ``cell_id`` is not a cell of the data set
        """
        index = self._active if dataset_index is None else dataset_index
        self._check_index(index)
        if cell_id is not None and not 0 <= cell_id < self._datasets[index].num_cells:
            raise ValueError(
                f"Cell id {cell_id} out of range for data set {index} "
                f"({self._datasets[index].num_cells} cells)"
            )
        self._cache[index].seed(cell_id)
        self._active = index

    def clear_last_cell_id(self) -> None:
        """Forget the cached cell of the active data set."""
        if self._cache:
            self._cache[self._active].clear()

    def select_vectors(self, name: Optional[str]) -> None:
        """Choose the point-data array to interpolate (None = active vectors)."""
        self.vectors = name

    def reset_statistics(self) -> None:
        self.cache_hits = 0
        self.cache_misses = 0

    def copy_parameters(self, other: CachingVelocityEvaluator) -> None:
        """Copy the evaluation settings (not data sets or caches) of another evaluator."""
        self.caching = other.caching
        self.normalize_vector = other.normalize_vector
        self.vectors = other.vectors

    def new_instance(self) -> CachingVelocityEvaluator:
        """Evaluator over the same data sets and settings with empty caches."""
        evaluator = CachingVelocityEvaluator(datasets=self._datasets)
        evaluator.copy_parameters(self)
        return evaluator

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, point) -> np.ndarray:
        """
        Interpolate the vector field at a point.

        Args:
            point: ``(x, y, z)`` or ``(x, y, z, t)``; ``t`` is ignored

        Returns:
            Interpolated vector (unit length if ``normalize_vector``)

        Raises:
            OutsideDomainError: If no attached data set contains the point.
                No cache entry changes in that case.
        """
        x = as_point(point)

        order = []
        if self._datasets:
            order = [self._active] + [i for i in range(len(self._datasets)) if i != self._active]

        for index in order:
            vector = self._evaluate_in(index, x)
            if vector is not None:
                if index != self._active:
                    logger.debug(f"Active data set switched {self._active} -> {index}")
                self._active = index
                return vector

        self.cache_misses += 1
        raise OutsideDomainError(x, len(self._datasets))

    def _evaluate_in(self, index: int, x: np.ndarray) -> Optional[np.ndarray]:
        dataset = self._datasets[index]
        entry = self._cache[index]

        hit = self._resolve(dataset, entry, x)
        if hit is None:
            return None

        # The entry is only written once interpolation has succeeded
        vector = dataset.interpolate_at(hit.cell_id, hit.weights, self.vectors)
        if self.normalize_vector:
            norm = np.linalg.norm(vector)
            if norm > 0.0:
                vector = vector / norm
        entry.store(hit)
        return vector

    def _resolve(self, dataset: MeshDataSet, entry: CacheEntry, x: np.ndarray) -> Optional[CellHit]:
        if self.caching and entry.cell_id is not None:
            guess = entry.pcoords if entry.valid else None
            hit = dataset.contains_point(entry.cell_id, x, guess)
            if hit.inside:
                self.cache_hits += 1
                self.last_stage = ResolutionStage.INTRA_CELL
                return hit

            hit = dataset.find_cell_near(x, entry.cell_id)
            if hit is not None:
                self.cache_misses += 1
                self.last_stage = ResolutionStage.INTER_CELL
                return hit

        hit = dataset.find_cell_global(x)
        if hit is not None:
            self.cache_misses += 1
            self.last_stage = ResolutionStage.GLOBAL
            return hit

        return None

    def snap_point_on_cell(self, origin) -> np.ndarray:
        """
        Project a point onto the cached cell of the active data set.

        The closest point is found in the cell's parametric space and
        mapped back to physical space; a point already inside the cell is
        returned unchanged. The cache is not modified.

        Raises:
            NoActiveCellError: If no cell is cached
        """
        if not self._datasets or self._cache[self._active].cell_id is None:
            raise NoActiveCellError("No cached cell to snap onto; evaluate a point first")

        entry = self._cache[self._active]
        dataset = self._datasets[self._active]
        hit = dataset.contains_point(entry.cell_id, as_point(origin), entry.pcoords if entry.valid else None)
        return hit.closest.copy()

    def __repr__(self) -> str:
        return (
            f"CachingVelocityEvaluator({self.num_datasets} data sets, "
            f"caching={'on' if self.caching else 'off'}, "
            f"hits={self.cache_hits}, misses={self.cache_misses})"
        )
