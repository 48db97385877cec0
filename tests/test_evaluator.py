"""
Caching velocity evaluator tests.

Collaborator calls are counted with ``patch.object(..., wraps=...)`` so the
tests can tell which resolution stage answered a query.
"""

from unittest.mock import patch

import pytest
import numpy as np

from flowtrace.config import EvaluatorConfig
from flowtrace.errors import OutsideDomainError, NoActiveCellError, DataSetIndexError
from flowtrace.evaluator import CachingVelocityEvaluator, ResolutionStage
from flowtrace.fields import EvaluationStatus
from flowtrace.test_meshes import (
    create_tetra_box, create_image_grid, create_triangle_plate,
    rotation_field, uniform_field,
)


@pytest.fixture
def grid():
    return create_tetra_box(divisions=(4, 4, 4), field=rotation_field())


@pytest.fixture
def evaluator(grid):
    return CachingVelocityEvaluator([grid])


def spy(dataset, method):
    return patch.object(dataset, method, wraps=getattr(dataset, method))


def snapshot(evaluator, index=0):
    entry = evaluator.cache_entry(index)
    weights = None if entry.weights is None else entry.weights.copy()
    return entry.cell_id, weights, entry.valid, evaluator.last_dataset_index


class TestStagedResolution:
    """Which stage resolves a query."""

    def test_cold_start_uses_global_search(self, grid, evaluator):
        """Without a cached cell the global search locates the point."""
        x = np.array([0.31, 0.62, 0.47])
        with spy(grid, "find_cell_global") as global_search:
            vector = evaluator.evaluate(x)

        assert global_search.call_count == 1
        assert evaluator.last_stage == ResolutionStage.GLOBAL
        np.testing.assert_allclose(vector, rotation_field()(x), atol=1e-12)
        assert evaluator.last_cell_id is not None
        assert evaluator.cache_misses == 1

    def test_same_cell_resolved_intra_cell(self, grid, evaluator):
        """A second point in the cached cell needs no search at all."""
        center = grid.cell_center(100)
        evaluator.evaluate(center)
        assert evaluator.last_cell_id == 100

        nearby = center + 1e-4
        assert grid.contains_point(100, nearby).inside

        with spy(grid, "find_cell_global") as global_search, spy(grid, "find_cell_near") as near_search:
            evaluator.evaluate(nearby)

        assert global_search.call_count == 0
        assert near_search.call_count == 0
        assert evaluator.last_stage == ResolutionStage.INTRA_CELL
        assert evaluator.last_cell_id == 100
        assert evaluator.cache_hits == 1

    def test_adjacent_cell_resolved_inter_cell(self, grid, evaluator):
        """A point in a neighbouring cell is found by the adjacency walk."""
        evaluator.evaluate(grid.cell_center(100))
        neighbor = int(grid.cell_neighbors(100)[0])

        with spy(grid, "find_cell_global") as global_search:
            evaluator.evaluate(grid.cell_center(neighbor))

        assert global_search.call_count == 0
        assert evaluator.last_stage == ResolutionStage.INTER_CELL
        assert evaluator.last_cell_id == neighbor

    def test_far_point_falls_back_to_global(self, grid, evaluator):
        """Beyond the walk radius the global search takes over."""
        evaluator.evaluate(grid.cell_center(0))
        far = grid.cell_center(grid.num_cells - 1)

        with spy(grid, "find_cell_global") as global_search:
            vector = evaluator.evaluate(far)

        assert global_search.call_count == 1
        assert evaluator.last_stage == ResolutionStage.GLOBAL
        np.testing.assert_allclose(vector, rotation_field()(far), atol=1e-12)

    def test_caching_disabled(self, grid):
        """Every query runs the global search when caching is off."""
        evaluator = CachingVelocityEvaluator([grid], caching=False)
        x = np.array([0.4, 0.4, 0.4])

        with spy(grid, "find_cell_global") as global_search:
            evaluator.evaluate(x)
            evaluator.evaluate(x)

        assert global_search.call_count == 2
        assert evaluator.cache_hits == 0
        assert evaluator.last_weights is not None

    def test_idempotent(self, evaluator):
        """Repeated evaluation at one point gives the same vector and cache entry."""
        x = np.array([0.21, 0.77, 0.58])
        first = evaluator.evaluate(x)
        before = snapshot(evaluator)
        second = evaluator.evaluate(x)
        after = snapshot(evaluator)

        np.testing.assert_allclose(first, second, atol=1e-12)
        assert evaluator.last_stage == ResolutionStage.INTRA_CELL
        assert after[0] == before[0]
        np.testing.assert_allclose(after[1], before[1], atol=1e-12)
        assert after[2] is True
        assert after[3] == before[3]

    def test_time_coordinate_ignored(self, evaluator):
        x = np.array([0.3, 0.3, 0.3])
        np.testing.assert_allclose(evaluator.evaluate(np.append(x, 12.5)), evaluator.evaluate(x), atol=1e-12)

    def test_short_point_rejected(self, evaluator):
        with pytest.raises(ValueError):
            evaluator.evaluate([0.5, 0.5])


class TestOutsideDomain:
    """Queries no data set contains."""

    def test_outside_raises_and_keeps_cache(self, evaluator):
        evaluator.evaluate([0.5, 0.5, 0.5])
        before = snapshot(evaluator)

        with pytest.raises(OutsideDomainError):
            evaluator.evaluate([5.0, 5.0, 5.0])

        after = snapshot(evaluator)
        assert after[0] == before[0]
        np.testing.assert_array_equal(after[1], before[1])
        assert after[2:] == before[2:]

    def test_function_values_status(self, evaluator):
        vector, status = evaluator.function_values([5.0, 5.0, 5.0, 0.0])
        assert vector is None
        assert status is EvaluationStatus.OUTSIDE_DOMAIN

        vector, status = evaluator.function_values([0.5, 0.5, 0.5, 0.0])
        assert status is EvaluationStatus.OK
        assert vector.shape == (3,)

    def test_no_datasets(self):
        with pytest.raises(OutsideDomainError):
            CachingVelocityEvaluator().evaluate([0.0, 0.0, 0.0])

    def test_outside_counts_as_miss(self, evaluator):
        with pytest.raises(OutsideDomainError):
            evaluator.evaluate([5.0, 5.0, 5.0])
        assert evaluator.cache_misses == 1
        assert evaluator.cache_hits == 0


class TestCacheSeeding:
    """set_last_cell_id and clear_last_cell_id."""

    def test_seeded_cell_skips_searches(self, grid, evaluator):
        x = np.array([0.62, 0.13, 0.81])
        cell_id = grid.find_cell_global(x).cell_id

        evaluator.set_last_cell_id(cell_id)
        assert evaluator.last_cell_id == cell_id
        assert evaluator.last_weights is None

        with spy(grid, "find_cell_global") as global_search, spy(grid, "find_cell_near") as near_search:
            vector = evaluator.evaluate(x)

        assert global_search.call_count == 0
        assert near_search.call_count == 0
        assert evaluator.last_stage == ResolutionStage.INTRA_CELL
        assert evaluator.last_weights is not None
        np.testing.assert_allclose(vector, rotation_field()(x), atol=1e-12)

    def test_bad_dataset_index_changes_nothing(self, evaluator):
        evaluator.evaluate([0.5, 0.5, 0.5])
        before = snapshot(evaluator)

        with pytest.raises(DataSetIndexError):
            evaluator.set_last_cell_id(0, dataset_index=5)
        with pytest.raises(IndexError):
            evaluator.set_last_cell_id(0, dataset_index=-1)

        after = snapshot(evaluator)
        assert after[0] == before[0]
        np.testing.assert_array_equal(after[1], before[1])
        assert after[2:] == before[2:]

    def test_bad_cell_id(self, grid, evaluator):
        with pytest.raises(ValueError):
            evaluator.set_last_cell_id(grid.num_cells)

    def test_seed_none_clears(self, evaluator):
        evaluator.evaluate([0.5, 0.5, 0.5])
        evaluator.set_last_cell_id(None)
        assert evaluator.last_cell_id is None

    def test_clear_last_cell_id(self, grid, evaluator):
        evaluator.evaluate([0.5, 0.5, 0.5])
        evaluator.clear_last_cell_id()
        assert evaluator.last_cell_id is None
        assert evaluator.last_weights is None

        with spy(grid, "find_cell_global") as global_search:
            evaluator.evaluate([0.5, 0.5, 0.5])
        assert global_search.call_count == 1


class TestSnapPointOnCell:
    """Closest point on the cached cell."""

    def test_interior_point_unchanged(self, evaluator):
        x = np.array([0.37, 0.52, 0.66])
        evaluator.evaluate(x)
        np.testing.assert_allclose(evaluator.snap_point_on_cell(x), x, atol=1e-12)

    def test_exterior_point_projected(self, grid, evaluator):
        evaluator.evaluate([0.99, 0.45, 0.55])
        cell_id = evaluator.last_cell_id
        weights = evaluator.last_weights

        snapped = evaluator.snap_point_on_cell([1.5, 0.45, 0.55])

        assert snapped[0] <= 1.0 + 1e-9
        assert grid.contains_point(cell_id, snapped).inside
        assert evaluator.last_cell_id == cell_id
        np.testing.assert_array_equal(evaluator.last_weights, weights)

    def test_requires_cached_cell(self, evaluator):
        with pytest.raises(NoActiveCellError):
            evaluator.snap_point_on_cell([0.5, 0.5, 0.5])

    def test_requires_dataset(self):
        with pytest.raises(NoActiveCellError):
            CachingVelocityEvaluator().snap_point_on_cell([0.0, 0.0, 0.0])


class TestMultipleDatasets:
    """Several attached data sets with independent cache entries."""

    @pytest.fixture
    def second(self):
        return create_image_grid(origin=(2.0, 0.0, 0.0), field=rotation_field())

    def test_switch_active_dataset(self, grid, second):
        evaluator = CachingVelocityEvaluator([grid, second])
        evaluator.evaluate([0.5, 0.5, 0.5])
        assert evaluator.last_dataset_index == 0
        first_cell = evaluator.last_cell_id

        x = np.array([2.4, 0.4, 0.4])
        vector = evaluator.evaluate(x)
        assert evaluator.last_dataset_index == 1
        assert evaluator.last_dataset is second
        np.testing.assert_allclose(vector, rotation_field()(x), atol=1e-12)
        assert evaluator.cache_entry(0).cell_id == first_cell

        with spy(grid, "find_cell_global") as first_global, spy(second, "find_cell_global") as second_global:
            evaluator.evaluate(x + 0.01)

        assert first_global.call_count == 0
        assert second_global.call_count == 0
        assert evaluator.last_stage == ResolutionStage.INTRA_CELL
        assert evaluator.last_dataset_index == 1

    def test_seed_other_dataset(self, grid, second):
        evaluator = CachingVelocityEvaluator([grid, second])
        evaluator.set_last_cell_id(0, dataset_index=1)
        assert evaluator.last_dataset_index == 1
        assert evaluator.last_cell_id == 0

    def test_add_dataset_returns_index(self, grid, second):
        evaluator = CachingVelocityEvaluator()
        assert evaluator.add_dataset(grid) == 0
        assert evaluator.add_dataset(second) == 1
        assert evaluator.num_datasets == 2

    def test_add_dataset_type_checked(self):
        with pytest.raises(TypeError):
            CachingVelocityEvaluator().add_dataset(np.zeros((3, 3)))


class TestVectorOptions:
    """Vector selection, normalization and per-thread copies."""

    def test_normalize_vector(self):
        grid = create_tetra_box(divisions=(2, 2, 2), field=uniform_field((3.0, 4.0, 0.0)))
        evaluator = CachingVelocityEvaluator([grid], normalize_vector=True)
        np.testing.assert_allclose(evaluator.evaluate([0.5, 0.5, 0.5]), [0.6, 0.8, 0.0], atol=1e-12)

    def test_normalize_zero_vector(self):
        grid = create_tetra_box(divisions=(2, 2, 2), field=uniform_field((0.0, 0.0, 0.0)))
        evaluator = CachingVelocityEvaluator([grid], normalize_vector=True)
        np.testing.assert_array_equal(evaluator.evaluate([0.5, 0.5, 0.5]), [0.0, 0.0, 0.0])

    def test_select_vectors(self, grid, evaluator):
        grid.point_data["doubled"] = 2.0 * grid.point_data["velocity"]
        x = np.array([0.3, 0.7, 0.5])
        evaluator.select_vectors("doubled")
        np.testing.assert_allclose(evaluator.evaluate(x), 2.0 * rotation_field()(x), atol=1e-12)

        evaluator.select_vectors("missing")
        before = snapshot(evaluator)
        with pytest.raises(KeyError):
            evaluator.evaluate([0.9, 0.1, 0.2])

        after = snapshot(evaluator)
        assert after[0] == before[0]
        np.testing.assert_array_equal(after[1], before[1])
        assert after[2:] == before[2:]

    def test_unknown_vectors_leave_other_dataset_alone(self, grid):
        """A failed interpolation in a second data set writes no cache entry."""
        second = create_image_grid(origin=(2.0, 0.0, 0.0), field=rotation_field())
        evaluator = CachingVelocityEvaluator([grid, second])
        evaluator.evaluate([0.5, 0.5, 0.5])
        before = snapshot(evaluator, index=1)

        evaluator.select_vectors("missing")
        with pytest.raises(KeyError):
            evaluator.evaluate([2.4, 0.4, 0.4])

        assert snapshot(evaluator, index=1) == before
        assert evaluator.cache_entry(1).cell_id is None
        assert evaluator.last_dataset_index == 0

    def test_new_instance_shares_datasets(self, grid):
        evaluator = CachingVelocityEvaluator([grid], caching=False, normalize_vector=True)
        evaluator.evaluate([0.5, 0.5, 0.5])

        copy = evaluator.new_instance()
        assert copy.datasets[0] is grid
        assert copy.caching is False
        assert copy.normalize_vector is True
        assert copy.last_cell_id is None
        assert copy.cache_misses == 0

    def test_copy_parameters(self, grid):
        source = CachingVelocityEvaluator(caching=False, vectors="velocity")
        target = CachingVelocityEvaluator([grid])
        target.copy_parameters(source)
        assert target.caching is False
        assert target.vectors == "velocity"
        assert target.num_datasets == 1

    def test_from_config(self, grid):
        config = EvaluatorConfig(caching=False, normalize_vector=True)
        evaluator = CachingVelocityEvaluator.from_config(config, [grid])
        assert evaluator.caching is False
        assert evaluator.normalize_vector is True

    def test_reset_statistics(self, evaluator):
        evaluator.evaluate([0.5, 0.5, 0.5])
        evaluator.evaluate([0.5, 0.5, 0.5])
        evaluator.reset_statistics()
        assert evaluator.cache_hits == 0
        assert evaluator.cache_misses == 0

    def test_triangle_plate_field(self):
        grid = create_triangle_plate(field=rotation_field())
        evaluator = CachingVelocityEvaluator([grid])
        x = np.array([0.3, 0.6, 0.0])
        np.testing.assert_allclose(evaluator.evaluate(x), rotation_field()(x), atol=1e-12)
