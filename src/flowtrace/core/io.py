"""
Data set and streamline I/O.

Supports:
- ``.npz`` archives for unstructured, image and rectilinear grids
- OBJ/PLY/STL/OFF surface meshes (via trimesh) as triangle grids, with
  nodal vectors from a companion ``.npy`` file
- ``.npz`` archives of traced streamlines
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union, TYPE_CHECKING

import numpy as np

from flowtrace.core.cells import CellType
from flowtrace.core.dataset import MeshDataSet
from flowtrace.core.structured import ImageGrid, RectilinearGrid
from flowtrace.core.unstructured import UnstructuredGrid
from flowtrace.tracing.tracer import Streamline, TerminationReason

if TYPE_CHECKING:
    from flowtrace.config import DataSetConfig

logger = logging.getLogger("flowtrace.core.io")

SURFACE_FORMATS = {".obj", ".ply", ".stl", ".off"}
VECTOR_PREFIX = "vectors_"
DEFAULT_VECTORS = "velocity"


def load_dataset(
    filepath: Union[str, Path],
    vectors_path: Optional[Union[str, Path]] = None,
    config: Optional[DataSetConfig] = None,
) -> MeshDataSet:
    """
    Load a mesh data set from file.

    Args:
        filepath: ``.npz`` archive or surface mesh (OBJ, PLY, STL, OFF)
        vectors_path: ``.npy`` file of Nx3 nodal vectors (surface meshes)
        config: Point-location settings to apply

    Returns:
        Loaded data set
    """
    filepath = Path(filepath)

    if not filepath.exists():
        raise FileNotFoundError(f"Data set file not found: {filepath}")

    suffix = filepath.suffix.lower()
    if suffix == ".npz":
        dataset = _load_npz(filepath)
    elif suffix in SURFACE_FORMATS:
        dataset = _load_surface(filepath, vectors_path)
    else:
        supported = ", ".join(sorted(SURFACE_FORMATS | {".npz"}))
        raise ValueError(f"Unsupported data set format '{suffix}'. Supported: {supported}")

    if config is not None:
        apply_config(dataset, config)

    logger.info(f"Loaded {dataset!r} from {filepath}")
    return dataset


def apply_config(dataset: MeshDataSet, config: DataSetConfig) -> None:
    """Apply point-location settings to a data set."""
    dataset.tolerance_scale = config.tolerance_scale
    if isinstance(dataset, UnstructuredGrid):
        dataset.max_walk_rings = config.max_walk_rings
        dataset.max_walk_cells = config.max_walk_cells
        dataset.locator_neighbors = config.locator_neighbors


def _load_npz(filepath: Path) -> MeshDataSet:
    with np.load(filepath, allow_pickle=False) as data:
        files = set(data.files)
        point_data = {
            key[len(VECTOR_PREFIX):]: data[key] for key in data.files if key.startswith(VECTOR_PREFIX)
        }
        name = str(data["name"]) if "name" in files else filepath.stem

        if "cells" in files:
            cell_type = CellType(int(data["cell_type"])) if "cell_type" in files else None
            return UnstructuredGrid(
                points=data["points"],
                cells=data["cells"],
                cell_type=cell_type,
                point_data=point_data,
                name=name,
                metadata={"source_file": str(filepath)},
            )
        if "dimensions" in files:
            return ImageGrid(
                dimensions=tuple(int(n) for n in data["dimensions"]),
                origin=tuple(data["origin"]) if "origin" in files else (0.0, 0.0, 0.0),
                spacing=tuple(data["spacing"]) if "spacing" in files else (1.0, 1.0, 1.0),
                point_data=point_data,
                name=name,
                metadata={"source_file": str(filepath)},
            )
        if "x_coords" in files:
            return RectilinearGrid(
                x_coords=data["x_coords"],
                y_coords=data["y_coords"],
                z_coords=data["z_coords"] if "z_coords" in files else np.array([0.0]),
                point_data=point_data,
                name=name,
                metadata={"source_file": str(filepath)},
            )

    raise ValueError(f"No grid found in {filepath} (expected 'cells', 'dimensions' or 'x_coords')")


def _load_surface(filepath: Path, vectors_path: Optional[Union[str, Path]]) -> UnstructuredGrid:
    """Load a surface mesh as a triangle grid."""
    import trimesh

    tm = trimesh.load(str(filepath), process=False, force="mesh")
    vertices = np.asarray(tm.vertices, dtype=np.float64)
    faces = np.asarray(tm.faces, dtype=np.int64)
    if len(faces) == 0:
        raise ValueError(f"No triangles found in {filepath}")

    point_data = {}
    if vectors_path is not None:
        point_data[DEFAULT_VECTORS] = np.load(vectors_path, allow_pickle=False)
    else:
        logger.warning(f"No vectors given for {filepath}; the data set can be located but not interpolated")

    return UnstructuredGrid(
        points=vertices,
        cells=faces,
        cell_type=CellType.TRIANGLE,
        point_data=point_data,
        name=filepath.stem,
        metadata={"source_file": str(filepath)},
    )


def save_dataset(dataset: MeshDataSet, filepath: Union[str, Path]) -> None:
    """Save a data set to an ``.npz`` archive."""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    arrays = {"name": np.array(dataset.name)}
    if isinstance(dataset, UnstructuredGrid):
        arrays.update(points=dataset.points, cells=dataset.cells, cell_type=np.array(int(dataset.cell_type)))
    elif isinstance(dataset, ImageGrid):
        arrays.update(
            dimensions=np.array(dataset.dimensions),
            origin=np.array(dataset.origin),
            spacing=np.array(dataset.spacing),
        )
    elif isinstance(dataset, RectilinearGrid):
        arrays.update(x_coords=dataset.x_coords, y_coords=dataset.y_coords, z_coords=dataset.z_coords)
    else:
        raise TypeError(f"Cannot save data set of type {type(dataset).__name__}")

    for name, values in dataset.point_data.items():
        arrays[f"{VECTOR_PREFIX}{name}"] = values

    np.savez_compressed(filepath, **arrays)
    logger.info(f"Saved {dataset!r} to {filepath}")


def save_streamlines(lines: list[Streamline], filepath: Union[str, Path]) -> None:
    """Save streamlines to an ``.npz`` archive (concatenated with offsets)."""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    counts = [line.num_points for line in lines]
    offsets = np.concatenate([[0], np.cumsum(counts)]).astype(np.int64)

    def stack(attr: str, width: Optional[int]) -> np.ndarray:
        parts = [getattr(line, attr) for line in lines if line.num_points]
        if parts:
            return np.concatenate(parts)
        return np.empty((0, width)) if width else np.empty(0)

    np.savez_compressed(
        filepath,
        points=stack("points", 3),
        vectors=stack("vectors", 3),
        times=stack("times", None),
        offsets=offsets,
        seed_index=np.array([line.seed_index for line in lines], dtype=np.int64),
        termination=np.array([line.termination.value for line in lines]),
        backward_termination=np.array([
            line.backward_termination.value if line.backward_termination else "" for line in lines
        ]),
    )
    logger.info(f"Saved {len(lines)} streamlines to {filepath}")


def load_streamlines(filepath: Union[str, Path]) -> list[Streamline]:
    """Load streamlines saved by ``save_streamlines``."""
    # NpzFile decompresses an array on every item access
    with np.load(filepath, allow_pickle=False) as data:
        arrays = {key: data[key] for key in data.files}

    offsets = arrays["offsets"]
    points, vectors, times = arrays["points"], arrays["vectors"], arrays["times"]
    lines = []
    for i in range(len(offsets) - 1):
        lo, hi = offsets[i], offsets[i + 1]
        backward = str(arrays["backward_termination"][i])
        lines.append(Streamline(
            points=points[lo:hi],
            vectors=vectors[lo:hi],
            times=times[lo:hi],
            termination=TerminationReason(str(arrays["termination"][i])),
            backward_termination=TerminationReason(backward) if backward else None,
            seed_index=int(arrays["seed_index"][i]),
        ))
    return lines
