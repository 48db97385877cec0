"""Core mesh data sets and cell types."""

from flowtrace.core.cells import CellType, Cell, get_cell
from flowtrace.core.dataset import MeshDataSet, CellHit
from flowtrace.core.unstructured import UnstructuredGrid
from flowtrace.core.structured import ImageGrid, RectilinearGrid

__all__ = [
    "CellType",
    "Cell",
    "get_cell",
    "MeshDataSet",
    "CellHit",
    "UnstructuredGrid",
    "ImageGrid",
    "RectilinearGrid",
]
