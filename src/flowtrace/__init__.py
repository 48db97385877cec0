"""
flowtrace: vector field evaluation and streamline tracing over meshes

Interpolates nodal vectors of unstructured and structured grids at
arbitrary points, caching the last located cell so consecutive points
along a trajectory are resolved cheaply.
"""

__version__ = "0.1.0"

# Suppress trimesh's verbose loading logs by default
import logging
logging.getLogger("trimesh").setLevel(logging.WARNING)

from flowtrace.errors import (
    FlowTraceError,
    OutsideDomainError,
    NoActiveCellError,
    DataSetIndexError,
)
from flowtrace.core import (
    CellType,
    MeshDataSet,
    UnstructuredGrid,
    ImageGrid,
    RectilinearGrid,
)
from flowtrace.fields import FunctionSet, AnalyticField, EvaluationStatus
from flowtrace.evaluator import CachingVelocityEvaluator, ResolutionStage
from flowtrace.config import FlowTraceConfig
from flowtrace.tracing import StreamTracer, Streamline, TerminationReason
from flowtrace.core.io import load_dataset, save_dataset, save_streamlines, load_streamlines

__all__ = [
    "FlowTraceError",
    "OutsideDomainError",
    "NoActiveCellError",
    "DataSetIndexError",
    "CellType",
    "MeshDataSet",
    "UnstructuredGrid",
    "ImageGrid",
    "RectilinearGrid",
    "FunctionSet",
    "AnalyticField",
    "EvaluationStatus",
    "CachingVelocityEvaluator",
    "ResolutionStage",
    "FlowTraceConfig",
    "StreamTracer",
    "Streamline",
    "TerminationReason",
    "load_dataset",
    "save_dataset",
    "save_streamlines",
    "load_streamlines",
]
