"""
Configuration system.

Dataclass sections saved to and loaded from YAML, with dotted-key overrides.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union
import yaml


INTEGRATORS = ("euler", "rk2", "rk4")
DIRECTIONS = ("forward", "backward", "both")


@dataclass
class DataSetConfig:
    """Point-location settings applied to loaded data sets."""
    tolerance_scale: float = 1e-8  # relative to the bounds diagonal
    max_walk_rings: int = 2
    max_walk_cells: int = 64  # containment tests per walk
    locator_neighbors: int = 8

    def to_dict(self) -> dict:
        return {
            "tolerance_scale": self.tolerance_scale,
            "max_walk_rings": self.max_walk_rings,
            "max_walk_cells": self.max_walk_cells,
            "locator_neighbors": self.locator_neighbors,
        }


@dataclass
class EvaluatorConfig:
    """Configuration for the caching velocity evaluator."""
    caching: bool = True
    normalize_vector: bool = False
    vectors: Optional[str] = None  # point-data array name, None = active vectors

    def to_dict(self) -> dict:
        return {
            "caching": self.caching,
            "normalize_vector": self.normalize_vector,
            "vectors": self.vectors,
        }


@dataclass
class TracerConfig:
    """Configuration for streamline integration."""
    integrator: str = "rk4"  # euler, rk2, rk4
    step_size: float = 0.01
    max_steps: int = 2000
    max_length: Optional[float] = None
    terminal_speed: float = 1e-12
    direction: str = "forward"  # forward, backward, both
    snap_exit_points: bool = True

    def __post_init__(self):
        if self.integrator not in INTEGRATORS:
            raise ValueError(f"Unknown integrator: {self.integrator}. Available: {', '.join(INTEGRATORS)}")
        if self.direction not in DIRECTIONS:
            raise ValueError(f"Unknown direction: {self.direction}. Available: {', '.join(DIRECTIONS)}")
        if self.step_size <= 0:
            raise ValueError(f"step_size must be positive, got {self.step_size}")
        if self.max_steps < 1:
            raise ValueError(f"max_steps must be at least 1, got {self.max_steps}")

    def to_dict(self) -> dict:
        return {
            "integrator": self.integrator,
            "step_size": self.step_size,
            "max_steps": self.max_steps,
            "max_length": self.max_length,
            "terminal_speed": self.terminal_speed,
            "direction": self.direction,
            "snap_exit_points": self.snap_exit_points,
        }


@dataclass
class FlowTraceConfig:
    """Full configuration."""
    name: str = "flowtrace"
    description: str = ""

    dataset: DataSetConfig = field(default_factory=DataSetConfig)
    evaluator: EvaluatorConfig = field(default_factory=EvaluatorConfig)
    tracer: TracerConfig = field(default_factory=TracerConfig)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "dataset": self.dataset.to_dict(),
            "evaluator": self.evaluator.to_dict(),
            "tracer": self.tracer.to_dict(),
        }

    def save(self, path: Union[str, Path]) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load(cls, path: Union[str, Path]) -> FlowTraceConfig:
        """Load configuration from YAML file."""
        with open(path, 'r') as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict) -> FlowTraceConfig:
        """Create config from dictionary."""
        return cls(
            name=data.get("name", "flowtrace"),
            description=data.get("description", ""),
            dataset=DataSetConfig(**(data.get("dataset") or {})),
            evaluator=EvaluatorConfig(**(data.get("evaluator") or {})),
            tracer=TracerConfig(**(data.get("tracer") or {})),
        )

    def with_overrides(self, **kwargs) -> FlowTraceConfig:
        """Create new config with overrides (nested keys like ``tracer.step_size``)."""
        data = self.to_dict()

        for key, value in kwargs.items():
            if "." in key:
                parts = key.split(".")
                d = data
                for part in parts[:-1]:
                    d = d[part]
                d[parts[-1]] = value
            else:
                data[key] = value

        return FlowTraceConfig.from_dict(data)


def create_default_config() -> FlowTraceConfig:
    """Create a default configuration."""
    return FlowTraceConfig()
