"""polyrecon core: pipeline runner, base step, shared contracts, data model."""

from .step_base import BaseStep
from .contracts import PipelineConfig, ReconstructionWeights, StepEntry
from .errors import (
    ArrangementEmpty,
    EmptyResult,
    InsufficientSegments,
    MeshAssemblyFailed,
    OptimizationFailed,
    ReconstructionError,
)
from .pipeline_runner import run_pipeline, load_pipeline_config
from .logging import setup_logging

__all__ = [
    "BaseStep",
    "PipelineConfig",
    "ReconstructionWeights",
    "StepEntry",
    "ReconstructionError",
    "InsufficientSegments",
    "ArrangementEmpty",
    "OptimizationFailed",
    "EmptyResult",
    "MeshAssemblyFailed",
    "run_pipeline",
    "load_pipeline_config",
    "setup_logging",
]
