"""Common Pydantic models shared across pipeline steps."""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

WEIGHT_SUM_TOLERANCE = 1e-6


class ReconstructionWeights(BaseModel):
    """Objective weights of the face selection (data fitting, coverage, complexity).

    The three weights must be non-negative and sum to 1. The sum is compared
    with a tolerance since the values usually come from the command line.
    """

    data_fitting: float = Field(0.43, ge=0.0, description="Weight of the data fitting term")
    model_coverage: float = Field(0.27, ge=0.0, description="Weight of the model coverage term")
    model_complexity: float = Field(0.30, ge=0.0, description="Weight of the model complexity term")

    @model_validator(mode="after")
    def _check_sum(self) -> "ReconstructionWeights":
        total = self.data_fitting + self.model_coverage + self.model_complexity
        if not math.isclose(total, 1.0, rel_tol=0.0, abs_tol=WEIGHT_SUM_TOLERANCE):
            raise ValueError(f"weights must sum to 1 (got {total:.6f})")
        return self

    def as_tuple(self) -> tuple[float, float, float]:
        return (self.data_fitting, self.model_coverage, self.model_complexity)


class PipelineConfig(BaseModel):
    """Top-level pipeline configuration loaded from pipeline.yaml."""

    project_name: str = "polyrecon_project"
    data_root: Path = Path("./data")
    steps: list[StepEntry] = Field(default_factory=list)


class StepEntry(BaseModel):
    """One entry in the pipeline step list."""

    name: str
    module: str
    config_file: str
    depends_on: list[str] = Field(default_factory=list)
    inputs: dict[str, Any] = Field(default_factory=dict, description="Static step inputs (e.g. the point set path)")
    enabled: bool = True


# Fix forward reference
PipelineConfig.model_rebuild()
