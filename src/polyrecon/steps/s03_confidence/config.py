"""Configuration for Step 03: Face confidence scoring."""

from pydantic import BaseModel, Field


class ConfidenceConfig(BaseModel):
    fitting_spacing_factor: float = Field(
        3.0, gt=0, description="Distance normalising the fitting score, in average point spacings"
    )
    coverage_cell_factor: float = Field(
        3.0, gt=0, description="Coverage grid cell size, in average point spacings"
    )
    min_points_per_cell: int = Field(1, ge=1, description="Points a grid cell needs to count as covered")
    max_spacing_samples: int = Field(10000, ge=1, description="Points sampled to estimate the spacing")
    workers: int = Field(1, ge=1, description="Threads used to score planes in parallel")
