"""Configuration for Step 02: Hypothesis generation (plane arrangement)."""

from pydantic import BaseModel, Field


class HypothesisGenerationConfig(BaseModel):
    bbox_margin: float = Field(
        0.05, ge=0, description="Bounding box inflation on every side (fraction of its diagonal)"
    )

    # Degeneracy policy
    eps: float = Field(1e-7, gt=0, description="Side classification tolerance (fraction of diagonal)")
    vertex_merge: float = Field(
        1e-6, ge=0, description="Corners closer than this (fraction of diagonal) become one vertex"
    )
    parallel_angle_deg: float = Field(
        1e-3, ge=0, description="Planes closer than this angle (degrees) are treated as parallel"
    )
    duplicate_angle_deg: float = Field(1.0, ge=0, description="Max angle (degrees) for duplicate planes")
    duplicate_distance: float = Field(
        1e-3, ge=0, description="Max offset difference (fraction of diagonal) for duplicate planes"
    )

    workers: int = Field(1, ge=1, description="Threads used to build per-plane cells")
