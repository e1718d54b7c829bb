"""Configuration for Step 05: Face selection."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from polyrecon.core.contracts import ReconstructionWeights


class FaceSelectionConfig(BaseModel):
    weights: ReconstructionWeights = Field(
        default_factory=ReconstructionWeights,
        description="Data fitting / model coverage / model complexity weights (sum to 1)",
    )
    solver: Literal["highs", "branch_and_bound"] = Field(
        "highs", description="MIP backend answering the selection problem"
    )
    time_limit: Optional[float] = Field(
        60.0, gt=0, description="Solver time budget in seconds (None = unlimited)"
    )
    data_term: Literal["support", "penalty"] = Field(
        "support",
        description="'support': reward selected faces by their share of fitted points; "
        "'penalty': charge λ_fit·(1 - fitting) per selected face",
    )
    max_cut_rounds: int = Field(
        50, ge=0, description="Re-solves allowed to cut off vertices joining several face fans"
    )
