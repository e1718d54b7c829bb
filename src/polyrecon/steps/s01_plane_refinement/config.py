"""Configuration for Step 01: Plane refinement."""

from pydantic import BaseModel, Field


class PlaneRefinementConfig(BaseModel):
    min_support: int = Field(40, ge=3, description="Minimum points a planar group needs to be kept")
    max_residual: float = Field(
        0.02, gt=0, description="Max RMS point-to-plane residual (fraction of bbox diagonal)"
    )

    # Coplanar merging
    merge_coplanar: bool = Field(True, description="Merge groups whose fitted planes coincide")
    merge_angle_deg: float = Field(10.0, ge=0, description="Max angle (degrees) between normals to merge")
    merge_distance: float = Field(
        0.01, ge=0, description="Max centroid-to-plane distance (fraction of bbox diagonal) to merge"
    )
