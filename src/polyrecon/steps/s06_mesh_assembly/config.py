"""Configuration for Step 06: Mesh assembly."""

from typing import Literal

from pydantic import BaseModel, Field


class MeshAssemblyConfig(BaseModel):
    merge_coplanar: bool = Field(
        True, description="Merge adjacent selected faces of the same plane into one polygon"
    )
    remove_collinear: bool = Field(
        True, description="Drop degree-2 vertices lying on a straight boundary"
    )
    collinear_tol: float = Field(
        1e-6, ge=0, description="Collinearity tolerance as a fraction of the bbox diagonal"
    )
    allow_open_boundary: bool = Field(
        False, description="Accept edges used by a single face (open surfaces)"
    )
    output_format: Literal["obj", "ply"] = Field("obj", description="Mesh file format")
    output_name: str = Field("mesh", description="Output file stem under data_root/processed")
