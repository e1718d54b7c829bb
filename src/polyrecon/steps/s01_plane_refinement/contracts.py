"""I/O contracts for Step 01: Plane refinement."""

from pathlib import Path

from pydantic import BaseModel, Field


class PlaneRefinementInput(BaseModel):
    point_set_path: Path = Field(..., description="Segmented point set (.vg, .npz or .ply)")


class PlaneRefinementOutput(BaseModel):
    point_set_path: Path = Field(..., description="Point set the planes were fitted from")
    planes_file: Path = Field(..., description="Path to planes.json")
    num_planes: int = Field(..., description="Supporting planes after refinement")
    num_dropped: int = Field(0, description="Groups discarded for low support or high residual")
    num_merged: int = Field(0, description="Groups absorbed by coplanar merging")
