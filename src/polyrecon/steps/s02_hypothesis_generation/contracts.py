"""I/O contracts for Step 02: Hypothesis generation."""

from pathlib import Path

from pydantic import BaseModel, Field


class HypothesisGenerationInput(BaseModel):
    point_set_path: Path = Field(..., description="Point set the planes were fitted from")
    planes_file: Path = Field(..., description="Path to planes.json from s01")


class HypothesisGenerationOutput(BaseModel):
    point_set_path: Path = Field(..., description="Point set, passed through for scoring")
    planes_file: Path = Field(..., description="Path to planes.json, passed through")
    arrangement_file: Path = Field(..., description="Path to arrangement.json (candidate faces)")
    num_faces: int = Field(..., description="Candidate faces")
    num_enclosed_faces: int = Field(0, description="Candidate faces not touching the bounding box")
    num_edges: int = Field(0)
    num_vertices: int = Field(0)
