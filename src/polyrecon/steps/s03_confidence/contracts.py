"""I/O contracts for Step 03: Face confidence scoring."""

from pathlib import Path

from pydantic import BaseModel, Field


class ConfidenceInput(BaseModel):
    point_set_path: Path = Field(..., description="Point set the planes were fitted from")
    planes_file: Path = Field(..., description="Path to planes.json (member points per plane)")
    arrangement_file: Path = Field(..., description="Path to arrangement.json from s02")


class ConfidenceOutput(BaseModel):
    arrangement_file: Path = Field(..., description="Path to arrangement.json, passed through")
    confidences_file: Path = Field(..., description="Path to confidences.json")
    num_supported_faces: int = Field(0, description="Faces with at least one assigned point")
    average_spacing: float = Field(0.0, description="Mean nearest-neighbour distance of the cloud")
