"""I/O contracts for Step 05: Face selection."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class FaceSelectionInput(BaseModel):
    arrangement_file: Path = Field(..., description="Path to arrangement.json from s02")
    confidences_file: Path = Field(..., description="Path to confidences.json from s03")
    adjacency_file: Path = Field(..., description="Path to adjacency.json from s04")


class FaceSelectionOutput(BaseModel):
    arrangement_file: Path = Field(..., description="Path to arrangement.json, passed through")
    selection_file: Path = Field(..., description="Path to selection.json")
    num_selected: int = Field(0, description="Faces chosen by the solver")
    objective_value: Optional[float] = Field(None)
