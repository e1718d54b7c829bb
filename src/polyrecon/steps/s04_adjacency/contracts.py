"""I/O contracts for Step 04: Adjacency graph and manifold constraints."""

from pathlib import Path

from pydantic import BaseModel, Field


class AdjacencyInput(BaseModel):
    arrangement_file: Path = Field(..., description="Path to arrangement.json from s02")


class AdjacencyOutput(BaseModel):
    arrangement_file: Path = Field(..., description="Path to arrangement.json, passed through")
    adjacency_file: Path = Field(..., description="Path to adjacency.json")
    num_parity_constraints: int = Field(0)
    num_vertex_constraints: int = Field(0)
