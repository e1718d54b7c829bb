"""I/O contracts for Step 06: Mesh assembly."""

from pathlib import Path

from pydantic import BaseModel, Field


class MeshAssemblyInput(BaseModel):
    arrangement_file: Path = Field(..., description="Path to arrangement.json from s02")
    selection_file: Path = Field(..., description="Path to selection.json from s05")


class MeshAssemblyOutput(BaseModel):
    mesh_path: Path = Field(..., description="Path to the written polygon mesh")
    num_vertices: int = Field(0)
    num_faces: int = Field(0)
    num_edges: int = Field(0)
    is_closed: bool = Field(False)
