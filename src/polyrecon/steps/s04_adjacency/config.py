"""Configuration for Step 04: Adjacency graph and manifold constraints."""

from pydantic import BaseModel, Field


class AdjacencyConfig(BaseModel):
    allow_open_boundary: bool = Field(
        False,
        description="Leave edges on the bounding box unconstrained (open surfaces); "
        "by default they force their faces off so the result is closed",
    )
    vertex_constraints: bool = Field(True, description="Emit the per-vertex cycle records")
