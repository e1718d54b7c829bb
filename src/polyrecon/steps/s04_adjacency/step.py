"""Step 04: Incidence maps and manifold constraints of the arrangement.

Parity: around every constrained edge the selected faces number 0 or 2,
written Σ x_f = 2·y_e with an auxiliary binary y_e per edge.

Vertex cycle: around every vertex strictly inside the box the selected faces
must close a single cycle in the vertex link, i.e. form one fan linked
through edges at the vertex. Parity already makes the link a union of
cycles; ruling out several cycles is not linear in x, so the records are
turned into cuts by face selection whenever a solution branches.
"""

from __future__ import annotations

import json
import logging
from typing import ClassVar

from polyrecon.core.model import (
    AdjacencyRecord,
    Arrangement,
    ParityConstraint,
    VertexCycleConstraint,
)
from polyrecon.core.step_base import BaseStep
from .config import AdjacencyConfig
from .contracts import AdjacencyInput, AdjacencyOutput

logger = logging.getLogger(__name__)


def build_adjacency(arrangement: Arrangement, config: AdjacencyConfig) -> AdjacencyRecord:
    """Derive incidence maps and the manifold constraint set (no solving)."""
    edge_faces = {e.id: list(e.face_ids) for e in arrangement.edges}

    vertex_edges: dict[int, list[int]] = {}
    for edge in arrangement.edges:
        for vid in edge.vertices:
            vertex_edges.setdefault(vid, []).append(edge.id)

    vertex_faces: dict[int, list[int]] = {}
    for face in arrangement.faces:
        for vid in face.vertex_ids:
            vertex_faces.setdefault(vid, []).append(face.id)

    parity: list[ParityConstraint] = []
    for edge in arrangement.edges:
        if edge.on_boundary and config.allow_open_boundary:
            continue
        parity.append(ParityConstraint(edge_id=edge.id, face_ids=list(edge.face_ids)))

    on_box: set[int] = set()
    for edge in arrangement.edges:
        if edge.on_boundary:
            on_box.update(edge.vertices)

    cycles: list[VertexCycleConstraint] = []
    if config.vertex_constraints:
        for vid in sorted(vertex_edges):
            if vid in on_box:
                continue
            edge_ids = sorted(vertex_edges[vid])
            face_ids = sorted(set(vertex_faces.get(vid, [])))
            if not edge_ids or not face_ids:
                continue
            cycles.append(VertexCycleConstraint(vertex_id=vid, edge_ids=edge_ids, face_ids=face_ids))

    num_interior = sum(1 for e in arrangement.edges if e.is_interior)
    logger.info(
        f"Adjacency: {len(arrangement.edges)} edges ({num_interior} interior), "
        f"{len(parity)} parity and {len(cycles)} vertex constraints"
    )
    return AdjacencyRecord(
        edge_faces=edge_faces,
        vertex_edges={k: sorted(v) for k, v in sorted(vertex_edges.items())},
        vertex_faces={k: sorted(set(v)) for k, v in sorted(vertex_faces.items())},
        parity_constraints=parity,
        vertex_constraints=cycles,
    )


class AdjacencyStep(BaseStep[AdjacencyInput, AdjacencyOutput, AdjacencyConfig]):
    name: ClassVar[str] = "adjacency"
    input_type: ClassVar = AdjacencyInput
    output_type: ClassVar = AdjacencyOutput
    config_type: ClassVar = AdjacencyConfig

    def validate_inputs(self, inputs: AdjacencyInput) -> bool:
        if not inputs.arrangement_file.exists():
            logger.error(f"Arrangement not found: {inputs.arrangement_file}")
            return False
        return True

    def run(self, inputs: AdjacencyInput) -> AdjacencyOutput:
        output_dir = self.output_dir("s04_adjacency")

        with open(inputs.arrangement_file) as f:
            arrangement = Arrangement.from_dict(json.load(f))

        adjacency = build_adjacency(arrangement, self.config)

        adjacency_file = output_dir / "adjacency.json"
        with open(adjacency_file, "w") as f:
            json.dump(adjacency.to_dict(), f)

        return AdjacencyOutput(
            arrangement_file=inputs.arrangement_file,
            adjacency_file=adjacency_file,
            num_parity_constraints=len(adjacency.parity_constraints),
            num_vertex_constraints=len(adjacency.vertex_constraints),
        )
