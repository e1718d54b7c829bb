"""In-memory reconstruction: runs the six stages in sequence without touching disk."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from polyrecon.core.contracts import ReconstructionWeights
from polyrecon.core.model import OutputMesh, PointSet
from polyrecon.steps.s01_plane_refinement.config import PlaneRefinementConfig
from polyrecon.steps.s01_plane_refinement.step import refine_planes
from polyrecon.steps.s02_hypothesis_generation.config import HypothesisGenerationConfig
from polyrecon.steps.s02_hypothesis_generation.step import generate_hypothesis
from polyrecon.steps.s03_confidence.config import ConfidenceConfig
from polyrecon.steps.s03_confidence.step import compute_confidences
from polyrecon.steps.s04_adjacency.config import AdjacencyConfig
from polyrecon.steps.s04_adjacency.step import build_adjacency
from polyrecon.steps.s05_face_selection.config import FaceSelectionConfig
from polyrecon.steps.s05_face_selection.step import select_faces
from polyrecon.steps.s06_mesh_assembly.config import MeshAssemblyConfig
from polyrecon.steps.s06_mesh_assembly.step import assemble_mesh
from polyrecon.utils.io import read_point_set, write_mesh

logger = logging.getLogger(__name__)


class ReconstructionConfig(BaseModel):
    """Configuration of every stage of one run."""

    plane_refinement: PlaneRefinementConfig = Field(default_factory=PlaneRefinementConfig)
    hypothesis: HypothesisGenerationConfig = Field(default_factory=HypothesisGenerationConfig)
    confidence: ConfidenceConfig = Field(default_factory=ConfidenceConfig)
    adjacency: AdjacencyConfig = Field(default_factory=AdjacencyConfig)
    selection: FaceSelectionConfig = Field(default_factory=FaceSelectionConfig)
    assembly: MeshAssemblyConfig = Field(default_factory=MeshAssemblyConfig)
    allow_open_boundary: Optional[bool] = Field(
        None, description="If set, overrides the open-boundary flag of adjacency and assembly"
    )

    @model_validator(mode="after")
    def _sync_open_boundary(self) -> "ReconstructionConfig":
        if self.allow_open_boundary is not None:
            update = {"allow_open_boundary": self.allow_open_boundary}
            # the caller's nested configs stay untouched
            self.adjacency = self.adjacency.model_copy(update=update)
            self.assembly = self.assembly.model_copy(update=update)
        return self

    @classmethod
    def from_weights(
        cls,
        data_fitting: float,
        model_coverage: float,
        model_complexity: float,
        **kwargs,
    ) -> "ReconstructionConfig":
        """Defaults everywhere except the selection weights (validated to sum to 1)."""
        weights = ReconstructionWeights(
            data_fitting=data_fitting,
            model_coverage=model_coverage,
            model_complexity=model_complexity,
        )
        selection = kwargs.pop("selection", None) or FaceSelectionConfig()
        selection = selection.model_copy(update={"weights": weights})
        return cls(selection=selection, **kwargs)


def reconstruct(point_set: PointSet, config: ReconstructionConfig | None = None) -> OutputMesh:
    """Reconstruct a closed polygonal surface from a segmented point set.

    Raises one of the ``ReconstructionError`` kinds on failure.
    """
    config = config or ReconstructionConfig()
    t0 = time.time()
    logger.info(
        f"Reconstructing {point_set.num_points} points in {len(point_set.groups)} groups "
        f"(weights {config.selection.weights.as_tuple()})"
    )

    planes = refine_planes(point_set, config.plane_refinement)
    arrangement = generate_hypothesis(point_set, planes, config.hypothesis)
    compute_confidences(point_set, arrangement, config.confidence)
    adjacency = build_adjacency(arrangement, config.adjacency)
    selection = select_faces(arrangement, adjacency, config.selection)
    mesh = assemble_mesh(arrangement, selection, config.assembly)

    logger.info(f"Reconstruction done in {time.time() - t0:.1f}s")
    return mesh


def reconstruct_file(
    input_path: Path,
    output_path: Path,
    config: ReconstructionConfig | None = None,
) -> OutputMesh:
    """Read a point set, reconstruct it and write the mesh next to ``output_path``."""
    mesh = reconstruct(read_point_set(input_path), config)
    write_mesh(mesh, output_path)
    logger.info(f"Mesh written to {output_path}")
    return mesh
