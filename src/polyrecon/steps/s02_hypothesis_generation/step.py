"""Step 02: Generate candidate faces by intersecting the supporting planes."""

from __future__ import annotations

import json
import logging
from typing import ClassVar

import numpy as np

from polyrecon.core.model import Arrangement, PointSet, SupportingPlane
from polyrecon.core.step_base import BaseStep
from polyrecon.utils.io import read_point_set
from ._arrangement import ArrangementParams, build_arrangement
from .config import HypothesisGenerationConfig
from .contracts import HypothesisGenerationInput, HypothesisGenerationOutput

logger = logging.getLogger(__name__)


def load_planes(planes_file) -> list[SupportingPlane]:
    with open(planes_file) as f:
        return [SupportingPlane.from_dict(p) for p in json.load(f)]


def generate_hypothesis(
    point_set: PointSet,
    planes: list[SupportingPlane],
    config: HypothesisGenerationConfig,
) -> Arrangement:
    """Candidate mesh of ``planes`` within the (inflated) extent of ``point_set``."""
    lo, hi = point_set.bbox()
    params = ArrangementParams(**config.model_dump())
    return build_arrangement(planes, np.asarray(lo), np.asarray(hi), params)


class HypothesisGenerationStep(
    BaseStep[HypothesisGenerationInput, HypothesisGenerationOutput, HypothesisGenerationConfig]
):
    name: ClassVar[str] = "hypothesis_generation"
    input_type: ClassVar = HypothesisGenerationInput
    output_type: ClassVar = HypothesisGenerationOutput
    config_type: ClassVar = HypothesisGenerationConfig

    def validate_inputs(self, inputs: HypothesisGenerationInput) -> bool:
        for path in (inputs.point_set_path, inputs.planes_file):
            if not path.exists():
                logger.error(f"Input not found: {path}")
                return False
        return True

    def run(self, inputs: HypothesisGenerationInput) -> HypothesisGenerationOutput:
        output_dir = self.output_dir("s02_hypothesis")

        point_set = read_point_set(inputs.point_set_path)
        planes = load_planes(inputs.planes_file)
        logger.info(f"Intersecting {len(planes)} supporting planes")

        arrangement = generate_hypothesis(point_set, planes, self.config)

        arrangement_file = output_dir / "arrangement.json"
        with open(arrangement_file, "w") as f:
            json.dump(arrangement.to_dict(), f)

        return HypothesisGenerationOutput(
            point_set_path=inputs.point_set_path,
            planes_file=inputs.planes_file,
            arrangement_file=arrangement_file,
            num_faces=arrangement.num_faces,
            num_enclosed_faces=len(arrangement.enclosed_faces),
            num_edges=len(arrangement.edges),
            num_vertices=len(arrangement.vertices),
        )
