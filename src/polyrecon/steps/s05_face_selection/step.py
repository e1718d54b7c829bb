"""Step 05: Select the candidate faces forming the surface."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import replace
from typing import ClassVar

from polyrecon.core.errors import EmptyResult, OptimizationFailed
from polyrecon.core.model import AdjacencyRecord, Arrangement, SelectionResult
from polyrecon.core.step_base import BaseStep
from polyrecon.solvers import get_solver
from polyrecon.steps.s03_confidence.step import load_confidences
from ._formulation import FanCut, add_fan_cuts, build_problem
from .config import FaceSelectionConfig
from .contracts import FaceSelectionInput, FaceSelectionOutput

logger = logging.getLogger(__name__)


def _find(parent: dict[int, int], x: int) -> int:
    while parent[x] != x:
        parent[x] = parent[parent[x]]
        x = parent[x]
    return x


def find_branching_vertices(adjacency: AdjacencyRecord, selected_ids: list[int]) -> list[FanCut]:
    """Vertices whose selected faces split into several edge-linked fans.

    Returns one cut per such vertex, in vertex record order.
    """
    chosen = set(selected_ids)
    cuts: list[FanCut] = []
    for record in adjacency.vertex_constraints:
        around = [fid for fid in record.face_ids if fid in chosen]
        if len(around) < 2:
            continue
        parent = {fid: fid for fid in around}
        for eid in record.edge_ids:
            on = [fid for fid in adjacency.edge_faces.get(eid, []) if fid in chosen]
            for fid in on[1:]:
                ra, rb = _find(parent, on[0]), _find(parent, fid)
                if ra != rb:
                    parent[max(ra, rb)] = min(ra, rb)
        if len({_find(parent, fid) for fid in around}) > 1:
            cuts.append(FanCut(
                vertex_id=record.vertex_id,
                face_ids=tuple(record.face_ids),
                selected=tuple(around),
            ))
    return cuts


def select_faces(
    arrangement: Arrangement,
    adjacency: AdjacencyRecord,
    config: FaceSelectionConfig,
) -> SelectionResult:
    """Formulate, solve and decode the face selection.

    Solutions in which the faces around a vertex form several fans are cut
    off and the problem is solved again, for at most ``config.max_cut_rounds``
    extra rounds sharing one time budget.

    Raises:
        OptimizationFailed: the solver reported infeasible or timeout.
        EmptyResult: the solver succeeded but selected no face.
    """
    problem = build_problem(
        arrangement, adjacency, config.weights,
        data_term=config.data_term, time_limit=config.time_limit,
    )
    solver = get_solver(config.solver)
    logger.info(f"Solving with '{solver.name}' (time limit {config.time_limit}s)")
    deadline = None
    if config.time_limit is not None:
        deadline = time.monotonic() + config.time_limit

    for round_index in range(config.max_cut_rounds + 1):
        if round_index and deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise OptimizationFailed(
                    f"time limit spent after {round_index} cut rounds", status="timeout"
                )
            problem = replace(problem, request=replace(problem.request, time_limit=remaining))

        response = solver.solve(problem.request)
        if response.status != "optimal":
            raise OptimizationFailed(
                f"solver '{solver.name}' reported {response.status}: {response.message}",
                status=response.status,
            )
        selected = {
            fid: bool(response.assignment[k] > 0.5) for k, fid in enumerate(problem.face_ids)
        }

        cuts = find_branching_vertices(adjacency, [fid for fid, on in selected.items() if on])
        if not cuts:
            break
        if round_index == config.max_cut_rounds:
            logger.warning(
                f"{len(cuts)} vertices still branch after {round_index} cut rounds"
            )
            break
        logger.info(
            f"Cut round {round_index + 1}: vertices {[c.vertex_id for c in cuts]} branch"
        )
        problem = add_fan_cuts(problem, cuts)

    result = SelectionResult(
        status=response.status,
        selected=selected,
        objective_value=response.objective_value,
    )
    num_selected = len(result.selected_ids)
    logger.info(
        f"Selected {num_selected}/{len(selected)} faces (objective {response.objective_value:.6g})"
    )
    if num_selected == 0:
        raise EmptyResult("optimization succeeded but the model has no faces")
    return result


class FaceSelectionStep(BaseStep[FaceSelectionInput, FaceSelectionOutput, FaceSelectionConfig]):
    name: ClassVar[str] = "face_selection"
    input_type: ClassVar = FaceSelectionInput
    output_type: ClassVar = FaceSelectionOutput
    config_type: ClassVar = FaceSelectionConfig

    def validate_inputs(self, inputs: FaceSelectionInput) -> bool:
        for path in (inputs.arrangement_file, inputs.confidences_file, inputs.adjacency_file):
            if not path.exists():
                logger.error(f"Input not found: {path}")
                return False
        return True

    def run(self, inputs: FaceSelectionInput) -> FaceSelectionOutput:
        output_dir = self.output_dir("s05_selection")

        with open(inputs.arrangement_file) as f:
            arrangement = Arrangement.from_dict(json.load(f))
        arrangement.apply_confidences(load_confidences(inputs.confidences_file))
        with open(inputs.adjacency_file) as f:
            adjacency = AdjacencyRecord.from_dict(json.load(f))

        result = select_faces(arrangement, adjacency, self.config)

        selection_file = output_dir / "selection.json"
        with open(selection_file, "w") as f:
            json.dump(result.to_dict(), f)

        return FaceSelectionOutput(
            arrangement_file=inputs.arrangement_file,
            selection_file=selection_file,
            num_selected=len(result.selected_ids),
            objective_value=result.objective_value,
        )
