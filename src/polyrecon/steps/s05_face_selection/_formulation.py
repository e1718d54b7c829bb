"""Binary program of the face selection.

Variables: one binary x_f per candidate face, then one binary y_e per
parity-constrained edge.

Rows: Σ x_f - 2 y_e = 0 per parity-constrained edge, plus one cut per vertex
configuration found to branch (see ``add_fan_cuts``).

Objective (minimise), N = points assigned to any face, A = candidate area:

    data fitting   'support':  -λ_fit · (n_f / N) · fitting_f
                   'penalty':   λ_fit · (1 - fitting_f)
    coverage                    λ_cov · (1 - coverage_f)
    complexity                  λ_cplx · area_f / A

'support' is the per-face penalty λ_fit·(1 - fitting_f) weighted by the
face's share of points, plus the same weight charged for every point whose
face is left out; dropping the constant leaves the coefficient above. A
purely non-negative objective is minimised by selecting nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

import numpy as np
from scipy import sparse

from polyrecon.core.contracts import ReconstructionWeights
from polyrecon.core.model import AdjacencyRecord, Arrangement
from polyrecon.solvers import SolverRequest

logger = logging.getLogger(__name__)


@dataclass
class SelectionProblem:
    request: SolverRequest
    face_ids: list[int]  # column k holds face face_ids[k]
    edge_ids: list[int]  # column len(face_ids) + k holds edge edge_ids[k]


def objective_coefficients(
    arrangement: Arrangement,
    weights: ReconstructionWeights,
    data_term: str = "support",
) -> np.ndarray:
    faces = arrangement.faces
    fitting = np.array([f.confidence.fitting for f in faces], dtype=np.float64)
    coverage = np.array([f.confidence.coverage for f in faces], dtype=np.float64)
    counts = np.array([f.confidence.num_points for f in faces], dtype=np.float64)
    areas = np.array([f.area for f in faces], dtype=np.float64)

    total_points = counts.sum()
    total_area = areas.sum()

    if data_term == "support":
        share = counts / total_points if total_points > 0 else np.zeros_like(counts)
        data = -share * fitting
    elif data_term == "penalty":
        data = 1.0 - fitting
    else:
        raise ValueError(f"Unknown data term '{data_term}'")

    complexity = areas / total_area if total_area > 0 else np.zeros_like(areas)
    return (
        weights.data_fitting * data
        + weights.model_coverage * (1.0 - coverage)
        + weights.model_complexity * complexity
    )


def build_problem(
    arrangement: Arrangement,
    adjacency: AdjacencyRecord,
    weights: ReconstructionWeights,
    data_term: str = "support",
    time_limit: float | None = None,
) -> SelectionProblem:
    face_ids = [f.id for f in arrangement.faces]
    face_col = {fid: k for k, fid in enumerate(face_ids)}
    edge_ids = [c.edge_id for c in adjacency.parity_constraints]
    edge_col = {eid: len(face_ids) + k for k, eid in enumerate(edge_ids)}
    num_vars = len(face_ids) + len(edge_ids)

    rows: list[int] = []
    cols: list[int] = []
    vals: list[float] = []
    row = 0

    # Σ x_f - 2 y_e = 0
    for constraint in adjacency.parity_constraints:
        for fid in constraint.face_ids:
            rows.append(row)
            cols.append(face_col[fid])
            vals.append(1.0)
        rows.append(row)
        cols.append(edge_col[constraint.edge_id])
        vals.append(-2.0)
        row += 1

    A = sparse.coo_matrix((vals, (rows, cols)), shape=(row, num_vars)).tocsr()
    objective = np.zeros(num_vars)
    objective[: len(face_ids)] = objective_coefficients(arrangement, weights, data_term)

    request = SolverRequest(
        objective=objective,
        constraints=A,
        lower=np.zeros(row),
        upper=np.zeros(row),
        integrality=np.ones(num_vars, dtype=np.int64),
        var_lower=np.zeros(num_vars),
        var_upper=np.ones(num_vars),
        time_limit=time_limit,
    )
    logger.info(
        f"Selection problem: {len(face_ids)} face and {len(edge_ids)} edge variables, "
        f"{row} constraints"
    )
    return SelectionProblem(request=request, face_ids=face_ids, edge_ids=edge_ids)


@dataclass(frozen=True)
class FanCut:
    """Selecting exactly ``selected`` out of ``face_ids`` at ``vertex_id`` is forbidden."""

    vertex_id: int
    face_ids: tuple[int, ...]
    selected: tuple[int, ...]


def add_fan_cuts(problem: SelectionProblem, cuts: list[FanCut]) -> SelectionProblem:
    """Append Σ_{f∈S} x_f - Σ_{f∉S} x_f <= |S| - 1 for every cut.

    S is the branching selection around the vertex; the row is violated by that
    local configuration only.
    """
    if not cuts:
        return problem
    request = problem.request
    face_col = {fid: k for k, fid in enumerate(problem.face_ids)}

    rows: list[int] = []
    cols: list[int] = []
    vals: list[float] = []
    for row, cut in enumerate(cuts):
        chosen = set(cut.selected)
        for fid in cut.face_ids:
            rows.append(row)
            cols.append(face_col[fid])
            vals.append(1.0 if fid in chosen else -1.0)

    shape = (len(cuts), request.num_variables)
    cut_rows = sparse.coo_matrix((vals, (rows, cols)), shape=shape)
    request = replace(
        request,
        constraints=sparse.vstack([request.constraints, cut_rows]).tocsr(),
        lower=np.concatenate([request.lower, np.full(len(cuts), -np.inf)]),
        upper=np.concatenate([request.upper, [len(c.selected) - 1.0 for c in cuts]]),
    )
    return replace(problem, request=request)
