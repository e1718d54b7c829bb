"""Tests for S05: Face selection."""

import json
from pathlib import Path

import numpy as np
import pytest
from pydantic import ValidationError

from polyrecon.core.contracts import ReconstructionWeights
from polyrecon.core.errors import EmptyResult, OptimizationFailed
from polyrecon.core.model import (
    AdjacencyRecord,
    Arrangement,
    CandidateFace,
    ConfidenceScore,
    SelectionResult,
    VertexCycleConstraint,
)
from polyrecon.solvers import SolverResponse
from polyrecon.steps.s03_confidence.step import save_confidences
from polyrecon.steps.s05_face_selection._formulation import (
    FanCut,
    add_fan_cuts,
    build_problem,
    objective_coefficients,
)
from polyrecon.steps.s05_face_selection.config import FaceSelectionConfig
from polyrecon.steps.s05_face_selection.contracts import FaceSelectionInput
from polyrecon.steps.s05_face_selection.step import (
    FaceSelectionStep,
    find_branching_vertices,
    select_faces,
)


def _two_face_arrangement(fitting=(1.0, 1.0), coverage=(1.0, 1.0), points=(10, 10)) -> Arrangement:
    faces = [
        CandidateFace(id=k, plane_id=k, vertex_ids=[0, 1, 2], area=1.0,
                      confidence=ConfidenceScore(fitting[k], coverage[k], points[k]))
        for k in range(2)
    ]
    return Arrangement(
        vertices=np.zeros((3, 3)), faces=faces, edges=[], planes=[],
        bbox_min=np.zeros(3), bbox_max=np.ones(3),
    )



def _fan_arrangement() -> Arrangement:
    """Four supported faces; 0-1 and 2-3 share an edge, all four meet at vertex 0."""
    faces = [
        CandidateFace(id=k, plane_id=k, vertex_ids=[0, 1, 2], area=1.0,
                      confidence=ConfidenceScore(1.0, 1.0, 10))
        for k in range(4)
    ]
    return Arrangement(
        vertices=np.zeros((3, 3)), faces=faces, edges=[], planes=[],
        bbox_min=np.zeros(3), bbox_max=np.ones(3),
    )


def _fan_adjacency() -> AdjacencyRecord:
    return AdjacencyRecord(
        edge_faces={10: [0, 1], 11: [2, 3]},
        vertex_edges={0: [10, 11]},
        vertex_faces={0: [0, 1, 2, 3]},
        vertex_constraints=[VertexCycleConstraint(0, [10, 11], [0, 1, 2, 3])],
    )


def _stages(point_set):
    """Arrangement with confidences and adjacency of ``point_set`` under default configs."""
    from polyrecon.steps.s01_plane_refinement.config import PlaneRefinementConfig
    from polyrecon.steps.s01_plane_refinement.step import refine_planes
    from polyrecon.steps.s02_hypothesis_generation.config import HypothesisGenerationConfig
    from polyrecon.steps.s02_hypothesis_generation.step import generate_hypothesis
    from polyrecon.steps.s03_confidence.config import ConfidenceConfig
    from polyrecon.steps.s03_confidence.step import compute_confidences
    from polyrecon.steps.s04_adjacency.config import AdjacencyConfig
    from polyrecon.steps.s04_adjacency.step import build_adjacency

    planes = refine_planes(point_set, PlaneRefinementConfig())
    arrangement = generate_hypothesis(point_set, planes, HypothesisGenerationConfig())
    compute_confidences(point_set, arrangement, ConfidenceConfig())
    return arrangement, build_adjacency(arrangement, AdjacencyConfig())


class _Scripted:
    """Solver stub answering with the given assignments in turn."""

    name = "stub"

    def __init__(self, *answers):
        self.answers = [np.asarray(a, dtype=float) for a in answers]
        self.requests = []

    def solve(self, request):
        self.requests.append(request)
        x = self.answers[min(len(self.requests), len(self.answers)) - 1]
        return SolverResponse(status="optimal", assignment=x, objective_value=-1.0)

class TestConfig:
    def test_defaults(self):
        cfg = FaceSelectionConfig()
        assert cfg.weights.as_tuple() == (0.43, 0.27, 0.30)
        assert cfg.solver == "highs"
        assert cfg.data_term == "support"

    def test_invalid_weights(self):
        with pytest.raises(ValidationError):
            FaceSelectionConfig(weights={"data_fitting": 0.5, "model_coverage": 0.5, "model_complexity": 0.5})

    def test_unknown_solver(self):
        with pytest.raises(ValidationError):
            FaceSelectionConfig(solver="gurobi")


class TestObjective:
    def test_support_term(self):
        arr = _two_face_arrangement(fitting=(1.0, 0.5), points=(30, 10))
        w = ReconstructionWeights(data_fitting=1.0, model_coverage=0.0, model_complexity=0.0)
        c = objective_coefficients(arr, w, "support")
        np.testing.assert_allclose(c, [-0.75, -0.125])

    def test_penalty_term(self):
        arr = _two_face_arrangement(fitting=(1.0, 0.5))
        w = ReconstructionWeights(data_fitting=1.0, model_coverage=0.0, model_complexity=0.0)
        np.testing.assert_allclose(objective_coefficients(arr, w, "penalty"), [0.0, 0.5])

    def test_coverage_and_complexity(self):
        arr = _two_face_arrangement(coverage=(1.0, 0.0), points=(0, 0))
        w = ReconstructionWeights(data_fitting=0.0, model_coverage=0.5, model_complexity=0.5)
        np.testing.assert_allclose(objective_coefficients(arr, w), [0.25, 0.75])

    def test_unknown_data_term(self):
        with pytest.raises(ValueError):
            objective_coefficients(_two_face_arrangement(), ReconstructionWeights(), "bogus")


class TestBuildProblem:
    def test_cube_problem_shape(self, cube_arrangement, cube_adjacency):
        problem = build_problem(cube_arrangement, cube_adjacency, ReconstructionWeights())
        req = problem.request
        num_faces = cube_arrangement.num_faces
        num_parity = len(cube_adjacency.parity_constraints)
        assert req.num_variables == num_faces + num_parity
        assert req.num_constraints == num_parity
        assert problem.face_ids == [f.id for f in cube_arrangement.faces]
        np.testing.assert_array_equal(req.lower, req.upper)
        assert np.all(req.objective[num_faces:] == 0)

    def test_parity_rows(self, cube_arrangement, cube_adjacency):
        problem = build_problem(cube_arrangement, cube_adjacency, ReconstructionWeights())
        A = problem.request.constraints.toarray()
        num_faces = cube_arrangement.num_faces
        for row, constraint in enumerate(cube_adjacency.parity_constraints):
            assert A[row, num_faces + row] == -2
            assert set(np.flatnonzero(A[row, :num_faces])) == set(constraint.face_ids)

    def test_closed_cube_is_feasible(self, cube_arrangement, cube_adjacency):
        problem = build_problem(cube_arrangement, cube_adjacency, ReconstructionWeights())
        x = np.zeros(problem.request.num_variables)
        enclosed = {f.id for f in cube_arrangement.enclosed_faces}
        for k, fid in enumerate(problem.face_ids):
            x[k] = fid in enclosed
        for k, constraint in enumerate(cube_adjacency.parity_constraints):
            x[len(problem.face_ids) + k] = len(enclosed & set(constraint.face_ids)) // 2
        np.testing.assert_allclose(problem.request.constraints @ x, 0.0)


@pytest.mark.parametrize("solver", ["highs", "branch_and_bound"])
class TestSelectFaces:
    def test_cube_selects_six_faces(self, cube_arrangement, cube_adjacency, solver):
        result = select_faces(cube_arrangement, cube_adjacency, FaceSelectionConfig(solver=solver))
        assert result.status == "optimal"
        assert result.selected_ids == sorted(f.id for f in cube_arrangement.enclosed_faces)
        assert result.objective_value < 0


class TestSelectFacesFailures:
    def test_empty_result(self):
        # Unsupported, unconstrained faces only add cost
        arr = _two_face_arrangement(fitting=(0.0, 0.0), coverage=(0.0, 0.0), points=(0, 0))
        adjacency = AdjacencyRecord(edge_faces={}, vertex_edges={}, vertex_faces={})
        with pytest.raises(EmptyResult):
            select_faces(arr, adjacency, FaceSelectionConfig())

    def test_infeasible(self, monkeypatch):
        import polyrecon.steps.s05_face_selection.step as step_module

        class _Infeasible:
            name = "stub"

            def solve(self, request):
                return SolverResponse(status="infeasible", message="no solution")

        monkeypatch.setattr(step_module, "get_solver", lambda name: _Infeasible())
        with pytest.raises(OptimizationFailed) as info:
            select_faces(
                _two_face_arrangement(),
                AdjacencyRecord(edge_faces={}, vertex_edges={}, vertex_faces={}),
                FaceSelectionConfig(),
            )
        assert info.value.status == "infeasible"

    def test_timeout_is_reported(self, monkeypatch):
        import polyrecon.steps.s05_face_selection.step as step_module

        class _Slow:
            name = "stub"

            def solve(self, request):
                return SolverResponse(status="timeout", message="time limit reached")

        monkeypatch.setattr(step_module, "get_solver", lambda name: _Slow())
        with pytest.raises(OptimizationFailed) as info:
            select_faces(
                _two_face_arrangement(),
                AdjacencyRecord(edge_faces={}, vertex_edges={}, vertex_faces={}),
                FaceSelectionConfig(),
            )
        assert info.value.status == "timeout"


class TestFaceSelectionStep:
    def test_run(self, data_root: Path, cube_arrangement, cube_adjacency):
        arrangement_file = data_root / "arrangement.json"
        with open(arrangement_file, "w") as f:
            json.dump(cube_arrangement.to_dict(), f)
        confidences_file = data_root / "confidences.json"
        save_confidences({f.id: f.confidence for f in cube_arrangement.faces}, confidences_file)
        adjacency_file = data_root / "adjacency.json"
        with open(adjacency_file, "w") as f:
            json.dump(cube_adjacency.to_dict(), f)

        step = FaceSelectionStep(config=FaceSelectionConfig(), data_root=data_root)
        output = step.execute(FaceSelectionInput(
            arrangement_file=arrangement_file,
            confidences_file=confidences_file,
            adjacency_file=adjacency_file,
        ))
        assert output.num_selected == 6
        with open(output.selection_file) as f:
            result = SelectionResult.from_dict(json.load(f))
        assert len(result.selected_ids) == 6


class TestFanCuts:
    def test_branching_vertex_found(self):
        cuts = find_branching_vertices(_fan_adjacency(), [0, 1, 2, 3])
        assert cuts == [FanCut(vertex_id=0, face_ids=(0, 1, 2, 3), selected=(0, 1, 2, 3))]

    def test_partial_fans_found(self):
        cuts = find_branching_vertices(_fan_adjacency(), [1, 2])
        assert [c.selected for c in cuts] == [(1, 2)]

    @pytest.mark.parametrize("selected", [[], [0], [0, 1], [2, 3]])
    def test_single_fan_is_fine(self, selected):
        assert find_branching_vertices(_fan_adjacency(), selected) == []

    def test_cube_corners_do_not_branch(self, cube_arrangement, cube_adjacency):
        enclosed = [f.id for f in cube_arrangement.enclosed_faces]
        assert find_branching_vertices(cube_adjacency, enclosed) == []

    def test_cut_row(self):
        problem = build_problem(_fan_arrangement(), _fan_adjacency(), ReconstructionWeights())
        assert problem.request.num_constraints == 0
        cut = add_fan_cuts(problem, [FanCut(0, (0, 1, 2, 3), (0, 2))])
        req = cut.request
        np.testing.assert_array_equal(req.constraints.toarray(), [[1, -1, 1, -1]])
        assert req.lower[0] == -np.inf
        assert req.upper[0] == 1
        # the original request is left alone
        assert problem.request.num_constraints == 0

    def test_cut_rows_follow_parity_rows(self, cube_arrangement, cube_adjacency):
        problem = build_problem(cube_arrangement, cube_adjacency, ReconstructionWeights())
        num_rows = problem.request.num_constraints
        corner = cube_adjacency.vertex_constraints[0]
        cut = FanCut(corner.vertex_id, tuple(corner.face_ids), tuple(corner.face_ids[:2]))
        req = add_fan_cuts(problem, [cut]).request
        assert req.num_constraints == num_rows + 1
        np.testing.assert_array_equal(req.lower[:num_rows], 0.0)
        assert req.upper[-1] == 1

    def test_no_cuts_returns_same_problem(self):
        problem = build_problem(_fan_arrangement(), _fan_adjacency(), ReconstructionWeights())
        assert add_fan_cuts(problem, []) is problem


class TestCutRounds:
    def test_branching_solution_is_cut_and_resolved(self, monkeypatch):
        import polyrecon.steps.s05_face_selection.step as step_module

        stub = _Scripted([1, 1, 1, 1], [1, 1, 0, 0])
        monkeypatch.setattr(step_module, "get_solver", lambda name: stub)
        result = select_faces(_fan_arrangement(), _fan_adjacency(), FaceSelectionConfig())

        assert result.selected_ids == [0, 1]
        assert len(stub.requests) == 2
        assert stub.requests[0].num_constraints == 0
        second = stub.requests[1]
        np.testing.assert_array_equal(second.constraints.toarray(), [[1, 1, 1, 1]])
        assert second.upper[0] == 3
        assert 0 < second.time_limit <= 60.0

    def test_round_cap(self, monkeypatch):
        import polyrecon.steps.s05_face_selection.step as step_module

        stub = _Scripted([1, 1, 1, 1])
        monkeypatch.setattr(step_module, "get_solver", lambda name: stub)
        config = FaceSelectionConfig(max_cut_rounds=2)
        result = select_faces(_fan_arrangement(), _fan_adjacency(), config)

        assert len(stub.requests) == 3
        assert stub.requests[-1].num_constraints == 2
        assert result.selected_ids == [0, 1, 2, 3]

    def test_negative_rounds_rejected(self):
        with pytest.raises(ValidationError):
            FaceSelectionConfig(max_cut_rounds=-1)

    @pytest.mark.parametrize("solver", ["highs", "branch_and_bound"])
    def test_solvers_settle_on_one_fan(self, solver):
        adjacency = _fan_adjacency()
        result = select_faces(_fan_arrangement(), adjacency, FaceSelectionConfig(solver=solver))
        assert result.selected_ids in ([0, 1], [2, 3])
        assert find_branching_vertices(adjacency, result.selected_ids) == []


@pytest.mark.parametrize("shape", ["tetrahedron_points", "l_shape_points"])
class TestSolutionValidity:
    def test_interior_edges_have_zero_or_two_faces(self, request, shape):
        arrangement, adjacency = _stages(request.getfixturevalue(shape))
        result = select_faces(arrangement, adjacency, FaceSelectionConfig())
        chosen = set(result.selected_ids)

        assert chosen
        for edge in arrangement.edges:
            if not edge.is_interior:
                continue
            count = len(chosen & set(adjacency.edge_faces[edge.id]))
            assert count in (0, 2), f"edge {edge.id} has {count} selected faces"
        assert find_branching_vertices(adjacency, result.selected_ids) == []

    def test_repeat_runs_agree(self, request, shape):
        arrangement, adjacency = _stages(request.getfixturevalue(shape))
        a = select_faces(arrangement, adjacency, FaceSelectionConfig())
        b = select_faces(arrangement, adjacency, FaceSelectionConfig())
        assert json.dumps(a.to_dict()) == json.dumps(b.to_dict())
