"""Tests for S06: Mesh assembly."""

import json
from pathlib import Path

import numpy as np
import pytest

from polyrecon.core.errors import EmptyResult, MeshAssemblyFailed
from polyrecon.core.model import Arrangement, CandidateFace, Edge, SelectionResult
from polyrecon.steps.s06_mesh_assembly._halfedge import build_halfedges
from polyrecon.steps.s06_mesh_assembly.config import MeshAssemblyConfig
from polyrecon.steps.s06_mesh_assembly.contracts import MeshAssemblyInput
from polyrecon.steps.s06_mesh_assembly.step import (
    MeshAssemblyStep,
    _stitch_boundary,
    assemble_mesh,
    check_vertex_manifold,
    merge_coplanar_faces,
    orient_faces,
    remove_collinear_vertices,
)
from polyrecon.utils.io import read_mesh

TETRA = [[0, 2, 1], [0, 1, 3], [0, 3, 2], [1, 2, 3]]
TETRA_POSITIONS = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]], dtype=float)


def _cube_selection(arrangement: Arrangement, drop: int | None = None) -> SelectionResult:
    selected = {f.id: f.enclosed for f in arrangement.faces}
    if drop is not None:
        selected[arrangement.enclosed_faces[drop].id] = False
    return SelectionResult(status="optimal", selected=selected, objective_value=-1.0)


def _two_squares() -> Arrangement:
    """Two unit squares side by side on z = 0, sharing the edge (1, 4)."""
    vertices = np.array([
        [0, 0, 0], [1, 0, 0], [2, 0, 0], [2, 1, 0], [1, 1, 0], [0, 1, 0],
    ], dtype=float)
    faces = [
        CandidateFace(id=0, plane_id=0, vertex_ids=[0, 1, 4, 5], area=1.0),
        CandidateFace(id=1, plane_id=0, vertex_ids=[1, 2, 3, 4], area=1.0),
    ]
    edges = [Edge(id=0, vertices=(1, 4), face_ids=[0, 1])]
    return Arrangement(
        vertices=vertices, faces=faces, edges=edges, planes=[],
        bbox_min=np.zeros(3), bbox_max=np.array([2.0, 1.0, 1.0]),
    )


def _corner_tetrahedra() -> Arrangement:
    """Two tetrahedra that touch only at the origin."""
    vertices = np.vstack([TETRA_POSITIONS, -TETRA_POSITIONS[1:]])
    mirrored = [[{1: 4, 2: 5, 3: 6}.get(v, v) for v in loop] for loop in TETRA]
    faces = [
        CandidateFace(id=i, plane_id=i, vertex_ids=loop, area=0.5)
        for i, loop in enumerate(TETRA + mirrored)
    ]
    return Arrangement(
        vertices=vertices, faces=faces, edges=[], planes=[],
        bbox_min=-np.ones(3), bbox_max=np.ones(3),
    )


def _newell_normal(points: np.ndarray) -> np.ndarray:
    return np.cross(points, np.roll(points, -1, axis=0)).sum(axis=0)


def _assert_outward(vertices: np.ndarray, faces: list[list[int]]):
    center = vertices.mean(axis=0)
    for loop in faces:
        pts = vertices[loop]
        assert np.dot(_newell_normal(pts), pts.mean(axis=0) - center) > 0


class TestHalfedges:
    def test_closed_tetrahedron(self):
        conn = build_halfedges(TETRA)
        assert conn.num_halfedges == 12
        assert conn.num_boundary_halfedges == 0
        for h in range(conn.num_halfedges):
            t = conn.twin[h]
            assert conn.twin[t] == h
            assert conn.origin[t] == conn.origin[conn.next[h]]

    def test_open_triangle_rejected(self):
        with pytest.raises(MeshAssemblyFailed):
            build_halfedges([[0, 1, 2]])

    def test_open_triangle_allowed(self):
        conn = build_halfedges([[0, 1, 2]], allow_open_boundary=True)
        assert conn.num_boundary_halfedges == 3

    def test_same_direction_twice(self):
        with pytest.raises(MeshAssemblyFailed, match="same direction"):
            build_halfedges([[0, 1, 2], [0, 1, 3]], allow_open_boundary=True)

    @pytest.mark.parametrize("loop", [[0, 1], [0, 1, 1]])
    def test_degenerate_face(self, loop):
        with pytest.raises(MeshAssemblyFailed, match="simple loop"):
            build_halfedges([loop], allow_open_boundary=True)


class TestMerging:
    def test_stitch_two_squares(self):
        assert _stitch_boundary([[0, 1, 4, 5], [1, 2, 3, 4]]) == [0, 1, 2, 3, 4, 5]

    def test_stitch_pinch_refused(self):
        assert _stitch_boundary([[0, 1, 2, 3], [2, 4, 5, 6]]) is None

    def test_merge_coplanar(self):
        loops, planes = merge_coplanar_faces(_two_squares(), [0, 1])
        assert loops == [[0, 1, 2, 3, 4, 5]]
        assert planes == [0]

    def test_single_face_untouched(self):
        loops, planes = merge_coplanar_faces(_two_squares(), [1])
        assert loops == [[1, 2, 3, 4]]
        assert planes == [0]


class TestCleanup:
    def test_collinear_vertices_removed(self):
        arr = _two_squares()
        loops = remove_collinear_vertices([[0, 1, 2, 3, 4, 5]], arr.vertices, 1e-9)
        assert loops == [[0, 2, 3, 5]]

    def test_corners_kept(self):
        arr = _two_squares()
        loops = remove_collinear_vertices([[0, 1, 4, 5], [1, 2, 3, 4]], arr.vertices, 1e-9)
        # 1 and 4 have three neighbours each
        assert loops == [[0, 1, 4, 5], [1, 2, 3, 4]]


class TestOrientation:
    def test_inward_tetrahedron_is_flipped(self):
        inward = [list(reversed(loop)) for loop in TETRA]
        oriented = orient_faces(inward, TETRA_POSITIONS)
        _assert_outward(TETRA_POSITIONS, oriented)
        build_halfedges(oriented)

    def test_single_reversed_face_is_fixed(self):
        loops = [list(loop) for loop in TETRA]
        loops[2].reverse()
        oriented = orient_faces(loops, TETRA_POSITIONS)
        _assert_outward(TETRA_POSITIONS, oriented)

    def test_separate_fans_rejected(self):
        with pytest.raises(MeshAssemblyFailed, match="vertex 0 joins 2"):
            check_vertex_manifold([[0, 1, 2], [0, 3, 4]])

    def test_edge_connected_fan_kept(self):
        check_vertex_manifold([[0, 1, 2], [0, 2, 3]])
        check_vertex_manifold(TETRA)


class TestAssembleMesh:
    def test_closed_cube(self, cube_arrangement):
        mesh = assemble_mesh(cube_arrangement, _cube_selection(cube_arrangement))
        assert mesh.num_faces == 6
        assert mesh.num_vertices == 8
        assert mesh.num_edges == 12
        assert mesh.is_closed
        assert mesh.euler_characteristic == 2
        assert sorted(mesh.face_planes) == sorted(p.id for p in cube_arrangement.planes)
        _assert_outward(mesh.vertices, mesh.faces)

    def test_without_merging(self, cube_arrangement):
        config = MeshAssemblyConfig(merge_coplanar=False, remove_collinear=False)
        mesh = assemble_mesh(cube_arrangement, _cube_selection(cube_arrangement), config)
        assert mesh.num_faces == 6
        assert mesh.is_closed

    def test_open_box_rejected(self, cube_arrangement):
        with pytest.raises(MeshAssemblyFailed):
            assemble_mesh(cube_arrangement, _cube_selection(cube_arrangement, drop=0))

    def test_open_box_allowed(self, cube_arrangement):
        mesh = assemble_mesh(
            cube_arrangement,
            _cube_selection(cube_arrangement, drop=0),
            MeshAssemblyConfig(allow_open_boundary=True),
        )
        assert mesh.num_faces == 5
        assert not mesh.is_closed
        assert mesh.connectivity.num_boundary_halfedges == 4

    def test_empty_selection(self, cube_arrangement):
        with pytest.raises(EmptyResult):
            assemble_mesh(cube_arrangement, SelectionResult(status="optimal"))

    def test_unknown_face(self, cube_arrangement):
        selection = SelectionResult(status="optimal", selected={10_000: True})
        with pytest.raises(MeshAssemblyFailed, match="unknown faces"):
            assemble_mesh(cube_arrangement, selection)

    def test_shared_corner_rejected(self):
        selection = SelectionResult(status="optimal", selected=dict.fromkeys(range(8), True))
        with pytest.raises(MeshAssemblyFailed, match="vertex 0 joins 2 separate face fans"):
            assemble_mesh(_corner_tetrahedra(), selection)

    def test_merged_squares(self):
        selection = SelectionResult(status="optimal", selected={0: True, 1: True})
        mesh = assemble_mesh(
            _two_squares(), selection, MeshAssemblyConfig(allow_open_boundary=True)
        )
        assert mesh.num_faces == 1
        assert mesh.num_vertices == 4


class TestMeshAssemblyStep:
    def _write_inputs(self, data_root: Path, arrangement: Arrangement):
        arrangement_file = data_root / "arrangement.json"
        with open(arrangement_file, "w") as f:
            json.dump(arrangement.to_dict(), f)
        selection_file = data_root / "selection.json"
        with open(selection_file, "w") as f:
            json.dump(_cube_selection(arrangement).to_dict(), f)
        return MeshAssemblyInput(arrangement_file=arrangement_file, selection_file=selection_file)

    def test_run_obj(self, data_root: Path, cube_arrangement):
        inputs = self._write_inputs(data_root, cube_arrangement)
        step = MeshAssemblyStep(config=MeshAssemblyConfig(), data_root=data_root)
        output = step.execute(inputs)

        assert output.mesh_path == data_root / "processed" / "mesh.obj"
        assert output.num_faces == 6
        assert output.num_edges == 12
        assert output.is_closed
        vertices, faces = read_mesh(output.mesh_path)
        assert vertices.shape == (8, 3)
        assert len(faces) == 6

    def test_run_ply(self, data_root: Path, cube_arrangement):
        inputs = self._write_inputs(data_root, cube_arrangement)
        config = MeshAssemblyConfig(output_format="ply", output_name="cube")
        output = MeshAssemblyStep(config=config, data_root=data_root).execute(inputs)
        assert output.mesh_path.name == "cube.ply"
        vertices, faces = read_mesh(output.mesh_path)
        assert len(faces) == 6

    def test_missing_input(self, data_root: Path):
        step = MeshAssemblyStep(config=MeshAssemblyConfig(), data_root=data_root)
        assert not step.validate_inputs(MeshAssemblyInput(
            arrangement_file=data_root / "nope.json",
            selection_file=data_root / "nope.json",
        ))
