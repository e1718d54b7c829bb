"""Shared pytest fixtures for polyrecon tests."""

from pathlib import Path

import numpy as np
import pytest

from polyrecon.core.model import PointSet, VertexGroup


def _grid_face(axis: int, value: float, n: int) -> np.ndarray:
    """n x n cell-centred grid on the unit square face ``x[axis] == value``."""
    ticks = (np.arange(n) + 0.5) / n
    a, b = np.meshgrid(ticks, ticks, indexing="ij")
    pts = np.zeros((n * n, 3))
    others = [k for k in range(3) if k != axis]
    pts[:, axis] = value
    pts[:, others[0]] = a.ravel()
    pts[:, others[1]] = b.ravel()
    return pts


def make_cube(n: int = 20) -> PointSet:
    """Unit cube, one planar group of n x n points per face, outward normals."""
    points, normals, groups = [], [], []
    offset = 0
    for axis in range(3):
        for value, sign in ((0.0, -1.0), (1.0, 1.0)):
            pts = _grid_face(axis, value, n)
            nrm = np.zeros_like(pts)
            nrm[:, axis] = sign
            points.append(pts)
            normals.append(nrm)
            groups.append(VertexGroup(
                label=f"face_{axis}_{int(value)}",
                indices=np.arange(offset, offset + len(pts)),
            ))
            offset += len(pts)
    return PointSet(points=np.vstack(points), normals=np.vstack(normals), groups=groups)


def make_tetrahedron(n: int = 30) -> PointSet:
    """Corner tetrahedron (origin + unit axes), barycentric grid per face."""
    corners = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]], dtype=float)
    triangles = [(0, 2, 1), (0, 1, 3), (0, 3, 2), (1, 2, 3)]
    centroid = corners.mean(axis=0)

    points, normals, groups = [], [], []
    offset = 0
    for k, (i, j, l) in enumerate(triangles):
        a, b, c = corners[i], corners[j], corners[l]
        pts = []
        for s in range(n):
            for t in range(n - s):
                u, v = (s + 1 / 3) / n, (t + 1 / 3) / n
                pts.append(a + u * (b - a) + v * (c - a))
        pts = np.array(pts)
        normal = np.cross(b - a, c - a)
        normal /= np.linalg.norm(normal)
        if np.dot(normal, a - centroid) < 0:
            normal = -normal
        points.append(pts)
        normals.append(np.tile(normal, (len(pts), 1)))
        groups.append(VertexGroup(label=f"tri_{k}", indices=np.arange(offset, offset + len(pts))))
        offset += len(pts)
    return PointSet(points=np.vstack(points), normals=np.vstack(normals), groups=groups)


def _grid_rect(axis: int, value: float, lo, hi, spacing: float) -> np.ndarray:
    """Cell-centred grid on the rectangle lo..hi of the plane ``x[axis] == value``."""
    others = [k for k in range(3) if k != axis]
    ticks = [
        lo[k] + (np.arange(max(1, round((hi[k] - lo[k]) / spacing))) + 0.5) * spacing
        for k in range(2)
    ]
    a, b = np.meshgrid(ticks[0], ticks[1], indexing="ij")
    pts = np.zeros((a.size, 3))
    pts[:, axis] = value
    pts[:, others[0]] = a.ravel()
    pts[:, others[1]] = b.ravel()
    return pts


def _point_set(patches: list[tuple[str, int, float, np.ndarray]]) -> PointSet:
    """One group per label from (label, axis, normal sign, points) patches."""
    points, normals, groups = [], [], {}
    offset = 0
    for label, axis, sign, pts in patches:
        nrm = np.zeros_like(pts)
        nrm[:, axis] = sign
        points.append(pts)
        normals.append(nrm)
        groups.setdefault(label, []).append(np.arange(offset, offset + len(pts)))
        offset += len(pts)
    return PointSet(
        points=np.vstack(points),
        normals=np.vstack(normals),
        groups=[VertexGroup(label=k, indices=np.concatenate(v)) for k, v in groups.items()],
    )


def make_l_shape(spacing: float = 0.05) -> PointSet:
    """Unit-high prism over the L footprint [0,2]x[0,1] + [0,1]x[1,2]."""
    patches = []
    for label, z, sign in (("bottom", 0.0, -1.0), ("top", 1.0, 1.0)):
        patches.append((label, 2, sign, _grid_rect(2, z, (0, 0), (2, 1), spacing)))
        patches.append((label, 2, sign, _grid_rect(2, z, (0, 1), (1, 2), spacing)))
    for label, axis, value, sign, lo, hi in (
        ("x0", 0, 0.0, -1.0, (0, 0), (2, 1)),
        ("y0", 1, 0.0, -1.0, (0, 0), (2, 1)),
        ("x2", 0, 2.0, 1.0, (0, 0), (1, 1)),
        ("y2", 1, 2.0, 1.0, (0, 0), (1, 1)),
        ("x1", 0, 1.0, 1.0, (1, 0), (2, 1)),
        ("y1", 1, 1.0, 1.0, (1, 0), (2, 1)),
    ):
        patches.append((label, axis, sign, _grid_rect(axis, value, lo, hi, spacing)))
    return _point_set(patches)


def make_corner_cubes(n: int = 20) -> PointSet:
    """Unit cube plus a copy shifted by (1, 1, 1): the two touch at one corner only."""
    a = make_cube(n)
    groups = list(a.groups) + [
        VertexGroup(label=f"b_{g.label}", indices=g.indices + a.num_points) for g in a.groups
    ]
    return PointSet(
        points=np.vstack([a.points, a.points + 1.0]),
        normals=np.vstack([a.normals, a.normals]),
        groups=groups,
    )


@pytest.fixture
def data_root(tmp_path: Path) -> Path:
    """Create a temporary data root with standard directory structure."""
    for subdir in ["raw", "interim", "processed"]:
        (tmp_path / subdir).mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture
def cube_points() -> PointSet:
    return make_cube()


@pytest.fixture
def tetrahedron_points() -> PointSet:
    return make_tetrahedron()


@pytest.fixture
def l_shape_points() -> PointSet:
    return make_l_shape()


@pytest.fixture
def corner_cubes_points() -> PointSet:
    return make_corner_cubes()


@pytest.fixture
def single_plane_points() -> PointSet:
    pts = _grid_face(2, 0.0, 20)
    return PointSet(
        points=pts,
        normals=np.tile([0.0, 0.0, 1.0], (len(pts), 1)),
        groups=[VertexGroup(label="floor", indices=np.arange(len(pts)))],
    )


@pytest.fixture
def cube_with_weak_group() -> PointSet:
    """Cube plus a 10-point group on a slanted plane inside the cube."""
    cube = make_cube()
    rng = np.random.default_rng(7)
    uv = rng.uniform(0.4, 0.6, (10, 2))
    extra = np.column_stack([uv[:, 0], uv[:, 1], 0.3 + 0.2 * uv[:, 0]])
    points = np.vstack([cube.points, extra])
    normals = np.vstack([cube.normals, np.tile([0.0, 0.0, 1.0], (10, 1))])
    groups = list(cube.groups) + [
        VertexGroup(label="weak", indices=np.arange(cube.num_points, cube.num_points + 10))
    ]
    return PointSet(points=points, normals=normals, groups=groups)


# ---------------------------------------------------------------------------
# Intermediate stage results for the cube
# ---------------------------------------------------------------------------

@pytest.fixture
def cube_planes(cube_points):
    from polyrecon.steps.s01_plane_refinement.config import PlaneRefinementConfig
    from polyrecon.steps.s01_plane_refinement.step import refine_planes

    return refine_planes(cube_points, PlaneRefinementConfig())


@pytest.fixture
def cube_arrangement(cube_points, cube_planes):
    """Cube arrangement with confidences applied."""
    from polyrecon.steps.s02_hypothesis_generation.config import HypothesisGenerationConfig
    from polyrecon.steps.s02_hypothesis_generation.step import generate_hypothesis
    from polyrecon.steps.s03_confidence.config import ConfidenceConfig
    from polyrecon.steps.s03_confidence.step import compute_confidences

    arrangement = generate_hypothesis(cube_points, cube_planes, HypothesisGenerationConfig())
    compute_confidences(cube_points, arrangement, ConfidenceConfig())
    return arrangement


@pytest.fixture
def cube_adjacency(cube_arrangement):
    from polyrecon.steps.s04_adjacency.config import AdjacencyConfig
    from polyrecon.steps.s04_adjacency.step import build_adjacency

    return build_adjacency(cube_arrangement, AdjacencyConfig())
