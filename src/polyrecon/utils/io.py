"""I/O utilities: segmented point sets (.vg, .npz, .ply) and polygon meshes (.obj, .ply)."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from polyrecon.core.model import OutputMesh, PointSet, VertexGroup
from polyrecon.utils.geometry import fit_plane

logger = logging.getLogger(__name__)

POINT_SET_SUFFIXES = (".vg", ".npz", ".ply")
MESH_SUFFIXES = (".obj", ".ply")


# ── Vertex-group (.vg) format ────────────────────────────────────────
#
# ASCII, whitespace separated, "key:" tokens followed by their values:
#   num_points: N      then N * 3 coordinates
#   num_colors: N      then N * 3 rgb values (ignored)
#   num_normals: N     then N * 3 components
#   num_groups: M      then per group:
#     group_type, num_group_parameters, group_parameters, group_label,
#     group_color, group_num_point, <indices>, num_children

class _Tokens:
    def __init__(self, text: str, path: Path):
        self._tokens = text.split()
        self._pos = 0
        self._path = path

    def next(self) -> str:
        if self._pos >= len(self._tokens):
            raise ValueError(f"{self._path}: unexpected end of file")
        token = self._tokens[self._pos]
        self._pos += 1
        return token

    def expect(self, key: str) -> str:
        token = self.next()
        if token != key:
            raise ValueError(f"{self._path}: expected '{key}', found '{token}'")
        return self.next()

    def floats(self, count: int) -> np.ndarray:
        return np.array([float(self.next()) for _ in range(count)], dtype=np.float64)

    def ints(self, count: int) -> np.ndarray:
        return np.array([int(self.next()) for _ in range(count)], dtype=np.int64)


def _read_vg_group(tokens: _Tokens) -> list[VertexGroup]:
    tokens.expect("group_type:")
    num_params = int(tokens.expect("num_group_parameters:"))
    tokens.expect("group_parameters:")
    tokens.floats(num_params - 1)
    label = tokens.expect("group_label:")
    tokens.expect("group_color:")
    tokens.floats(2)
    num_indices = int(tokens.expect("group_num_point:"))
    groups = [VertexGroup(label=label, indices=tokens.ints(num_indices))]
    num_children = int(tokens.expect("num_children:"))
    for _ in range(num_children):
        groups.extend(_read_vg_group(tokens))
    return groups


def read_point_set_vg(path: Path) -> PointSet:
    path = Path(path)
    tokens = _Tokens(path.read_text(), path)

    num_points = int(tokens.expect("num_points:"))
    points = tokens.floats(num_points * 3).reshape(-1, 3)
    num_colors = int(tokens.expect("num_colors:"))
    tokens.floats(num_colors * 3)
    num_normals = int(tokens.expect("num_normals:"))
    normals = tokens.floats(num_normals * 3).reshape(-1, 3) if num_normals else None

    groups: list[VertexGroup] = []
    num_groups = int(tokens.expect("num_groups:"))
    for _ in range(num_groups):
        groups.extend(_read_vg_group(tokens))

    return PointSet(points=points, normals=normals, groups=groups)


def write_point_set_vg(point_set: PointSet, path: Path) -> Path:
    """Write ``point_set`` in the vertex-group format; plane parameters are refitted."""
    path = Path(path)
    lines = [f"num_points: {point_set.num_points}"]
    lines.extend(f"{x:.9g} {y:.9g} {z:.9g}" for x, y, z in point_set.points)
    lines.append("num_colors: 0")
    if point_set.has_normals:
        lines.append(f"num_normals: {point_set.num_points}")
        lines.extend(f"{x:.9g} {y:.9g} {z:.9g}" for x, y, z in point_set.normals)
    else:
        lines.append("num_normals: 0")

    lines.append(f"num_groups: {len(point_set.groups)}")
    for group in point_set.groups:
        params = np.zeros(4)
        if len(group) >= 3:
            normal, d, _ = fit_plane(point_set.points[group.indices])
            params = np.append(normal, d)
        label = "_".join(str(group.label).split()) or "unknown"
        lines.extend([
            "group_type: 0",
            "num_group_parameters: 4",
            "group_parameters: " + " ".join(f"{p:.9g}" for p in params),
            f"group_label: {label}",
            "group_color: 0.5 0.5 0.5",
            f"group_num_point: {len(group)}",
            " ".join(str(int(i)) for i in group.indices),
            "num_children: 0",
        ])

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    return path


# ── Per-point labels (.npz, .ply) ────────────────────────────────────

def _groups_from_labels(labels: np.ndarray) -> list[VertexGroup]:
    """One group per non-negative label, in ascending label order."""
    labels = np.asarray(labels, dtype=np.int64).reshape(-1)
    return [
        VertexGroup(label=str(int(label)), indices=np.flatnonzero(labels == label))
        for label in np.unique(labels)
        if label >= 0
    ]


def read_point_set_npz(path: Path) -> PointSet:
    with np.load(path) as data:
        points = data["points"]
        normals = data["normals"] if "normals" in data.files else None
        labels = data["group_labels"] if "group_labels" in data.files else np.full(len(points), -1)
    return PointSet(points=points, normals=normals, groups=_groups_from_labels(labels))


def read_point_set_ply(path: Path) -> PointSet:
    from plyfile import PlyData

    plydata = PlyData.read(str(path))
    vertex = plydata["vertex"]
    prop_names = {p.name for p in vertex.properties}

    points = np.column_stack([
        vertex["x"].astype(np.float64),
        vertex["y"].astype(np.float64),
        vertex["z"].astype(np.float64),
    ])
    normals = None
    if {"nx", "ny", "nz"}.issubset(prop_names):
        normals = np.column_stack([
            vertex["nx"].astype(np.float64),
            vertex["ny"].astype(np.float64),
            vertex["nz"].astype(np.float64),
        ])
    if "segment" in prop_names:
        labels = vertex["segment"].astype(np.int64)
    else:
        logger.warning(f"{Path(path).name} has no 'segment' property; no groups loaded")
        labels = np.full(len(points), -1)
    return PointSet(points=points, normals=normals, groups=_groups_from_labels(labels))


def read_point_set(path: Path) -> PointSet:
    """Load a segmented point set, dispatching on the file suffix."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".vg":
        point_set = read_point_set_vg(path)
    elif suffix == ".npz":
        point_set = read_point_set_npz(path)
    elif suffix == ".ply":
        point_set = read_point_set_ply(path)
    else:
        raise ValueError(
            f"Unsupported point set format '{suffix}' (expected one of {POINT_SET_SUFFIXES})"
        )
    logger.info(
        f"Loaded {point_set.num_points} points in {len(point_set.groups)} groups "
        f"from {path.name}"
    )
    return point_set


# ── Polygon meshes ───────────────────────────────────────────────────

def _write_obj(mesh: OutputMesh, path: Path) -> None:
    with open(path, "w") as f:
        f.write(f"# {mesh.num_vertices} vertices, {mesh.num_faces} faces\n")
        for x, y, z in np.asarray(mesh.vertices):
            f.write(f"v {x:.9g} {y:.9g} {z:.9g}\n")
        for loop in mesh.faces:
            f.write("f " + " ".join(str(int(v) + 1) for v in loop) + "\n")


def _write_ply(mesh: OutputMesh, path: Path) -> None:
    from plyfile import PlyData, PlyElement

    vertices = np.asarray(mesh.vertices, dtype=np.float64)
    vertex_data = np.empty(len(vertices), dtype=[("x", "f8"), ("y", "f8"), ("z", "f8")])
    vertex_data["x"] = vertices[:, 0]
    vertex_data["y"] = vertices[:, 1]
    vertex_data["z"] = vertices[:, 2]

    face_data = np.empty(len(mesh.faces), dtype=[("vertex_indices", "O")])
    face_data["vertex_indices"] = [np.asarray(loop, dtype=np.int32) for loop in mesh.faces]

    PlyData(
        [
            PlyElement.describe(vertex_data, "vertex"),
            PlyElement.describe(
                face_data, "face",
                val_types={"vertex_indices": "i4"},
                len_types={"vertex_indices": "u4"},
            ),
        ],
        text=False,
    ).write(str(path))


def write_mesh(mesh: OutputMesh, path: Path) -> Path:
    """Write a polygon mesh as .obj or .ply; OSError propagates to the caller."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in MESH_SUFFIXES:
        raise ValueError(f"Unsupported mesh format '{suffix}' (expected one of {MESH_SUFFIXES})")
    path.parent.mkdir(parents=True, exist_ok=True)
    if suffix == ".obj":
        _write_obj(mesh, path)
    else:
        _write_ply(mesh, path)
    return path


def read_mesh(path: Path) -> tuple[np.ndarray, list[list[int]]]:
    """Read vertices and polygon loops back from .obj or .ply."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".obj":
        vertices, faces = [], []
        with open(path) as f:
            for line in f:
                parts = line.split()
                if not parts:
                    continue
                if parts[0] == "v":
                    vertices.append([float(c) for c in parts[1:4]])
                elif parts[0] == "f":
                    faces.append([int(tok.split("/")[0]) - 1 for tok in parts[1:]])
        return np.asarray(vertices, dtype=np.float64).reshape(-1, 3), faces
    if suffix == ".ply":
        from plyfile import PlyData

        plydata = PlyData.read(str(path))
        vertex = plydata["vertex"]
        vertices = np.column_stack([vertex["x"], vertex["y"], vertex["z"]]).astype(np.float64)
        faces = [[int(v) for v in loop] for loop in plydata["face"]["vertex_indices"]]
        return vertices, faces
    raise ValueError(f"Unsupported mesh format '{suffix}' (expected one of {MESH_SUFFIXES})")
