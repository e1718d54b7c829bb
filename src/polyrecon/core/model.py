"""In-memory data model shared by the reconstruction stages.

Geometry lives in numpy arrays; every type that crosses a step boundary
knows how to turn itself into plain JSON data (``to_dict``) and back.
Plane equations follow ``n . p + d = 0`` with a unit normal ``n``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np


def _readonly(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


# ---------------------------------------------------------------------------
# Input point set
# ---------------------------------------------------------------------------

@dataclass
class VertexGroup:
    """One planar segment of the input: a label and the indices of its points."""

    label: str
    indices: np.ndarray  # (k,) int64

    def __post_init__(self) -> None:
        self.indices = _readonly(np.asarray(self.indices, dtype=np.int64).reshape(-1))

    def __len__(self) -> int:
        return len(self.indices)


@dataclass
class PointSet:
    """Read-only snapshot of the segmented point cloud for one run."""

    points: np.ndarray  # (N, 3) float64
    normals: np.ndarray | None = None  # (N, 3) float64
    groups: list[VertexGroup] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.points = _readonly(np.asarray(self.points, dtype=np.float64).reshape(-1, 3).copy())
        if self.normals is not None:
            normals = np.asarray(self.normals, dtype=np.float64).reshape(-1, 3).copy()
            if len(normals) != len(self.points):
                raise ValueError(
                    f"normals ({len(normals)}) and points ({len(self.points)}) differ in length"
                )
            self.normals = _readonly(normals)
        for group in self.groups:
            if len(group) and (group.indices.min() < 0 or group.indices.max() >= len(self.points)):
                raise ValueError(f"group '{group.label}' references points outside the set")

    @property
    def num_points(self) -> int:
        return len(self.points)

    @property
    def has_normals(self) -> bool:
        return self.normals is not None

    def bbox(self) -> tuple[np.ndarray, np.ndarray]:
        """Axis-aligned bounds (min, max) of all points."""
        if self.num_points == 0:
            return np.zeros(3), np.zeros(3)
        return self.points.min(axis=0), self.points.max(axis=0)

    def diagonal(self) -> float:
        lo, hi = self.bbox()
        return float(np.linalg.norm(hi - lo))


# ---------------------------------------------------------------------------
# Refined planes
# ---------------------------------------------------------------------------

@dataclass
class SupportingPlane:
    """A fitted plane representing one refined planar segment."""

    id: int
    normal: np.ndarray  # (3,) unit
    d: float
    point_indices: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    group_labels: list[str] = field(default_factory=list)
    residual: float = 0.0

    def __post_init__(self) -> None:
        self.normal = np.asarray(self.normal, dtype=np.float64).reshape(3)
        self.d = float(self.d)
        self.point_indices = np.asarray(self.point_indices, dtype=np.int64).reshape(-1)

    @property
    def num_points(self) -> int:
        return len(self.point_indices)

    def signed_distance(self, points: np.ndarray) -> np.ndarray:
        return np.asarray(points, dtype=np.float64) @ self.normal + self.d

    def project(self, points: np.ndarray) -> np.ndarray:
        """Orthogonal projection of 3D points onto the plane."""
        points = np.asarray(points, dtype=np.float64)
        return points - np.outer(self.signed_distance(points), self.normal)

    def to_dict(self, include_points: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "normal": self.normal.tolist(),
            "d": self.d,
            "group_labels": list(self.group_labels),
            "residual": self.residual,
            "num_points": self.num_points,
        }
        if include_points:
            data["point_indices"] = self.point_indices.tolist()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SupportingPlane":
        return cls(
            id=int(data["id"]),
            normal=np.asarray(data["normal"], dtype=np.float64),
            d=float(data["d"]),
            point_indices=np.asarray(data.get("point_indices", []), dtype=np.int64),
            group_labels=list(data.get("group_labels", [])),
            residual=float(data.get("residual", 0.0)),
        )


# ---------------------------------------------------------------------------
# Arrangement (candidate faces)
# ---------------------------------------------------------------------------

@dataclass
class ConfidenceScore:
    """Per-face support measures; both scores lie in [0, 1]."""

    fitting: float = 0.0
    coverage: float = 0.0
    num_points: int = 0


@dataclass
class CandidateFace:
    """A convex cell of the arrangement lying in exactly one supporting plane."""

    id: int
    plane_id: int
    vertex_ids: list[int]  # CCW loop seen from the plane normal
    edge_ids: list[int] = field(default_factory=list)
    area: float = 0.0
    enclosed: bool = True
    confidence: ConfidenceScore = field(default_factory=ConfidenceScore)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "plane_id": self.plane_id,
            "vertex_ids": list(self.vertex_ids),
            "edge_ids": list(self.edge_ids),
            "area": self.area,
            "enclosed": self.enclosed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CandidateFace":
        return cls(
            id=int(data["id"]),
            plane_id=int(data["plane_id"]),
            vertex_ids=[int(v) for v in data["vertex_ids"]],
            edge_ids=[int(e) for e in data.get("edge_ids", [])],
            area=float(data.get("area", 0.0)),
            enclosed=bool(data.get("enclosed", True)),
        )


@dataclass
class Edge:
    """A segment between two arrangement vertices and the faces bounded by it."""

    id: int
    vertices: tuple[int, int]  # sorted
    face_ids: list[int] = field(default_factory=list)
    on_boundary: bool = False

    @property
    def is_interior(self) -> bool:
        return not self.on_boundary

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "vertices": list(self.vertices),
            "face_ids": list(self.face_ids),
            "on_boundary": self.on_boundary,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Edge":
        a, b = data["vertices"]
        return cls(
            id=int(data["id"]),
            vertices=(int(a), int(b)),
            face_ids=[int(f) for f in data.get("face_ids", [])],
            on_boundary=bool(data.get("on_boundary", False)),
        )


@dataclass
class Arrangement:
    """Candidate polygon mesh induced by the supporting planes inside a box.

    Owns vertices, edges and faces; faces refer to edges and vertices by id.
    """

    vertices: np.ndarray  # (V, 3)
    faces: list[CandidateFace]
    edges: list[Edge]
    planes: list[SupportingPlane]
    bbox_min: np.ndarray
    bbox_max: np.ndarray

    def __post_init__(self) -> None:
        self.vertices = np.asarray(self.vertices, dtype=np.float64).reshape(-1, 3)
        self.bbox_min = np.asarray(self.bbox_min, dtype=np.float64).reshape(3)
        self.bbox_max = np.asarray(self.bbox_max, dtype=np.float64).reshape(3)

    @property
    def num_faces(self) -> int:
        return len(self.faces)

    @property
    def enclosed_faces(self) -> list[CandidateFace]:
        return [f for f in self.faces if f.enclosed]

    def plane(self, plane_id: int) -> SupportingPlane:
        for plane in self.planes:
            if plane.id == plane_id:
                return plane
        raise KeyError(f"no supporting plane with id {plane_id}")

    def faces_on_plane(self, plane_id: int) -> list[CandidateFace]:
        return [f for f in self.faces if f.plane_id == plane_id]

    def apply_confidences(self, scores: dict[int, ConfidenceScore]) -> None:
        for face in self.faces:
            face.confidence = scores.get(face.id, ConfidenceScore())

    def to_dict(self) -> dict[str, Any]:
        return {
            "bbox_min": self.bbox_min.tolist(),
            "bbox_max": self.bbox_max.tolist(),
            "planes": [p.to_dict(include_points=False) for p in self.planes],
            "vertices": self.vertices.tolist(),
            "edges": [e.to_dict() for e in self.edges],
            "faces": [f.to_dict() for f in self.faces],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Arrangement":
        return cls(
            vertices=np.asarray(data["vertices"], dtype=np.float64),
            faces=[CandidateFace.from_dict(f) for f in data["faces"]],
            edges=[Edge.from_dict(e) for e in data["edges"]],
            planes=[SupportingPlane.from_dict(p) for p in data["planes"]],
            bbox_min=np.asarray(data["bbox_min"], dtype=np.float64),
            bbox_max=np.asarray(data["bbox_max"], dtype=np.float64),
        )


# ---------------------------------------------------------------------------
# Adjacency and constraints
# ---------------------------------------------------------------------------

@dataclass
class ParityConstraint:
    """Selected faces around ``edge_id`` must number 0 or 2."""

    edge_id: int
    face_ids: list[int]


@dataclass
class VertexCycleConstraint:
    """Selected faces around ``vertex_id`` must form one fan linked through ``edge_ids``."""

    vertex_id: int
    edge_ids: list[int]
    face_ids: list[int]


@dataclass
class AdjacencyRecord:
    edge_faces: dict[int, list[int]]
    vertex_edges: dict[int, list[int]]
    vertex_faces: dict[int, list[int]]
    parity_constraints: list[ParityConstraint] = field(default_factory=list)
    vertex_constraints: list[VertexCycleConstraint] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "edge_faces": {str(k): v for k, v in self.edge_faces.items()},
            "vertex_edges": {str(k): v for k, v in self.vertex_edges.items()},
            "vertex_faces": {str(k): v for k, v in self.vertex_faces.items()},
            "parity_constraints": [
                {"edge_id": c.edge_id, "face_ids": c.face_ids} for c in self.parity_constraints
            ],
            "vertex_constraints": [
                {"vertex_id": c.vertex_id, "edge_ids": c.edge_ids, "face_ids": c.face_ids}
                for c in self.vertex_constraints
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AdjacencyRecord":
        def _int_map(raw: dict[str, list[int]]) -> dict[int, list[int]]:
            return {int(k): [int(x) for x in v] for k, v in raw.items()}

        return cls(
            edge_faces=_int_map(data["edge_faces"]),
            vertex_edges=_int_map(data["vertex_edges"]),
            vertex_faces=_int_map(data["vertex_faces"]),
            parity_constraints=[
                ParityConstraint(int(c["edge_id"]), [int(f) for f in c["face_ids"]])
                for c in data.get("parity_constraints", [])
            ],
            vertex_constraints=[
                VertexCycleConstraint(
                    int(c["vertex_id"]),
                    [int(e) for e in c["edge_ids"]],
                    [int(f) for f in c["face_ids"]],
                )
                for c in data.get("vertex_constraints", [])
            ],
        )


# ---------------------------------------------------------------------------
# Selection and output
# ---------------------------------------------------------------------------

@dataclass
class SelectionResult:
    """Binary assignment over candidate faces returned by the solve."""

    status: str  # "optimal" | "infeasible" | "timeout"
    selected: dict[int, bool] = field(default_factory=dict)
    objective_value: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "optimal"

    @property
    def selected_ids(self) -> list[int]:
        return sorted(fid for fid, on in self.selected.items() if on)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "objective_value": self.objective_value,
            "selected": {str(k): bool(v) for k, v in sorted(self.selected.items())},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SelectionResult":
        return cls(
            status=data["status"],
            selected={int(k): bool(v) for k, v in data.get("selected", {}).items()},
            objective_value=data.get("objective_value"),
        )


@dataclass
class HalfedgeConnectivity:
    """Flat halfedge arrays; ``twin == -1`` marks an open boundary halfedge."""

    origin: np.ndarray  # (H,) vertex the halfedge leaves
    face: np.ndarray  # (H,) face the halfedge bounds
    next: np.ndarray  # (H,) next halfedge around the same face
    twin: np.ndarray  # (H,) opposite halfedge or -1

    @property
    def num_halfedges(self) -> int:
        return len(self.origin)

    @property
    def num_boundary_halfedges(self) -> int:
        return int(np.count_nonzero(self.twin < 0))


@dataclass
class OutputMesh:
    """The reconstructed polygon surface handed to the caller."""

    vertices: np.ndarray  # (V, 3)
    faces: list[list[int]]
    face_planes: list[int] = field(default_factory=list)
    connectivity: HalfedgeConnectivity | None = None

    @property
    def num_vertices(self) -> int:
        return len(self.vertices)

    @property
    def num_faces(self) -> int:
        return len(self.faces)

    @property
    def num_edges(self) -> int:
        edges = set()
        for loop in self.faces:
            for a, b in zip(loop, loop[1:] + loop[:1]):
                edges.add((min(a, b), max(a, b)))
        return len(edges)

    @property
    def is_closed(self) -> bool:
        return self.connectivity is not None and self.connectivity.num_boundary_halfedges == 0

    @property
    def euler_characteristic(self) -> int:
        return self.num_vertices - self.num_edges + self.num_faces

    def to_dict(self) -> dict[str, Any]:
        return {
            "vertices": np.asarray(self.vertices).tolist(),
            "faces": [list(map(int, f)) for f in self.faces],
            "face_planes": list(self.face_planes),
        }
