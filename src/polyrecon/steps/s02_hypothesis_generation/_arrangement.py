"""Hypothesis generation: intersect supporting planes inside a bounding box.

Every supporting plane is clipped to the box and then cut by the lines where
the other planes cross it. The resulting convex cells become candidate
faces. Corners are named by the three planes that meet there, which makes
the cells of different planes share vertices and edges without any geometric
matching; a tolerance pass merges corners that coincide in degenerate
configurations (more than three planes through one point) and repairs the
T-junctions such merges leave behind.

Degeneracy policy, applied everywhere:
  * one absolute tolerance ``eps * diagonal`` for side classification,
  * planes are processed in ascending id; the lower id wins every tie
    (duplicate planes, coincident corners),
  * a coincident corner keeps the position of its lowest plane triple.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from itertools import combinations

import numpy as np

from polyrecon.core.errors import ArrangementEmpty
from polyrecon.core.model import Arrangement, CandidateFace, Edge, SupportingPlane
from polyrecon.utils.geometry import (
    from_plane_coords,
    intersect_three_planes,
    plane_frame,
    polygon_area_3d,
)
from ._polygon import Cell, clip_cell, split_cell, square_cell

logger = logging.getLogger(__name__)

# Labels of the six box planes: -(2 * axis + 1) for the min side, -(2 * axis + 2) for the max side
BOX_LABELS = (-1, -2, -3, -4, -5, -6)
_FRAME_LABEL = -99


def is_box_label(label: int) -> bool:
    return label < 0


@dataclass
class ArrangementParams:
    bbox_margin: float = 0.05
    eps: float = 1e-7
    vertex_merge: float = 1e-6
    parallel_angle_deg: float = 1e-3
    duplicate_angle_deg: float = 1.0
    duplicate_distance: float = 1e-3
    workers: int = 1


@dataclass
class _PlaneCells:
    plane_id: int
    origin: np.ndarray
    u: np.ndarray
    v: np.ndarray
    cells: list[Cell] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Bounding box
# ---------------------------------------------------------------------------

def inflated_bbox(lo: np.ndarray, hi: np.ndarray, margin: float) -> tuple[np.ndarray, np.ndarray]:
    """Inflate (lo, hi) by ``margin`` times the box diagonal on every side."""
    lo = np.asarray(lo, dtype=np.float64)
    hi = np.asarray(hi, dtype=np.float64)
    pad = margin * float(np.linalg.norm(hi - lo))
    return lo - pad, hi + pad


def box_planes(lo: np.ndarray, hi: np.ndarray) -> dict[int, tuple[np.ndarray, float]]:
    """Outward box planes keyed by label; the inside satisfies n . p + d <= 0."""
    planes: dict[int, tuple[np.ndarray, float]] = {}
    for axis in range(3):
        e = np.zeros(3)
        e[axis] = 1.0
        planes[-(2 * axis + 1)] = (-e, float(lo[axis]))
        planes[-(2 * axis + 2)] = (e, -float(hi[axis]))
    return planes


# ---------------------------------------------------------------------------
# Plane filtering
# ---------------------------------------------------------------------------

def filter_duplicate_planes(
    planes: list[SupportingPlane],
    angle_deg: float,
    distance: float,
) -> list[SupportingPlane]:
    """Drop planes coinciding with a lower-id plane (normal sign ignored)."""
    cos_thresh = np.cos(np.radians(angle_deg))
    kept: list[SupportingPlane] = []
    for plane in sorted(planes, key=lambda p: p.id):
        duplicate_of = None
        for other in kept:
            cos_angle = float(np.dot(plane.normal, other.normal))
            if abs(cos_angle) < cos_thresh:
                continue
            sign = 1.0 if cos_angle > 0 else -1.0
            if abs(plane.d - sign * other.d) <= distance:
                duplicate_of = other.id
                break
        if duplicate_of is not None:
            logger.info(f"Plane {plane.id} duplicates plane {duplicate_of}, skipped")
            continue
        kept.append(plane)
    return kept


# ---------------------------------------------------------------------------
# Per-plane cell construction
# ---------------------------------------------------------------------------

def _line_in_frame(
    normal: np.ndarray, d: float, origin: np.ndarray, u: np.ndarray, v: np.ndarray,
) -> tuple[float, float, float, float]:
    """Trace of the plane (normal, d) in the 2D frame, as (a, b, c, |(a, b)|)."""
    a = float(np.dot(normal, u))
    b = float(np.dot(normal, v))
    c = float(np.dot(normal, origin) + d)
    return a, b, c, float(np.hypot(a, b))


def _box_section(
    plane: SupportingPlane,
    box: dict[int, tuple[np.ndarray, float]],
    center: np.ndarray,
    diagonal: float,
    tol: float,
    min_area: float,
) -> _PlaneCells | None:
    """Plane ∩ box as a labelled convex cell, or None when the plane misses the box."""
    u, v = plane_frame(plane.normal)
    origin = plane.project(center[None, :])[0]
    cell: Cell | None = square_cell(np.zeros(2), 2.0 * diagonal, _FRAME_LABEL)

    for label in BOX_LABELS:
        n_b, d_b = box[label]
        a, b, c, norm = _line_in_frame(n_b, d_b, origin, u, v)
        if norm < 1e-12:
            if c > tol:
                return None
            continue
        cell = clip_cell(cell, (a / norm, b / norm, c / norm), label, tol, min_area)
        if cell is None:
            return None

    if _FRAME_LABEL in cell.sides:
        return None
    return _PlaneCells(plane_id=plane.id, origin=origin, u=u, v=v, cells=[cell])


def _split_by_planes(
    section: _PlaneCells,
    planes: list[SupportingPlane],
    sin_parallel: float,
    tol: float,
    min_area: float,
) -> _PlaneCells:
    """Cut the box section of one plane by every other plane, in id order."""
    cells = section.cells
    for other in planes:
        if other.id == section.plane_id:
            continue
        a, b, c, norm = _line_in_frame(other.normal, other.d, section.origin, section.u, section.v)
        if norm < sin_parallel:
            continue
        line = (a / norm, b / norm, c / norm)
        next_cells: list[Cell] = []
        for cell in cells:
            negative, positive = split_cell(cell, line, other.id, tol, min_area)
            if negative is not None:
                next_cells.append(negative)
            if positive is not None:
                next_cells.append(positive)
        cells = next_cells
    section.cells = cells
    return section


# ---------------------------------------------------------------------------
# Shared vertices
# ---------------------------------------------------------------------------

class _VertexTable:
    """Corner positions keyed by their plane triple, merged within a tolerance."""

    def __init__(self, equations: dict[int, tuple[np.ndarray, float]]):
        self.equations = equations
        self.positions: dict[tuple, np.ndarray] = {}
        self._fallback_serial = 0

    def corner(self, plane_id: int, incoming: int, outgoing: int, lifted: np.ndarray) -> tuple:
        labels = tuple(sorted({plane_id, incoming, outgoing}))
        if len(labels) == 3:
            key = (labels, 0)
            if key in self.positions:
                return key
            normals = np.array([self.equations[k][0] for k in labels])
            offsets = np.array([self.equations[k][1] for k in labels])
            point = intersect_three_planes(normals, offsets)
            if point is not None:
                self.positions[key] = point
                return key
        # Collinear sides or a near-singular triple: keep the in-plane position
        self._fallback_serial += 1
        key = (labels, self._fallback_serial)
        self.positions[key] = lifted
        return key

    def merge(self, tolerance: float) -> tuple[dict[tuple, int], np.ndarray, list[set[int]]]:
        """Cluster coincident corners; the lowest key represents each cluster.

        Returns (key -> vertex id, vertex positions, planes through each vertex).
        """
        from scipy.spatial import cKDTree

        keys = sorted(self.positions)
        points = np.array([self.positions[k] for k in keys])
        parent = list(range(len(keys)))

        def find(x: int) -> int:
            while parent[x] != x:
                parent[x] = parent[parent[x]]
                x = parent[x]
            return x

        if len(keys) > 1 and tolerance > 0:
            for i, j in sorted(cKDTree(points).query_pairs(tolerance)):
                ri, rj = find(i), find(j)
                if ri != rj:
                    parent[max(ri, rj)] = min(ri, rj)

        roots = sorted({find(i) for i in range(len(keys))})
        root_to_vid = {root: vid for vid, root in enumerate(roots)}
        key_to_vid = {keys[i]: root_to_vid[find(i)] for i in range(len(keys))}
        positions = points[roots] if roots else np.zeros((0, 3))

        vertex_planes: list[set[int]] = [set() for _ in roots]
        for i, key in enumerate(keys):
            vertex_planes[key_to_vid[key]].update(int(x) for x in key[0])
        merged = len(keys) - len(roots)
        if merged:
            logger.debug(f"Merged {merged} coincident corners")
        return key_to_vid, positions, vertex_planes


def _insert_t_junctions(
    loop: list[int],
    sides: list[int],
    plane_id: int,
    positions: np.ndarray,
    pair_index: dict[tuple[int, int], list[int]],
    tolerance: float,
) -> tuple[list[int], list[int]]:
    """Insert vertices lying inside a side of the loop into that side."""
    new_loop: list[int] = []
    new_sides: list[int] = []
    n = len(loop)
    for k in range(n):
        a, b = loop[k], loop[(k + 1) % n]
        label = sides[k]
        new_loop.append(a)
        new_sides.append(label)
        pa, pb = positions[a], positions[b]
        seg = pb - pa
        length_sq = float(np.dot(seg, seg))
        if length_sq <= 0:
            continue
        key = (min(plane_id, label), max(plane_id, label))
        inside: list[tuple[float, int]] = []
        for c in pair_index.get(key, ()):
            if c == a or c == b:
                continue
            t = float(np.dot(positions[c] - pa, seg) / length_sq)
            margin = tolerance / np.sqrt(length_sq)
            if not (margin < t < 1.0 - margin):
                continue
            if np.linalg.norm(pa + t * seg - positions[c]) <= tolerance:
                inside.append((t, c))
        for _, c in sorted(inside):
            new_loop.append(c)
            new_sides.append(label)
    return new_loop, new_sides


def _dedupe_loop(loop: list[int], sides: list[int]) -> tuple[list[int], list[int]]:
    """Remove consecutive repeats created by merging corners."""
    out_loop: list[int] = []
    out_sides: list[int] = []
    for vid, label in zip(loop, sides):
        if out_loop and out_loop[-1] == vid:
            out_sides[-1] = label
            continue
        out_loop.append(vid)
        out_sides.append(label)
    while len(out_loop) > 1 and out_loop[0] == out_loop[-1]:
        out_loop.pop()
        out_sides.pop()
    return out_loop, out_sides


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_arrangement(
    planes: list[SupportingPlane],
    bbox_min: np.ndarray,
    bbox_max: np.ndarray,
    params: ArrangementParams,
) -> Arrangement:
    """Build the candidate mesh of ``planes`` inside the inflated bounding box.

    Raises:
        ArrangementEmpty: no plane survives filtering or no enclosed face exists.
    """
    if not planes:
        raise ArrangementEmpty("no supporting planes to intersect")

    lo, hi = inflated_bbox(bbox_min, bbox_max, params.bbox_margin)
    diagonal = float(np.linalg.norm(hi - lo))
    center = 0.5 * (lo + hi)
    tol = params.eps * diagonal
    merge_tol = params.vertex_merge * diagonal
    min_area = tol * tol
    sin_parallel = float(np.sin(np.radians(params.parallel_angle_deg)))
    box = box_planes(lo, hi)

    planes = filter_duplicate_planes(
        planes, params.duplicate_angle_deg, params.duplicate_distance * diagonal,
    )

    sections: list[_PlaneCells] = []
    for plane in planes:
        section = _box_section(plane, box, center, diagonal, tol, min_area)
        if section is None:
            logger.info(f"Plane {plane.id} does not cross the bounding box, skipped")
            continue
        sections.append(section)
    kept_ids = {s.plane_id for s in sections}
    planes = [p for p in planes if p.id in kept_ids]
    if not planes:
        raise ArrangementEmpty("no supporting plane crosses the bounding box")

    # Cells of different planes are independent; results are merged in plane order
    def _build(section: _PlaneCells) -> _PlaneCells:
        return _split_by_planes(section, planes, sin_parallel, tol, min_area)

    if params.workers > 1:
        with ThreadPoolExecutor(max_workers=params.workers) as pool:
            sections = list(pool.map(_build, sections))
    else:
        sections = [_build(s) for s in sections]

    equations = dict(box)
    equations.update({p.id: (p.normal, p.d) for p in planes})
    table = _VertexTable(equations)

    raw_faces: list[tuple[int, list[tuple], list[int]]] = []
    for section in sections:
        for cell in section.cells:
            lifted = from_plane_coords(cell.coords, section.origin, section.u, section.v)
            n = len(cell.sides)
            keys = [
                table.corner(section.plane_id, cell.sides[k - 1], cell.sides[k], lifted[k])
                for k in range(n)
            ]
            raw_faces.append((section.plane_id, keys, list(cell.sides)))

    key_to_vid, positions, vertex_planes = table.merge(merge_tol)

    pair_index: dict[tuple[int, int], list[int]] = {}
    for vid, labels in enumerate(vertex_planes):
        for pair in combinations(sorted(labels), 2):
            pair_index.setdefault(pair, []).append(vid)

    faces: list[CandidateFace] = []
    face_sides: list[list[int]] = []
    for plane_id, keys, sides in raw_faces:
        loop, loop_sides = _dedupe_loop([key_to_vid[k] for k in keys], sides)
        if len(loop) < 3:
            continue
        loop, loop_sides = _insert_t_junctions(
            loop, loop_sides, plane_id, positions, pair_index, merge_tol,
        )
        area = polygon_area_3d(positions[loop])
        if area <= min_area:
            continue
        faces.append(CandidateFace(
            id=len(faces),
            plane_id=plane_id,
            vertex_ids=loop,
            area=area,
            enclosed=not any(is_box_label(s) for s in loop_sides),
        ))
        face_sides.append(loop_sides)

    # Edges keyed by sorted vertex pair, ids in key order
    edge_faces: dict[tuple[int, int], list[int]] = {}
    edge_boundary: dict[tuple[int, int], bool] = {}
    for face, sides in zip(faces, face_sides):
        loop = face.vertex_ids
        for k, label in enumerate(sides):
            a, b = loop[k], loop[(k + 1) % len(loop)]
            key = (min(a, b), max(a, b))
            edge_faces.setdefault(key, []).append(face.id)
            edge_boundary[key] = edge_boundary.get(key, False) or is_box_label(label)

    edge_ids = {key: eid for eid, key in enumerate(sorted(edge_faces))}
    edges = [
        Edge(
            id=edge_ids[key],
            vertices=key,
            face_ids=sorted(set(edge_faces[key])),
            on_boundary=edge_boundary[key],
        )
        for key in sorted(edge_faces)
    ]
    for face in faces:
        loop = face.vertex_ids
        face.edge_ids = [
            edge_ids[(min(a, b), max(a, b))]
            for a, b in zip(loop, loop[1:] + loop[:1])
        ]

    arrangement = Arrangement(
        vertices=positions,
        faces=faces,
        edges=edges,
        planes=planes,
        bbox_min=lo,
        bbox_max=hi,
    )

    num_enclosed = len(arrangement.enclosed_faces)
    logger.info(
        f"Arrangement of {len(planes)} planes: {len(faces)} candidate faces "
        f"({num_enclosed} enclosed), {len(edges)} edges, {len(positions)} vertices"
    )
    if num_enclosed == 0:
        raise ArrangementEmpty(
            f"{len(planes)} supporting plane(s) enclose no candidate face; "
            "check that the input has good planar segments"
        )
    return arrangement
