"""Step 03: Score every candidate face against the points of its plane.

fitting  = 1 - mean point-to-plane distance / (k * spacing), clipped to [0, 1]
coverage = area of the face covered by sufficiently dense grid cells / face area

Points are assigned to the face of their plane that contains their
projection; points falling outside every face (numerical slack on cell
borders) go to the nearest one. Faces without points score 0 on both.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import ClassVar

import numpy as np

from polyrecon.core.model import Arrangement, CandidateFace, ConfidenceScore, PointSet, SupportingPlane
from polyrecon.core.step_base import BaseStep
from polyrecon.utils.geometry import average_spacing, plane_frame, to_plane_coords
from polyrecon.utils.io import read_point_set
from .config import ConfidenceConfig
from .contracts import ConfidenceInput, ConfidenceOutput

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Point assignment
# ---------------------------------------------------------------------------

def _inside_convex(polygon: np.ndarray, coords: np.ndarray, tol: float) -> np.ndarray:
    """Mask of ``coords`` inside the counter-clockwise convex ``polygon``."""
    inside = np.ones(len(coords), dtype=bool)
    nxt = np.roll(polygon, -1, axis=0)
    for p, q in zip(polygon, nxt):
        edge = q - p
        length = np.hypot(edge[0], edge[1])
        if length == 0:
            continue
        cross = edge[0] * (coords[:, 1] - p[1]) - edge[1] * (coords[:, 0] - p[0])
        inside &= cross >= -tol * length
    return inside


def assign_points_to_faces(
    polygons: list[np.ndarray],
    coords: np.ndarray,
    tol: float,
) -> np.ndarray:
    """Index into ``polygons`` of the face each 2D point belongs to.

    Containment first (lowest index wins on shared borders), nearest polygon
    for the rest.
    """
    import shapely
    from shapely.geometry import Polygon

    owner = np.full(len(coords), -1, dtype=np.int64)
    for k, polygon in enumerate(polygons):
        free = owner < 0
        if not free.any():
            break
        hit = np.zeros(len(coords), dtype=bool)
        hit[free] = _inside_convex(polygon, coords[free], tol)
        owner[hit] = k

    stray = np.flatnonzero(owner < 0)
    if len(stray) and polygons:
        points = shapely.points(coords[stray])
        dists = np.stack([shapely.distance(Polygon(p), points) for p in polygons])
        owner[stray] = np.argmin(dists, axis=0)
        logger.debug(f"{len(stray)} points assigned to their nearest face")
    return owner


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------

def fitting_score(distances: np.ndarray, epsilon: float) -> float:
    if len(distances) == 0:
        return 0.0
    mean = float(np.mean(np.abs(distances)))
    if epsilon <= 0:
        return 1.0 if mean == 0 else 0.0
    return float(np.clip(1.0 - mean / epsilon, 0.0, 1.0))


def coverage_score(
    polygon: np.ndarray,
    coords: np.ndarray,
    cell_size: float,
    min_points: int,
) -> float:
    """Share of the polygon covered by grid cells holding >= ``min_points`` points."""
    from shapely.geometry import Polygon, box
    from shapely.ops import unary_union

    if len(coords) == 0:
        return 0.0
    face = Polygon(polygon)
    if face.area <= 0:
        return 0.0
    if cell_size <= 0:
        return 1.0

    origin = polygon.min(axis=0)
    cells = np.floor((coords - origin) / cell_size).astype(np.int64)
    unique, counts = np.unique(cells, axis=0, return_counts=True)
    dense = unique[counts >= min_points]
    if len(dense) == 0:
        return 0.0

    squares = [
        box(
            origin[0] + i * cell_size, origin[1] + j * cell_size,
            origin[0] + (i + 1) * cell_size, origin[1] + (j + 1) * cell_size,
        )
        for i, j in dense
    ]
    covered = unary_union(squares).intersection(face)
    return float(np.clip(covered.area / face.area, 0.0, 1.0))


def _score_plane(
    point_set: PointSet,
    plane: SupportingPlane,
    faces: list[CandidateFace],
    vertices: np.ndarray,
    epsilon: float,
    cell_size: float,
    min_points: int,
    tol: float,
) -> dict[int, ConfidenceScore]:
    scores = {face.id: ConfidenceScore() for face in faces}
    if not faces or plane.num_points == 0:
        return scores

    u, v = plane_frame(plane.normal)
    origin = plane.project(vertices[faces[0].vertex_ids[:1]])[0]
    polygons = [to_plane_coords(vertices[f.vertex_ids], origin, u, v) for f in faces]

    members = point_set.points[plane.point_indices]
    coords = to_plane_coords(members, origin, u, v)
    distances = plane.signed_distance(members)
    owner = assign_points_to_faces(polygons, coords, tol)

    for k, face in enumerate(faces):
        mask = owner == k
        count = int(mask.sum())
        if count == 0:
            continue
        scores[face.id] = ConfidenceScore(
            fitting=fitting_score(distances[mask], epsilon),
            coverage=coverage_score(polygons[k], coords[mask], cell_size, min_points),
            num_points=count,
        )
    return scores


def compute_confidences(
    point_set: PointSet,
    arrangement: Arrangement,
    config: ConfidenceConfig,
    planes: list[SupportingPlane] | None = None,
) -> dict[int, ConfidenceScore]:
    """Score every candidate face; ``planes`` supplies member points when the
    arrangement was loaded without them."""
    by_id = {p.id: p for p in (planes if planes is not None else arrangement.planes)}
    spacing = average_spacing(point_set.points, config.max_spacing_samples)
    epsilon = config.fitting_spacing_factor * spacing
    cell_size = config.coverage_cell_factor * spacing
    tol = 1e-9 * float(np.linalg.norm(arrangement.bbox_max - arrangement.bbox_min))
    logger.info(
        f"Scoring {arrangement.num_faces} faces (spacing={spacing:.4g}, "
        f"epsilon={epsilon:.4g}, cell={cell_size:.4g})"
    )

    def _score(plane_id: int) -> dict[int, ConfidenceScore]:
        return _score_plane(
            point_set, by_id[plane_id], arrangement.faces_on_plane(plane_id),
            arrangement.vertices, epsilon, cell_size, config.min_points_per_cell, tol,
        )

    plane_ids = [p.id for p in arrangement.planes]
    if config.workers > 1:
        with ThreadPoolExecutor(max_workers=config.workers) as pool:
            partial = list(pool.map(_score, plane_ids))
    else:
        partial = [_score(pid) for pid in plane_ids]

    scores: dict[int, ConfidenceScore] = {}
    for part in partial:
        scores.update(part)
    arrangement.apply_confidences(scores)

    supported = sum(1 for s in scores.values() if s.num_points > 0)
    logger.info(f"{supported}/{len(scores)} faces have supporting points")
    return scores


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def save_confidences(scores: dict[int, ConfidenceScore], path) -> None:
    data = [
        {"face_id": fid, "fitting": s.fitting, "coverage": s.coverage, "num_points": s.num_points}
        for fid, s in sorted(scores.items())
    ]
    with open(path, "w") as f:
        json.dump(data, f)


def load_confidences(path) -> dict[int, ConfidenceScore]:
    with open(path) as f:
        data = json.load(f)
    return {
        int(d["face_id"]): ConfidenceScore(
            fitting=float(d["fitting"]),
            coverage=float(d["coverage"]),
            num_points=int(d["num_points"]),
        )
        for d in data
    }


# ---------------------------------------------------------------------------
# Step class
# ---------------------------------------------------------------------------

class ConfidenceStep(BaseStep[ConfidenceInput, ConfidenceOutput, ConfidenceConfig]):
    name: ClassVar[str] = "confidence"
    input_type: ClassVar = ConfidenceInput
    output_type: ClassVar = ConfidenceOutput
    config_type: ClassVar = ConfidenceConfig

    def validate_inputs(self, inputs: ConfidenceInput) -> bool:
        for path in (inputs.point_set_path, inputs.planes_file, inputs.arrangement_file):
            if not path.exists():
                logger.error(f"Input not found: {path}")
                return False
        return True

    def run(self, inputs: ConfidenceInput) -> ConfidenceOutput:
        output_dir = self.output_dir("s03_confidence")

        point_set = read_point_set(inputs.point_set_path)
        with open(inputs.planes_file) as f:
            planes = [SupportingPlane.from_dict(p) for p in json.load(f)]
        with open(inputs.arrangement_file) as f:
            arrangement = Arrangement.from_dict(json.load(f))

        scores = compute_confidences(point_set, arrangement, self.config, planes=planes)

        confidences_file = output_dir / "confidences.json"
        save_confidences(scores, confidences_file)

        return ConfidenceOutput(
            arrangement_file=inputs.arrangement_file,
            confidences_file=confidences_file,
            num_supported_faces=sum(1 for s in scores.values() if s.num_points > 0),
            average_spacing=average_spacing(point_set.points, self.config.max_spacing_samples),
        )
