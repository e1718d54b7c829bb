"""Step 01: Refine planar segments into supporting planes."""

from __future__ import annotations

import json
import logging
from typing import ClassVar

import numpy as np

from polyrecon.core.errors import InsufficientSegments
from polyrecon.core.model import PointSet, SupportingPlane
from polyrecon.core.step_base import BaseStep
from polyrecon.utils.geometry import fit_plane
from polyrecon.utils.io import read_point_set
from .config import PlaneRefinementConfig
from .contracts import PlaneRefinementInput, PlaneRefinementOutput

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Group fitting
# ---------------------------------------------------------------------------

def _fit_group(point_set: PointSet, indices: np.ndarray) -> dict:
    normals = point_set.normals[indices] if point_set.has_normals else None
    normal, d, residual = fit_plane(point_set.points[indices], normals)
    return {"normal": normal, "d": d, "residual": residual}


def _fit_groups(
    point_set: PointSet,
    min_support: int,
    max_residual: float,
) -> tuple[list[dict], int]:
    """Fit every input group, dropping the under-supported and the non-planar.

    Returns (fitted groups, number dropped). ``order`` keeps the position of
    the source group and is the tie-break for every later ordering decision.
    """
    fitted: list[dict] = []
    dropped = 0
    for order, group in enumerate(point_set.groups):
        indices = np.unique(group.indices)
        if len(indices) < min_support:
            logger.info(
                f"Dropped group '{group.label}': {len(indices)} points < min_support {min_support}"
            )
            dropped += 1
            continue
        plane = _fit_group(point_set, indices)
        if plane["residual"] > max_residual:
            logger.info(
                f"Dropped group '{group.label}': residual {plane['residual']:.4g} "
                f"> {max_residual:.4g}"
            )
            dropped += 1
            continue
        plane.update(indices=indices, labels=[group.label], order=order)
        fitted.append(plane)
    return fitted, dropped


# ---------------------------------------------------------------------------
# Coplanar merging
# ---------------------------------------------------------------------------

def _merge_coplanar_planes(
    point_set: PointSet,
    planes: list[dict],
    angle_thresh: float,
    dist_thresh: float,
) -> list[dict]:
    """Merge planes with similar normals and small centroid separation.

    Uses Union-Find for transitive merging: if A merges with B and B with C,
    all three become one plane. The root of every set is its lowest member,
    so the result does not depend on visiting order.

    Coplanarity test (both must pass):
      1. Normal angle <= angle_thresh (orientation ignored)
      2. Centroid-to-plane distance <= dist_thresh, checked both directions
    """
    n = len(planes)
    if n <= 1:
        return planes

    cos_thresh = np.cos(np.radians(angle_thresh))
    centroids = [point_set.points[p["indices"]].mean(axis=0) for p in planes]

    parent = list(range(n))

    def find(x: int) -> int:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    def union(a: int, b: int) -> None:
        ra, rb = find(a), find(b)
        if ra != rb:
            parent[max(ra, rb)] = min(ra, rb)

    for i in range(n):
        for j in range(i + 1, n):
            cos_angle = abs(np.dot(planes[i]["normal"], planes[j]["normal"]))
            if cos_angle < cos_thresh:
                continue
            dist_i = abs(np.dot(centroids[j], planes[i]["normal"]) + planes[i]["d"])
            dist_j = abs(np.dot(centroids[i], planes[j]["normal"]) + planes[j]["d"])
            if max(dist_i, dist_j) > dist_thresh:
                continue
            union(i, j)

    groups: dict[int, list[int]] = {}
    for i in range(n):
        groups.setdefault(find(i), []).append(i)

    result: list[dict] = []
    for root in sorted(groups):
        members = groups[root]
        if len(members) == 1:
            result.append(planes[root])
            continue

        indices = np.unique(np.concatenate([planes[k]["indices"] for k in members]))
        merged = _fit_group(point_set, indices)
        # Keep the orientation of the best supported member
        ref = max(members, key=lambda k: (len(planes[k]["indices"]), -k))
        if np.dot(merged["normal"], planes[ref]["normal"]) < 0:
            merged["normal"] = -merged["normal"]
            merged["d"] = -merged["d"]
        labels = [label for k in members for label in planes[k]["labels"]]
        merged.update(
            indices=indices,
            labels=labels,
            order=min(planes[k]["order"] for k in members),
        )
        logger.info(f"Merged {len(members)} coplanar groups {labels} ({len(indices)} points)")
        result.append(merged)

    return result


def refine_planes(
    point_set: PointSet,
    config: PlaneRefinementConfig,
) -> list[SupportingPlane]:
    """Turn the input vertex groups into supporting planes.

    Raises:
        InsufficientSegments: no group survives the support/residual filter.
    """
    if not point_set.groups:
        raise InsufficientSegments("point set has no planar segments")

    diagonal = point_set.diagonal()
    planes, _ = _fit_groups(point_set, config.min_support, config.max_residual * diagonal)
    if not planes:
        raise InsufficientSegments(
            f"none of the {len(point_set.groups)} planar groups has at least "
            f"{config.min_support} points with an acceptable fit"
        )

    if config.merge_coplanar:
        # Refitting can bring further planes into tolerance; iterate to a fixed point
        while True:
            before = len(planes)
            planes = _merge_coplanar_planes(
                point_set, planes,
                angle_thresh=config.merge_angle_deg,
                dist_thresh=config.merge_distance * diagonal,
            )
            if len(planes) == before:
                break

    planes.sort(key=lambda p: (-len(p["indices"]), p["order"]))
    return [
        SupportingPlane(
            id=i,
            normal=p["normal"],
            d=p["d"],
            point_indices=p["indices"],
            group_labels=p["labels"],
            residual=p["residual"],
        )
        for i, p in enumerate(planes)
    ]


# ---------------------------------------------------------------------------
# Step class
# ---------------------------------------------------------------------------

class PlaneRefinementStep(
    BaseStep[PlaneRefinementInput, PlaneRefinementOutput, PlaneRefinementConfig]
):
    name: ClassVar[str] = "plane_refinement"
    input_type: ClassVar = PlaneRefinementInput
    output_type: ClassVar = PlaneRefinementOutput
    config_type: ClassVar = PlaneRefinementConfig

    def validate_inputs(self, inputs: PlaneRefinementInput) -> bool:
        if not inputs.point_set_path.exists():
            logger.error(f"Point set not found: {inputs.point_set_path}")
            return False
        return True

    def run(self, inputs: PlaneRefinementInput) -> PlaneRefinementOutput:
        output_dir = self.output_dir("s01_planes")

        point_set = read_point_set(inputs.point_set_path)

        planes = refine_planes(point_set, self.config)
        kept_groups = sum(len(p.group_labels) for p in planes)
        num_dropped = len(point_set.groups) - kept_groups
        num_merged = kept_groups - len(planes)

        planes_file = output_dir / "planes.json"
        with open(planes_file, "w") as f:
            json.dump([p.to_dict() for p in planes], f)

        logger.info(
            f"Refined {len(point_set.groups)} groups into {len(planes)} planes "
            f"({num_dropped} dropped, {num_merged} merged)"
        )

        return PlaneRefinementOutput(
            point_set_path=inputs.point_set_path,
            planes_file=planes_file,
            num_planes=len(planes),
            num_dropped=num_dropped,
            num_merged=num_merged,
        )
