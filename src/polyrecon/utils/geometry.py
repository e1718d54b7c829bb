"""3D geometry utilities: plane fitting, plane frames, polygon math."""

from __future__ import annotations

import logging

import numpy as np

logger = logging.getLogger(__name__)


def canonical_normal(normal: np.ndarray, tol: float = 1e-9) -> np.ndarray:
    """Flip ``normal`` so its first non-negligible component is positive."""
    normal = np.asarray(normal, dtype=np.float64)
    for c in normal:
        if abs(c) > tol:
            return normal if c > 0 else -normal
    return normal


def fit_plane(
    points: np.ndarray,
    normals: np.ndarray | None = None,
) -> tuple[np.ndarray, float, float]:
    """Least-squares plane through ``points``.

    Returns (unit normal, d, rms residual) with ``n . p + d = 0``. The normal
    is oriented to agree with the mean of ``normals`` when given, otherwise it
    is made canonical.
    """
    points = np.asarray(points, dtype=np.float64)
    if len(points) < 3:
        raise ValueError(f"need at least 3 points to fit a plane, got {len(points)}")

    centroid = points.mean(axis=0)
    centered = points - centroid
    _, _, Vt = np.linalg.svd(centered, full_matrices=False)
    normal = Vt[-1]  # smallest singular value = plane normal
    normal /= np.linalg.norm(normal)

    if normals is not None and len(normals):
        mean_normal = np.asarray(normals, dtype=np.float64).mean(axis=0)
        if np.dot(mean_normal, normal) < 0:
            normal = -normal
        elif abs(np.dot(mean_normal, normal)) < 1e-12:
            normal = canonical_normal(normal)
    else:
        normal = canonical_normal(normal)

    d = -float(np.dot(normal, centroid))
    residual = float(np.sqrt(np.mean((centered @ normal) ** 2)))
    return normal, d, residual


def plane_frame(normal: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Orthonormal in-plane axes (u, v) with u x v = normal."""
    n = np.asarray(normal, dtype=np.float64)
    n = n / np.linalg.norm(n)
    ref = np.array([1.0, 0.0, 0.0])
    if abs(np.dot(n, ref)) > 0.9:
        ref = np.array([0.0, 1.0, 0.0])
    u = np.cross(ref, n)
    u /= np.linalg.norm(u)
    v = np.cross(n, u)
    return u, v


def to_plane_coords(
    points: np.ndarray, origin: np.ndarray, u: np.ndarray, v: np.ndarray,
) -> np.ndarray:
    """Express 3D points in the 2D frame (origin, u, v)."""
    local = np.asarray(points, dtype=np.float64) - origin
    return np.column_stack([local @ u, local @ v])


def from_plane_coords(
    coords: np.ndarray, origin: np.ndarray, u: np.ndarray, v: np.ndarray,
) -> np.ndarray:
    coords = np.asarray(coords, dtype=np.float64).reshape(-1, 2)
    return origin + coords[:, 0:1] * u + coords[:, 1:2] * v


def intersect_three_planes(
    normals: np.ndarray, offsets: np.ndarray, min_det: float = 1e-12,
) -> np.ndarray | None:
    """Common point of three planes, or None when they do not meet in a point."""
    A = np.asarray(normals, dtype=np.float64).reshape(3, 3)
    b = -np.asarray(offsets, dtype=np.float64).reshape(3)
    if abs(np.linalg.det(A)) < min_det:
        return None
    return np.linalg.solve(A, b)


def polygon_area_2d(coords: np.ndarray) -> float:
    """Signed shoelace area; positive for counter-clockwise loops."""
    coords = np.asarray(coords, dtype=np.float64)
    if len(coords) < 3:
        return 0.0
    x, y = coords[:, 0], coords[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def polygon_area_3d(points: np.ndarray) -> float:
    """Unsigned area of a planar 3D polygon."""
    points = np.asarray(points, dtype=np.float64)
    if len(points) < 3:
        return 0.0
    cross = np.cross(points, np.roll(points, -1, axis=0)).sum(axis=0)
    return 0.5 * float(np.linalg.norm(cross))


def average_spacing(points: np.ndarray, max_samples: int = 10000) -> float:
    """Mean nearest-neighbour distance, estimated on a deterministic stride sample."""
    from scipy.spatial import cKDTree

    points = np.asarray(points, dtype=np.float64)
    if len(points) < 2:
        return 0.0
    tree = cKDTree(points)
    step = max(1, len(points) // max_samples)
    sample = points[::step]
    dists, _ = tree.query(sample, k=2)
    spacing = float(np.mean(dists[:, 1]))
    logger.debug(f"Average spacing {spacing:.6f} from {len(sample)} samples")
    return spacing
