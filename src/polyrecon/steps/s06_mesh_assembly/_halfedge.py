"""Halfedge connectivity of a polygon mesh and its validation."""

from __future__ import annotations

import logging

import numpy as np

from polyrecon.core.errors import MeshAssemblyFailed
from polyrecon.core.model import HalfedgeConnectivity

logger = logging.getLogger(__name__)


def build_halfedges(
    faces: list[list[int]],
    allow_open_boundary: bool = False,
) -> HalfedgeConnectivity:
    """Build and validate halfedges for consistently oriented polygon loops.

    Every directed edge may occur once. An undirected edge must be shared by
    two opposite halfedges, or by one when open boundaries are allowed.

    Raises:
        MeshAssemblyFailed: on any violation.
    """
    origin: list[int] = []
    face_of: list[int] = []
    nxt: list[int] = []
    directed: dict[tuple[int, int], int] = {}

    for fid, loop in enumerate(faces):
        if len(loop) < 3 or len(set(loop)) != len(loop):
            raise MeshAssemblyFailed(f"face {fid} is not a simple loop: {loop}")
        base = len(origin)
        n = len(loop)
        for k in range(n):
            a, b = loop[k], loop[(k + 1) % n]
            if (a, b) in directed:
                raise MeshAssemblyFailed(
                    f"edge ({a}, {b}) is traversed twice in the same direction "
                    f"(faces {face_of[directed[(a, b)]]} and {fid})"
                )
            directed[(a, b)] = base + k
            origin.append(a)
            face_of.append(fid)
            nxt.append(base + (k + 1) % n)

    twin = np.full(len(origin), -1, dtype=np.int64)
    for (a, b), h in directed.items():
        opposite = directed.get((b, a))
        if opposite is not None:
            twin[h] = opposite

    boundary = int(np.count_nonzero(twin < 0))
    if boundary and not allow_open_boundary:
        h = int(np.flatnonzero(twin < 0)[0])
        raise MeshAssemblyFailed(
            f"{boundary} halfedges have no opposite, e.g. ({origin[h]}, {origin[nxt[h]]}) "
            f"of face {face_of[h]}"
        )
    logger.debug(f"Built {len(origin)} halfedges ({boundary} on open boundaries)")

    return HalfedgeConnectivity(
        origin=np.asarray(origin, dtype=np.int64),
        face=np.asarray(face_of, dtype=np.int64),
        next=np.asarray(nxt, dtype=np.int64),
        twin=twin,
    )
