"""Step 06: Assemble the selected faces into a polygon mesh.

Selected faces are merged per plane, cleaned of collinear vertices, oriented
outward, checked for vertex fans and finally checked through halfedges.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from pathlib import Path
from typing import ClassVar

import numpy as np

from polyrecon.core.errors import EmptyResult, MeshAssemblyFailed
from polyrecon.core.model import Arrangement, OutputMesh, SelectionResult
from polyrecon.core.step_base import BaseStep
from polyrecon.utils.io import write_mesh
from ._halfedge import build_halfedges
from .config import MeshAssemblyConfig
from .contracts import MeshAssemblyInput, MeshAssemblyOutput

logger = logging.getLogger(__name__)


def _edge_key(a: int, b: int) -> tuple[int, int]:
    return (a, b) if a < b else (b, a)


def _loop_edges(loop: list[int]):
    return zip(loop, loop[1:] + loop[:1])


def _find(parent: dict[int, int], x: int) -> int:
    while parent[x] != x:
        parent[x] = parent[parent[x]]
        x = parent[x]
    return x


# ---------------------------------------------------------------------------
# Coplanar merging
# ---------------------------------------------------------------------------

def _stitch_boundary(loops: list[list[int]]) -> list[int] | None:
    """Single outer loop of edge-connected, equally oriented loops, or None."""
    directed = {(a, b) for loop in loops for a, b in _loop_edges(loop)}
    boundary = [(a, b) for a, b in sorted(directed) if (b, a) not in directed]
    if not boundary:
        return None

    successor: dict[int, int] = {}
    for a, b in boundary:
        if a in successor:
            return None  # pinched boundary
        successor[a] = b

    start = min(successor)
    loop = [start]
    current = successor[start]
    while current != start:
        if current not in successor or len(loop) > len(boundary):
            return None
        loop.append(current)
        current = successor[current]
    if len(loop) != len(boundary):
        return None  # holes or several components
    return loop


def merge_coplanar_faces(
    arrangement: Arrangement,
    selected_ids: list[int],
) -> tuple[list[list[int]], list[int]]:
    """Merge selected faces of one plane that share edges.

    Returns the polygon loops and the plane id of each, ordered by the lowest
    face id of their group.
    """
    faces = {f.id: f for f in arrangement.faces}
    chosen = set(selected_ids)
    parent = {fid: fid for fid in selected_ids}

    for edge in arrangement.edges:
        on = [fid for fid in edge.face_ids if fid in chosen]
        if len(on) == 2 and faces[on[0]].plane_id == faces[on[1]].plane_id:
            ra, rb = _find(parent, on[0]), _find(parent, on[1])
            if ra != rb:
                parent[max(ra, rb)] = min(ra, rb)

    groups: dict[int, list[int]] = {}
    for fid in selected_ids:
        groups.setdefault(_find(parent, fid), []).append(fid)

    loops: list[list[int]] = []
    planes: list[int] = []
    num_merged = 0
    for root in sorted(groups):
        members = groups[root]
        plane_id = faces[root].plane_id
        if len(members) > 1:
            merged = _stitch_boundary([list(faces[fid].vertex_ids) for fid in members])
            if merged is not None:
                loops.append(merged)
                planes.append(plane_id)
                num_merged += len(members) - 1
                continue
            logger.debug(f"Faces {members} on plane {plane_id} kept separate")
        for fid in members:
            loops.append(list(faces[fid].vertex_ids))
            planes.append(plane_id)

    logger.info(f"Merged {len(selected_ids)} selected faces into {len(loops)} polygons")
    return loops, planes


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------

def remove_collinear_vertices(
    loops: list[list[int]],
    positions: np.ndarray,
    tol: float,
) -> list[list[int]]:
    """Drop vertices with exactly two neighbours lying on the segment between them."""
    loops = [list(loop) for loop in loops]
    removed = 0
    while True:
        neighbours: dict[int, set[int]] = {}
        for loop in loops:
            for a, b in _loop_edges(loop):
                neighbours.setdefault(a, set()).add(b)
                neighbours.setdefault(b, set()).add(a)

        victim = None
        for v in sorted(neighbours):
            if len(neighbours[v]) != 2:
                continue
            a, b = sorted(neighbours[v])
            pa, pb, pv = positions[a], positions[b], positions[v]
            ab = pb - pa
            length = float(np.linalg.norm(ab))
            if length == 0:
                continue
            off_line = float(np.linalg.norm(np.cross(ab, pv - pa))) / length
            t = float(np.dot(pv - pa, ab)) / (length * length)
            if off_line > tol or not 0.0 < t < 1.0:
                continue
            if any(v in loop and len(loop) <= 3 for loop in loops):
                continue
            victim = v
            break

        if victim is None:
            break
        loops = [[u for u in loop if u != victim] for loop in loops]
        removed += 1

    if removed:
        logger.debug(f"Removed {removed} collinear vertices")
    return loops


# ---------------------------------------------------------------------------
# Orientation
# ---------------------------------------------------------------------------

def _signed_volume(loops: list[list[int]], positions: np.ndarray) -> float:
    volume = 0.0
    for loop in loops:
        p0 = positions[loop[0]]
        for i in range(1, len(loop) - 1):
            volume += float(np.dot(p0, np.cross(positions[loop[i]], positions[loop[i + 1]])))
    return volume / 6.0


def orient_faces(loops: list[list[int]], positions: np.ndarray) -> list[list[int]]:
    """Make neighbouring loops traverse shared edges in opposite directions and
    flip each connected component so that its signed volume is positive.

    Raises:
        MeshAssemblyFailed: a component cannot be oriented consistently.
    """
    loops = [list(loop) for loop in loops]
    edge_faces: dict[tuple[int, int], list[int]] = {}
    for i, loop in enumerate(loops):
        for a, b in _loop_edges(loop):
            edge_faces.setdefault(_edge_key(a, b), []).append(i)

    def _forward(i: int, a: int, b: int) -> bool:
        return any(x == a and y == b for x, y in _loop_edges(loops[i]))

    visited = [False] * len(loops)
    num_flipped = 0
    for seed in range(len(loops)):
        if visited[seed]:
            continue
        visited[seed] = True
        component = [seed]
        queue = deque([seed])
        while queue:
            f = queue.popleft()
            for a, b in list(_loop_edges(loops[f])):
                sharing = edge_faces[_edge_key(a, b)]
                if len(sharing) != 2:
                    continue
                g = sharing[0] if sharing[1] == f else sharing[1]
                if g == f:
                    continue
                clash = _forward(g, a, b)
                if not visited[g]:
                    if clash:
                        loops[g].reverse()
                    visited[g] = True
                    component.append(g)
                    queue.append(g)
                elif clash:
                    raise MeshAssemblyFailed(
                        f"polygons {f} and {g} cannot be oriented consistently"
                    )

        if _signed_volume([loops[i] for i in component], positions) < 0:
            for i in component:
                loops[i].reverse()
            num_flipped += 1

    logger.debug(f"Oriented {len(loops)} polygons ({num_flipped} components flipped)")
    return loops


# ---------------------------------------------------------------------------
# Vertex manifoldness
# ---------------------------------------------------------------------------

def check_vertex_manifold(loops: list[list[int]]) -> None:
    """Raise if the faces around some vertex form more than one edge-connected fan.

    Raises:
        MeshAssemblyFailed: a vertex is shared by faces that are not linked
            through edges incident to it.
    """
    edge_faces: dict[tuple[int, int], list[int]] = {}
    vertex_faces: dict[int, list[int]] = {}
    for i, loop in enumerate(loops):
        for a, b in _loop_edges(loop):
            edge_faces.setdefault(_edge_key(a, b), []).append(i)
        for v in loop:
            vertex_faces.setdefault(v, []).append(i)

    vertex_edges: dict[int, list[tuple[int, int]]] = {}
    for key in edge_faces:
        vertex_edges.setdefault(key[0], []).append(key)
        vertex_edges.setdefault(key[1], []).append(key)

    for v in sorted(vertex_faces):
        around = sorted(set(vertex_faces[v]))
        if len(around) < 2:
            continue
        parent = {f: f for f in around}
        for key in vertex_edges[v]:
            sharing = edge_faces[key]
            for f in sharing[1:]:
                ra, rb = _find(parent, sharing[0]), _find(parent, f)
                if ra != rb:
                    parent[max(ra, rb)] = min(ra, rb)
        num_fans = len({_find(parent, f) for f in around})
        if num_fans > 1:
            raise MeshAssemblyFailed(f"vertex {v} joins {num_fans} separate face fans")


def _compact(loops: list[list[int]], positions: np.ndarray) -> tuple[list[list[int]], np.ndarray]:
    used = np.unique(np.concatenate([np.asarray(loop) for loop in loops]))
    remap = {int(old): new for new, old in enumerate(used)}
    return [[remap[v] for v in loop] for loop in loops], positions[used]


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def assemble_mesh(
    arrangement: Arrangement,
    selection: SelectionResult,
    config: MeshAssemblyConfig | None = None,
) -> OutputMesh:
    """Turn the selected candidate faces into a validated polygon mesh.

    Raises:
        EmptyResult: no face is selected.
        MeshAssemblyFailed: the selected faces do not form a valid mesh.
    """
    config = config or MeshAssemblyConfig()
    known = {f.id for f in arrangement.faces}
    selected_ids = selection.selected_ids
    if not selected_ids:
        raise EmptyResult("no selected faces to assemble")
    unknown = [fid for fid in selected_ids if fid not in known]
    if unknown:
        raise MeshAssemblyFailed(f"selection refers to unknown faces {unknown}")

    positions = np.asarray(arrangement.vertices, dtype=np.float64)
    if config.merge_coplanar:
        loops, planes = merge_coplanar_faces(arrangement, selected_ids)
    else:
        by_id = {f.id: f for f in arrangement.faces}
        loops = [list(by_id[fid].vertex_ids) for fid in selected_ids]
        planes = [by_id[fid].plane_id for fid in selected_ids]

    if config.remove_collinear:
        diag = float(np.linalg.norm(arrangement.bbox_max - arrangement.bbox_min))
        loops = remove_collinear_vertices(loops, positions, config.collinear_tol * diag)

    loops = orient_faces(loops, positions)
    check_vertex_manifold(loops)
    loops, positions = _compact(loops, positions)
    connectivity = build_halfedges(loops, allow_open_boundary=config.allow_open_boundary)

    mesh = OutputMesh(
        vertices=positions,
        faces=loops,
        face_planes=planes,
        connectivity=connectivity,
    )
    logger.info(
        f"Mesh: {mesh.num_vertices} vertices, {mesh.num_edges} edges, {mesh.num_faces} faces "
        f"({'closed' if mesh.is_closed else 'open'}, euler={mesh.euler_characteristic})"
    )
    return mesh


class MeshAssemblyStep(BaseStep[MeshAssemblyInput, MeshAssemblyOutput, MeshAssemblyConfig]):
    name: ClassVar[str] = "mesh_assembly"
    input_type: ClassVar = MeshAssemblyInput
    output_type: ClassVar = MeshAssemblyOutput
    config_type: ClassVar = MeshAssemblyConfig

    def validate_inputs(self, inputs: MeshAssemblyInput) -> bool:
        for path in (inputs.arrangement_file, inputs.selection_file):
            if not path.exists():
                logger.error(f"Input not found: {path}")
                return False
        return True

    def run(self, inputs: MeshAssemblyInput) -> MeshAssemblyOutput:
        with open(inputs.arrangement_file) as f:
            arrangement = Arrangement.from_dict(json.load(f))
        with open(inputs.selection_file) as f:
            selection = SelectionResult.from_dict(json.load(f))

        mesh = assemble_mesh(arrangement, selection, self.config)

        processed = Path(self.data_root) / "processed"
        processed.mkdir(parents=True, exist_ok=True)
        mesh_path = processed / f"{self.config.output_name}.{self.config.output_format}"
        write_mesh(mesh, mesh_path)
        logger.info(f"Mesh written to {mesh_path}")

        return MeshAssemblyOutput(
            mesh_path=mesh_path,
            num_vertices=mesh.num_vertices,
            num_faces=mesh.num_faces,
            num_edges=mesh.num_edges,
            is_closed=mesh.is_closed,
        )
