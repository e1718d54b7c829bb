"""Convex polygon cutting with labelled sides.

A cell is a convex, counter-clockwise polygon in a plane's 2D frame. Side
``k`` runs from ``coords[k]`` to ``coords[k + 1]`` and carries the label of
the plane that produced it, so every corner can later be named by the
triple (own plane, incoming side label, outgoing side label).
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from polyrecon.utils.geometry import polygon_area_2d


@dataclass
class Cell:
    coords: np.ndarray  # (k, 2) counter-clockwise
    sides: list[int]  # sides[k] labels coords[k] -> coords[k + 1]

    @property
    def area(self) -> float:
        return polygon_area_2d(self.coords)


def square_cell(center: np.ndarray, half_size: float, label: int) -> Cell:
    """Axis-aligned square around ``center`` whose four sides carry ``label``."""
    cx, cy = center
    h = half_size
    coords = np.array([
        [cx - h, cy - h],
        [cx + h, cy - h],
        [cx + h, cy + h],
        [cx - h, cy + h],
    ])
    return Cell(coords=coords, sides=[label] * 4)


def _classify(values: np.ndarray, tol: float) -> np.ndarray:
    signs = np.zeros(len(values), dtype=np.int8)
    signs[values < -tol] = -1
    signs[values > tol] = 1
    return signs


def _keep(
    augmented: list[tuple[np.ndarray, int, int]],
    side: int,
    label: int,
    min_area: float,
) -> Cell | None:
    """Collect the entries of one side of the cut into a labelled cell."""
    n = len(augmented)
    kept = [k for k in range(n) if augmented[k][1] * side >= 0]
    if len(kept) < 3:
        return None

    coords = []
    sides = []
    for idx, k in enumerate(kept):
        nxt = kept[(idx + 1) % len(kept)]
        coords.append(augmented[k][0])
        # Consecutive entries share an original side; a gap means the skipped
        # run was on the other side and the two ends are joined along the cut
        sides.append(augmented[k][2] if nxt == (k + 1) % n else label)

    cell = Cell(coords=np.array(coords), sides=sides)
    if cell.area <= min_area:
        return None
    return cell


def split_cell(
    cell: Cell,
    line: tuple[float, float, float],
    label: int,
    tol: float,
    min_area: float = 0.0,
) -> tuple[Cell | None, Cell | None]:
    """Cut ``cell`` by the line ``a x + b y + c = 0`` (unit (a, b)).

    Returns (negative part, positive part). A part is None when the cell has
    no vertex strictly on that side; a cell touched but not crossed by the
    line is returned whole on its side.
    """
    a, b, c = line
    values = cell.coords @ np.array([a, b]) + c
    signs = _classify(values, tol)

    if not np.any(signs > 0):
        return cell, None
    if not np.any(signs < 0):
        return None, cell

    augmented: list[tuple[np.ndarray, int, int]] = []
    n = len(cell.coords)
    for i in range(n):
        j = (i + 1) % n
        augmented.append((cell.coords[i], int(signs[i]), cell.sides[i]))
        if signs[i] * signs[j] < 0:
            t = values[i] / (values[i] - values[j])
            crossing = cell.coords[i] + t * (cell.coords[j] - cell.coords[i])
            augmented.append((crossing, 0, cell.sides[i]))

    return (
        _keep(augmented, -1, label, min_area),
        _keep(augmented, 1, label, min_area),
    )


def clip_cell(
    cell: Cell,
    line: tuple[float, float, float],
    label: int,
    tol: float,
    min_area: float = 0.0,
) -> Cell | None:
    """Keep the part of ``cell`` where ``a x + b y + c <= 0``."""
    negative, _ = split_cell(cell, line, label, tol, min_area)
    return negative
