"""Pluggable MIP solver backends for the face selection.

Backends are looked up by name; the face selection never branches on which
one answers.
"""

from .base import SolverBackend, SolverRequest, SolverResponse, SolveStatus
from .branch_and_bound import BranchAndBoundSolver
from .highs import HighsSolver

SOLVER_BACKENDS: dict[str, type[SolverBackend]] = {
    HighsSolver.name: HighsSolver,
    BranchAndBoundSolver.name: BranchAndBoundSolver,
}


def get_solver(name: str, **options) -> SolverBackend:
    """Instantiate the backend registered under ``name``."""
    try:
        backend = SOLVER_BACKENDS[name]
    except KeyError:
        raise ValueError(
            f"Unknown solver '{name}', expected one of {sorted(SOLVER_BACKENDS)}"
        ) from None
    return backend(**options)


__all__ = [
    "SOLVER_BACKENDS",
    "BranchAndBoundSolver",
    "HighsSolver",
    "SolveStatus",
    "SolverBackend",
    "SolverRequest",
    "SolverResponse",
    "get_solver",
]
