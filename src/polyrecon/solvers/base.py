"""Narrow request/response contract between the face selection and a MIP solver.

A backend receives a minimisation problem over bounded variables

    min  c . x
    s.t. lower <= A x <= upper,  var_lower <= x <= var_upper,
         x_i integer where integrality[i] == 1

and answers with an assignment or a failure tag. Backends never raise for
an infeasible or timed-out problem.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, Literal

import numpy as np
from scipy import sparse

SolveStatus = Literal["optimal", "infeasible", "timeout"]


@dataclass
class SolverRequest:
    objective: np.ndarray  # (n,)
    constraints: sparse.csr_matrix  # (m, n)
    lower: np.ndarray  # (m,)
    upper: np.ndarray  # (m,)
    integrality: np.ndarray  # (n,) 1 = integer, 0 = continuous
    var_lower: np.ndarray  # (n,)
    var_upper: np.ndarray  # (n,)
    time_limit: float | None = None  # seconds

    @property
    def num_variables(self) -> int:
        return len(self.objective)

    @property
    def num_constraints(self) -> int:
        return self.constraints.shape[0]


@dataclass
class SolverResponse:
    status: SolveStatus
    assignment: np.ndarray | None = None  # (n,) rounded for integer variables
    objective_value: float | None = None
    message: str = ""


class SolverBackend(ABC):
    """One interchangeable way of answering a ``SolverRequest``."""

    name: ClassVar[str] = ""

    @abstractmethod
    def solve(self, request: SolverRequest) -> SolverResponse:
        ...

    @staticmethod
    def _round(request: SolverRequest, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64).copy()
        integer = np.asarray(request.integrality) > 0
        x[integer] = np.round(x[integer])
        return x
