"""Depth-first branch and bound over HiGHS LP relaxations (``scipy.optimize.linprog``).

Slower than a full MIP solver but small, deterministic and dependency-free
beyond scipy: the branching variable is the most fractional one, ties going
to the lowest index, and the child nearer to the relaxed value is explored
first.
"""

from __future__ import annotations

import logging
import time
from typing import ClassVar

import numpy as np
from scipy import sparse
from scipy.optimize import linprog

from .base import SolverBackend, SolverRequest, SolverResponse

logger = logging.getLogger(__name__)


class BranchAndBoundSolver(SolverBackend):
    name: ClassVar[str] = "branch_and_bound"

    def __init__(self, integrality_tol: float = 1e-6, max_nodes: int = 100000):
        self.integrality_tol = integrality_tol
        self.max_nodes = max_nodes

    @staticmethod
    def _split_rows(request: SolverRequest):
        """Two-sided rows -> (A_ub, b_ub, A_eq, b_eq) for linprog."""
        A = request.constraints.tocsr()
        lower = np.asarray(request.lower, dtype=np.float64)
        upper = np.asarray(request.upper, dtype=np.float64)
        eq = np.isfinite(lower) & np.isfinite(upper) & (lower == upper)
        ub = ~eq & np.isfinite(upper)
        lb = ~eq & np.isfinite(lower)

        A_eq = A[np.flatnonzero(eq)] if eq.any() else None
        b_eq = upper[eq] if eq.any() else None
        ub_parts = []
        b_parts = []
        if ub.any():
            ub_parts.append(A[np.flatnonzero(ub)])
            b_parts.append(upper[ub])
        if lb.any():
            ub_parts.append(-A[np.flatnonzero(lb)])
            b_parts.append(-lower[lb])
        if ub_parts:
            return sparse.vstack(ub_parts).tocsr(), np.concatenate(b_parts), A_eq, b_eq
        return None, None, A_eq, b_eq

    def solve(self, request: SolverRequest) -> SolverResponse:
        c = np.asarray(request.objective, dtype=np.float64)
        integer = np.flatnonzero(np.asarray(request.integrality) > 0)
        A_ub, b_ub, A_eq, b_eq = (None, None, None, None)
        if request.num_constraints:
            A_ub, b_ub, A_eq, b_eq = self._split_rows(request)

        deadline = None
        if request.time_limit is not None:
            deadline = time.monotonic() + float(request.time_limit)

        best_value = np.inf
        best_x: np.ndarray | None = None
        stack = [(np.asarray(request.var_lower, dtype=np.float64).copy(),
                  np.asarray(request.var_upper, dtype=np.float64).copy())]
        nodes = 0
        timed_out = False

        while stack:
            if deadline is not None and time.monotonic() > deadline:
                timed_out = True
                break
            if nodes >= self.max_nodes:
                timed_out = True
                logger.warning(f"Branch and bound stopped after {nodes} nodes")
                break
            lb, ub = stack.pop()
            nodes += 1

            options = {}
            if deadline is not None:
                options["time_limit"] = max(deadline - time.monotonic(), 1e-3)
            res = linprog(
                c, A_ub=A_ub, b_ub=b_ub, A_eq=A_eq, b_eq=b_eq,
                bounds=np.column_stack([lb, ub]), method="highs", options=options,
            )
            if res.status == 1:
                # iteration or time limit hit inside the relaxation
                timed_out = True
                break
            if res.status != 0:
                continue
            if res.fun >= best_value - 1e-9:
                continue

            x = res.x
            frac = np.abs(x[integer] - np.round(x[integer]))
            if len(integer) == 0 or frac.max() <= self.integrality_tol:
                best_value = float(res.fun)
                best_x = x
                continue

            j = int(integer[int(np.argmax(frac))])
            down_ub = ub.copy()
            down_ub[j] = np.floor(x[j])
            up_lb = lb.copy()
            up_lb[j] = np.ceil(x[j])
            down = (lb, down_ub)
            up = (up_lb, ub)
            # Last pushed is explored first
            if x[j] - np.floor(x[j]) >= 0.5:
                stack.extend([down, up])
            else:
                stack.extend([up, down])

        logger.debug(f"Branch and bound explored {nodes} nodes")
        if timed_out:
            return SolverResponse(status="timeout", message=f"stopped after {nodes} nodes")
        if best_x is None:
            return SolverResponse(status="infeasible", message=f"explored {nodes} nodes")
        return SolverResponse(
            status="optimal",
            assignment=self._round(request, best_x),
            objective_value=best_value,
            message=f"explored {nodes} nodes",
        )
