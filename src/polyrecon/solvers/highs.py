"""HiGHS branch-and-cut through ``scipy.optimize.milp``."""

from __future__ import annotations

import logging
from typing import ClassVar

import numpy as np
from scipy.optimize import Bounds, LinearConstraint, milp

from .base import SolverBackend, SolverRequest, SolverResponse

logger = logging.getLogger(__name__)

# scipy.optimize.milp status codes
_OPTIMAL = 0
_LIMIT_REACHED = 1
_INFEASIBLE = 2


class HighsSolver(SolverBackend):
    name: ClassVar[str] = "highs"

    def __init__(self, mip_rel_gap: float = 1e-6):
        self.mip_rel_gap = mip_rel_gap

    def solve(self, request: SolverRequest) -> SolverResponse:
        options: dict = {"disp": False, "mip_rel_gap": self.mip_rel_gap}
        if request.time_limit is not None:
            options["time_limit"] = float(request.time_limit)

        constraints = None
        if request.num_constraints:
            constraints = LinearConstraint(request.constraints, request.lower, request.upper)

        res = milp(
            c=np.asarray(request.objective, dtype=np.float64),
            integrality=np.asarray(request.integrality),
            bounds=Bounds(request.var_lower, request.var_upper),
            constraints=constraints,
            options=options,
        )
        logger.debug(f"HiGHS status {res.status}: {res.message}")

        if res.status == _OPTIMAL and res.x is not None:
            return SolverResponse(
                status="optimal",
                assignment=self._round(request, res.x),
                objective_value=float(res.fun),
                message=res.message,
            )
        if res.status == _LIMIT_REACHED:
            return SolverResponse(status="timeout", message=res.message)
        if res.status != _INFEASIBLE:
            logger.warning(f"HiGHS ended with status {res.status}: {res.message}")
        return SolverResponse(status="infeasible", message=res.message)
