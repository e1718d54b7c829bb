"""Failure kinds of a reconstruction run.

Every kind is terminal for the run: stages raise as soon as they detect the
condition and nothing in the pipeline retries. Callers that want a
retry-with-relaxed-parameters policy catch ``ReconstructionError`` and inspect
``kind``.
"""

from __future__ import annotations

from typing import ClassVar


class ReconstructionError(RuntimeError):
    """Base class for all reconstruction failures."""

    kind: ClassVar[str] = "reconstruction_error"


class InsufficientSegments(ReconstructionError):
    """No usable planar group survived plane refinement."""

    kind: ClassVar[str] = "insufficient_segments"


class ArrangementEmpty(ReconstructionError):
    """Hypothesis generation produced no enclosed candidate face."""

    kind: ClassVar[str] = "arrangement_empty"


class OptimizationFailed(ReconstructionError):
    """The solver reported the problem infeasible or ran out of time."""

    kind: ClassVar[str] = "optimization_failed"

    def __init__(self, message: str, status: str = "infeasible"):
        super().__init__(message)
        self.status = status


class EmptyResult(ReconstructionError):
    """The solver succeeded but selected zero faces."""

    kind: ClassVar[str] = "empty_result"


class MeshAssemblyFailed(ReconstructionError):
    """Post-solve connectivity validation found an inconsistency."""

    kind: ClassVar[str] = "mesh_assembly_failed"
