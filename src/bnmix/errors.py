"""Error kinds raised by the mixture fit."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bnmix.models import RunFailure, RunRecord


class MixtureError(Exception):
    """Base class for all fit errors."""


class NumericDegeneracy(MixtureError):
    """A log-domain normalisation collapsed (zero or non-finite row sum)."""


class DegenerateAssignment(MixtureError):
    """A sample-weight vector handed to the Score Oracle is ill-posed."""


class ScoreOracleError(MixtureError):
    """Structure search or scoring could not produce a valid result."""


class NonConvergence(MixtureError):
    """The outer loop reached its iteration cap without converging.

    Only raised when strict convergence is requested; otherwise the run is
    returned with ``hit_iteration_cap`` set.
    """

    def __init__(self, message: str, record: RunRecord) -> None:
        super().__init__(message)
        self.record = record


class NoSuccessfulRun(MixtureError):
    """Every restart failed."""

    def __init__(self, failures: list[RunFailure]) -> None:
        seeds = ", ".join(str(f.seed) for f in failures)
        super().__init__(f"All {len(failures)} run(s) failed (seeds: {seeds})")
        self.failures = failures
