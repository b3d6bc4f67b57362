"""
Reduction Errors
================
Every failure the reduction core can report. All are fatal for the
(state, event) pair that raised them; the assembler tags the error with
that pair and the orchestrator aborts the query.

Usage:
    from gsmp.errors import GSMPError, UniformizationError
    try:
        chain = checker.reduce_all(model)
    except GSMPError as e:
        print(f"reduction failed at state={e.state} event={e.event}: {e}")
"""

from typing import Optional


class GSMPError(Exception):
    """Base class. ``state``/``event`` are filled in by the assembler."""

    def __init__(self, message: str, state: Optional[int] = None, event: Optional[str] = None):
        super().__init__(message)
        self.state = state
        self.event = event


class InvalidParameterError(GSMPError, ValueError):
    """Distribution parameter outside its kind's arity or domain."""


class UnsupportedDistributionError(GSMPError):
    """No strategy registered for a distribution kind."""


class ReductionInconsistencyError(GSMPError):
    """A model or potato breaks a structural invariant."""


class UniformizationError(GSMPError):
    """Fox-Glynn weights could not be computed within tolerance."""


class RootIsolationError(GSMPError):
    """Real root search could not separate or refine a root."""


class ApproximationToleranceError(GSMPError):
    """A certified approximation could not reach the requested epsilon."""


class RewardEvaluationError(GSMPError):
    """A reward accumulated to a non-finite value."""
