"""
Exponential Potato Strategy
===========================
The event is memoryless, so the potato reduces exactly through its local
linear system. With M = λI - Q (Q the internal generator) and π0 the
entry indicator, the expected occupation times m solve

    m · M = π0

The event then fires from state i with mass λ·m_i, and competing exits
carry m·B (B the boundary rates). The same solve chained k times gives
the Erlang phases (see ``erlang``).
"""

from typing import Tuple

import numpy as np
from scipy.linalg import lu_factor, lu_solve

from gsmp.distributions import DistributionKind, DistributionParams
from gsmp.errors import InvalidParameterError
from gsmp.potato import Potato, PotatoResult


def phase_solve(potato: Potato, rate: float, phases: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Chain ``phases`` exponential(rate) phases through the potato.

    Returns
    -------
    before : np.ndarray
        Distribution just before the last phase completes, over internal
        + successor states (successor part = mass lost to competing exits).
    times : np.ndarray
        Expected time spent in each internal state over all phases.
    """
    n = potato.n_internal
    factor = lu_factor(rate * np.eye(n) - potato.generator)

    # lu_solve(trans=1) solves Mᵀx = b, i.e. the row-vector system x·M = b
    phase = lu_solve(factor, np.eye(n)[0], trans=1)
    times = phase.copy()
    for _ in range(phases - 1):
        phase = lu_solve(factor, rate * phase, trans=1)
        times += phase

    before = np.concatenate([rate * phase, times @ potato.boundary])
    return before, times


def check_kind(params: DistributionParams, kind: DistributionKind) -> DistributionParams:
    if params.kind != kind:
        raise InvalidParameterError(
            f"{kind.value} strategy received {params.kind.value} parameters"
        )
    return params.validate()


def reduce(potato: Potato, params: DistributionParams, epsilon: float,
           config=None, cache=None) -> PotatoResult:
    check_kind(params, DistributionKind.EXPONENTIAL)
    before, times = phase_solve(potato, params.first, 1)
    return potato.finalize(before, times, epsilon)
