"""
Uniform Potato Strategy
=======================
Firing time T ~ U[a, b]. The Dirac result is linear in its Poisson
weight vectors, so the average over T is one power iteration with the
averaged vectors:

    w̄ = 1/(b-a) ∫_a^b w(t) dt

The integral is a composite Simpson rule whose panel count doubles until
two successive estimates differ by less than ε/2 in L1 (Fox-Glynn gets
the other ε/2). Nodes from the coarser rule are reused.
"""

import logging
from typing import Dict, Optional, Tuple

import numpy as np

from gsmp.cache import ApproximationCache
from gsmp.config import ReductionConfig
from gsmp.distributions import DistributionKind, DistributionParams
from gsmp.errors import ApproximationToleranceError
from gsmp.potato import Potato, PotatoResult
from gsmp.strategies.dirac import add_padded, l1_distance, poisson_vectors
from gsmp.strategies.exponential import check_kind

logger = logging.getLogger(__name__)


def _simpson_coefficients(panels: int) -> np.ndarray:
    coefs = np.ones(panels + 1)
    coefs[1:-1:2] = 4.0
    coefs[2:-1:2] = 2.0
    return coefs / (3.0 * panels)      # h/3 · 1/(b-a) with h = (b-a)/panels


def uniform_vectors(
    potato: Potato,
    a: float,
    b: float,
    epsilon: float,
    config: ReductionConfig,
    cache: Optional[ApproximationCache] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Averaged distribution and occupation-time weights over U[a, b]."""
    fg_eps = epsilon / 2.0
    quad_eps = epsilon / 2.0
    nodes: Dict[float, Tuple[np.ndarray, np.ndarray]] = {}

    def estimate(panels):
        dist, time = np.zeros(0), np.zeros(0)
        ts = np.linspace(a, b, panels + 1)
        for t, c in zip(ts, _simpson_coefficients(panels)):
            t = float(t)
            if t not in nodes:
                nodes[t] = poisson_vectors(potato, t, fg_eps, config, cache)
            dv, tv = nodes[t]
            dist = add_padded(dist, dv, c)
            time = add_padded(time, tv, c)
        return dist, time

    panels = 2
    prev = estimate(panels)
    for _ in range(config.quadrature_max_iterations):
        panels *= 2
        cur = estimate(panels)
        d_dist = l1_distance(cur[0], prev[0])
        d_time = l1_distance(cur[1], prev[1])
        if d_dist < quad_eps and d_time < quad_eps * max(1.0, float(np.sum(cur[1]))):
            logger.debug(f"uniform[{a}, {b}]: converged with {panels} panels")
            return cur
        prev = cur

    raise ApproximationToleranceError(
        f"Uniform[{a}, {b}] quadrature did not reach {quad_eps} after "
        f"{config.quadrature_max_iterations} refinements ({panels} panels)",
        state=potato.entry, event=potato.event,
    )


def reduce(potato: Potato, params: DistributionParams, epsilon: float,
           config: Optional[ReductionConfig] = None,
           cache: Optional[ApproximationCache] = None) -> PotatoResult:
    check_kind(params, DistributionKind.UNIFORM)
    config = config or ReductionConfig()
    dist, time = uniform_vectors(potato, params.first, params.second, epsilon, config, cache)
    before, times = potato.transient_sums(dist, time)
    return potato.finalize(before, times, epsilon)
