"""
Dirac Potato Strategy
=====================
Deterministic delay d: one uniformization at mission time d.

    before = Σ_n Pois(n; q·d) · π0 Pⁿ          state when the event fires
    times  = Σ_n P(N(q·d) > n)/q · π0 Pⁿ       occupation over [0, d]

The helpers here (Poisson vectors for a single time, padded accumulation)
are shared with the uniform and Weibull strategies, which mix Dirac
evaluations over many times.
"""

from typing import Optional, Tuple

import numpy as np

from gsmp.cache import ApproximationCache
from gsmp.config import ReductionConfig
from gsmp.distributions import DistributionKind, DistributionParams
from gsmp.foxglynn import FoxGlynnWeights, fox_glynn
from gsmp.potato import Potato, PotatoResult
from gsmp.strategies.exponential import check_kind


def fox_glynn_cached(
    qt: float,
    epsilon: float,
    config: ReductionConfig,
    cache: Optional[ApproximationCache] = None,
) -> FoxGlynnWeights:
    def compute():
        return fox_glynn(qt, epsilon, config.foxglynn_max_iterations)

    if cache is None:
        return compute()
    return cache.get_or_compute(('foxglynn', float(qt), float(epsilon)), compute)


def poisson_vectors(
    potato: Potato,
    t: float,
    epsilon: float,
    config: ReductionConfig,
    cache: Optional[ApproximationCache] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Distribution and occupation-time weights for firing at time ``t``."""
    q = potato.uniformization_rate
    fg = fox_glynn_cached(q * t, epsilon, config, cache)
    return fg.dense(), fg.time_weights(q)


def add_padded(acc: np.ndarray, vec: np.ndarray, coef: float) -> np.ndarray:
    """acc + coef·vec, zero-extending whichever is shorter."""
    if len(vec) > len(acc):
        acc = np.concatenate([acc, np.zeros(len(vec) - len(acc))])
    acc[:len(vec)] += coef * vec
    return acc


def l1_distance(a: np.ndarray, b: np.ndarray) -> float:
    n = max(len(a), len(b))
    return float(np.sum(np.abs(add_padded(np.zeros(n), a, 1.0) - add_padded(np.zeros(n), b, 1.0))))


def reduce(potato: Potato, params: DistributionParams, epsilon: float,
           config: Optional[ReductionConfig] = None,
           cache: Optional[ApproximationCache] = None) -> PotatoResult:
    check_kind(params, DistributionKind.DIRAC)
    config = config or ReductionConfig()
    dist, time = poisson_vectors(potato, params.first, epsilon, config, cache)
    before, times = potato.transient_sums(dist, time)
    return potato.finalize(before, times, epsilon)
