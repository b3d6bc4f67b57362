"""
Weibull Potato Strategy
=======================
Weibull(scale λ, shape k) has no closed form and is not phase-type, so
the firing time is approximated with a certified polynomial surrogate.

Work in x = (T/λ)^k, which is Exp(1)-distributed, so

    E[g(T)] = ∫_0^∞ g(λ·x^(1/k)) · e^(-x) dx

1. Truncate at x_max = ln(4/ε). The tail (mass ε/4) fires at t(x_max).
2. Split [0, x_max] into panels graded towards 0, where x^(1/k) is least
   smooth.
3. On each panel [a, b] replace e^(-x) by its Taylor polynomial around the
   midpoint c. The Lagrange remainder integrates to at most

       (b - a) · e^(-a) · sup|x - c|^(d+1) / (d+1)!

   with the supremum certified by the polynomial toolkit. The degree d
   grows until the summed bound is ≤ ε/4.
4. Integrate g against the surrogate with Gauss-Legendre nodes per panel.
   Each node is a Dirac evaluation at t(x), mixed into one pair of
   Poisson weight vectors. Nodes double until successive mixtures differ
   by ≤ ε/4 in L1.
5. Fox-Glynn runs at ε/4 per node.

Since every exit probability lies in [0, 1], the four ε/4 budgets bound
the error of the exit distribution by ε.

The surrogate depends only on (λ, k, ε) and is memoized in the cache.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np
from numpy.polynomial.legendre import leggauss

from gsmp.cache import ApproximationCache
from gsmp.config import ReductionConfig
from gsmp.distributions import DistributionKind, DistributionParams
from gsmp.errors import ApproximationToleranceError
from gsmp.polynomials import Polynomial, evaluate, sup_abs
from gsmp.potato import Potato, PotatoResult
from gsmp.strategies.dirac import add_padded, l1_distance, poisson_vectors
from gsmp.strategies.exponential import check_kind

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Surrogate
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TaylorPanel:
    """Taylor polynomial of e^(-x) on [lo, hi], in the shifted variable x - center."""
    lo: float
    hi: float
    center: float
    poly: Polynomial
    bound: float    # certified ∫|e^(-x) - poly| over the panel

    def density(self, x):
        return evaluate(self.poly, np.asarray(x) - self.center)


def taylor_panel(lo: float, hi: float, degree: int, config: ReductionConfig) -> TaylorPanel:
    c = 0.5 * (lo + hi)
    j = np.arange(degree + 1)
    factorials = np.array([math.factorial(int(i)) for i in j], dtype=float)
    poly = Polynomial(math.exp(-c) * (-1.0) ** j / factorials)

    # sup over the panel of |u|^(d+1), u = x - c
    remainder = Polynomial(np.eye(degree + 2)[degree + 1])
    sup_u = sup_abs(remainder, lo - c, hi - c, max_iterations=config.root_max_iterations)
    bound = (hi - lo) * math.exp(-lo) * sup_u / math.factorial(degree + 1)
    return TaylorPanel(lo=lo, hi=hi, center=c, poly=poly, bound=bound)


def panel_edges(x_max: float, panels: int) -> np.ndarray:
    """Quadratically graded edges: narrow panels near 0."""
    return x_max * (np.arange(panels + 1) / panels) ** 2


@dataclass(frozen=True, eq=False)
class WeibullSurrogate:
    scale: float
    shape: float
    epsilon: float
    x_max: float
    degree: int
    panels: Tuple[TaylorPanel, ...]
    _rules: Dict[int, Tuple[np.ndarray, np.ndarray]] = field(default_factory=dict, repr=False)

    @property
    def certified_bound(self) -> float:
        return float(sum(p.bound for p in self.panels))

    @property
    def tail_mass(self) -> float:
        return math.exp(-self.x_max)

    def time_of(self, x):
        return self.scale * np.power(x, 1.0 / self.shape)

    def rule(self, nodes_per_panel: int) -> Tuple[np.ndarray, np.ndarray]:
        """Firing times and weights, including the lumped tail."""
        if nodes_per_panel not in self._rules:
            gx, gw = leggauss(nodes_per_panel)
            xs, ws = [], []
            for p in self.panels:
                half = 0.5 * (p.hi - p.lo)
                x = p.center + half * gx
                xs.append(x)
                ws.append(half * gw * np.clip(p.density(x), 0.0, None))
            xs.append(np.array([self.x_max]))
            ws.append(np.array([self.tail_mass]))
            x = np.concatenate(xs)
            self._rules[nodes_per_panel] = (self.time_of(x), np.concatenate(ws))
        return self._rules[nodes_per_panel]


def build_surrogate(scale: float, shape: float, epsilon: float,
                    config: ReductionConfig) -> WeibullSurrogate:
    """
    Smallest Taylor degree whose certified bound is ≤ ε/4.

    Raises
    ------
    ApproximationToleranceError
        Degree reached ``config.taylor_max_degree`` without meeting the bound.
    """
    x_max = math.log(4.0 / epsilon)
    edges = panel_edges(x_max, config.weibull_panels)
    budget = epsilon / 4.0
    bound = math.inf
    for degree in range(config.taylor_min_degree, config.taylor_max_degree + 1):
        panels = tuple(
            taylor_panel(float(lo), float(hi), degree, config)
            for lo, hi in zip(edges[:-1], edges[1:])
        )
        bound = sum(p.bound for p in panels)
        if bound <= budget:
            logger.debug(
                f"weibull(scale={scale}, shape={shape}): degree {degree}, "
                f"certified bound {bound:.3e}"
            )
            return WeibullSurrogate(
                scale=scale, shape=shape, epsilon=epsilon,
                x_max=x_max, degree=degree, panels=panels,
            )
    raise ApproximationToleranceError(
        f"Weibull(scale={scale}, shape={shape}) surrogate bound {bound:.3e} "
        f"exceeds {budget:.3e} at max degree {config.taylor_max_degree}"
    )


def get_surrogate(params: DistributionParams, epsilon: float, config: ReductionConfig,
                  cache: Optional[ApproximationCache] = None) -> WeibullSurrogate:
    def compute():
        return build_surrogate(params.first, params.second, epsilon, config)

    if cache is None:
        return compute()
    return cache.get_or_compute(params.key + (float(epsilon),), compute)


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------

def mixed_vectors(potato: Potato, surrogate: WeibullSurrogate, nodes_per_panel: int,
                  epsilon: float, config: ReductionConfig,
                  cache: Optional[ApproximationCache] = None) -> Tuple[np.ndarray, np.ndarray]:
    times, weights = surrogate.rule(nodes_per_panel)
    dist, time = np.zeros(0), np.zeros(0)
    for t, w in zip(times, weights):
        if w == 0.0:
            continue
        dv, tv = poisson_vectors(potato, float(t), epsilon, config, cache)
        dist = add_padded(dist, dv, w)
        time = add_padded(time, tv, w)
    return dist, time


def reduce(potato: Potato, params: DistributionParams, epsilon: float,
           config: Optional[ReductionConfig] = None,
           cache: Optional[ApproximationCache] = None) -> PotatoResult:
    check_kind(params, DistributionKind.WEIBULL)
    config = config or ReductionConfig()
    surrogate = get_surrogate(params, epsilon, config, cache)
    quarter = epsilon / 4.0

    nodes = config.gauss_nodes
    prev = mixed_vectors(potato, surrogate, nodes, quarter, config, cache)
    for _ in range(config.gauss_max_iterations):
        nodes *= 2
        cur = mixed_vectors(potato, surrogate, nodes, quarter, config, cache)
        d_dist = l1_distance(cur[0], prev[0])
        d_time = l1_distance(cur[1], prev[1])
        if d_dist <= quarter and d_time <= quarter * max(1.0, float(np.sum(cur[1]))):
            before, times = potato.transient_sums(*cur)
            return potato.finalize(before, times, epsilon)
        prev = cur

    raise ApproximationToleranceError(
        f"Weibull quadrature did not settle below {quarter:.3e} with "
        f"{nodes} nodes per panel",
        state=potato.entry, event=potato.event,
    )
