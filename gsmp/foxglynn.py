"""
Fox-Glynn Uniformization Weights
================================
Truncated Poisson(qt) weights for transient analysis by uniformization:

    π(t) = Σ_n  Pois(n; q·t) · π0 · Pⁿ

Only indices in [L, R] are kept, chosen so that each excluded tail holds
at most ε/2 of the Poisson mass (tails from scipy's regularized Poisson
CDF). Weights are built in log space relative to the mode, then scaled to
the exact mass of [L, R], so nothing overflows for large qt and the tails
underflow harmlessly to zero.

Usage:
    from gsmp.foxglynn import fox_glynn
    fg = fox_glynn(qt=250.0, epsilon=1e-8)
    fg.left, fg.right, fg.total_weight
    fg.dense()             # normalized weights indexed 0..R
    fg.time_weights(q)     # occupation-time weights (1 - CDF_n) / q
"""

import math
from dataclasses import dataclass

import numpy as np
from scipy.special import pdtr, pdtrc
from scipy.stats import norm

from gsmp.errors import UniformizationError


@dataclass(frozen=True, eq=False)
class FoxGlynnWeights:
    """Truncated Poisson weights over [left, right]."""
    rate: float              # the Poisson parameter q·t
    epsilon: float
    left: int
    right: int
    weights: np.ndarray      # weights[i] = Pois(left + i; rate)
    total_weight: float

    def dense(self) -> np.ndarray:
        """Normalized weights as an array indexed 0..right (zeros below left)."""
        out = np.zeros(self.right + 1)
        out[self.left:] = self.weights / self.total_weight
        return out

    def time_weights(self, q: float) -> np.ndarray:
        """
        c_n = ∫_0^t Pois(n; q·s) ds = P(N(qt) > n) / q, indexed 0..right.

        Summing c_n · π0·Pⁿ gives the expected time spent in each state
        during [0, t].
        """
        cdf = np.cumsum(self.dense())
        return np.clip(1.0 - cdf, 0.0, None) / q


def fox_glynn(qt: float, epsilon: float, max_iterations: int = 64) -> FoxGlynnWeights:
    """
    Compute truncated Poisson(qt) weights with total mass ≥ 1 - epsilon.

    Parameters
    ----------
    qt : float
        Uniformization rate times mission time. Must be finite and ≥ 0.
    epsilon : float
        Total truncation error allowed (ε/2 per tail).
    max_iterations : int
        Number of window doublings tried before giving up.

    Raises
    ------
    UniformizationError
        qt negative or non-finite, window never reaches the tail bound,
        or weights fail the mass / finiteness checks.
    """
    if not np.isfinite(qt) or qt < 0:
        raise UniformizationError(f"Poisson rate q·t must be finite and >= 0, got {qt}")
    if not 0.0 < epsilon < 1.0:
        raise UniformizationError(f"epsilon must be in (0, 1), got {epsilon}")

    if qt == 0.0:
        return FoxGlynnWeights(
            rate=0.0, epsilon=epsilon, left=0, right=0,
            weights=np.ones(1), total_weight=1.0,
        )

    mode = int(math.floor(qt))
    z = float(norm.isf(epsilon / 4.0))
    half_width = int(math.ceil(z * math.sqrt(qt))) + 4

    for _ in range(max_iterations):
        left = max(0, mode - half_width)
        right = mode + half_width
        left_tail = float(pdtr(left - 1, qt)) if left > 0 else 0.0
        right_tail = float(pdtrc(right, qt))
        if left_tail <= epsilon / 2.0 and right_tail <= epsilon / 2.0:
            break
        half_width *= 2
    else:
        raise UniformizationError(
            f"Fox-Glynn window did not converge for qt={qt} after "
            f"{max_iterations} doublings"
        )

    # log(w_n / w_mode) as a running sum of log(qt / j): every term is small,
    # so the shape stays accurate even when log w_n itself is huge
    j = np.arange(left + 1, right + 1, dtype=float)
    log_rel = np.concatenate([[0.0], np.cumsum(math.log(qt) - np.log(j))])
    log_rel -= log_rel[mode - left]
    shape = np.exp(log_rel)
    mass = 1.0 - left_tail - right_tail
    weights = shape / np.sum(np.sort(shape)) * mass

    if not np.all(np.isfinite(weights)) or np.any(weights < 0):
        raise UniformizationError(f"Non-finite Poisson weights for qt={qt}")

    # smallest first keeps the sum independent of the mode's position
    total = float(np.sum(np.sort(weights)))
    if total < 1.0 - epsilon:
        raise UniformizationError(
            f"Poisson weights for qt={qt} sum to {total}, below 1 - {epsilon}"
        )

    return FoxGlynnWeights(
        rate=float(qt), epsilon=epsilon, left=left, right=right,
        weights=weights, total_weight=total,
    )
