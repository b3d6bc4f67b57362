"""
Polynomial Toolkit
==================
Real-coefficient polynomials (ascending coefficient order) with Horner
evaluation, calculus, and certified real root isolation.

Root isolation works on the square-free part p / gcd(p, p') so that every
root is simple, separates roots with Sturm sequence sign counts, then
refines each isolated root by sign-change bisection.

Usage:
    from gsmp.polynomials import Polynomial, isolate_real_roots, sup_abs
    p = Polynomial.from_roots([1.0, 2.0, 3.0])
    isolate_real_roots(p, (0.0, 4.0), epsilon=1e-10)   # → [1.0, 2.0, 3.0]
    sup_abs(p, 0.0, 4.0)                               # → 6.0
"""

from typing import List, Sequence, Tuple, Union

import numpy as np
from numpy.polynomial import polynomial as npoly

from gsmp.errors import RootIsolationError


# Relative size below which a remainder coefficient counts as zero
# during the Euclidean steps (gcd, Sturm chain).
_REMAINDER_TOL = 1e-10


class Polynomial:
    """
    Polynomial with real coefficients, ``coeffs[i]`` multiplies ``x**i``.

    Trailing zero coefficients are dropped; the zero polynomial keeps a
    single ``0.0`` and reports degree 0.
    """

    __slots__ = ('coeffs',)

    def __init__(self, coeffs: Union[Sequence[float], np.ndarray]):
        c = np.atleast_1d(np.asarray(coeffs, dtype=float)).copy()
        if c.size == 0:
            c = np.zeros(1)
        nz = np.nonzero(c)[0]
        c = c[:nz[-1] + 1] if nz.size else np.zeros(1)
        self.coeffs = c

    @classmethod
    def from_roots(cls, roots: Sequence[float]) -> 'Polynomial':
        return cls(npoly.polyfromroots(roots))

    @classmethod
    def constant(cls, value: float) -> 'Polynomial':
        return cls([value])

    @property
    def degree(self) -> int:
        return len(self.coeffs) - 1

    @property
    def is_zero(self) -> bool:
        return self.degree == 0 and self.coeffs[0] == 0.0

    def __call__(self, x):
        return evaluate(self, x)

    def derivative(self) -> 'Polynomial':
        return differentiate(self)

    def __add__(self, other):
        other = _coerce(other)
        return Polynomial(npoly.polyadd(self.coeffs, other.coeffs))

    __radd__ = __add__

    def __neg__(self):
        return Polynomial(-self.coeffs)

    def __sub__(self, other):
        return self + (-_coerce(other))

    def __mul__(self, other):
        if isinstance(other, Polynomial):
            return Polynomial(npoly.polymul(self.coeffs, other.coeffs))
        return Polynomial(self.coeffs * float(other))

    __rmul__ = __mul__

    def __repr__(self):
        return f"Polynomial({self.coeffs.tolist()})"


def _coerce(value) -> Polynomial:
    return value if isinstance(value, Polynomial) else Polynomial.constant(float(value))


# ---------------------------------------------------------------------------
# Evaluation and calculus
# ---------------------------------------------------------------------------

def evaluate(p: Polynomial, x):
    """Horner evaluation. ``x`` may be a scalar or a numpy array."""
    coeffs = p.coeffs
    result = np.zeros_like(np.asarray(x, dtype=float)) + coeffs[-1]
    for c in coeffs[-2::-1]:
        result = result * x + c
    if np.ndim(result) == 0:
        return float(result)
    return result


def differentiate(p: Polynomial) -> Polynomial:
    if p.degree == 0:
        return Polynomial([0.0])
    powers = np.arange(1, len(p.coeffs), dtype=float)
    return Polynomial(p.coeffs[1:] * powers)


# ---------------------------------------------------------------------------
# Euclidean algorithm (floating point, relative tolerance)
# ---------------------------------------------------------------------------

def _remainder(a: Polynomial, b: Polynomial) -> Polynomial:
    _, rem = npoly.polydiv(a.coeffs, b.coeffs)
    scale = max(np.max(np.abs(a.coeffs)), np.max(np.abs(b.coeffs)))
    rem = np.where(np.abs(rem) <= _REMAINDER_TOL * scale, 0.0, rem)
    return Polynomial(rem)


def gcd(a: Polynomial, b: Polynomial) -> Polynomial:
    """Monic greatest common divisor."""
    while not b.is_zero:
        a, b = b, _remainder(a, b)
    return Polynomial(a.coeffs / a.coeffs[-1])


def square_free(p: Polynomial) -> Polynomial:
    """p / gcd(p, p'): same real roots, all simple."""
    if p.degree < 2:
        return p
    g = gcd(p, differentiate(p))
    if g.degree == 0:
        return p
    quo, _ = npoly.polydiv(p.coeffs, g.coeffs)
    return Polynomial(quo)


def sturm_sequence(p: Polynomial) -> List[Polynomial]:
    seq = [p, differentiate(p)]
    while seq[-1].degree > 0:
        rem = _remainder(seq[-2], seq[-1])
        if rem.is_zero:
            break
        seq.append(-rem)
    return seq


def _sign_changes(seq: List[Polynomial], x: float) -> int:
    signs = [np.sign(evaluate(s, x)) for s in seq]
    signs = [s for s in signs if s != 0]
    return sum(1 for s0, s1 in zip(signs, signs[1:]) if s0 != s1)


def count_roots(seq: List[Polynomial], lo: float, hi: float) -> int:
    """Number of distinct real roots in (lo, hi] by Sturm's theorem."""
    return _sign_changes(seq, lo) - _sign_changes(seq, hi)


# ---------------------------------------------------------------------------
# Root isolation
# ---------------------------------------------------------------------------

class _Budget:
    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0

    def spend(self, where: str):
        self.used += 1
        if self.used > self.limit:
            raise RootIsolationError(
                f"Root isolation exceeded {self.limit} bisection steps ({where})"
            )


def _refine(q: Polynomial, lo: float, hi: float, epsilon: float, budget: _Budget) -> float:
    """Bisect (lo, hi], known to hold exactly one simple root of q."""
    f_hi = evaluate(q, hi)
    if f_hi == 0.0:
        return hi
    f_lo = evaluate(q, lo)
    if f_lo == 0.0:
        # lo is a neighbouring root; q changes sign right after it
        f_lo = -f_hi
    if np.sign(f_lo) == np.sign(f_hi):
        raise RootIsolationError(
            f"No sign change on ({lo!r}, {hi!r}] although one root was counted"
        )
    while hi - lo >= epsilon:
        budget.spend('refine')
        mid = 0.5 * (lo + hi)
        f_mid = evaluate(q, mid)
        if f_mid == 0.0:
            return mid
        if np.sign(f_mid) == np.sign(f_lo):
            lo, f_lo = mid, f_mid
        else:
            hi = mid
    return 0.5 * (lo + hi)


def isolate_real_roots(
    p: Polynomial,
    interval: Tuple[float, float],
    epsilon: float = 1e-10,
    max_iterations: int = 2000,
) -> List[float]:
    """
    Find all distinct real roots of ``p`` in the closed ``interval``.

    Parameters
    ----------
    p : Polynomial
        Polynomial to search. Repeated roots are reported once.
    interval : (float, float)
        Search range [a, b].
    epsilon : float
        Width below which a bracketing interval is accepted.
    max_iterations : int
        Total bisection steps allowed across separation and refinement.

    Returns
    -------
    List[float]
        Sorted root estimates, each within epsilon of a true root.

    Raises
    ------
    RootIsolationError
        Zero polynomial, missing sign change, or budget exhausted.
    """
    a, b = float(interval[0]), float(interval[1])
    if not a <= b:
        raise ValueError(f"Empty interval [{a}, {b}]")
    if epsilon <= 0:
        raise ValueError(f"epsilon must be > 0, got {epsilon}")
    if not isinstance(p, Polynomial):
        p = Polynomial(p)
    if p.is_zero:
        raise RootIsolationError("The zero polynomial has no isolated roots")
    if p.degree == 0:
        return []

    q = square_free(p)
    seq = sturm_sequence(q)
    budget = _Budget(max_iterations)

    roots = []
    if evaluate(q, a) == 0.0:
        roots.append(a)    # Sturm counts the half-open (a, b]

    stack = [(a, b, count_roots(seq, a, b))]
    while stack:
        lo, hi, n = stack.pop()
        if n < 0:
            raise RootIsolationError(f"Inconsistent Sturm count {n} on ({lo!r}, {hi!r}]")
        if n == 0:
            continue
        if n == 1:
            roots.append(_refine(q, lo, hi, epsilon, budget))
            continue
        if hi - lo < epsilon:
            # roots closer together than the requested resolution
            roots.append(0.5 * (lo + hi))
            continue
        budget.spend('separate')
        mid = 0.5 * (lo + hi)
        n_left = count_roots(seq, lo, mid)
        stack.append((mid, hi, n - n_left))
        stack.append((lo, mid, n_left))

    return sorted(roots)


def sup_abs(
    p: Polynomial,
    a: float,
    b: float,
    epsilon: float = 1e-12,
    max_iterations: int = 2000,
) -> float:
    """
    max |p(x)| over [a, b].

    The maximum sits at an endpoint or a stationary point, so the
    candidates are the endpoints plus the real roots of p'.
    """
    candidates = [a, b]
    dp = differentiate(p)
    if dp.degree > 0:
        candidates.extend(isolate_real_roots(dp, (a, b), epsilon, max_iterations))
    return float(max(abs(evaluate(p, x)) for x in candidates))
