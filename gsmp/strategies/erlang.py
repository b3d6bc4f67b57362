"""
Erlang Potato Strategy
======================
Erlang(λ, k) is k exponential(λ) phases in sequence. The potato is
expanded with k phase markers and solved as k chained exponential
reductions sharing one LU factorization of λI - Q:

    m₁ · M = π0,    m_{i+1} · M = λ · m_i

Occupation time is Σ m_i; the event fires with mass λ·m_k.
"""

from gsmp.distributions import DistributionKind, DistributionParams
from gsmp.potato import Potato, PotatoResult
from gsmp.strategies.exponential import check_kind, phase_solve


def reduce(potato: Potato, params: DistributionParams, epsilon: float,
           config=None, cache=None) -> PotatoResult:
    check_kind(params, DistributionKind.ERLANG)
    rate, phases = params.first, int(params.second)
    before, times = phase_solve(potato, rate, phases)
    return potato.finalize(before, times, epsilon)
