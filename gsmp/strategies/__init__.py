"""
Potato Strategies
=================
One reduction per distribution kind, all with the same signature:

    reduce(potato, params, epsilon, config=None, cache=None) -> PotatoResult

The kind set is closed, so the registry is a plain mapping from
``DistributionKind`` to strategy function. Coverage of every kind is
asserted at import.

Usage:
    from gsmp.strategies import get_strategy
    strategy = get_strategy(params.kind)
    result = strategy(potato, params, epsilon=1e-6)
"""

from typing import Callable, Dict, Mapping, Optional, Union

from gsmp.distributions import DistributionKind
from gsmp.errors import UnsupportedDistributionError
from gsmp.potato import PotatoResult
from gsmp.strategies import dirac, erlang, exponential, uniform, weibull

Strategy = Callable[..., PotatoResult]

STRATEGIES: Dict[DistributionKind, Strategy] = {
    DistributionKind.EXPONENTIAL: exponential.reduce,
    DistributionKind.DIRAC: dirac.reduce,
    DistributionKind.ERLANG: erlang.reduce,
    DistributionKind.UNIFORM: uniform.reduce,
    DistributionKind.WEIBULL: weibull.reduce,
}

assert set(STRATEGIES) == set(DistributionKind), "every distribution kind needs a strategy"


def get_strategy(
    kind: Union[str, DistributionKind],
    registry: Optional[Mapping[DistributionKind, Strategy]] = None,
) -> Strategy:
    """Strategy for ``kind``. Raises UnsupportedDistributionError when none is registered."""
    kind = DistributionKind.parse(kind)
    registry = STRATEGIES if registry is None else registry
    if kind not in registry:
        raise UnsupportedDistributionError(
            f"No strategy registered for {kind.value}. "
            f"Available: {[k.value for k in registry]}"
        )
    return registry[kind]


__all__ = ['STRATEGIES', 'Strategy', 'get_strategy']
