"""
GSMP Model Checker
==================
Top-level entry points. Resolves distribution parameters against a
constant environment, runs the reduction assembler once per parameter
assignment, and hands the reduced chain to an injected Markov-chain
solver whose answer is returned unchanged.

Reduced chains are cached by a sha256 fingerprint of the model structure,
resolved parameters, rewards, target set and tolerance. Potato results are
cached separately by (event, entry, parameters, ...), so re-parameterizing
one event only recomputes that event's potatoes. Every cache holds at most
``cache_max_entries`` values and drops the oldest first.

Usage:
    from gsmp.checker import GSMPModelChecker
    checker = GSMPModelChecker(config=ReductionConfig(epsilon=1e-8), solver=my_solver)
    chain = checker.reduce_all(model, constants={'T': 2.0})
    pi = checker.steady_state(model, constants={'T': 2.0})

    query = ParameterToSynthesize('timeout', index=1, lower=0.5, upper=4.0)
    chain = checker.reparameterize(model, query, 1.25)
    best = checker.synthesize(model, query, objective=lambda c: ..., maximize=True)
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Protocol

import numpy as np
from scipy.optimize import minimize_scalar

from gsmp.cache import ApproximationCache
from gsmp.config import ReductionConfig
from gsmp.distributions import DistributionParams, ParameterToSynthesize
from gsmp.errors import InvalidParameterError
from gsmp.reduction import ReducedChain, ReducedTransition, ReductionAssembler

logger = logging.getLogger(__name__)


class MarkovChainSolver(Protocol):
    """Downstream solver consuming reduced chains. Results are opaque."""

    def steady_state(self, chain: ReducedChain) -> Any: ...

    def steady_state_rewards(self, chain: ReducedChain) -> Any: ...

    def reachability_rewards(self, chain: ReducedChain, target: FrozenSet[int]) -> Any: ...


@dataclass(frozen=True)
class SynthesisResult:
    query: ParameterToSynthesize
    value: float
    objective: float
    maximize: bool
    evaluations: int


class GSMPModelChecker:
    """
    Reduction orchestrator.

    Parameters
    ----------
    config : ReductionConfig, optional
        Fixed for the lifetime of the checker.
    solver : MarkovChainSolver, optional
        Needed only for the query methods.
    """

    def __init__(self, config: Optional[ReductionConfig] = None,
                 solver: Optional[MarkovChainSolver] = None):
        self.config = config or ReductionConfig()
        self.solver = solver
        limit = self.config.cache_max_entries
        self.cache = ApproximationCache(max_entries=limit)
        self.results = ApproximationCache(max_entries=limit)
        self.chains = ApproximationCache(max_entries=limit)

    # -- parameters & fingerprints ---------------------------------------------

    def resolve_parameters(self, model, constants: Optional[Mapping[str, float]] = None
                           ) -> Dict[str, DistributionParams]:
        return model.resolve_parameters(constants)

    def fingerprint(self, model, parameters: Mapping[str, DistributionParams],
                    rewards=None, target: Optional[Iterable[int]] = None) -> str:
        payload = {
            'model': model.fingerprint(),
            'parameters': sorted((e, list(p.key)) for e, p in parameters.items()),
            'rewards': rewards.fingerprint() if rewards is not None else None,
            'target': sorted(target or ()),
            'epsilon': self.config.epsilon,
            'composition': self.config.event_composition,
        }
        return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()

    def assembler(self, model, parameters: Mapping[str, DistributionParams],
                  rewards=None, target=None) -> ReductionAssembler:
        return ReductionAssembler(
            model, parameters,
            rewards=rewards, target=target, config=self.config,
            cache=self.cache, results=self.results,
        )

    # -- reduction --------------------------------------------------------------

    def reduce(self, model, state_id: int, constants: Optional[Mapping[str, float]] = None,
               rewards=None, target=None) -> Dict[str, ReducedTransition]:
        """Reduced transitions for the potatoes entered at ``state_id``."""
        model.validate(self.config.distribution_tolerance)
        parameters = self.resolve_parameters(model, constants)
        return self.assembler(model, parameters, rewards, target).reduce(state_id)

    def reduce_all(self, model, constants: Optional[Mapping[str, float]] = None,
                   rewards=None, target=None,
                   parameters: Optional[Mapping[str, DistributionParams]] = None) -> ReducedChain:
        """
        Fully reduced chain, cached by fingerprint.

        Any reduction error propagates; nothing is cached for a failed run.
        """
        model.validate(self.config.distribution_tolerance)
        if parameters is None:
            parameters = self.resolve_parameters(model, constants)
        key = self.fingerprint(model, parameters, rewards, target)

        def compute():
            before = self.results.compute_count
            chain = self.assembler(model, parameters, rewards, target).reduce_all()
            logger.info(
                f"reduced chain {key[:12]}: {len(chain.entrances)} entrances, "
                f"{self.results.compute_count - before} potatoes computed"
            )
            return chain

        return self.chains.get_or_compute(key, compute)

    @property
    def chain_count(self) -> int:
        return len(self.chains)

    def clear(self):
        self.chains.clear()
        self.cache.clear()
        self.results.clear()

    def summary(self) -> Dict[str, Any]:
        return {
            'chains': self.chains.summary(),
            'approximations': self.cache.summary(),
            'potatoes': self.results.summary(),
        }

    # -- queries ----------------------------------------------------------------

    def _require_solver(self) -> MarkovChainSolver:
        if self.solver is None:
            raise ValueError("No Markov-chain solver configured for this checker")
        return self.solver

    def steady_state(self, model, constants: Optional[Mapping[str, float]] = None) -> Any:
        solver = self._require_solver()
        return solver.steady_state(self.reduce_all(model, constants))

    def steady_state_rewards(self, model, rewards,
                             constants: Optional[Mapping[str, float]] = None) -> Any:
        solver = self._require_solver()
        return solver.steady_state_rewards(self.reduce_all(model, constants, rewards=rewards))

    def reachability_rewards(self, model, rewards, target: Iterable[int],
                             constants: Optional[Mapping[str, float]] = None) -> Any:
        solver = self._require_solver()
        target = frozenset(target)
        chain = self.reduce_all(model, constants, rewards=rewards, target=target)
        return solver.reachability_rewards(chain, target)

    # -- parameter synthesis ----------------------------------------------------

    def substituted_parameters(self, model, query: ParameterToSynthesize, value: float,
                               constants: Optional[Mapping[str, float]] = None
                               ) -> Dict[str, DistributionParams]:
        parameters = self.resolve_parameters(model, constants)
        if query.event not in parameters:
            raise InvalidParameterError(
                f"Unknown event {query.event!r}. Available: {sorted(parameters)}"
            )
        current = parameters[query.event]
        query.validate(current)
        query.check_value(value)
        parameters[query.event] = current.with_parameter(query.index, value).validate()
        return parameters

    def reparameterize(self, model, query: ParameterToSynthesize, value: float,
                       constants: Optional[Mapping[str, float]] = None,
                       rewards=None, target=None) -> ReducedChain:
        """
        Reduced chain with one distribution parameter replaced by ``value``.

        Raises
        ------
        InvalidParameterError
            ``value`` outside [lower, upper], or the query itself is ill-posed.
        """
        parameters = self.substituted_parameters(model, query, value, constants)
        return self.reduce_all(model, rewards=rewards, target=target, parameters=parameters)

    def synthesize(self, model, query: ParameterToSynthesize,
                   objective: Callable[[ReducedChain], float], maximize: bool = False,
                   constants: Optional[Mapping[str, float]] = None,
                   rewards=None, target=None) -> SynthesisResult:
        """
        Best value of the queried parameter for ``objective``.

        The objective is first scanned on an evenly spaced grid of
        ``synthesis_grid_points`` values over [lower, upper], both bounds
        included. A bounded scalar search then refines the best grid point
        between its two neighbours. The optimum is global up to the grid
        resolution: a basin narrower than one grid step can be missed.
        """
        sign = -1.0 if maximize else 1.0
        seen: Dict[float, float] = {}

        def f(value):
            value = float(value)
            if value not in seen:
                chain = self.reparameterize(model, query, value, constants, rewards, target)
                seen[value] = sign * float(objective(chain))
            return seen[value]

        grid = np.linspace(query.lower, query.upper, self.config.synthesis_grid_points)
        candidates = [float(x) for x in grid]
        i = int(np.argmin([f(x) for x in candidates]))
        lo = candidates[max(i - 1, 0)]
        hi = candidates[min(i + 1, len(candidates) - 1)]
        if hi > lo:
            res = minimize_scalar(
                f, bounds=(lo, hi), method='bounded',
                options={'xatol': self.config.epsilon * (query.upper - query.lower)},
            )
            candidates.append(float(res.x))
        best = min(candidates, key=f)
        logger.info(
            f"synthesis {query.event}[{query.index}]: best {best} "
            f"after {len(seen)} evaluations"
        )
        return SynthesisResult(
            query=query, value=best, objective=sign * seen[best],
            maximize=maximize, evaluations=len(seen),
        )
