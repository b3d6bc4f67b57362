"""
Reduction Assembler
===================
Replaces every non-exponential sojourn of an ACTMC by its potato result,
producing a memoryless reduced chain over the same state space.

For each event, the potato entrances are its active (non-target) states
that can be entered from outside the potato:

    - initial states
    - targets of a CTMC transition from a state outside the potato
    - anything in the support of an event's firing distribution
      (including the event's own self-restart)

Every (entrance, event) pair is reduced independently on a thread pool.
In the reduced chain an entrance row is its exit distribution; all other
rows are the uniformized CTMC rows I + Q/q.

Under the ``race`` composition, exponential events are first folded into
the CTMC rates. A memoryless clock racing a potato is then an ordinary
boundary exit of that potato, so the race is resolved exactly. Two
non-exponential clocks in one state cannot be reduced either way.

Usage:
    from gsmp.reduction import ReductionAssembler
    assembler = ReductionAssembler(model, model.resolve_parameters(constants), rewards=rew)
    chain = assembler.reduce_all()
    chain.transition_matrix()               # scipy.sparse.csr_matrix
    chain.step_rewards                      # expected reward per step
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

import numpy as np
from scipy import sparse

from gsmp.cache import ApproximationCache
from gsmp.config import ReductionConfig
from gsmp.distributions import DistributionKind, DistributionParams
from gsmp.errors import GSMPError, ReductionInconsistencyError
from gsmp.model import ACTMC
from gsmp.potato import Potato, PotatoResult
from gsmp.rewards import RewardStructure
from gsmp.strategies import STRATEGIES, Strategy, get_strategy

logger = logging.getLogger(__name__)


class EventComposition(str, Enum):
    """How to handle several events active in the same state."""
    EXCLUSIVE = "exclusive"   # ACTMC: at most one event per state
    RACE = "race"             # exponential events become CTMC rates first


@dataclass(frozen=True)
class ReducedTransition:
    state: int
    event: str
    result: PotatoResult


@dataclass
class ReducedChain:
    """
    Memoryless chain produced by the assembler.

    ``rows`` are DTMC rows. ``step_rewards`` is the expected reward earned
    per step (r/q in a plain state, the potato reward in an entrance) and
    ``sojourn_times`` the expected time per step, so a long-run reward rate
    is Σ π·step_rewards / Σ π·sojourn_times for the stationary π of rows.
    """
    num_states: int
    uniformization_rate: float
    rows: Dict[int, Dict[int, float]]
    step_rewards: np.ndarray
    sojourn_times: np.ndarray
    reduced: Dict[int, Dict[str, ReducedTransition]] = field(default_factory=dict)

    @property
    def entrances(self) -> List[int]:
        return sorted(self.reduced)

    def transition_matrix(self) -> sparse.csr_matrix:
        data, ri, ci = [], [], []
        for s, row in self.rows.items():
            for t, p in row.items():
                ri.append(s)
                ci.append(t)
                data.append(p)
        return sparse.csr_matrix((data, (ri, ci)), shape=(self.num_states, self.num_states))

    def validate(self, epsilon: float) -> 'ReducedChain':
        for s, row in self.rows.items():
            total = sum(row.values())
            if abs(total - 1.0) > epsilon or any(p < 0 for p in row.values()):
                raise ReductionInconsistencyError(f"Reduced row of state {s} sums to {total}", state=s)
        return self


def _uniformized_row(model, state: int, q: float) -> Dict[int, float]:
    row = {t: r / q for t, r in model.successors(state).items()}
    stay = 1.0 - model.exit_rate(state) / q
    if stay > 0.0:
        row[state] = row.get(state, 0.0) + stay
    return row


def fold_exponential_events(model, parameters: Mapping[str, DistributionParams], rewards=None):
    """
    Replace every exponential event by CTMC rates.

    An exponential event of rate λ active in s with firing row p adds
    λ·p(t) to the rate s→t. Its event rewards become the reward rate
    λ·Σ p(t)·r(s, t) in s. CTMC transition rewards are merged into state
    rates against the original rates, so folded rates never pick them up.

    Returns
    -------
    (ACTMC, RewardStructure or None)
        The inputs unchanged when no event is exponential.
    """
    folded = [
        e for e in model.events
        if parameters[e.identifier].kind == DistributionKind.EXPONENTIAL
    ]
    if not folded:
        return model, rewards

    rates = {s: dict(row) for s, row in model.rates.items()}
    extra = np.zeros(model.num_states)
    for event in folded:
        lam = parameters[event.identifier].first
        for s in event.active:
            for t, p in event.firing_distribution(s).items():
                if rewards is not None:
                    extra[s] += lam * p * rewards.event_reward(event.identifier, s, t)
                if t == s:
                    continue    # restarting a memoryless clock changes nothing
                row = rates.setdefault(s, {})
                row[t] = row.get(t, 0.0) + lam * p

    folded_ids = {e.identifier for e in folded}
    reduced_model = ACTMC(
        num_states=model.num_states,
        rates=rates,
        events=[e for e in model.events if e.identifier not in folded_ids],
        distributions=model.distributions,
        initial_states=model.initial_states,
    )
    logger.debug(f"folded exponential events {sorted(folded_ids)} into CTMC rates")

    if rewards is not None:
        merged = rewards.state_reward_rates(model) + extra
        rewards = RewardStructure(
            state_rewards={s: float(r) for s, r in enumerate(merged) if r != 0.0},
            event_rewards={e: rows for e, rows in rewards.event_rewards.items() if e not in folded_ids},
        )
    return reduced_model, rewards


class ReductionAssembler:
    """
    Builds and reduces every potato of a model.

    Parameters
    ----------
    model : ACTMC
    parameters : dict
        Resolved ``DistributionParams`` per event identifier.
    rewards : RewardStructure, optional
    target : iterable of int, optional
        Target states: made absorbing exits of every potato.
    config : ReductionConfig, optional
    cache : ApproximationCache, optional
        Shared memo for Fox-Glynn weights and Weibull surrogates.
    results : ApproximationCache, optional
        Shared memo for potato results. Keys include the event's
        parameters, so assemblers for different parameter assignments
        can share it and only recompute what changed.
    strategies : mapping, optional
        Registry override (defaults to every kind).
    """

    def __init__(
        self,
        model,
        parameters: Mapping[str, DistributionParams],
        rewards=None,
        target=None,
        config: Optional[ReductionConfig] = None,
        cache: Optional[ApproximationCache] = None,
        results: Optional[ApproximationCache] = None,
        strategies: Optional[Mapping] = None,
    ):
        self.parameters = dict(parameters)
        self.target: FrozenSet[int] = frozenset(target or ())
        self.config = config or ReductionConfig()
        self.cache = cache if cache is not None else ApproximationCache()
        self.results = results if results is not None else ApproximationCache()
        self.strategies = STRATEGIES if strategies is None else strategies
        self.composition = EventComposition(self.config.event_composition)

        missing = [e for e in model.event_ids if e not in self.parameters]
        if missing:
            raise ReductionInconsistencyError(f"No parameters for events {missing}")
        for event_id, params in self.parameters.items():
            try:
                params.validate()
            except GSMPError as e:
                e.event = e.event or event_id
                raise

        if self.composition == EventComposition.RACE:
            model, rewards = fold_exponential_events(model, self.parameters, rewards)
        self.model = model
        self.rewards = rewards
        self._model_key = model.fingerprint()
        self._state_rates = rewards.state_reward_rates(model) if rewards is not None else None
        self._entrances: Dict[str, FrozenSet[int]] = {}

    # -- structure ------------------------------------------------------------

    def entrances(self, event_id: str) -> FrozenSet[int]:
        if event_id not in self._entrances:
            self._entrances[event_id] = self._compute_entrances(event_id)
        return self._entrances[event_id]

    def _compute_entrances(self, event_id: str) -> FrozenSet[int]:
        model = self.model
        event = model.event(event_id)

        def inside(s):
            return event.is_active(s) and s not in self.target

        fired_into = set()
        for e in model.events:
            fired_into |= e.support

        out = set()
        for s in event.active:
            if not inside(s):
                continue
            if s in model.initial_states or s in fired_into:
                out.add(s)
            elif any(not inside(p) for p in model.predecessors(s)):
                out.add(s)
        return frozenset(out)

    def check_composition(self, state: int) -> List[str]:
        """Events active in ``state``. More than one is an error."""
        active = [e.identifier for e in self.model.events_at(state)]
        if len(active) > 1:
            if self.composition == EventComposition.EXCLUSIVE:
                hint = "set event_composition='race' to fold exponential events into rates"
            else:
                hint = "concurrent non-exponential clocks cannot be reduced to potatoes"
            raise ReductionInconsistencyError(
                f"State {state} has {len(active)} active events {active}; {hint}",
                state=state,
            )
        return active

    def build_potato(self, event_id: str, entry: int) -> Potato:
        potato = Potato.build(
            self.model, event_id, entry,
            rewards=self.rewards, target=self.target, state_rates=self._state_rates,
        )
        return potato.validate(self.config.distribution_tolerance)

    # -- reduction ------------------------------------------------------------

    def _result_key(self, event_id: str, entry: int) -> Tuple:
        return (
            self._model_key, event_id, entry, self.parameters[event_id].key,
            self.config.epsilon, tuple(sorted(self.target)),
            self.rewards.fingerprint() if self.rewards is not None else None,
        )

    def reduce_pair(self, event_id: str, entry: int) -> ReducedTransition:
        """Reduce one (entrance, event) pair, reusing a cached result if present."""
        params = self.parameters[event_id]

        def compute():
            strategy: Strategy = get_strategy(params.kind, self.strategies)
            started = time.perf_counter()
            potato = self.build_potato(event_id, entry)
            result = strategy(potato, params, self.config.epsilon, config=self.config, cache=self.cache)
            logger.debug(
                f"potato {event_id}@{entry}: {potato.n_internal} states, "
                f"{params.kind.value}, {time.perf_counter() - started:.3f}s"
            )
            return result

        try:
            result = self.results.get_or_compute(self._result_key(event_id, entry), compute)
        except GSMPError as e:
            if e.state is None:
                e.state = entry
            if e.event is None:
                e.event = event_id
            raise
        return ReducedTransition(state=entry, event=event_id, result=result)

    def reduce(self, state: int) -> Dict[str, ReducedTransition]:
        """Reduced transitions of every event whose potato ``state`` enters."""
        self.check_composition(state)
        return {
            e.identifier: self.reduce_pair(e.identifier, state)
            for e in self.model.events_at(state)
            if state in self.entrances(e.identifier)
        }

    def pairs(self) -> List[Tuple[str, int]]:
        return [
            (event_id, entry)
            for event_id in self.model.event_ids
            for entry in sorted(self.entrances(event_id))
        ]

    def reduce_pairs(self) -> Dict[int, Dict[str, ReducedTransition]]:
        """All (entrance, event) reductions, in parallel. First failure aborts."""
        pairs = self.pairs()
        for state in {entry for _, entry in pairs}:
            self.check_composition(state)

        reduced: Dict[int, Dict[str, ReducedTransition]] = {}
        if not pairs:
            return reduced

        logger.info(f"reducing {len(pairs)} potatoes with {self.config.n_workers} workers")
        with ThreadPoolExecutor(max_workers=self.config.n_workers) as executor:
            futures = {executor.submit(self.reduce_pair, ev, entry): (ev, entry) for ev, entry in pairs}
            for future in as_completed(futures):
                event_id, entry = futures[future]
                try:
                    rt = future.result()
                except GSMPError as e:
                    logger.error(f"potato {event_id}@{entry} failed: {e}")
                    for f in futures:
                        f.cancel()
                    raise
                reduced.setdefault(entry, {})[event_id] = rt
        return reduced

    def reduce_all(self) -> ReducedChain:
        """Fully reduced chain. Raises on the first failing potato."""
        model = self.model
        q = model.uniformization_rate()
        n = model.num_states
        reduced = self.reduce_pairs()

        rows = {s: _uniformized_row(model, s, q) for s in range(n)}
        rewards = np.zeros(n) if self._state_rates is None else self._state_rates / q
        sojourn = np.full(n, 1.0 / q)

        # check_composition leaves exactly one reduced event per entrance
        for s in sorted(reduced):
            (rt,) = reduced[s].values()
            rows[s] = dict(rt.result.exit_distribution)
            rewards[s] = rt.result.mean_reward
            sojourn[s] = rt.result.mean_time

        chain = ReducedChain(
            num_states=n,
            uniformization_rate=q,
            rows=rows,
            step_rewards=rewards,
            sojourn_times=sojourn,
            reduced=reduced,
        )
        return chain.validate(self.config.epsilon * 10)
