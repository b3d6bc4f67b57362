"""
ACTMC Model
===========
Explicit-state alarm CTMC: a CTMC plus a set of non-exponential events,
at most one of which is active in any state (ACTMC semantics; other
compositions are an assembler policy).

Each event stores, for every state where it is active, the distribution
over successor states used when the event fires. The active set is
exactly the key set of that mapping.

Usage:
    from gsmp.model import ACTMC, GSMPEvent
    model = ACTMC(
        num_states=3,
        rates={0: {1: 2.0}, 1: {0: 1.0}},
        events=[GSMPEvent('timeout', 'd_timeout', {0: {2: 1.0}, 1: {2: 1.0}})],
        distributions=dists,
        initial_states=[0],
    )
    model.validate()
"""

import hashlib
import json
import math
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

import numpy as np

from gsmp.distributions import DistributionList, DistributionParams
from gsmp.errors import ReductionInconsistencyError


@dataclass(frozen=True)
class GSMPEvent:
    """A non-exponential event: identifier, distribution name, firing rows."""
    identifier: str
    distribution: str
    transitions: Mapping[int, Mapping[int, float]]

    @property
    def active(self) -> FrozenSet[int]:
        return frozenset(self.transitions)

    def is_active(self, state: int) -> bool:
        return state in self.transitions

    def firing_distribution(self, state: int) -> Dict[int, float]:
        """Successor distribution when the event fires in ``state`` (normalized)."""
        row = self.transitions[state]
        total = sum(row.values())
        return {t: p / total for t, p in row.items()}

    @property
    def support(self) -> FrozenSet[int]:
        return frozenset(t for row in self.transitions.values() for t in row)


@dataclass
class ACTMC:
    """
    Alarm CTMC.

    Parameters
    ----------
    num_states : int
        States are 0..num_states-1.
    rates : dict
        Sparse CTMC rates ``{source: {target: rate}}``. Self loops are ignored.
    events : list of GSMPEvent
        Non-exponential events.
    distributions : DistributionList
        Distributions referenced by ``GSMPEvent.distribution``.
    initial_states : iterable of int
        States the chain may start in (always potato entrances).
    """
    num_states: int
    rates: Dict[int, Dict[int, float]]
    events: List[GSMPEvent]
    distributions: DistributionList = field(default_factory=DistributionList)
    initial_states: Iterable[int] = (0,)

    def __post_init__(self):
        self.initial_states = frozenset(self.initial_states)
        self.rates = {
            s: {t: float(r) for t, r in row.items() if t != s and r != 0.0}
            for s, row in self.rates.items()
        }
        self._events = {e.identifier: e for e in self.events}
        if len(self._events) != len(self.events):
            raise ReductionInconsistencyError("Duplicate event identifiers")
        self._predecessors: Dict[int, List[int]] = {}
        for s, row in self.rates.items():
            for t in row:
                self._predecessors.setdefault(t, []).append(s)

    # -- lookup -------------------------------------------------------------

    def event(self, identifier: str) -> GSMPEvent:
        if identifier not in self._events:
            raise KeyError(f"Unknown event: {identifier}. Available: {list(self._events)}")
        return self._events[identifier]

    @property
    def event_ids(self) -> List[str]:
        return [e.identifier for e in self.events]

    def events_at(self, state: int) -> List[GSMPEvent]:
        return [e for e in self.events if e.is_active(state)]

    def successors(self, state: int) -> Dict[int, float]:
        return self.rates.get(state, {})

    def predecessors(self, state: int) -> List[int]:
        return self._predecessors.get(state, [])

    def exit_rate(self, state: int) -> float:
        return float(sum(self.rates.get(state, {}).values()))

    def max_exit_rate(self) -> float:
        return max((self.exit_rate(s) for s in range(self.num_states)), default=0.0)

    def uniformization_rate(self) -> float:
        """Max exit rate, or 1 for a chain without CTMC transitions."""
        q = self.max_exit_rate()
        return q if q > 0 else 1.0

    def resolve_parameters(self, constants: Optional[Mapping[str, float]] = None) -> Dict[str, DistributionParams]:
        """Resolved parameters per event identifier."""
        by_name = self.distributions.resolve(constants)
        params = {}
        for e in self.events:
            if e.distribution not in by_name:
                raise KeyError(
                    f"Event {e.identifier!r} references unknown distribution "
                    f"{e.distribution!r}. Available: {list(by_name)}"
                )
            params[e.identifier] = by_name[e.distribution]
        return params

    # -- checks -------------------------------------------------------------

    def validate(self, tolerance: float = 1e-4) -> 'ACTMC':
        """Structural checks. Raises ReductionInconsistencyError."""
        n = self.num_states
        if n < 1:
            raise ReductionInconsistencyError(f"Model needs at least one state, got {n}")
        for s in self.initial_states:
            if not 0 <= s < n:
                raise ReductionInconsistencyError(f"Initial state {s} out of range [0, {n})")
        for s, row in self.rates.items():
            if not 0 <= s < n:
                raise ReductionInconsistencyError(f"Rate source {s} out of range [0, {n})")
            for t, r in row.items():
                if not 0 <= t < n:
                    raise ReductionInconsistencyError(f"Rate target {t} out of range [0, {n})", state=s)
                if not math.isfinite(r) or r < 0:
                    raise ReductionInconsistencyError(f"Rate {s}->{t} must be finite and >= 0, got {r}", state=s)
        for e in self.events:
            for s, row in e.transitions.items():
                if not 0 <= s < n:
                    raise ReductionInconsistencyError(f"Active state {s} out of range", event=e.identifier)
                probs = np.array(list(row.values()), dtype=float)
                if any(not 0 <= t < n for t in row):
                    raise ReductionInconsistencyError(
                        f"Firing target out of range in state {s}", state=s, event=e.identifier
                    )
                if probs.size == 0 or not np.all(np.isfinite(probs)) or np.any(probs < 0):
                    raise ReductionInconsistencyError(
                        f"Firing distribution in state {s} must be non-empty and non-negative",
                        state=s, event=e.identifier,
                    )
                if abs(probs.sum() - 1.0) > tolerance:
                    raise ReductionInconsistencyError(
                        f"Firing distribution in state {s} sums to {probs.sum()}, "
                        f"not 1 within {tolerance}",
                        state=s, event=e.identifier,
                    )
        return self

    def fingerprint(self) -> str:
        """sha256 of the model structure, independent of dict ordering."""
        payload = {
            'num_states': self.num_states,
            'initial': sorted(self.initial_states),
            'rates': sorted(
                (s, t, r) for s, row in self.rates.items() for t, r in row.items()
            ),
            'events': sorted(
                (
                    e.identifier,
                    e.distribution,
                    sorted((s, t, float(p)) for s, row in e.transitions.items() for t, p in row.items()),
                )
                for e in self.events
            ),
        }
        return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()
