"""
ACTMC Reward Structure
======================
State reward rates, CTMC transition rewards and event transition rewards.

CTMC transition rewards are folded into state reward rates (weighted by
the transition rate) so that potatoes only ever see per-state rates plus
the rewards paid when their event fires.

Usage:
    from gsmp.rewards import RewardStructure
    rew = RewardStructure(
        state_rewards={0: 1.0, 1: 1.0},
        transition_rewards={(0, 1): 5.0},
        event_rewards={'timeout': {(1, 2): 10.0}},
    )
    rates = rew.state_reward_rates(model)     # np.ndarray, one entry per state
"""

import hashlib
import json
import math
from dataclasses import dataclass, field
from typing import Dict, Tuple

import numpy as np

from gsmp.errors import RewardEvaluationError


@dataclass(frozen=True)
class RewardStructure:
    state_rewards: Dict[int, float] = field(default_factory=dict)
    transition_rewards: Dict[Tuple[int, int], float] = field(default_factory=dict)
    event_rewards: Dict[str, Dict[Tuple[int, int], float]] = field(default_factory=dict)

    def state_reward_rates(self, model) -> np.ndarray:
        """Per-state reward rate with CTMC transition rewards merged in."""
        out = np.zeros(model.num_states)
        for s, r in self.state_rewards.items():
            out[s] += _finite(r, f"state reward of {s}")
        for (s, t), r in self.transition_rewards.items():
            rate = model.successors(s).get(t, 0.0)
            out[s] += rate * _finite(r, f"transition reward {s}->{t}")
        if not np.all(np.isfinite(out)):
            bad = np.flatnonzero(~np.isfinite(out)).tolist()
            raise RewardEvaluationError(f"Merged state reward rates are not finite in states {bad}")
        return out

    def event_reward(self, event: str, source: int, target: int) -> float:
        r = self.event_rewards.get(event, {}).get((source, target), 0.0)
        return _finite(r, f"event reward {event}: {source}->{target}")

    def fingerprint(self) -> str:
        payload = {
            'state': sorted((s, float(r)) for s, r in self.state_rewards.items()),
            'transition': sorted((s, t, float(r)) for (s, t), r in self.transition_rewards.items()),
            'event': sorted(
                (e, s, t, float(r))
                for e, rows in self.event_rewards.items()
                for (s, t), r in rows.items()
            ),
        }
        return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()


def _finite(value, what: str) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise RewardEvaluationError(f"{what} evaluates to {value}")
    return value
