"""
Potato Container
================
A potato is the Markovian sub-chain entered while a non-exponential
event's clock is running. For one (entry state, event) pair it holds:

    states       internal states (event active, not target), entry first,
                 reachable from the entry without leaving the potato
    successors   every state the potato can be left into: CTMC exits and
                 the support of the event's firing distribution
    generator    internal rate matrix, diagonal = -exit rate
    boundary     rates internal → successor (competing transitions)
    firing       event firing probabilities internal → successor
    rewards      per-state reward rates and per-firing rewards

Strategies only need two kernels, both defined here:

    transient_sums()  Σ_n w_n π0 Pⁿ and Σ_n c_n π0 Pⁿ over the uniformized
                      potato DTMC (successors absorbing)
    finalize()        push the pre-firing mass through the event, add the
                      mass that already left, normalize, accumulate reward

Usage:
    from gsmp.potato import Potato
    potato = Potato.build(model, 'timeout', entry=0, rewards=rew)
    before, times = potato.transient_sums(fg.dense(), fg.time_weights(potato.uniformization_rate))
    result = potato.finalize(before, times, epsilon=1e-6)
"""

from collections import deque
from dataclasses import dataclass
from functools import cached_property
from typing import Dict, FrozenSet, List, Optional, Tuple

import numpy as np
from scipy import sparse

from gsmp.errors import ReductionInconsistencyError, RewardEvaluationError


@dataclass(frozen=True)
class PotatoResult:
    """Expected exit distribution, reward and sojourn time of one potato."""
    exit_distribution: Dict[int, float]
    mean_reward: float
    mean_time: float

    @property
    def total_probability(self) -> float:
        return float(sum(self.exit_distribution.values()))

    def probability(self, state: int) -> float:
        return self.exit_distribution.get(state, 0.0)

    def validate(self, epsilon: float) -> 'PotatoResult':
        probs = np.array(list(self.exit_distribution.values()), dtype=float)
        if probs.size == 0 or np.any(probs < 0) or not np.all(np.isfinite(probs)):
            raise ReductionInconsistencyError(f"Invalid exit distribution: {self.exit_distribution}")
        if abs(probs.sum() - 1.0) > epsilon:
            raise ReductionInconsistencyError(
                f"Exit distribution sums to {probs.sum()}, not 1 within {epsilon}"
            )
        if not np.isfinite(self.mean_reward) or not np.isfinite(self.mean_time):
            raise RewardEvaluationError(
                f"Non-finite potato reward {self.mean_reward} / time {self.mean_time}"
            )
        return self


@dataclass(frozen=True, eq=False)
class Potato:
    event: str
    entry: int
    states: Tuple[int, ...]
    successors: Tuple[int, ...]
    generator: np.ndarray
    boundary: np.ndarray
    firing: np.ndarray
    reward_rates: np.ndarray
    firing_rewards: np.ndarray

    # -- construction -------------------------------------------------------

    @classmethod
    def build(
        cls,
        model,
        event_id: str,
        entry: int,
        rewards=None,
        target: FrozenSet[int] = frozenset(),
        state_rates: Optional[np.ndarray] = None,
    ) -> 'Potato':
        """
        Build the potato of ``event_id`` entered at ``entry``.

        Parameters
        ----------
        model : ACTMC
        event_id : str
        entry : int
            Must be an active, non-target state of the event.
        rewards : RewardStructure, optional
        target : frozenset of int
            States treated as exits even where the event is active.
        state_rates : np.ndarray, optional
            Precomputed ``rewards.state_reward_rates(model)``.
        """
        event = model.event(event_id)
        if not event.is_active(entry) or entry in target:
            raise ReductionInconsistencyError(
                f"State {entry} cannot enter the potato of event {event_id!r}",
                state=entry, event=event_id,
            )

        def inside(s):
            return event.is_active(s) and s not in target

        states = [entry]
        seen = {entry}
        queue = deque([entry])
        while queue:
            s = queue.popleft()
            for t in sorted(model.successors(s)):
                if t not in seen and inside(t):
                    seen.add(t)
                    states.append(t)
                    queue.append(t)

        exits = set()
        for s in states:
            exits.update(t for t in model.successors(s) if t not in seen)
            exits.update(event.transitions[s])
        successors = sorted(exits)

        idx = {s: i for i, s in enumerate(states)}
        sdx = {t: k for k, t in enumerate(successors)}
        n, m = len(states), len(successors)

        generator = np.zeros((n, n))
        boundary = np.zeros((n, m))
        firing = np.zeros((n, m))
        firing_rewards = np.zeros((n, m))
        for s, i in idx.items():
            for t, r in model.successors(s).items():
                if t in idx:
                    generator[i, idx[t]] += r
                else:
                    boundary[i, sdx[t]] += r
            generator[i, i] = -model.exit_rate(s)
            for t, p in event.transitions[s].items():
                firing[i, sdx[t]] += p
                if rewards is not None:
                    firing_rewards[i, sdx[t]] = rewards.event_reward(event_id, s, t)

        if state_rates is None and rewards is not None:
            state_rates = rewards.state_reward_rates(model)
        reward_rates = (
            np.zeros(n) if state_rates is None
            else np.array([state_rates[s] for s in states], dtype=float)
        )

        return cls(
            event=event_id,
            entry=entry,
            states=tuple(states),
            successors=tuple(successors),
            generator=generator,
            boundary=boundary,
            firing=firing,
            reward_rates=reward_rates,
            firing_rewards=firing_rewards,
        )

    def validate(self, tolerance: float = 1e-4) -> 'Potato':
        """Sub-stochastic generator checks. Raises ReductionInconsistencyError."""
        n, m = self.n_internal, self.n_successors

        def fail(msg):
            raise ReductionInconsistencyError(msg, state=self.entry, event=self.event)

        if n == 0 or self.states[0] != self.entry:
            fail("Potato must list its entry state first")
        if self.generator.shape != (n, n) or self.boundary.shape != (n, m) \
                or self.firing.shape != (n, m) or self.firing_rewards.shape != (n, m) \
                or self.reward_rates.shape != (n,):
            fail("Potato arrays have inconsistent shapes")
        for name in ('generator', 'boundary', 'firing'):
            if not np.all(np.isfinite(getattr(self, name))):
                fail(f"Potato {name} contains non-finite values")

        off_diag = self.generator - np.diag(np.diag(self.generator))
        if np.any(off_diag < 0) or np.any(self.boundary < 0) or np.any(self.firing < 0):
            fail("Potato rates and probabilities must be non-negative")

        exit_rates = -np.diag(self.generator)
        row_sums = off_diag.sum(axis=1) + self.boundary.sum(axis=1)
        if not np.allclose(row_sums, exit_rates, rtol=1e-9, atol=1e-12):
            fail(f"Row sums {row_sums.tolist()} differ from exit rates {exit_rates.tolist()}")

        firing_sums = self.firing.sum(axis=1)
        if np.any(np.abs(firing_sums - 1.0) > tolerance):
            bad = [self.states[i] for i in np.flatnonzero(np.abs(firing_sums - 1.0) > tolerance)]
            fail(f"Event firing distribution does not sum to 1 in states {bad}")

        if not np.all(np.isfinite(self.reward_rates)) or not np.all(np.isfinite(self.firing_rewards)):
            raise RewardEvaluationError(
                "Potato rewards contain non-finite values", state=self.entry, event=self.event
            )
        return self

    # -- structure ------------------------------------------------------------

    @property
    def n_internal(self) -> int:
        return len(self.states)

    @property
    def n_successors(self) -> int:
        return len(self.successors)

    @property
    def exit_rates(self) -> np.ndarray:
        return -np.diag(self.generator)

    @property
    def uniformization_rate(self) -> float:
        """Max exit rate over internal states; 1 when nothing competes."""
        q = float(np.max(self.exit_rates)) if self.n_internal else 0.0
        return q if q > 0 else 1.0

    def boundary_set(self) -> List[Tuple[int, int, float]]:
        """Competing exits as (internal state, exit target, rate)."""
        out = []
        for i, k in zip(*np.nonzero(self.boundary)):
            out.append((self.states[i], self.successors[k], float(self.boundary[i, k])))
        return out

    def initial_vector(self) -> np.ndarray:
        v = np.zeros(self.n_internal + self.n_successors)
        v[0] = 1.0
        return v

    @cached_property
    def firing_matrix(self) -> np.ndarray:
        """Firing rows normalized to exactly 1."""
        return self.firing / self.firing.sum(axis=1, keepdims=True)

    @cached_property
    def dtmc(self) -> sparse.csr_matrix:
        """Uniformized potato DTMC over internal + successor states (successors absorbing)."""
        n, m = self.n_internal, self.n_successors
        q = self.uniformization_rate
        top = sparse.hstack([
            sparse.identity(n, format='csr') + sparse.csr_matrix(self.generator / q),
            sparse.csr_matrix(self.boundary / q),
        ])
        bottom = sparse.hstack([
            sparse.csr_matrix((m, n)),
            sparse.identity(m, format='csr'),
        ])
        return sparse.vstack([top, bottom]).tocsr()

    # -- kernels --------------------------------------------------------------

    def transient_sums(
        self,
        dist_weights: np.ndarray,
        time_weights: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Power-iterate the potato DTMC from the entry.

        Returns
        -------
        before : np.ndarray
            Σ_n dist_weights[n] · π0 Pⁿ over internal + successor states.
        times : np.ndarray
            Σ_n time_weights[n] · π0 Pⁿ over internal states.
        """
        n = self.n_internal
        steps = max(len(dist_weights), len(time_weights))
        transposed = self.dtmc.T.tocsr()

        v = self.initial_vector()
        before = np.zeros_like(v)
        times = np.zeros(n)
        for k in range(steps):
            if k < len(dist_weights) and dist_weights[k] != 0.0:
                before += dist_weights[k] * v
            if k < len(time_weights) and time_weights[k] != 0.0:
                times += time_weights[k] * v[:n]
            if k + 1 < steps:
                v = transposed @ v
        return before, times

    def finalize(self, before: np.ndarray, times: np.ndarray, epsilon: float) -> PotatoResult:
        """
        Turn the pre-firing distribution and occupation times into a result.

        Parameters
        ----------
        before : np.ndarray
            Distribution just before the event fires, internal + successors.
            Successor entries hold mass that already left via competing
            transitions.
        times : np.ndarray
            Expected time spent in each internal state.
        epsilon : float
            Negative entries below -epsilon are treated as a defect.
        """
        n = self.n_internal
        internal, left = before[:n], before[n:]
        exit_probs = left + internal @ self.firing_matrix

        if np.any(exit_probs < -epsilon) or not np.all(np.isfinite(exit_probs)):
            raise ReductionInconsistencyError(
                f"Exit distribution has invalid entries: {exit_probs.tolist()}",
                state=self.entry, event=self.event,
            )
        exit_probs = np.clip(exit_probs, 0.0, None)
        total = float(exit_probs.sum())
        if total <= 0.0:
            raise ReductionInconsistencyError(
                "Potato exit distribution has no mass", state=self.entry, event=self.event,
            )
        exit_probs = exit_probs / total

        firing_reward = (self.firing_matrix * self.firing_rewards).sum(axis=1)
        mean_reward = float(times @ self.reward_rates + internal @ firing_reward)
        mean_time = float(times.sum())
        if not np.isfinite(mean_reward) or not np.isfinite(mean_time):
            raise RewardEvaluationError(
                f"Potato reward accumulated to {mean_reward} (time {mean_time})",
                state=self.entry, event=self.event,
            )

        distribution = {
            self.successors[k]: float(p) for k, p in enumerate(exit_probs) if p > 0.0
        }
        return PotatoResult(exit_distribution=distribution, mean_reward=mean_reward, mean_time=mean_time)
