"""Tests for potato construction and the shared transient kernels."""

from dataclasses import replace

import numpy as np
import pytest

from gsmp.errors import ReductionInconsistencyError, RewardEvaluationError
from gsmp.potato import Potato, PotatoResult
from gsmp.rewards import RewardStructure

from conftest import COMPETE, FIRE


class TestPotatoBuild:

    def test_single_state(self, single_state_model):
        potato = Potato.build(single_state_model("dirac", 1.0, mu=2.0), "e", 0)
        assert potato.states == (0,)
        assert potato.successors == (FIRE, COMPETE)
        np.testing.assert_allclose(potato.generator, [[-2.0]])
        np.testing.assert_allclose(potato.boundary, [[0.0, 2.0]])
        np.testing.assert_allclose(potato.firing, [[1.0, 0.0]])
        assert potato.uniformization_rate == 2.0

    def test_bfs_collects_reachable_active_states(self, three_state_model):
        potato = Potato.build(three_state_model("dirac", 1.0), "timeout", 1)
        assert potato.states == (1, 2, 3)
        assert potato.successors == (0, 4)
        assert potato.boundary_set() == [(1, 4, 0.7), (3, 0, 1.5)]

    def test_target_states_become_exits(self, three_state_model):
        potato = Potato.build(three_state_model("dirac", 1.0), "timeout", 1, target=frozenset({3}))
        assert potato.states == (1, 2)
        assert potato.successors == (0, 3, 4)

    def test_entry_must_be_active(self, three_state_model):
        with pytest.raises(ReductionInconsistencyError) as info:
            Potato.build(three_state_model("dirac", 1.0), "timeout", 0)
        assert info.value.state == 0 and info.value.event == "timeout"

    def test_entry_cannot_be_target(self, three_state_model):
        with pytest.raises(ReductionInconsistencyError):
            Potato.build(three_state_model("dirac", 1.0), "timeout", 1, target=frozenset({1}))

    def test_rewards_restricted_to_internal_states(self, three_state_model):
        model = three_state_model("dirac", 1.0)
        rew = RewardStructure(
            state_rewards={0: 9.0, 1: 1.0, 2: 2.0, 3: 3.0},
            event_rewards={"timeout": {(3, 4): 7.0}},
        )
        potato = Potato.build(model, "timeout", 1, rewards=rew)
        np.testing.assert_allclose(potato.reward_rates, [1.0, 2.0, 3.0])
        assert potato.firing_rewards[2, potato.successors.index(4)] == 7.0


class TestPotatoValidate:

    def test_valid(self, three_state_model):
        potato = Potato.build(three_state_model("dirac", 1.0), "timeout", 1)
        assert potato.validate() is potato

    def test_negative_boundary(self, single_state_model):
        potato = Potato.build(single_state_model("dirac", 1.0), "e", 0)
        broken = replace(potato, boundary=-potato.boundary)
        with pytest.raises(ReductionInconsistencyError, match="non-negative"):
            broken.validate()

    def test_row_sum_mismatch(self, single_state_model):
        potato = Potato.build(single_state_model("dirac", 1.0), "e", 0)
        broken = replace(potato, generator=np.array([[-3.0]]))
        with pytest.raises(ReductionInconsistencyError, match="Row sums"):
            broken.validate()

    def test_firing_row_sum(self, single_state_model):
        potato = Potato.build(single_state_model("dirac", 1.0), "e", 0)
        broken = replace(potato, firing=np.array([[0.5, 0.0]]))
        with pytest.raises(ReductionInconsistencyError, match="does not sum to 1"):
            broken.validate()

    def test_non_finite_reward(self, single_state_model):
        potato = Potato.build(single_state_model("dirac", 1.0), "e", 0)
        broken = replace(potato, reward_rates=np.array([np.inf]))
        with pytest.raises(RewardEvaluationError):
            broken.validate()


class TestPotatoKernels:

    def test_dtmc_is_stochastic_with_absorbing_successors(self, three_state_model):
        potato = Potato.build(three_state_model("dirac", 1.0), "timeout", 1)
        P = potato.dtmc.toarray()
        np.testing.assert_allclose(P.sum(axis=1), 1.0)
        assert np.all(P >= 0)
        n = potato.n_internal
        np.testing.assert_allclose(P[n:, n:], np.eye(potato.n_successors))

    def test_zero_delay_fires_from_entry(self, three_state_model):
        potato = Potato.build(three_state_model("dirac", 1.0), "timeout", 1)
        before, times = potato.transient_sums(np.array([1.0]), np.array([0.0]))
        result = potato.finalize(before, times, 1e-9)
        assert result.exit_distribution == {0: 1.0}
        assert result.mean_time == 0.0

    def test_finalize_rejects_negative_mass(self, single_state_model):
        potato = Potato.build(single_state_model("dirac", 1.0), "e", 0)
        with pytest.raises(ReductionInconsistencyError):
            potato.finalize(np.array([0.5, 0.0, -0.5]), np.zeros(1), 1e-6)


class TestPotatoResult:

    def test_validate(self):
        r = PotatoResult({1: 0.25, 2: 0.75}, mean_reward=1.0, mean_time=0.5)
        assert r.validate(1e-9) is r
        assert r.total_probability == 1.0
        assert r.probability(3) == 0.0

    def test_validate_mass(self):
        with pytest.raises(ReductionInconsistencyError):
            PotatoResult({1: 0.5}, 0.0, 0.0).validate(1e-6)
