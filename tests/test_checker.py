"""Tests for the model checker orchestration and parameter synthesis."""

import math

import pytest

from gsmp.checker import GSMPModelChecker, SynthesisResult
from gsmp.config import ReductionConfig
from gsmp.distributions import DistributionKind, DistributionList, DistributionSpec, ParameterToSynthesize
from gsmp.errors import ApproximationToleranceError, InvalidParameterError
from gsmp.model import ACTMC, GSMPEvent
from gsmp.rewards import RewardStructure

from conftest import FIRE


class RecordingSolver:
    """Returns a sentinel per query and remembers which chains it saw."""

    def __init__(self):
        self.calls = []

    def steady_state(self, chain):
        self.calls.append(('steady_state', chain))
        return {'pi': 'opaque'}

    def steady_state_rewards(self, chain):
        self.calls.append(('steady_state_rewards', chain))
        return 42.0

    def reachability_rewards(self, chain, target):
        self.calls.append(('reachability_rewards', chain, target))
        return [1, 2, 3]


@pytest.fixture
def two_potato_model():
    """
    Events on disjoint states:
        'a' (dirac T) active in 0, fires to 1
        'b' (exponential 2.0) active in 2, fires to 0
    """
    dists = DistributionList([
        DistributionSpec('da', DistributionKind.DIRAC, 'T'),
        DistributionSpec('db', DistributionKind.EXPONENTIAL, 2.0),
    ])
    return ACTMC(
        num_states=3,
        rates={0: {2: 1.0}, 1: {2: 1.0}, 2: {1: 0.5}},
        events=[
            GSMPEvent('a', 'da', {0: {1: 1.0}}),
            GSMPEvent('b', 'db', {2: {0: 1.0}}),
        ],
        distributions=dists,
        initial_states=[0],
    )


class TestQueries:

    def test_solver_result_returned_unchanged(self, single_state_model):
        solver = RecordingSolver()
        checker = GSMPModelChecker(solver=solver)
        model = single_state_model("dirac", 1.0)
        assert checker.steady_state(model) == {'pi': 'opaque'}
        assert checker.steady_state_rewards(model, RewardStructure(state_rewards={0: 1.0})) == 42.0
        assert checker.reachability_rewards(model, RewardStructure(), target=[1]) == [1, 2, 3]
        assert solver.calls[2][2] == frozenset({1})

    def test_no_solver(self, single_state_model):
        with pytest.raises(ValueError, match="solver"):
            GSMPModelChecker().steady_state(single_state_model("dirac", 1.0))

    def test_reduce_single_state(self, single_state_model):
        reduced = GSMPModelChecker().reduce(single_state_model("exponential", 3.0), 0)
        assert reduced['e'].result.probability(FIRE) == pytest.approx(0.6)


class TestChainCache:

    def test_chain_reused(self, two_potato_model):
        solver = RecordingSolver()
        checker = GSMPModelChecker(solver=solver)
        checker.steady_state(two_potato_model, constants={'T': 1.0})
        checker.steady_state(two_potato_model, constants={'T': 1.0})
        assert checker.chain_count == 1
        assert solver.calls[0][1] is solver.calls[1][1]

    def test_new_constants_new_chain(self, two_potato_model):
        checker = GSMPModelChecker()
        a = checker.reduce_all(two_potato_model, constants={'T': 1.0})
        b = checker.reduce_all(two_potato_model, constants={'T': 2.0})
        assert a is not b
        assert checker.chain_count == 2

    def test_rewards_and_target_part_of_key(self, two_potato_model):
        checker = GSMPModelChecker()
        checker.reduce_all(two_potato_model, constants={'T': 1.0})
        checker.reduce_all(two_potato_model, constants={'T': 1.0}, rewards=RewardStructure(state_rewards={0: 1.0}))
        checker.reduce_all(two_potato_model, constants={'T': 1.0}, target={1})
        assert checker.chain_count == 3

    def test_failed_reduction_caches_nothing(self, single_state_model):
        checker = GSMPModelChecker(config=ReductionConfig(quadrature_max_iterations=0))
        with pytest.raises(ApproximationToleranceError):
            checker.reduce_all(single_state_model("uniform", 0.0, 1.0))
        assert checker.chain_count == 0
        assert len(checker.results) == 0

    def test_clear(self, two_potato_model):
        checker = GSMPModelChecker()
        checker.reduce_all(two_potato_model, constants={'T': 1.0})
        checker.clear()
        assert checker.chain_count == 0
        assert checker.summary()['potatoes']['entries'] == 0


class TestReparameterize:

    def test_value_substituted(self, two_potato_model):
        checker = GSMPModelChecker()
        query = ParameterToSynthesize('a', 1, 0.5, 3.0)
        chain = checker.reparameterize(two_potato_model, query, 2.0, constants={'T': 1.0})
        # potato of 'a' is a single state racing rate 1.0
        assert chain.rows[0][1] == pytest.approx(math.exp(-2.0), abs=1e-6)

    @pytest.mark.parametrize("value", [0.5, 3.0])
    def test_bounds_inclusive(self, two_potato_model, value):
        query = ParameterToSynthesize('a', 1, 0.5, 3.0)
        GSMPModelChecker().reparameterize(two_potato_model, query, value, constants={'T': 1.0})

    @pytest.mark.parametrize("value", [0.49, 3.01])
    def test_outside_range(self, two_potato_model, value):
        query = ParameterToSynthesize('a', 1, 0.5, 3.0)
        with pytest.raises(InvalidParameterError):
            GSMPModelChecker().reparameterize(two_potato_model, query, value, constants={'T': 1.0})

    def test_unknown_event(self, two_potato_model):
        query = ParameterToSynthesize('zzz', 1, 0.5, 3.0)
        with pytest.raises(InvalidParameterError, match="Unknown event"):
            GSMPModelChecker().reparameterize(two_potato_model, query, 1.0, constants={'T': 1.0})

    def test_ill_posed_query(self, two_potato_model):
        query = ParameterToSynthesize('b', 1, 0.0, 3.0)    # exponential rate 0 invalid
        with pytest.raises(InvalidParameterError):
            GSMPModelChecker().reparameterize(two_potato_model, query, 1.0, constants={'T': 1.0})

    def test_only_affected_event_recomputed(self, two_potato_model):
        checker = GSMPModelChecker()
        query = ParameterToSynthesize('a', 1, 0.5, 3.0)
        checker.reparameterize(two_potato_model, query, 1.0, constants={'T': 1.0})
        assert checker.results.compute_count == 2
        checker.reparameterize(two_potato_model, query, 1.5, constants={'T': 1.0})
        assert checker.results.compute_count == 3
        assert checker.results.hit_count == 1


class TestSynthesize:

    def fire_probability(self, chain):
        return chain.rows[0].get(1, 0.0)

    def test_maximize_at_lower_bound(self, two_potato_model):
        query = ParameterToSynthesize('a', 1, 0.5, 3.0)
        result = GSMPModelChecker().synthesize(
            two_potato_model, query, self.fire_probability, maximize=True, constants={'T': 1.0},
        )
        assert isinstance(result, SynthesisResult)
        assert result.value == pytest.approx(0.5, abs=1e-4)
        assert result.objective == pytest.approx(math.exp(-0.5), abs=1e-6)
        assert result.evaluations >= 3

    def test_minimize_at_upper_bound(self, two_potato_model):
        query = ParameterToSynthesize('a', 1, 0.5, 3.0)
        result = GSMPModelChecker().synthesize(
            two_potato_model, query, self.fire_probability, maximize=False, constants={'T': 1.0},
        )
        assert result.value == pytest.approx(3.0, abs=1e-4)
        assert result.objective == pytest.approx(math.exp(-3.0), abs=1e-6)

    def test_interior_optimum(self, two_potato_model):
        query = ParameterToSynthesize('a', 1, 0.5, 3.0)
        result = GSMPModelChecker(config=ReductionConfig(epsilon=1e-8)).synthesize(
            two_potato_model, query,
            lambda chain: (self.fire_probability(chain) - math.exp(-1.2)) ** 2,
            constants={'T': 1.0},
        )
        assert result.value == pytest.approx(1.2, abs=1e-3)

    def test_global_optimum_between_two_basins(self, two_potato_model):
        # local minima near T = 0.8 and T = 2.6; the tilt makes the second one global
        def tilted_double_well(chain):
            t = -math.log(self.fire_probability(chain))
            return (t - 0.8) ** 2 * (t - 2.6) ** 2 - 0.2 * t

        config = ReductionConfig(epsilon=1e-8)
        query = ParameterToSynthesize('a', 1, 0.5, 3.0)
        result = GSMPModelChecker(config=config).synthesize(
            two_potato_model, query, tilted_double_well, constants={'T': 1.0},
        )
        assert result.value == pytest.approx(2.63, abs=0.02)
        assert result.objective < -0.5
        assert result.evaluations > config.synthesis_grid_points

    def test_caches_stay_bounded(self, two_potato_model):
        checker = GSMPModelChecker(config=ReductionConfig(cache_max_entries=4))
        query = ParameterToSynthesize('a', 1, 0.5, 3.0)
        result = checker.synthesize(
            two_potato_model, query, self.fire_probability, constants={'T': 1.0},
        )
        assert result.evaluations > 4
        assert checker.chain_count <= 4
        assert len(checker.results) <= 4
        assert len(checker.cache) <= 4
        assert checker.summary()['chains']['misses'] == result.evaluations
