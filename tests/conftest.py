"""Shared model builders for the reduction tests."""

import pytest

from gsmp.distributions import DistributionKind, DistributionList, DistributionSpec
from gsmp.model import ACTMC, GSMPEvent


# State layout of the single-state potato:
#   0  potato state, event 'e' active, competing rate mu to 2
#   1  where the event fires to
#   2  where the competing transition leads
FIRE, COMPETE = 1, 2


def make_single_state_model(kind, first, second=None, mu=2.0):
    dists = DistributionList([DistributionSpec('d', DistributionKind.parse(kind), first, second)])
    return ACTMC(
        num_states=3,
        rates={0: {COMPETE: mu}, 1: {0: 1.0}, 2: {0: 1.0}},
        events=[GSMPEvent('e', 'd', {0: {FIRE: 1.0}})],
        distributions=dists,
        initial_states=[0],
    )


@pytest.fixture
def single_state_model():
    """Factory: one potato state racing the event against rate mu."""
    return make_single_state_model


@pytest.fixture
def three_state_model():
    """
    Factory: 5-state model with a 3-state potato.

        0 --1.0--> 1          (enter potato)
        1 --2.0--> 2,  2 --1.0--> 1,  2 --0.5--> 3,  1 --0.7--> 4
        3 --1.5--> 0,  4 --1.0--> 0
        event 'timeout' active in {1, 2, 3}, fires 1→0, 2→0, 3→4

    State 3 is inside the potato only when not a target.
    """
    def build(kind, first, second=None):
        dists = DistributionList([DistributionSpec('d', DistributionKind.parse(kind), first, second)])
        return ACTMC(
            num_states=5,
            rates={
                0: {1: 1.0},
                1: {2: 2.0, 4: 0.7},
                2: {1: 1.0, 3: 0.5},
                3: {0: 1.5},
                4: {0: 1.0},
            },
            events=[GSMPEvent('timeout', 'd', {1: {0: 1.0}, 2: {0: 1.0}, 3: {4: 1.0}})],
            distributions=dists,
            initial_states=[0],
        )
    return build
