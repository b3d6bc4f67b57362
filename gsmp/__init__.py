"""
GSMP - Potato reduction of alarm CTMCs

Replaces each non-exponential event sojourn ("potato") by its expected
exit distribution and reward, yielding a memoryless reduced chain for
conventional Markov-chain solvers.
"""

__version__ = "0.3.0"

# Lazy imports to keep numeric dependencies off the import path
# Use: from gsmp.checker import GSMPModelChecker
# Use: from gsmp.model import ACTMC, GSMPEvent
# Use: from gsmp.distributions import DistributionList, DistributionSpec, DistributionKind
# Use: from gsmp.rewards import RewardStructure
# Use: from gsmp.reduction import ReductionAssembler, EventComposition
# Use: from gsmp.config import ReductionConfig

__all__ = [
    '__version__',
]
