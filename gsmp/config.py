"""
Reduction Configuration
=======================
All tolerances and iteration budgets used by the reduction core.
Single source of truth: ``CONFIG`` holds the defaults, ``ReductionConfig``
is the immutable, validated view handed to every component.

Usage:
    from gsmp.config import ReductionConfig
    config = ReductionConfig()                          # defaults
    config = ReductionConfig.from_yaml('reduction.yaml')
    config = ReductionConfig.from_dict({'epsilon': 1e-8, 'n_workers': 8})
"""

from pathlib import Path
from typing import Any, Dict, Literal, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator


CONFIG = {

    # =================================================================
    # Global tolerance
    # =================================================================
    'epsilon': 1e-6,                  # target error per potato result
    'distribution_tolerance': 1e-4,   # how far an event row may be from summing to 1

    # =================================================================
    # Fox-Glynn
    # =================================================================
    'foxglynn_max_iterations': 64,    # window doublings before giving up

    # =================================================================
    # Polynomial root isolation
    # =================================================================
    'root_max_iterations': 2000,      # total bisection steps per call

    # =================================================================
    # Uniform quadrature
    # =================================================================
    'quadrature_max_iterations': 14,  # Simpson panel doublings (2**14 panels)

    # =================================================================
    # Weibull surrogate
    # =================================================================
    'weibull_panels': 16,
    'taylor_min_degree': 4,
    'taylor_max_degree': 40,
    'gauss_nodes': 8,                 # Gauss-Legendre nodes per panel (start)
    'gauss_max_iterations': 6,        # node doublings

    # =================================================================
    # Assembly
    # =================================================================
    'n_workers': 4,
    'event_composition': 'exclusive',  # or 'race'
    'cache_max_entries': 4096,         # per cache: weights, potato results, chains

    # =================================================================
    # Parameter synthesis
    # =================================================================
    'synthesis_grid_points': 9,       # coarse scan before the bounded search
}


class ReductionConfig(BaseModel):
    """Immutable reduction settings. Defaults come from ``CONFIG``."""

    model_config = ConfigDict(frozen=True, extra='forbid')

    epsilon: float = Field(
        CONFIG['epsilon'], gt=0.0, lt=1.0,
        description="Target absolute error per potato result",
    )
    distribution_tolerance: float = Field(CONFIG['distribution_tolerance'], ge=0.0)
    foxglynn_max_iterations: int = Field(CONFIG['foxglynn_max_iterations'], ge=0)
    root_max_iterations: int = Field(CONFIG['root_max_iterations'], ge=1)
    quadrature_max_iterations: int = Field(
        CONFIG['quadrature_max_iterations'], ge=0,
        description="Simpson panel doublings before ApproximationToleranceError",
    )
    weibull_panels: int = Field(CONFIG['weibull_panels'], ge=1)
    taylor_min_degree: int = Field(CONFIG['taylor_min_degree'], ge=0)
    taylor_max_degree: int = Field(CONFIG['taylor_max_degree'], ge=0)
    gauss_nodes: int = Field(CONFIG['gauss_nodes'], ge=1)
    gauss_max_iterations: int = Field(CONFIG['gauss_max_iterations'], ge=0)
    n_workers: int = Field(CONFIG['n_workers'], ge=1, description="Potato reduction threads")
    event_composition: Literal['exclusive', 'race'] = Field(
        CONFIG['event_composition'],
        description="How states with several active events are handled",
    )
    cache_max_entries: int = Field(
        CONFIG['cache_max_entries'], ge=1,
        description="Entry limit of each checker cache; the oldest entry is evicted first",
    )
    synthesis_grid_points: int = Field(CONFIG['synthesis_grid_points'], ge=2)

    @model_validator(mode='after')
    def _check_degrees(self) -> 'ReductionConfig':
        if self.taylor_min_degree > self.taylor_max_degree:
            raise ValueError(
                f"taylor_min_degree ({self.taylor_min_degree}) exceeds "
                f"taylor_max_degree ({self.taylor_max_degree})"
            )
        return self

    @classmethod
    def from_dict(cls, overrides: Dict[str, Any]) -> 'ReductionConfig':
        return cls.model_validate(overrides)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'ReductionConfig':
        """Load overrides from a YAML mapping. Missing keys keep defaults."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping, got {type(data).__name__}")
        return cls.model_validate(data)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()
