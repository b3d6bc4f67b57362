"""
Event Delay Distributions
=========================
The closed set of firing-time distributions, their parameter domains,
the distribution list that binds names to parameter expressions, and the
parameter-synthesis descriptor.

Parameter layout per kind (first, second):

    exponential   rate λ > 0
    dirac         delay d ≥ 0
    erlang        rate λ > 0,   phases k (integer ≥ 1)
    uniform       a ≥ 0,        b > a
    weibull       scale λ > 0,  shape k > 0

Usage:
    from gsmp.distributions import DistributionList, DistributionSpec, DistributionKind
    dists = DistributionList([
        DistributionSpec('timeout', DistributionKind.DIRAC, 'T'),
        DistributionSpec('repair', DistributionKind.WEIBULL, 2.0, 'k'),
    ])
    params = dists.resolve({'T': 1.5, 'k': 0.8})
    params['timeout'].mean()     # → 1.5
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple, Union

from scipy.special import gamma

from gsmp.errors import InvalidParameterError, UnsupportedDistributionError


class DistributionKind(str, Enum):
    EXPONENTIAL = "exponential"
    DIRAC = "dirac"
    ERLANG = "erlang"
    UNIFORM = "uniform"
    WEIBULL = "weibull"

    @classmethod
    def parse(cls, name: Union[str, 'DistributionKind']) -> 'DistributionKind':
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).lower())
        except ValueError:
            raise UnsupportedDistributionError(
                f"Unknown distribution kind: {name!r}. "
                f"Available: {[k.value for k in cls]}"
            ) from None

    @property
    def arity(self) -> int:
        return _ARITY[self]


_ARITY = {
    DistributionKind.EXPONENTIAL: 1,
    DistributionKind.DIRAC: 1,
    DistributionKind.ERLANG: 2,
    DistributionKind.UNIFORM: 2,
    DistributionKind.WEIBULL: 2,
}

# (kind, 1-based index) pairs whose value must be an integer
_INTEGER_PARAMS = {(DistributionKind.ERLANG, 2)}


@dataclass(frozen=True)
class DistributionParams:
    """A distribution kind with its resolved numeric parameters."""
    kind: DistributionKind
    first: float
    second: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, 'kind', DistributionKind.parse(self.kind))

    @property
    def values(self) -> Tuple[float, ...]:
        if self.kind.arity == 1:
            return (self.first,)
        return (self.first, self.second)

    @property
    def key(self) -> Tuple:
        """Hashable identity used by the caches."""
        return (self.kind.value,) + tuple(float(v) for v in self.values)

    def validate(self) -> 'DistributionParams':
        """Raise InvalidParameterError unless parameters match the kind's domain."""
        kind, a, b = self.kind, self.first, self.second
        label = f"{kind.value} distribution"

        if a is None or not math.isfinite(a):
            raise InvalidParameterError(f"{label}: first parameter must be a finite number, got {a}")
        if kind.arity == 1 and b is not None:
            raise InvalidParameterError(f"{label} takes one parameter, got second={b}")
        if kind.arity == 2 and (b is None or not math.isfinite(b)):
            raise InvalidParameterError(f"{label}: second parameter must be a finite number, got {b}")

        if kind == DistributionKind.EXPONENTIAL and a <= 0:
            raise InvalidParameterError(f"{label} must have one parameter of value >0, got {a}")
        if kind == DistributionKind.DIRAC and a < 0:
            raise InvalidParameterError(f"{label} must have one parameter of value >=0, got {a}")
        if kind == DistributionKind.ERLANG:
            if a <= 0:
                raise InvalidParameterError(f"{label}: rate must be >0, got {a}")
            if b < 1 or float(b) != int(b):
                raise InvalidParameterError(f"{label}: phase count must be an integer >=1, got {b}")
        if kind == DistributionKind.UNIFORM and not 0 <= a < b:
            raise InvalidParameterError(f"{label} must have two parameters of values 0<=a<b, got a={a}, b={b}")
        if kind == DistributionKind.WEIBULL and (a <= 0 or b <= 0):
            raise InvalidParameterError(f"{label} must have two parameters of values >0, got scale={a}, shape={b}")
        return self

    def with_parameter(self, index: int, value: float) -> 'DistributionParams':
        """Copy with the 1-based ``index``-th parameter replaced by ``value``."""
        if not 1 <= index <= self.kind.arity:
            raise InvalidParameterError(
                f"Parameter index {index} out of range for {self.kind.value} "
                f"(arity {self.kind.arity})"
            )
        if index == 1:
            return replace(self, first=float(value))
        return replace(self, second=float(value))

    def mean(self) -> float:
        """Expected delay E[T]."""
        kind, a, b = self.kind, self.first, self.second
        if kind == DistributionKind.EXPONENTIAL:
            return 1.0 / a
        if kind == DistributionKind.DIRAC:
            return a
        if kind == DistributionKind.ERLANG:
            return b / a
        if kind == DistributionKind.UNIFORM:
            return 0.5 * (a + b)
        return a * float(gamma(1.0 + 1.0 / b))


# ---------------------------------------------------------------------------
# Distribution list (name → parameter expressions)
# ---------------------------------------------------------------------------

# A parameter expression: a literal, the name of a constant, or a function
# of the constant environment.
ParamExpr = Union[float, int, str, Callable[[Mapping[str, float]], float]]


def evaluate_expression(expr: Optional[ParamExpr], constants: Mapping[str, float]) -> Optional[float]:
    if expr is None:
        return None
    if isinstance(expr, str):
        if expr not in constants:
            raise InvalidParameterError(
                f"Undefined constant {expr!r}. Available: {sorted(constants)}"
            )
        return float(constants[expr])
    if callable(expr):
        return float(expr(constants))
    return float(expr)


@dataclass(frozen=True)
class DistributionSpec:
    """One entry of the model's distribution list."""
    name: str
    kind: DistributionKind
    first: ParamExpr
    second: Optional[ParamExpr] = None

    def resolve(self, constants: Mapping[str, float]) -> DistributionParams:
        params = DistributionParams(
            kind=DistributionKind.parse(self.kind),
            first=evaluate_expression(self.first, constants),
            second=evaluate_expression(self.second, constants),
        )
        try:
            return params.validate()
        except InvalidParameterError as e:
            raise InvalidParameterError(f"distribution {self.name!r}: {e}") from e


class DistributionList:
    """Named distributions referenced by model events."""

    def __init__(self, specs: Iterable[DistributionSpec] = ()):
        self._specs: Dict[str, DistributionSpec] = {}
        for spec in specs:
            self.add(spec)

    def add(self, spec: DistributionSpec):
        if spec.name in self._specs:
            raise ValueError(f"Duplicate distribution name: {spec.name}")
        self._specs[spec.name] = spec

    @property
    def names(self):
        return list(self._specs.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def get(self, name: str) -> DistributionSpec:
        if name not in self._specs:
            raise KeyError(f"Unknown distribution: {name}. Available: {self.names}")
        return self._specs[name]

    def resolve(self, constants: Optional[Mapping[str, float]] = None) -> Dict[str, DistributionParams]:
        constants = constants or {}
        return {name: spec.resolve(constants) for name, spec in self._specs.items()}


# ---------------------------------------------------------------------------
# Parameter synthesis descriptor
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParameterToSynthesize:
    """Range of one event's distribution parameter (1-based ``index``)."""
    event: str
    index: int
    lower: float
    upper: float

    def validate(self, params: DistributionParams) -> 'ParameterToSynthesize':
        """
        Check the range against the event's current parameters.

        Every value in [lower, upper] must yield a valid distribution,
        so a query that passes here never fails the domain check later.
        """
        label = f"parameter {self.index} of event {self.event!r}"
        if not 1 <= self.index <= params.kind.arity:
            raise InvalidParameterError(
                f"{label}: index out of range for {params.kind.value} (arity {params.kind.arity})"
            )
        if (params.kind, self.index) in _INTEGER_PARAMS:
            raise InvalidParameterError(f"{label}: integer parameters cannot be synthesized")
        if self.lower < 0:
            raise InvalidParameterError(f"{label}: lower bound must be >= 0, got {self.lower}")
        if not self.lower < self.upper:
            raise InvalidParameterError(
                f"{label}: lower bound {self.lower} must be below upper bound {self.upper}"
            )
        params.with_parameter(self.index, self.lower).validate()
        params.with_parameter(self.index, self.upper).validate()
        return self

    def contains(self, value: float) -> bool:
        return self.lower <= value <= self.upper

    def check_value(self, value: float):
        if not math.isfinite(value) or not self.contains(value):
            raise InvalidParameterError(
                f"Value {value} for parameter {self.index} of event {self.event!r} "
                f"is outside [{self.lower}, {self.upper}]"
            )
