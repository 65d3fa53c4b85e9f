"""
Switching functions for contact-like collective variables.

A switching function maps a squared distance to a weight in [0, 1] that
decays smoothly from 1 (close) to 0 (far). Every form here shares one
contract:

    weight, dfunc = switch.calculate_sqr(distance2)

where ``dfunc = (d weight / d r) / r``. With this convention the gradient of
the weight with respect to the displacement vector r_ij is simply
``dfunc * r_ij``, so callers never take a square root themselves.

Forms follow the usual PLUMED keyword syntax, e.g.
    "RATIONAL R_0=0.35 NN=6 MM=12 D_MAX=1.0"
    "GAUSSIAN R_0=0.2 D_0=0.1"
"""

import math
import shlex
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple, Type, Union

import torch


class SwitchingFunction(Protocol):
    """Anything that turns squared distances into (weight, dfunc) pairs."""

    def calculate_sqr(self, distance2: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        ...


def _switch(
    distance2: torch.Tensor,
    shape: Callable[[torch.Tensor], Tuple[torch.Tensor, torch.Tensor]],
    r_0: float,
    d_0: float,
    d_max: float,
    stretch: float = 1.0,
    shift: float = 0.0,
) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Evaluate a switching function element-wise.

    Args:
        distance2: Squared distances [...]
        shape: Callable rdist -> (s(rdist), ds/drdist) valid for rdist > 0
        r_0, d_0: rdist = (r - d_0) / r_0
        d_max: Support radius, weight and dfunc are exactly 0 beyond it
        stretch, shift: weight -> weight * stretch + shift

    Returns:
        weight: [...] switching value
        dfunc: [...] (d weight / d r) / r
    """
    distance2 = torch.as_tensor(distance2)
    distance = torch.sqrt(distance2)
    rdist = (distance - d_0) / r_0

    inside = rdist > 0
    # Keep the shape function away from rdist <= 0 so no inf/nan leaks through where()
    rdist_safe = torch.where(inside, rdist, torch.ones_like(rdist))
    value, dvalue = shape(rdist_safe)

    distance_safe = torch.where(distance > 0, distance, torch.ones_like(distance))
    weight = torch.where(inside, value, torch.ones_like(value))
    dfunc = torch.where(inside, dvalue / (r_0 * distance_safe), torch.zeros_like(dvalue))

    weight = weight * stretch + shift
    dfunc = dfunc * stretch

    beyond = distance > d_max
    weight = torch.where(beyond, torch.zeros_like(weight), weight)
    dfunc = torch.where(beyond, torch.zeros_like(dfunc), dfunc)
    return weight, dfunc


def _stretch_coefficients(switch: Any) -> Tuple[float, float]:
    """Return (stretch, shift) so that s(0) = 1 and s(d_max) = 0."""
    probe = torch.tensor([0.0, switch.d_max ** 2], dtype=torch.float64)
    values, _ = _switch(probe, switch._shape, switch.r_0, switch.d_0, math.inf)
    s0, sd = values[0].item(), values[1].item()
    stretch = 1.0 / (s0 - sd)
    return stretch, -sd * stretch


def _check_common(r_0: float, d_0: float, d_max: float, stretch: bool) -> None:
    if r_0 <= 0:
        raise ValueError(f"R_0 must be positive, got {r_0}")
    if d_0 < 0:
        raise ValueError(f"D_0 cannot be negative, got {d_0}")
    if d_max <= d_0:
        raise ValueError(f"D_MAX ({d_max}) must be larger than D_0 ({d_0})")
    if stretch and not math.isfinite(d_max):
        raise ValueError("STRETCH requires a finite D_MAX")


@dataclass(frozen=True)
class RationalSwitch:
    """s(r) = (1 - rdist^nn) / (1 - rdist^mm); mm defaults to 2 * nn."""

    r_0: float
    d_0: float = 0.0
    nn: int = 6
    mm: int = 0
    d_max: float = math.inf
    stretch: bool = False
    _coeffs: Tuple[float, float] = field(default=(1.0, 0.0), init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.mm == 0:
            object.__setattr__(self, "mm", 2 * self.nn)
        if self.nn <= 0 or self.mm <= 0:
            raise ValueError(f"NN and MM must be positive, got NN={self.nn} MM={self.mm}")
        if self.nn == self.mm:
            raise ValueError("NN and MM must differ for a RATIONAL switching function")
        _check_common(self.r_0, self.d_0, self.d_max, self.stretch)
        if self.stretch:
            object.__setattr__(self, "_coeffs", _stretch_coefficients(self))

    def _shape(self, rdist):
        nn, mm = self.nn, self.mm
        # Analytic limit at rdist == 1 where numerator and denominator both vanish
        near_one = torch.abs(rdist - 1.0) < 1e-10
        x = torch.where(near_one, torch.full_like(rdist, 0.5), rdist)
        r_n = x ** (nn - 1)
        r_m = x ** (mm - 1)
        num = 1.0 - r_n * x
        iden = 1.0 / (1.0 - r_m * x)
        value = num * iden
        dvalue = -nn * r_n * iden + value * iden * mm * r_m
        value = torch.where(near_one, torch.full_like(rdist, nn / mm), value)
        dvalue = torch.where(near_one, torch.full_like(rdist, 0.5 * nn * (nn - mm) / mm), dvalue)
        return value, dvalue

    def calculate_sqr(self, distance2):
        return _switch(distance2, self._shape, self.r_0, self.d_0, self.d_max, *self._coeffs)

    def description(self) -> str:
        return (
            f"rational switching function with parameters d0={self.d_0} r0={self.r_0} "
            f"nn={self.nn} mm={self.mm}"
        )


@dataclass(frozen=True)
class ExpSwitch:
    """s(r) = exp(-rdist)."""

    r_0: float
    d_0: float = 0.0
    d_max: float = math.inf
    stretch: bool = False
    _coeffs: Tuple[float, float] = field(default=(1.0, 0.0), init=False, repr=False, compare=False)

    def __post_init__(self):
        _check_common(self.r_0, self.d_0, self.d_max, self.stretch)
        if self.stretch:
            object.__setattr__(self, "_coeffs", _stretch_coefficients(self))

    def _shape(self, rdist):
        value = torch.exp(-rdist)
        return value, -value

    def calculate_sqr(self, distance2):
        return _switch(distance2, self._shape, self.r_0, self.d_0, self.d_max, *self._coeffs)

    def description(self) -> str:
        return f"exponential switching function with parameters d0={self.d_0} r0={self.r_0}"


@dataclass(frozen=True)
class GaussianSwitch:
    """s(r) = exp(-rdist^2 / 2)."""

    r_0: float
    d_0: float = 0.0
    d_max: float = math.inf
    stretch: bool = False
    _coeffs: Tuple[float, float] = field(default=(1.0, 0.0), init=False, repr=False, compare=False)

    def __post_init__(self):
        _check_common(self.r_0, self.d_0, self.d_max, self.stretch)
        if self.stretch:
            object.__setattr__(self, "_coeffs", _stretch_coefficients(self))

    def _shape(self, rdist):
        value = torch.exp(-0.5 * rdist * rdist)
        return value, -rdist * value

    def calculate_sqr(self, distance2):
        return _switch(distance2, self._shape, self.r_0, self.d_0, self.d_max, *self._coeffs)

    def description(self) -> str:
        return f"gaussian switching function with parameters d0={self.d_0} r0={self.r_0}"


@dataclass(frozen=True)
class SmapSwitch:
    """s(r) = (1 + (2^(a/b) - 1) * rdist^a)^(-b/a)."""

    r_0: float
    a: int
    b: int
    d_0: float = 0.0
    d_max: float = math.inf
    stretch: bool = False
    _coeffs: Tuple[float, float] = field(default=(1.0, 0.0), init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.a <= 0 or self.b <= 0:
            raise ValueError(f"A and B must be positive, got A={self.a} B={self.b}")
        _check_common(self.r_0, self.d_0, self.d_max, self.stretch)
        if self.stretch:
            object.__setattr__(self, "_coeffs", _stretch_coefficients(self))

    def _shape(self, rdist):
        c = 2.0 ** (self.a / self.b) - 1.0
        d = -self.b / self.a
        sx = c * rdist ** self.a
        value = (1.0 + sx) ** d
        dvalue = -self.b * sx / rdist * value / (1.0 + sx)
        return value, dvalue

    def calculate_sqr(self, distance2):
        return _switch(distance2, self._shape, self.r_0, self.d_0, self.d_max, *self._coeffs)

    def description(self) -> str:
        return (
            f"smap switching function with parameters d0={self.d_0} r0={self.r_0} "
            f"a={self.a} b={self.b}"
        )


@dataclass(frozen=True)
class CubicSwitch:
    """s(r) = (rdist - 1)^2 (1 + 2 rdist) between d_0 and d_max."""

    d_0: float = 0.0
    d_max: float = math.inf
    stretch: bool = False

    def __post_init__(self):
        if not math.isfinite(self.d_max):
            raise ValueError("CUBIC switching function requires D_MAX")
        if self.d_max <= self.d_0:
            raise ValueError(f"D_MAX ({self.d_max}) must be larger than D_0 ({self.d_0})")
        _check_common(self.r_0, self.d_0, self.d_max, False)

    @property
    def r_0(self) -> float:
        return self.d_max - self.d_0

    def _shape(self, rdist):
        tmp1 = rdist - 1.0
        value = tmp1 * tmp1 * (1.0 + 2.0 * rdist)
        return value, 6.0 * rdist * tmp1

    def calculate_sqr(self, distance2):
        # Already 1 at d_0 and 0 at d_max, so STRETCH is a no-op
        return _switch(distance2, self._shape, self.r_0, self.d_0, self.d_max)

    def description(self) -> str:
        return f"cubic switching function with parameters d0={self.d_0} dmax={self.d_max}"


@dataclass(frozen=True)
class TanhSwitch:
    """s(r) = 1 - tanh(rdist)."""

    r_0: float
    d_0: float = 0.0
    d_max: float = math.inf
    stretch: bool = False
    _coeffs: Tuple[float, float] = field(default=(1.0, 0.0), init=False, repr=False, compare=False)

    def __post_init__(self):
        _check_common(self.r_0, self.d_0, self.d_max, self.stretch)
        if self.stretch:
            object.__setattr__(self, "_coeffs", _stretch_coefficients(self))

    def _shape(self, rdist):
        t = torch.tanh(rdist)
        return 1.0 - t, -(1.0 - t * t)

    def calculate_sqr(self, distance2):
        return _switch(distance2, self._shape, self.r_0, self.d_0, self.d_max, *self._coeffs)

    def description(self) -> str:
        return f"tanh switching function with parameters d0={self.d_0} r0={self.r_0}"


# Keyword -> (constructor argument, converter). Everything not listed is rejected.
_KEYWORDS: Dict[str, Tuple[str, Callable[[Any], Any]]] = {
    "R_0": ("r_0", float),
    "D_0": ("d_0", float),
    "D_MAX": ("d_max", float),
    "NN": ("nn", int),
    "MM": ("mm", int),
    "A": ("a", int),
    "B": ("b", int),
}

SWITCHING_FUNCTIONS: Dict[str, Type] = {
    "RATIONAL": RationalSwitch,
    "EXP": ExpSwitch,
    "GAUSSIAN": GaussianSwitch,
    "SMAP": SmapSwitch,
    "CUBIC": CubicSwitch,
    "TANH": TanhSwitch,
}


def register_switching_function(name: str, constructor: Type) -> None:
    """Make a new functional form available to parse_switching_function."""
    SWITCHING_FUNCTIONS[name.upper()] = constructor


def _convert(key: str, raw: Any) -> Tuple[str, Any]:
    if key not in _KEYWORDS:
        raise ValueError(f"unknown keyword {key} in switching function definition")
    arg, conv = _KEYWORDS[key]
    try:
        return arg, conv(raw)
    except (TypeError, ValueError) as e:
        raise ValueError(f"could not read value '{raw}' for keyword {key}") from e


def parse_switching_function(spec: Union[str, Mapping[str, Any]]) -> SwitchingFunction:
    """
    Build a switching function from a keyword string or a mapping.

    Args:
        spec: "TYPE KEY=VALUE ... [STRETCH|NOSTRETCH]" or
              {"type": "rational", "r_0": 0.3, "nn": 6, ...}

    Returns:
        Switching function object

    Raises:
        ValueError: With the parse error as message
    """
    kwargs: Dict[str, Any] = {}
    flags = set()

    if isinstance(spec, Mapping):
        entries = {str(k).upper(): v for k, v in spec.items()}
        if "TYPE" not in entries:
            raise ValueError("switching function mapping requires a 'type' entry")
        name = str(entries.pop("TYPE")).upper()
        for key, raw in entries.items():
            if key in ("STRETCH", "NOSTRETCH"):
                if bool(raw):
                    flags.add(key)
                continue
            arg, value = _convert(key, raw)
            kwargs[arg] = value
    else:
        try:
            words = shlex.split(str(spec))
        except ValueError as e:
            raise ValueError(f"could not split switching function definition: {e}") from e
        if not words:
            raise ValueError("empty switching function definition")
        name = words[0].upper()
        for word in words[1:]:
            if "=" in word:
                key, raw = word.split("=", 1)
                arg, value = _convert(key.upper(), raw)
                kwargs[arg] = value
            elif word.upper() in ("STRETCH", "NOSTRETCH"):
                flags.add(word.upper())
            else:
                raise ValueError(f"could not understand '{word}' in switching function definition")

    if name not in SWITCHING_FUNCTIONS:
        raise ValueError(
            f"cannot understand switching function type '{name}'. "
            f"Available: {sorted(SWITCHING_FUNCTIONS)}"
        )
    if flags == {"STRETCH", "NOSTRETCH"}:
        raise ValueError("cannot use STRETCH and NOSTRETCH together")
    if "STRETCH" in flags:
        kwargs["stretch"] = True

    try:
        return SWITCHING_FUNCTIONS[name](**kwargs)
    except TypeError as e:
        raise ValueError(f"bad parameters for {name} switching function: {e}") from e


def switching_support(switch: Any) -> Optional[float]:
    """Support radius of a switching function, or None when it is unbounded/unknown."""
    d_max = getattr(switch, "d_max", None)
    if d_max is None or not math.isfinite(d_max):
        return None
    return float(d_max)


def describe_switch(switch: Any) -> str:
    describe = getattr(switch, "description", None)
    if callable(describe):
        return describe()
    return repr(switch)
