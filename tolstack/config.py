"""Configuration objects for stack-up analysis runs.

Configuration is always passed explicitly into the analysis functions;
nothing here is read from the environment or from module state.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Optional

from tolstack.errors import ConfigError


class Method3D(Enum):
    """3D propagation methods."""
    JACOBIAN_TORSOR = "jacobian_torsor"     # worst-case + RSS
    MONTE_CARLO_3D = "monte_carlo_3d"       # worst-case + RSS + sampling


@dataclass(frozen=True)
class Analysis3DConfig:
    """Configuration for 3D torsor propagation.

    Attributes:
        enabled: Run the 3D analysis at all.
        method: JACOBIAN_TORSOR or MONTE_CARLO_3D.
        monte_carlo_iterations: Number of 3D samples.
        seed: Random seed for the 3D sampler.
        reference_point: Point where the result torsor is evaluated.
            Defaults to the origin of the last feature in the chain.
    """
    enabled: bool = False
    method: Method3D = Method3D.JACOBIAN_TORSOR
    monte_carlo_iterations: int = 10_000
    seed: Optional[int] = None
    reference_point: Optional[tuple[float, float, float]] = None

    def __post_init__(self) -> None:
        if not isinstance(self.method, Method3D):
            try:
                object.__setattr__(self, "method", Method3D(str(self.method).lower()))
            except ValueError:
                allowed = ", ".join(m.value for m in Method3D)
                raise ConfigError(
                    f"Unsupported 3D method {self.method!r}; expected one of: {allowed}",
                    field="analysis_3d.method") from None
        _check_iterations(self.monte_carlo_iterations, "analysis_3d.monte_carlo_iterations")
        if self.reference_point is not None:
            try:
                point = tuple(self.reference_point)
            except TypeError:
                point = ()
            if len(point) != 3:
                raise ConfigError("reference_point must have 3 components",
                                  field="analysis_3d.reference_point")
            object.__setattr__(self, "reference_point", tuple(
                _config_number(x, "analysis_3d.reference_point") for x in point))

    def to_dict(self) -> dict:
        d = asdict(self)
        d["method"] = self.method.value
        if self.reference_point is not None:
            d["reference_point"] = list(self.reference_point)
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Analysis3DConfig:
        return cls(**_known_keys(cls, d))


@dataclass(frozen=True)
class AnalysisConfig:
    """Configuration for one analysis invocation.

    Attributes:
        sigma_level: Number of standard deviations the tolerance band spans
            (6.0 means the band is +/-3 sigma).
        mean_shift_k: Bender k-factor for long-term mean drift (0 = off).
        include_gdt: Fold GD&T position tolerances into the 1D analyses.
        mc_iterations: Number of Monte Carlo iterations.
        seed: Random seed for Monte Carlo reproducibility.
        marginal_fraction: Fraction of the tolerance band below which a
            positive worst-case margin is classified as marginal.
        mc_batch_size: Samples drawn per batch between budget checks.
        max_iterations: Upper bound accepted for any iteration count.
        time_budget_s: Wall-clock budget for sampling, None for unlimited.
        max_chain_length: Upper bound on the number of 3D chain features.
        analysis_3d: 3D propagation settings.
    """
    sigma_level: float = 6.0
    mean_shift_k: float = 0.0
    include_gdt: bool = False
    mc_iterations: int = 10_000
    seed: Optional[int] = None
    marginal_fraction: float = 0.1
    mc_batch_size: int = 100_000
    max_iterations: int = 10_000_000
    time_budget_s: Optional[float] = None
    max_chain_length: int = 256
    analysis_3d: Analysis3DConfig = field(default_factory=Analysis3DConfig)

    def __post_init__(self) -> None:
        for name in ("sigma_level", "mean_shift_k", "marginal_fraction"):
            object.__setattr__(self, name, _config_number(getattr(self, name), name))
        if self.time_budget_s is not None:
            object.__setattr__(self, "time_budget_s",
                               _config_number(self.time_budget_s, "time_budget_s"))
        if not self.sigma_level > 0:
            raise ConfigError(f"sigma_level must be > 0, got {self.sigma_level}",
                              field="sigma_level")
        if self.mean_shift_k < 0:
            raise ConfigError(f"mean_shift_k must be >= 0, got {self.mean_shift_k}",
                              field="mean_shift_k")
        if not 0 <= self.marginal_fraction < 1:
            raise ConfigError(
                f"marginal_fraction must be in [0, 1), got {self.marginal_fraction}",
                field="marginal_fraction")
        _check_iterations(self.mc_iterations, "mc_iterations")
        _check_iterations(self.mc_batch_size, "mc_batch_size")
        _check_iterations(self.max_iterations, "max_iterations")
        if self.mc_iterations > self.max_iterations:
            raise ConfigError(
                f"mc_iterations {self.mc_iterations} exceeds max_iterations {self.max_iterations}",
                field="mc_iterations")
        if self.analysis_3d.monte_carlo_iterations > self.max_iterations:
            raise ConfigError(
                f"3D iterations {self.analysis_3d.monte_carlo_iterations} exceed "
                f"max_iterations {self.max_iterations}",
                field="analysis_3d.monte_carlo_iterations")
        if self.time_budget_s is not None and not self.time_budget_s > 0:
            raise ConfigError(f"time_budget_s must be > 0, got {self.time_budget_s}",
                              field="time_budget_s")
        if self.max_chain_length < 1:
            raise ConfigError("max_chain_length must be >= 1", field="max_chain_length")

    def to_dict(self) -> dict:
        d = asdict(self)
        d["analysis_3d"] = self.analysis_3d.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: dict) -> AnalysisConfig:
        kwargs = _known_keys(cls, d)
        if isinstance(kwargs.get("analysis_3d"), dict):
            kwargs["analysis_3d"] = Analysis3DConfig.from_dict(kwargs["analysis_3d"])
        return cls(**kwargs)


def _config_number(value, name: str) -> float:
    """Return a configuration value as a finite float or raise ConfigError."""
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got {value!r}", field=name)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}", field=name) from None
    if not math.isfinite(number):
        raise ConfigError(f"{name} must be finite, got {number}", field=name)
    return number


def _check_iterations(value, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Integral) or value <= 0:
        raise ConfigError(f"{name} must be a positive integer, got {value!r}", field=name)


def _known_keys(cls, d: dict) -> dict:
    names = {f.name for f in fields(cls)}
    unknown = set(d) - names
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
    return dict(d)
