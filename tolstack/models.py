"""Data models for tolerance stack-up analysis."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

import numpy as np

from tolstack.errors import ConfigError, ValidationError


class Distribution(Enum):
    """Statistical distribution for a tolerance contributor."""
    NORMAL = "normal"
    UNIFORM = "uniform"
    TRIANGULAR = "triangular"


class Direction(Enum):
    """Whether a contributor adds to or subtracts from the stack."""
    POSITIVE = "positive"
    NEGATIVE = "negative"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.POSITIVE else -1


class MaterialCondition(Enum):
    """Material condition modifiers."""
    MMC = "mmc"             # Maximum Material Condition
    LMC = "lmc"             # Least Material Condition
    RFS = "rfs"             # Regardless of Feature Size


def coerce_enum(enum_cls, value, field_name: str, contributor: Optional[str] = None):
    """Return ``value`` as a member of ``enum_cls``.

    Accepts members and their string values. Anything else raises
    ConfigError, since the closed sets of distributions, geometry classes
    and material conditions are part of the engine configuration.
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ConfigError(
            f"Unsupported {enum_cls.__name__} {value!r}; expected one of: {allowed}",
            field=field_name, contributor=contributor,
        ) from None


def require_number(value, field_name: str, contributor: Optional[str] = None,
                   non_negative: bool = False) -> float:
    """Validate a required numeric field and return it as float."""
    if value is None:
        raise ValidationError("Missing required numeric field",
                              field=field_name, contributor=contributor)
    if isinstance(value, bool):
        raise ValidationError(f"Expected a number, got {value!r}",
                              field=field_name, contributor=contributor)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Expected a number, got {value!r}",
                              field=field_name, contributor=contributor) from None
    if not math.isfinite(number):
        raise ValidationError(f"Value must be finite, got {number}",
                              field=field_name, contributor=contributor)
    if non_negative and number < 0:
        raise ValidationError(
            f"Tolerance must be a non-negative magnitude, got {number}",
            field=field_name, contributor=contributor)
    return number


def unit_vector(values, field_name: str) -> tuple[float, float, float]:
    """Normalize a 3-vector, rejecting zero or malformed input."""
    d = np.asarray(values, dtype=float)
    if d.shape != (3,) or not np.all(np.isfinite(d)):
        raise ValidationError(f"Expected a finite 3-vector, got {values!r}", field=field_name)
    mag = np.linalg.norm(d)
    if mag < 1e-12:
        raise ValidationError("Direction vector must be non-zero", field=field_name)
    return tuple(float(x) for x in d / mag)


@dataclass(frozen=True)
class Target:
    """Specification of the critical dimension (gap, clearance, interference).

    Attributes:
        name: Name of the target dimension.
        nominal: Nominal value (informative, not constrained to the limits).
        upper_limit: Upper specification limit (USL).
        lower_limit: Lower specification limit (LSL).
        units: Length units.
        critical: True for a critical dimension.
    """
    name: str
    nominal: float
    upper_limit: float
    lower_limit: float
    units: str = "mm"
    critical: bool = False

    def __post_init__(self) -> None:
        for key in ("nominal", "upper_limit", "lower_limit"):
            object.__setattr__(self, key, require_number(getattr(self, key), key))
        if self.upper_limit <= self.lower_limit:
            raise ValidationError(
                f"Upper limit {self.upper_limit} must exceed lower limit {self.lower_limit}",
                field="upper_limit")

    @property
    def tolerance_band(self) -> float:
        return self.upper_limit - self.lower_limit

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "nominal": self.nominal,
            "upper_limit": self.upper_limit,
            "lower_limit": self.lower_limit,
            "units": self.units,
            "critical": self.critical,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Target:
        return cls(
            name=d.get("name", ""),
            nominal=d.get("nominal", 0.0),
            upper_limit=d.get("upper_limit"),
            lower_limit=d.get("lower_limit"),
            units=d.get("units", "mm"),
            critical=bool(d.get("critical", False)),
        )


@dataclass(frozen=True)
class GdtContribution:
    """GD&T position tolerance carried by a contributor.

    The bonus and effective tolerance are derived by
    ``GdtBonusCalculator.resolve``; until then the effective tolerance is
    the bare position tolerance.

    Attributes:
        position_tolerance: Diameter of the position tolerance zone.
        actual_size: Actual feature size for the MMC/LMC bonus, if known.
        material_condition: Modifier applied to the position tolerance.
        internal: True for hole-like features, False for shaft-like ones.
        bonus: Derived bonus tolerance.
        effective_tolerance: Derived position_tolerance + bonus.
    """
    position_tolerance: float
    actual_size: Optional[float] = None
    material_condition: MaterialCondition = MaterialCondition.MMC
    internal: bool = True
    bonus: Optional[float] = None
    effective_tolerance: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "position_tolerance", require_number(
            self.position_tolerance, "gdt.position_tolerance", non_negative=True))
        if self.actual_size is not None:
            object.__setattr__(self, "actual_size",
                               require_number(self.actual_size, "gdt.actual_size"))
        object.__setattr__(self, "material_condition", coerce_enum(
            MaterialCondition, self.material_condition, "gdt.material_condition"))

    def effective(self) -> float:
        """Effective tolerance, falling back to the bare position tolerance."""
        if self.effective_tolerance is None:
            return self.position_tolerance
        return self.effective_tolerance

    def to_dict(self) -> dict:
        d = {
            "position_tolerance": self.position_tolerance,
            "material_condition": self.material_condition.value,
            "internal": self.internal,
        }
        if self.actual_size is not None:
            d["actual_size"] = self.actual_size
        if self.bonus is not None:
            d["bonus"] = self.bonus
        if self.effective_tolerance is not None:
            d["effective_tolerance"] = self.effective_tolerance
        return d

    @classmethod
    def from_dict(cls, d: dict) -> GdtContribution:
        if "position_tolerance" not in d:
            raise ValidationError("Missing required numeric field",
                                  field="gdt.position_tolerance")
        return cls(
            position_tolerance=d["position_tolerance"],
            actual_size=d.get("actual_size"),
            material_condition=d.get("material_condition", "mmc"),
            internal=d.get("internal", True),
        )


@dataclass(frozen=True)
class Contributor:
    """A single dimension in the tolerance chain.

    Tolerances are always stored as magnitudes; ``direction`` decides
    whether the dimension adds to or subtracts from the result.

    Attributes:
        name: Descriptive name for this contributor.
        nominal: Nominal dimension value.
        plus_tol: Upper tolerance (non-negative).
        minus_tol: Lower tolerance (non-negative, will be subtracted).
        direction: POSITIVE if the dimension adds to the gap.
        distribution: Statistical distribution assumed for Monte Carlo.
        feature: Id of the chain feature this dimension belongs to (3D).
        source: Drawing or document reference.
        gdt: Optional GD&T position tolerance contribution.
    """
    name: str
    nominal: float
    plus_tol: float
    minus_tol: float
    direction: Direction = Direction.POSITIVE
    distribution: Distribution = Distribution.NORMAL
    feature: Optional[str] = None
    source: Optional[str] = None
    gdt: Optional[GdtContribution] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("Contributor name must not be empty", field="name")
        object.__setattr__(self, "nominal",
                           require_number(self.nominal, "nominal", self.name))
        for tol in ("plus_tol", "minus_tol"):
            object.__setattr__(self, tol, require_number(
                getattr(self, tol), tol, self.name, non_negative=True))
        object.__setattr__(self, "direction",
                           coerce_enum(Direction, self.direction, "direction", self.name))
        object.__setattr__(self, "distribution",
                           coerce_enum(Distribution, self.distribution, "distribution", self.name))

    @property
    def sign(self) -> int:
        return self.direction.sign

    @property
    def signed_nominal(self) -> float:
        return self.sign * self.nominal

    @property
    def tolerance_band(self) -> float:
        """Total dimensional tolerance band."""
        return self.plus_tol + self.minus_tol

    @property
    def midpoint_shift(self) -> float:
        """Shift of the band centre from nominal due to asymmetric tolerances."""
        return (self.plus_tol - self.minus_tol) / 2.0

    @property
    def half_tolerance(self) -> float:
        return self.tolerance_band / 2.0

    def to_dict(self) -> dict:
        d = {
            "name": self.name,
            "nominal": self.nominal,
            "plus_tol": self.plus_tol,
            "minus_tol": self.minus_tol,
            "direction": self.direction.value,
            "distribution": self.distribution.value,
        }
        if self.feature is not None:
            d["feature"] = self.feature
        if self.source is not None:
            d["source"] = self.source
        if self.gdt is not None:
            d["gdt"] = self.gdt.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Contributor:
        name = d.get("name")
        for key in ("nominal", "plus_tol", "minus_tol"):
            if key not in d:
                raise ValidationError("Missing required numeric field",
                                      field=key, contributor=name)
        gdt = d.get("gdt")
        return cls(
            name=name,
            nominal=d["nominal"],
            plus_tol=d["plus_tol"],
            minus_tol=d["minus_tol"],
            direction=d.get("direction", "positive"),
            distribution=d.get("distribution", "normal"),
            feature=d.get("feature"),
            source=d.get("source"),
            gdt=GdtContribution.from_dict(gdt) if gdt is not None else None,
        )


@dataclass(frozen=True)
class Stackup:
    """Immutable snapshot of one tolerance stack-up handed to the engine.

    Attributes:
        name: Descriptive name for the stack-up.
        target: Specification of the resulting dimension.
        contributors: Ordered contributors forming the chain.
        features: Ordered kinematic chain of feature frames (3D only).
        functional_direction: Direction the 3D result is projected onto.
        description: Optional longer description.
    """
    name: str
    target: Target
    contributors: tuple[Contributor, ...] = ()
    features: tuple = ()
    functional_direction: Optional[tuple[float, float, float]] = None
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "contributors", tuple(self.contributors))
        object.__setattr__(self, "features", tuple(self.features))
        for i, c in enumerate(self.contributors):
            if not isinstance(c, Contributor):
                raise ValidationError(f"Expected a Contributor, got {type(c).__name__}",
                                      field="contributors", index=i)
        if self.functional_direction is not None:
            object.__setattr__(self, "functional_direction",
                               unit_vector(self.functional_direction, "functional_direction"))

    def with_contributors(self, contributors) -> Stackup:
        """Return a copy of this snapshot with a different contributor list."""
        return replace(self, contributors=tuple(contributors))

    def to_dict(self) -> dict:
        d = {
            "name": self.name,
            "description": self.description,
            "target": self.target.to_dict(),
            "contributors": [c.to_dict() for c in self.contributors],
        }
        if self.features:
            d["features"] = [f.to_dict() for f in self.features]
        if self.functional_direction is not None:
            d["functional_direction"] = list(self.functional_direction)
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Stackup:
        from tolstack.geometry import FeatureFrame

        if "target" not in d:
            raise ValidationError("Missing required field", field="target")
        contributors = []
        for i, c in enumerate(d.get("contributors", [])):
            try:
                contributors.append(Contributor.from_dict(c))
            except ValidationError as e:
                raise ValidationError(e.message, field=e.field,
                                      contributor=e.contributor, index=i) from e
        features = [FeatureFrame.from_dict(f) for f in d.get("features", [])]
        fd = d.get("functional_direction")
        return cls(
            name=d.get("name", ""),
            description=d.get("description", ""),
            target=Target.from_dict(d["target"]),
            contributors=tuple(contributors),
            features=tuple(features),
            functional_direction=tuple(fd) if fd is not None else None,
        )
