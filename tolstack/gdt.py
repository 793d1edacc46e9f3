"""GD&T support: material-condition bonus and feature control callouts.

Implements the MMC/LMC bonus rule per ASME Y14.5: a feature of size that
departs from its material-condition boundary gains that departure as
additional position tolerance.

    Internal feature (hole):  MMC = smallest = nominal - minus_tol
    External feature (shaft): MMC = largest  = nominal + plus_tol
    LMC is the opposite limit in both cases.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from tolstack.errors import ValidationError
from tolstack.models import (
    Contributor, GdtContribution, MaterialCondition, coerce_enum, require_number,
)

logger = logging.getLogger(__name__)


class GdtSymbol(Enum):
    """GD&T tolerance types per ASME Y14.5."""
    # Location
    POSITION = "position"
    CONCENTRICITY = "concentricity"
    SYMMETRY = "symmetry"

    # Form
    FLATNESS = "flatness"
    STRAIGHTNESS = "straightness"
    CIRCULARITY = "circularity"
    CYLINDRICITY = "cylindricity"

    # Orientation
    PERPENDICULARITY = "perpendicularity"
    PARALLELISM = "parallelism"
    ANGULARITY = "angularity"

    # Profile
    PROFILE_SURFACE = "profile_surface"
    PROFILE_LINE = "profile_line"

    # Runout
    RUNOUT = "runout"
    TOTAL_RUNOUT = "total_runout"


@dataclass(frozen=True)
class SizeLimits:
    """Size dimension of a feature of size.

    Attributes:
        nominal: Nominal size (diameter or width).
        plus_tol: Plus tolerance on size.
        minus_tol: Minus tolerance on size.
        internal: True for hole-like features, False for shaft-like ones.
    """
    nominal: float
    plus_tol: float
    minus_tol: float
    internal: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "nominal", require_number(self.nominal, "size.nominal"))
        object.__setattr__(self, "plus_tol", require_number(
            self.plus_tol, "size.plus_tol", non_negative=True))
        object.__setattr__(self, "minus_tol", require_number(
            self.minus_tol, "size.minus_tol", non_negative=True))
        object.__setattr__(self, "internal", bool(self.internal))

    @property
    def mmc(self) -> float:
        """Maximum material size: the tightest material state."""
        if self.internal:
            return self.nominal - self.minus_tol
        return self.nominal + self.plus_tol

    @property
    def lmc(self) -> float:
        """Least material size: the loosest material state."""
        if self.internal:
            return self.nominal + self.plus_tol
        return self.nominal - self.minus_tol

    @property
    def smallest(self) -> float:
        return self.nominal - self.minus_tol

    @property
    def largest(self) -> float:
        return self.nominal + self.plus_tol

    def to_dict(self) -> dict:
        return {
            "nominal": self.nominal,
            "plus_tol": self.plus_tol,
            "minus_tol": self.minus_tol,
            "internal": self.internal,
        }

    @classmethod
    def from_dict(cls, d: dict) -> SizeLimits:
        return cls(
            nominal=d["nominal"],
            plus_tol=d.get("plus_tol", 0.0),
            minus_tol=d.get("minus_tol", 0.0),
            internal=d.get("internal", True),
        )


@dataclass(frozen=True)
class FeatureControl:
    """A single GD&T callout on a chain feature.

    Attributes:
        symbol: The type of GD&T tolerance.
        value: Tolerance zone width/diameter.
        material_condition: Material condition modifier.
        datum_refs: Datum reference labels (e.g. ["A", "B"]).
    """
    symbol: GdtSymbol
    value: float
    material_condition: MaterialCondition = MaterialCondition.RFS
    datum_refs: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", coerce_enum(GdtSymbol, self.symbol, "control.symbol"))
        object.__setattr__(self, "value", require_number(
            self.value, "control.value", non_negative=True))
        object.__setattr__(self, "material_condition", coerce_enum(
            MaterialCondition, self.material_condition, "control.material_condition"))
        object.__setattr__(self, "datum_refs", tuple(self.datum_refs))

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol.value,
            "value": self.value,
            "material_condition": self.material_condition.value,
            "datum_refs": list(self.datum_refs),
        }

    @classmethod
    def from_dict(cls, d: dict) -> FeatureControl:
        return cls(
            symbol=d["symbol"],
            value=d["value"],
            material_condition=d.get("material_condition", "rfs"),
            datum_refs=tuple(d.get("datum_refs", ())),
        )


class GdtBonusCalculator:
    """Converts position tolerance + actual size + material condition into
    an effective tolerance.

    The calculator holds no state; one instance can serve any number of
    concurrent analyses.
    """

    def bonus(
        self,
        size: SizeLimits,
        material_condition: MaterialCondition,
        actual_size: Optional[float],
    ) -> float:
        """Bonus tolerance from departure of ``actual_size`` from MMC/LMC.

        Zero for RFS or when the actual size is unknown.
        """
        if material_condition == MaterialCondition.RFS or actual_size is None:
            return 0.0
        if not size.smallest <= actual_size <= size.largest:
            logger.warning(
                "Actual size %.6g lies outside size limits [%.6g, %.6g]",
                actual_size, size.smallest, size.largest)
        boundary = size.mmc if material_condition == MaterialCondition.MMC else size.lmc
        return abs(actual_size - boundary)

    def resolve(self, contributor: Contributor) -> Optional[GdtContribution]:
        """Return the contributor's GD&T contribution with derived fields set."""
        gdt = contributor.gdt
        if gdt is None:
            return None
        size = SizeLimits(
            nominal=contributor.nominal,
            plus_tol=contributor.plus_tol,
            minus_tol=contributor.minus_tol,
            internal=gdt.internal,
        )
        bonus = self.bonus(size, gdt.material_condition, gdt.actual_size)
        return replace(gdt, bonus=bonus, effective_tolerance=gdt.position_tolerance + bonus)

    def effective_tolerance(self, contributor: Contributor) -> float:
        """Effective position tolerance of a contributor, 0 without GD&T."""
        resolved = self.resolve(contributor)
        if resolved is None:
            return 0.0
        return resolved.effective()

    def effective_band(self, contributor: Contributor, include_gdt: bool) -> float:
        """Tolerance band used by the 1D analyzers.

        With ``include_gdt`` the effective position tolerance is folded in
        as additional bilateral variation (half on each side).
        """
        band = contributor.tolerance_band
        if include_gdt:
            band += self.effective_tolerance(contributor)
        return band

    def control_tolerance(
        self,
        control: FeatureControl,
        size: Optional[SizeLimits],
        actual_size: Optional[float],
    ) -> float:
        """Effective zone value of a feature control including its bonus."""
        if control.material_condition != MaterialCondition.RFS and size is None:
            if actual_size is not None:
                raise ValidationError(
                    "Material-condition bonus needs the feature size limits",
                    field="size")
            return control.value
        if size is None:
            return control.value
        return control.value + self.bonus(size, control.material_condition, actual_size)


def mmc_size(nominal: float, plus_tol: float, minus_tol: float, internal: bool = True) -> float:
    """Maximum material size of a feature of size."""
    return SizeLimits(nominal, plus_tol, minus_tol, internal).mmc


def lmc_size(nominal: float, plus_tol: float, minus_tol: float, internal: bool = True) -> float:
    """Least material size of a feature of size."""
    return SizeLimits(nominal, plus_tol, minus_tol, internal).lmc
