"""Feature geometry for 3D torsor analysis.

A small displacement torsor has six components, ordered
(u, v, w, alpha, beta, gamma): translations along and rotations about the
local x, y, z axes. The local z axis of a feature is its ``Geometry3D.axis``
(plane normal, cylinder or cone axis, line direction).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from tolstack.errors import ValidationError
from tolstack.gdt import FeatureControl, SizeLimits
from tolstack.models import coerce_enum, require_number, unit_vector

U, V, W, ALPHA, BETA, GAMMA = range(6)
DOF_NAMES = ("u", "v", "w", "alpha", "beta", "gamma")
TRANSLATIONS = (U, V, W)
ROTATIONS = (ALPHA, BETA, GAMMA)


class GeometryClass(Enum):
    """Geometry class of a feature; decides which DOF carry variation."""
    PLANE = "plane"
    CYLINDER = "cylinder"
    SPHERE = "sphere"
    CONE = "cone"
    POINT = "point"
    LINE = "line"
    COMPLEX = "complex"

    @property
    def free_dof(self) -> tuple[int, ...]:
        """DOF indices that carry the feature's manufacturing variation."""
        return FREE_DOF[self]

    @property
    def constrained_dof(self) -> tuple[int, ...]:
        """DOF indices along which the feature is invariant (zero variation)."""
        return tuple(i for i in range(6) if i not in FREE_DOF[self])

    def mask(self) -> np.ndarray:
        """Boolean mask of the free DOF."""
        m = np.zeros(6, dtype=bool)
        m[list(self.free_dof)] = True
        return m


FREE_DOF: dict[GeometryClass, tuple[int, ...]] = {
    GeometryClass.PLANE: (W, ALPHA, BETA),
    GeometryClass.CYLINDER: (U, V, ALPHA, BETA),
    GeometryClass.SPHERE: (U, V, W),
    GeometryClass.CONE: (U, V, W, ALPHA, BETA),
    GeometryClass.POINT: (U, V, W),
    GeometryClass.LINE: (U, V),
    GeometryClass.COMPLEX: (U, V, W, ALPHA, BETA, GAMMA),
}


@dataclass(frozen=True)
class Geometry3D:
    """Nominal placement of a feature in the assembly frame.

    Attributes:
        origin: Feature origin (x, y, z).
        axis: Unit feature axis; normalized on construction.
        length: Feature length used to turn linear tolerances into
            rotations (small-angle), if known.
    """
    origin: tuple[float, float, float] = (0.0, 0.0, 0.0)
    axis: tuple[float, float, float] = (0.0, 0.0, 1.0)
    length: Optional[float] = None

    def __post_init__(self) -> None:
        o = np.asarray(self.origin, dtype=float)
        if o.shape != (3,) or not np.all(np.isfinite(o)):
            raise ValidationError(f"Expected a finite 3-vector, got {self.origin!r}",
                                  field="geometry.origin")
        object.__setattr__(self, "origin", tuple(float(x) for x in o))
        object.__setattr__(self, "axis", unit_vector(self.axis, "geometry.axis"))
        if self.length is not None:
            length = require_number(self.length, "geometry.length")
            if length <= 0:
                raise ValidationError(f"Length must be > 0, got {length}",
                                      field="geometry.length")
            object.__setattr__(self, "length", length)

    @property
    def origin_array(self) -> np.ndarray:
        return np.array(self.origin, dtype=float)

    @property
    def axis_array(self) -> np.ndarray:
        return np.array(self.axis, dtype=float)

    def to_dict(self) -> dict:
        d = {"origin": list(self.origin), "axis": list(self.axis)}
        if self.length is not None:
            d["length"] = self.length
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Geometry3D:
        return cls(
            origin=tuple(d.get("origin", (0.0, 0.0, 0.0))),
            axis=tuple(d.get("axis", (0.0, 0.0, 1.0))),
            length=d.get("length"),
        )


@dataclass(frozen=True)
class TorsorBounds:
    """Six independent [min, max] intervals, ordered u, v, w, alpha, beta, gamma."""
    u: tuple[float, float] = (0.0, 0.0)
    v: tuple[float, float] = (0.0, 0.0)
    w: tuple[float, float] = (0.0, 0.0)
    alpha: tuple[float, float] = (0.0, 0.0)
    beta: tuple[float, float] = (0.0, 0.0)
    gamma: tuple[float, float] = (0.0, 0.0)

    def __post_init__(self) -> None:
        for name in DOF_NAMES:
            lo, hi = (float(x) for x in getattr(self, name))
            if lo > hi:
                raise ValidationError(f"Interval lower bound {lo} exceeds upper bound {hi}",
                                      field=name)
            object.__setattr__(self, name, (lo, hi))

    @classmethod
    def from_array(cls, arr) -> TorsorBounds:
        """Build from a (6, 2) array of [min, max] rows."""
        a = np.asarray(arr, dtype=float).reshape(6, 2)
        return cls(*(tuple(row) for row in a))

    @classmethod
    def symmetric(cls, half_widths) -> TorsorBounds:
        h = np.abs(np.asarray(half_widths, dtype=float))
        return cls.from_array(np.column_stack([-h, h]))

    def as_array(self) -> np.ndarray:
        """(6, 2) array of [min, max] rows."""
        return np.array([getattr(self, name) for name in DOF_NAMES], dtype=float)

    @property
    def lower(self) -> np.ndarray:
        return self.as_array()[:, 0]

    @property
    def upper(self) -> np.ndarray:
        return self.as_array()[:, 1]

    @property
    def centers(self) -> np.ndarray:
        return self.as_array().mean(axis=1)

    @property
    def widths(self) -> np.ndarray:
        a = self.as_array()
        return a[:, 1] - a[:, 0]

    def merge(self, other: TorsorBounds) -> TorsorBounds:
        """Envelope of two bounds (widest interval per DOF)."""
        a, b = self.as_array(), other.as_array()
        return TorsorBounds.from_array(np.column_stack([
            np.minimum(a[:, 0], b[:, 0]), np.maximum(a[:, 1], b[:, 1])]))

    def constrained(self, geometry_class: GeometryClass) -> TorsorBounds:
        """Copy with the class's constrained DOF forced to [0, 0]."""
        a = self.as_array()
        a[~geometry_class.mask()] = 0.0
        return TorsorBounds.from_array(a)

    def negated(self) -> TorsorBounds:
        a = self.as_array()
        return TorsorBounds.from_array(np.column_stack([-a[:, 1], -a[:, 0]]))

    def to_dict(self) -> dict:
        return {name: list(getattr(self, name)) for name in DOF_NAMES}

    @classmethod
    def from_dict(cls, d: dict) -> TorsorBounds:
        return cls(**{name: tuple(d.get(name, (0.0, 0.0))) for name in DOF_NAMES})


@dataclass(frozen=True)
class FeatureFrame:
    """One feature of the kinematic chain, fully resolved by the caller.

    Attributes:
        id: Feature identifier referenced by ``Contributor.feature``.
        geometry_class: Geometry class; required for 3D analysis.
        geometry: Nominal placement; required for 3D analysis.
        angular_tolerance: Rotation half-width in radians, if specified.
        controls: GD&T callouts that bound the feature's torsor.
        size: Size limits of a feature of size, for control bonus.
        actual_size: Measured size for control bonus, if known.
    """
    id: str
    geometry_class: Optional[GeometryClass] = None
    geometry: Optional[Geometry3D] = None
    angular_tolerance: Optional[float] = None
    controls: tuple[FeatureControl, ...] = ()
    size: Optional[SizeLimits] = None
    actual_size: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValidationError("Feature id must not be empty", field="features.id")
        if self.geometry_class is not None:
            object.__setattr__(self, "geometry_class", coerce_enum(
                GeometryClass, self.geometry_class, "geometry_class"))
        if self.angular_tolerance is not None:
            object.__setattr__(self, "angular_tolerance", require_number(
                self.angular_tolerance, "angular_tolerance", non_negative=True))
        object.__setattr__(self, "controls", tuple(self.controls))

    @property
    def is_resolved(self) -> bool:
        return self.geometry_class is not None and self.geometry is not None

    def to_dict(self) -> dict:
        d = {"id": self.id}
        if self.geometry_class is not None:
            d["geometry_class"] = self.geometry_class.value
        if self.geometry is not None:
            d["geometry"] = self.geometry.to_dict()
        if self.angular_tolerance is not None:
            d["angular_tolerance"] = self.angular_tolerance
        if self.controls:
            d["controls"] = [c.to_dict() for c in self.controls]
        if self.size is not None:
            d["size"] = self.size.to_dict()
        if self.actual_size is not None:
            d["actual_size"] = self.actual_size
        return d

    @classmethod
    def from_dict(cls, d: dict) -> FeatureFrame:
        geometry = d.get("geometry")
        size = d.get("size")
        return cls(
            id=d.get("id", ""),
            geometry_class=d.get("geometry_class"),
            geometry=Geometry3D.from_dict(geometry) if geometry is not None else None,
            angular_tolerance=d.get("angular_tolerance"),
            controls=tuple(FeatureControl.from_dict(c) for c in d.get("controls", [])),
            size=SizeLimits.from_dict(size) if size is not None else None,
            actual_size=d.get("actual_size"),
        )
