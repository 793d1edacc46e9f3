"""Conversion of feature tolerances into 6-DOF torsor bounds.

Bounds are expressed in the feature's local frame (z = feature axis).
GD&T callouts map onto DOF per ASME Y14.5:

    position            -> translations (radial for cylinders/cones)
    orientation         -> alpha, beta via tolerance / length
    form                -> w (planar) or u, v (radial)
    runout / profile    -> translations plus, where defined, tilt

The geometry class mask is applied last, so constrained DOF are always
exactly [0, 0].
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from tolstack.gdt import FeatureControl, GdtBonusCalculator, GdtSymbol
from tolstack.geometry import (
    ALPHA, BETA, U, V, W, FeatureFrame, GeometryClass, TorsorBounds,
)
from tolstack.models import Contributor

logger = logging.getLogger(__name__)

_GDT = GdtBonusCalculator()

_ORIENTATION = (GdtSymbol.PERPENDICULARITY, GdtSymbol.PARALLELISM, GdtSymbol.ANGULARITY)
_RADIAL_FORM = (GdtSymbol.CONCENTRICITY, GdtSymbol.CIRCULARITY, GdtSymbol.PROFILE_LINE)


def _tilt(value: float, frame: FeatureFrame) -> Optional[float]:
    """Small-angle rotation bound from a linear zone over the feature length."""
    length = frame.geometry.length if frame.geometry is not None else None
    if length is None:
        logger.warning("Feature %r has no length; rotation bound from a %g zone set to zero",
                       frame.id, value)
        return None
    return value / length


def control_half_widths(control: FeatureControl, frame: FeatureFrame) -> np.ndarray:
    """Half-widths per DOF contributed by a single GD&T callout."""
    h = np.zeros(6)
    tol = _GDT.control_tolerance(control, frame.size, frame.actual_size)
    half = tol / 2.0
    gc = frame.geometry_class or GeometryClass.COMPLEX
    symbol = control.symbol

    def set_tilt():
        tilt = _tilt(tol, frame)
        if tilt is not None:
            h[[ALPHA, BETA]] = tilt

    if symbol == GdtSymbol.POSITION:
        if gc in (GeometryClass.SPHERE, GeometryClass.POINT, GeometryClass.COMPLEX):
            h[[U, V, W]] = half
        else:
            h[[U, V]] = half
    elif symbol in _ORIENTATION:
        set_tilt()
    elif symbol == GdtSymbol.FLATNESS:
        h[W] = half
    elif symbol in _RADIAL_FORM:
        h[[U, V]] = half
    elif symbol == GdtSymbol.RUNOUT:
        h[[U, V]] = half
        if frame.geometry is not None and frame.geometry.length is not None:
            set_tilt()
    elif symbol == GdtSymbol.TOTAL_RUNOUT:
        h[[U, V, W]] = half
        if frame.geometry is not None and frame.geometry.length is not None:
            set_tilt()
    elif symbol == GdtSymbol.CYLINDRICITY:
        h[[U, V]] = half
        if frame.geometry is not None and frame.geometry.length is not None:
            set_tilt()
    elif symbol == GdtSymbol.PROFILE_SURFACE:
        if gc == GeometryClass.PLANE:
            h[W] = half
        elif gc in (GeometryClass.CYLINDER, GeometryClass.CONE):
            h[[U, V]] = half
        else:
            h[[U, V, W]] = half
    elif symbol == GdtSymbol.STRAIGHTNESS:
        if gc in (GeometryClass.CYLINDER, GeometryClass.LINE):
            set_tilt()
        else:
            h[W] = half
    elif symbol == GdtSymbol.SYMMETRY:
        h[U] = half
    return h


def bounds_from_controls(frame: FeatureFrame) -> TorsorBounds:
    """Envelope of the bounds of every callout on the feature."""
    bounds = TorsorBounds()
    for control in frame.controls:
        bounds = bounds.merge(TorsorBounds.symmetric(control_half_widths(control, frame)))
    return bounds


def bounds_from_contributor(contributor: Contributor, frame: FeatureFrame) -> TorsorBounds:
    """Bounds from the contributor's own dimensional or position tolerance."""
    a = np.zeros((6, 2))
    gdt = _GDT.resolve(contributor)
    if gdt is not None:
        half = gdt.effective() / 2.0
        a[[U, V, W]] = (-half, half)
    else:
        a[[U, V, W]] = (-contributor.minus_tol, contributor.plus_tol)

    if frame.angular_tolerance is not None:
        rot = frame.angular_tolerance
    else:
        length = frame.geometry.length if frame.geometry is not None else None
        if length is not None:
            rot = contributor.half_tolerance / length
        else:
            rot = 0.0
            if frame.geometry_class is not None and any(
                    d in frame.geometry_class.free_dof for d in (ALPHA, BETA)):
                logger.warning("Feature %r has no length or angular tolerance; "
                               "rotation bounds set to zero", frame.id)
    a[[ALPHA, BETA], 0] = -rot
    a[[ALPHA, BETA], 1] = rot
    # gamma only varies for complex features, where it shares the tilt bound
    a[5] = (-rot, rot)
    return TorsorBounds.from_array(a)


def build_torsor_bounds(contributor: Contributor, frame: FeatureFrame) -> TorsorBounds:
    """Local 6-DOF bounds of one contributor on its chain feature.

    Callouts on the feature take precedence over the contributor's own
    tolerances. The geometry class mask zeroes constrained DOF and a
    negative direction flips every interval.
    """
    if frame.controls:
        bounds = bounds_from_controls(frame)
    else:
        bounds = bounds_from_contributor(contributor, frame)

    gc = frame.geometry_class or GeometryClass.COMPLEX
    bounds = bounds.constrained(gc)
    if contributor.sign < 0:
        bounds = bounds.negated()
    logger.debug("Torsor bounds for %r on %r: %s", contributor.name, frame.id, bounds.to_dict())
    return bounds
