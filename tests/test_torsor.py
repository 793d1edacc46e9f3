"""Tests for geometry tables and torsor bound construction."""

import logging

import numpy as np
import pytest

from tolstack.errors import ConfigError, ValidationError
from tolstack.gdt import FeatureControl, GdtSymbol, SizeLimits
from tolstack.geometry import (
    ALPHA, BETA, GAMMA, U, V, W, FeatureFrame, Geometry3D, GeometryClass, TorsorBounds,
)
from tolstack.models import Contributor, Direction, GdtContribution, MaterialCondition
from tolstack.torsor import build_torsor_bounds, control_half_widths


def _frame(gc, length=None, angular_tolerance=None, controls=(), **kwargs):
    return FeatureFrame(
        id="f",
        geometry_class=gc,
        geometry=Geometry3D(origin=(0, 0, 0), axis=(0, 0, 1), length=length),
        angular_tolerance=angular_tolerance,
        controls=controls,
        **kwargs,
    )


def _contributor(plus=0.05, minus=0.03, **kwargs):
    return Contributor("Dim", 10.0, plus, minus, feature="f", **kwargs)


class TestGeometryClass:
    @pytest.mark.parametrize("gc,constrained", [
        (GeometryClass.PLANE, (U, V, GAMMA)),
        (GeometryClass.CYLINDER, (W, GAMMA)),
        (GeometryClass.SPHERE, (ALPHA, BETA, GAMMA)),
        (GeometryClass.CONE, (GAMMA,)),
        (GeometryClass.POINT, (ALPHA, BETA, GAMMA)),
        (GeometryClass.LINE, (W, ALPHA, BETA, GAMMA)),
        (GeometryClass.COMPLEX, ()),
    ])
    def test_constrained_dof(self, gc, constrained):
        assert gc.constrained_dof == constrained
        assert set(gc.free_dof) | set(constrained) == set(range(6))

    def test_unknown_class(self):
        with pytest.raises(ConfigError, match="GeometryClass"):
            FeatureFrame(id="f", geometry_class="torus")


class TestGeometry3D:
    def test_axis_normalized(self):
        g = Geometry3D(axis=(0, 0, 5))
        assert g.axis == (0.0, 0.0, 1.0)

    def test_zero_axis(self):
        with pytest.raises(ValidationError, match="non-zero"):
            Geometry3D(axis=(0, 0, 0))

    def test_bad_length(self):
        with pytest.raises(ValidationError, match="Length"):
            Geometry3D(length=0.0)


class TestTorsorBounds:
    def test_default_zero(self):
        np.testing.assert_allclose(TorsorBounds().as_array(), 0.0)

    def test_merge_envelope(self):
        a = TorsorBounds(u=(-0.1, 0.05))
        b = TorsorBounds(u=(-0.02, 0.2), w=(-0.01, 0.01))
        m = a.merge(b)
        assert m.u == (-0.1, 0.2)
        assert m.w == (-0.01, 0.01)

    def test_negated(self):
        b = TorsorBounds(w=(-0.03, 0.05)).negated()
        assert b.w == (-0.05, 0.03)

    def test_constrained(self):
        b = TorsorBounds.symmetric([1, 1, 1, 1, 1, 1]).constrained(GeometryClass.PLANE)
        np.testing.assert_allclose(b.widths, [0, 0, 2, 2, 2, 0])

    def test_inverted_interval(self):
        with pytest.raises(ValidationError, match="exceeds"):
            TorsorBounds(v=(0.1, -0.1))

    def test_round_trip(self):
        b = TorsorBounds(u=(-1, 2), gamma=(-0.1, 0.0))
        assert TorsorBounds.from_dict(b.to_dict()) == b


class TestBuildFromContributor:
    def test_plane_translation(self):
        b = build_torsor_bounds(_contributor(), _frame(GeometryClass.PLANE, length=10.0))
        assert b.w == pytest.approx((-0.03, 0.05))
        assert b.u == (0.0, 0.0)
        assert b.v == (0.0, 0.0)
        assert b.gamma == (0.0, 0.0)

    def test_rotation_from_length(self):
        b = build_torsor_bounds(_contributor(), _frame(GeometryClass.PLANE, length=10.0))
        # half band 0.04 over length 10
        assert b.alpha == pytest.approx((-0.004, 0.004))
        assert b.beta == pytest.approx((-0.004, 0.004))

    def test_angular_tolerance_wins(self):
        frame = _frame(GeometryClass.PLANE, length=10.0, angular_tolerance=0.002)
        b = build_torsor_bounds(_contributor(), frame)
        assert b.alpha == pytest.approx((-0.002, 0.002))

    def test_no_length_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tolstack.torsor"):
            b = build_torsor_bounds(_contributor(), _frame(GeometryClass.CYLINDER))
        assert b.alpha == (0.0, 0.0)
        assert "no length" in caplog.text

    def test_cylinder_radial(self):
        b = build_torsor_bounds(_contributor(), _frame(GeometryClass.CYLINDER, length=5.0))
        assert b.u == pytest.approx((-0.03, 0.05))
        assert b.v == pytest.approx((-0.03, 0.05))
        assert b.w == (0.0, 0.0)

    def test_complex_all_dof(self):
        b = build_torsor_bounds(_contributor(), _frame(GeometryClass.COMPLEX, length=10.0))
        assert np.all(b.widths > 0)

    def test_negative_direction(self):
        c = _contributor(direction=Direction.NEGATIVE)
        b = build_torsor_bounds(c, _frame(GeometryClass.PLANE, length=10.0))
        assert b.w == pytest.approx((-0.05, 0.03))

    def test_position_tolerance(self):
        c = _contributor(gdt=GdtContribution(0.2, material_condition=MaterialCondition.RFS))
        b = build_torsor_bounds(c, _frame(GeometryClass.SPHERE))
        assert b.u == pytest.approx((-0.1, 0.1))
        assert b.w == pytest.approx((-0.1, 0.1))
        assert b.alpha == (0.0, 0.0)


class TestBuildFromControls:
    def test_controls_take_precedence(self):
        frame = _frame(GeometryClass.PLANE, length=20.0,
                       controls=(FeatureControl(GdtSymbol.FLATNESS, 0.04),))
        b = build_torsor_bounds(_contributor(), frame)
        assert b.w == pytest.approx((-0.02, 0.02))
        assert b.alpha == (0.0, 0.0)

    def test_position_and_perpendicularity(self):
        frame = _frame(GeometryClass.CYLINDER, length=10.0, controls=(
            FeatureControl(GdtSymbol.POSITION, 0.10),
            FeatureControl(GdtSymbol.PERPENDICULARITY, 0.05),
        ))
        b = build_torsor_bounds(_contributor(), frame)
        assert b.u == pytest.approx((-0.05, 0.05))
        assert b.v == pytest.approx((-0.05, 0.05))
        assert b.alpha == pytest.approx((-0.005, 0.005))
        assert b.w == (0.0, 0.0)
        assert b.gamma == (0.0, 0.0)

    def test_merge_takes_widest(self):
        frame = _frame(GeometryClass.CYLINDER, length=10.0, controls=(
            FeatureControl(GdtSymbol.POSITION, 0.10),
            FeatureControl(GdtSymbol.CONCENTRICITY, 0.30),
        ))
        b = build_torsor_bounds(_contributor(), frame)
        assert b.u == pytest.approx((-0.15, 0.15))

    def test_position_bonus(self):
        frame = _frame(GeometryClass.CYLINDER, length=10.0,
                       size=SizeLimits(6.0, 0.0, 0.02, internal=False), actual_size=5.99,
                       controls=(FeatureControl(GdtSymbol.POSITION, 0.10, MaterialCondition.MMC),))
        b = build_torsor_bounds(_contributor(), frame)
        assert b.u == pytest.approx((-0.055, 0.055))

    def test_straightness_axis_without_length(self, caplog):
        frame = _frame(GeometryClass.CYLINDER,
                       controls=(FeatureControl(GdtSymbol.STRAIGHTNESS, 0.02),))
        with caplog.at_level(logging.WARNING, logger="tolstack.torsor"):
            h = control_half_widths(frame.controls[0], frame)
        np.testing.assert_allclose(h, 0.0)
        assert "no length" in caplog.text

    def test_symmetry_single_dof(self):
        frame = _frame(GeometryClass.COMPLEX, controls=(FeatureControl(GdtSymbol.SYMMETRY, 0.1),))
        h = control_half_widths(frame.controls[0], frame)
        np.testing.assert_allclose(h, [0.05, 0, 0, 0, 0, 0])

    def test_profile_surface_plane(self):
        frame = _frame(GeometryClass.PLANE,
                       controls=(FeatureControl(GdtSymbol.PROFILE_SURFACE, 0.1),))
        h = control_half_widths(frame.controls[0], frame)
        np.testing.assert_allclose(h, [0, 0, 0.05, 0, 0, 0])

    def test_total_runout(self):
        frame = _frame(GeometryClass.COMPLEX, length=25.0,
                       controls=(FeatureControl(GdtSymbol.TOTAL_RUNOUT, 0.05),))
        h = control_half_widths(frame.controls[0], frame)
        np.testing.assert_allclose(h, [0.025, 0.025, 0.025, 0.002, 0.002, 0])
