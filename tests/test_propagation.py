"""Tests for 3D torsor propagation through a kinematic chain."""

import math
from datetime import datetime, timezone

import numpy as np
import pytest

from tolstack.analysis import analyze_stackup
from tolstack.config import Analysis3DConfig, AnalysisConfig
from tolstack.errors import ConfigError, PartialComputationError, ValidationError
from tolstack.examples import create_bracket_chain_example
from tolstack.gdt import FeatureControl, GdtSymbol
from tolstack.geometry import FeatureFrame, Geometry3D, GeometryClass
from tolstack.models import Contributor, MaterialCondition, Stackup, Target
from tolstack.propagation import analyze_chain_3d, sensitivity_table, validate_chain
from tolstack.results import Verdict


def _config(method="jacobian_torsor", **kwargs):
    a3 = Analysis3DConfig(enabled=True, method=method, seed=kwargs.pop("seed", None),
                          monte_carlo_iterations=kwargs.pop("iterations", 10_000))
    return AnalysisConfig(analysis_3d=a3, **kwargs)


def _plane(fid, origin, length=None, angular_tolerance=None):
    return FeatureFrame(
        id=fid,
        geometry_class=GeometryClass.PLANE,
        geometry=Geometry3D(origin=origin, axis=(0, 0, 1), length=length),
        angular_tolerance=angular_tolerance,
    )


def _lever_stack(functional_direction=None) -> Stackup:
    """Plane A tilts by +/-0.001 rad; the result is read 10 mm away at plane B.

    Local w of A is +/-0.05; at B the tilt beta adds -10 * beta to w.
    """
    return Stackup(
        name="Lever",
        target=Target("Height", 10.0, 10.2, 9.8),
        contributors=(
            Contributor("Plate", 10.0, 0.05, 0.05, feature="A"),
        ),
        features=(
            _plane("A", (0, 0, 0), angular_tolerance=0.001),
            _plane("B", (10, 0, 0)),
        ),
        functional_direction=functional_direction,
    )


LEVER_SIGMA_W = math.sqrt(0.1 ** 2 + 0.02 ** 2) / 6.0


class TestWorstCase3D:
    def test_lever_arm_translation(self):
        r = analyze_chain_3d(_lever_stack(), _config())
        assert r.result_torsor.w.wc_min == pytest.approx(-0.06)
        assert r.result_torsor.w.wc_max == pytest.approx(0.06)

    def test_rotations_pass_through(self):
        t = analyze_chain_3d(_lever_stack(), _config()).result_torsor
        assert t.alpha.wc_max == pytest.approx(0.001)
        assert t.beta.wc_min == pytest.approx(-0.001)
        assert t.gamma.wc_max == 0.0

    def test_constrained_dof_zero(self):
        t = analyze_chain_3d(_lever_stack(), _config()).result_torsor
        for s in (t.u, t.v, t.gamma):
            assert s.wc_min == 0.0
            assert s.wc_max == 0.0
            assert s.rss_3sigma == 0.0

    def test_free_dof_summary(self):
        js = analyze_chain_3d(_lever_stack(), _config()).jacobian_summary
        assert js.chain_length == 2
        assert js.total_constrained_dof == 3
        assert js.result_free_dof == ("w", "alpha", "beta")


class TestRss3D:
    def test_lever_sigma(self):
        t = analyze_chain_3d(_lever_stack(), _config()).result_torsor
        assert t.w.rss_3sigma == pytest.approx(3.0 * LEVER_SIGMA_W)
        assert t.w.rss_mean == pytest.approx(0.0)

    def test_mean_from_interval_centres(self):
        stack = Stackup(
            name="Offset",
            target=Target("H", 0.0, 1.0, -1.0),
            contributors=(Contributor("Plate", 5.0, 0.10, 0.0, feature="A"),),
            features=(_plane("A", (0, 0, 0)),),
        )
        t = analyze_chain_3d(stack, _config()).result_torsor
        assert t.w.rss_mean == pytest.approx(0.05)

    def test_no_monte_carlo_by_default(self):
        t = analyze_chain_3d(_lever_stack(), _config()).result_torsor
        assert all(s.mc_mean is None for s in t.dofs())


class TestSensitivity3D:
    def test_single_contributor(self):
        r = analyze_chain_3d(_lever_stack(), _config())
        (entry,) = r.sensitivity_3d
        assert entry.name == "Plate"
        assert entry.feature_id == "A"
        assert entry.contribution_pct == pytest.approx((0, 0, 100, 100, 100, 0))

    def test_sums_to_100_per_dof(self):
        r = analyze_chain_3d(create_bracket_chain_example(), _config())
        pct = np.array([e.contribution_pct for e in r.sensitivity_3d])
        totals = pct.sum(axis=0)
        for total in totals:
            assert total == pytest.approx(100.0) or total == 0.0

    def test_zero_variance_dof(self):
        table = sensitivity_table(np.array([[0.0, 1.0], [0.0, 3.0]]))
        np.testing.assert_allclose(table, [[0.0, 25.0], [0.0, 75.0]])


class TestMonteCarlo3D:
    def test_statistics(self):
        config = _config("monte_carlo_3d", seed=11, iterations=100_000)
        t = analyze_chain_3d(_lever_stack(), config).result_torsor
        assert t.w.mc_mean == pytest.approx(0.0, abs=5e-4)
        assert t.w.mc_std_dev == pytest.approx(LEVER_SIGMA_W, rel=0.03)
        assert t.u.mc_std_dev == 0.0

    def test_reproducible(self):
        config = _config("monte_carlo_3d", seed=5, iterations=2000)
        a = analyze_chain_3d(_lever_stack(), config)
        b = analyze_chain_3d(_lever_stack(), config)
        assert a.result_torsor == b.result_torsor

    def test_time_budget(self):
        config = _config("monte_carlo_3d", iterations=1000, mc_batch_size=10,
                         time_budget_s=1e-9)
        with pytest.raises(PartialComputationError):
            analyze_chain_3d(_lever_stack(), config)


class TestFunctionalProjection:
    def test_no_direction_no_verdict(self):
        assert analyze_chain_3d(_lever_stack(), _config()).functional is None

    def test_lever_along_z(self):
        f = analyze_chain_3d(_lever_stack((0, 0, 1)), _config()).functional
        assert f.wc_min == pytest.approx(-0.06)
        assert f.wc_max == pytest.approx(0.06)
        # deviation limits +/-0.2, threshold 0.04
        assert f.wc_margin == pytest.approx(0.14)
        assert f.verdict == Verdict.PASS
        assert f.rss_sigma == pytest.approx(LEVER_SIGMA_W)
        assert f.cp == pytest.approx(0.4 / (6.0 * LEVER_SIGMA_W))

    def test_orthogonal_direction(self):
        f = analyze_chain_3d(_lever_stack((1, 0, 0)), _config()).functional
        assert f.wc_min == 0.0
        assert f.wc_max == 0.0
        assert f.cp is None
        assert f.yield_percent == 100.0

    def test_bracket_example(self):
        f = analyze_chain_3d(create_bracket_chain_example(), _config()).functional
        # base: 0.05 + 20 * 0.05/40 tilt; pin: none along z; seat: 0.08
        assert f.wc_max == pytest.approx(0.155)
        assert f.wc_min == pytest.approx(-0.155)
        assert f.verdict == Verdict.PASS

    def test_fail_verdict(self):
        stack = Stackup(
            name="Tight",
            target=Target("Height", 10.0, 10.03, 9.97),
            contributors=_lever_stack().contributors,
            features=_lever_stack().features,
            functional_direction=(0, 0, 1),
        )
        f = analyze_chain_3d(stack, _config()).functional
        assert f.verdict == Verdict.FAIL

    def test_monte_carlo_projection(self):
        config = _config("monte_carlo_3d", seed=3, iterations=20_000)
        f = analyze_chain_3d(_lever_stack((0, 0, 1)), config).functional
        assert f.mc_std_dev == pytest.approx(LEVER_SIGMA_W, rel=0.05)
        assert f.mc_yield_percent == 100.0


class TestValidation:
    def _stack(self, contributors, features):
        return Stackup(name="V", target=Target("T", 0.0, 1.0, -1.0),
                       contributors=contributors, features=features)

    def test_disabled(self):
        with pytest.raises(ConfigError, match="not enabled"):
            analyze_chain_3d(_lever_stack(), AnalysisConfig())

    def test_missing_feature_reference(self):
        stack = self._stack((Contributor("X", 1.0, 0.1, 0.1),), (_plane("A", (0, 0, 0)),))
        with pytest.raises(ValidationError) as exc:
            validate_chain(stack, _config())
        assert exc.value.contributor == "X"
        assert exc.value.index == 0

    def test_unknown_feature(self):
        stack = self._stack((Contributor("X", 1.0, 0.1, 0.1, feature="Z"),),
                            (_plane("A", (0, 0, 0)),))
        with pytest.raises(ValidationError, match="not in the chain"):
            validate_chain(stack, _config())

    def test_missing_geometry_class(self):
        stack = self._stack((Contributor("X", 1.0, 0.1, 0.1, feature="A"),),
                            (FeatureFrame(id="A", geometry=Geometry3D()),))
        with pytest.raises(ValidationError, match="geometry class"):
            validate_chain(stack, _config())

    def test_missing_geometry(self):
        stack = self._stack((Contributor("X", 1.0, 0.1, 0.1, feature="A"),),
                            (FeatureFrame(id="A", geometry_class=GeometryClass.PLANE),))
        with pytest.raises(ValidationError) as exc:
            validate_chain(stack, _config())
        assert exc.value.field == "geometry"

    def test_chain_order_mismatch(self):
        stack = self._stack(
            (Contributor("X", 1.0, 0.1, 0.1, feature="B"),
             Contributor("Y", 1.0, 0.1, 0.1, feature="A")),
            (_plane("A", (0, 0, 0)), _plane("B", (0, 0, 5))),
        )
        with pytest.raises(ValidationError, match="precedes") as exc:
            validate_chain(stack, _config())
        assert exc.value.contributor == "Y"

    def test_same_feature_allowed(self):
        stack = self._stack(
            (Contributor("X", 1.0, 0.1, 0.1, feature="A"),
             Contributor("Y", 1.0, 0.1, 0.1, feature="A")),
            (_plane("A", (0, 0, 0)),),
        )
        validate_chain(stack, _config())

    def test_duplicate_feature_ids(self):
        stack = self._stack((Contributor("X", 1.0, 0.1, 0.1, feature="A"),),
                            (_plane("A", (0, 0, 0)), _plane("A", (0, 0, 5))))
        with pytest.raises(ValidationError, match="Duplicate"):
            validate_chain(stack, _config())

    def test_chain_too_long(self):
        features = tuple(_plane(f"F{i}", (0, 0, i)) for i in range(5))
        stack = self._stack((Contributor("X", 1.0, 0.1, 0.1, feature="F0"),), features)
        with pytest.raises(ConfigError, match="max_chain_length"):
            validate_chain(stack, _config(max_chain_length=4))

    def test_unreferenced_frame_without_geometry(self):
        stack = self._stack((Contributor("X", 1.0, 0.1, 0.1, feature="A"),),
                            (_plane("A", (0, 0, 0)), FeatureFrame(id="mid"),
                             _plane("B", (0, 0, 5))))
        with pytest.raises(ValidationError, match="'mid' has no geometry") as exc:
            validate_chain(stack, _config())
        assert exc.value.index == 1

    def test_bonus_control_without_size(self):
        pin = FeatureFrame(
            id="pin",
            geometry_class=GeometryClass.CYLINDER,
            geometry=Geometry3D(origin=(0, 0, 0), axis=(0, 0, 1), length=10.0),
            controls=(FeatureControl(GdtSymbol.POSITION, 0.1, MaterialCondition.MMC),),
            actual_size=6.01,
        )
        stack = self._stack((Contributor("X", 1.0, 0.1, 0.1, feature="pin"),), (pin,))
        with pytest.raises(ValidationError, match="size limits") as exc:
            validate_chain(stack, _config())
        assert exc.value.field == "size"

    def test_rejected_before_1d_analysis(self, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("1D analysis ran before chain validation")

        monkeypatch.setattr("tolstack.analysis.worst_case", fail)
        monkeypatch.setattr("tolstack.analysis.rss", fail)
        monkeypatch.setattr("tolstack.analysis.monte_carlo", fail)
        stack = self._stack((Contributor("X", 1.0, 0.1, 0.1, feature="A"),),
                            (_plane("A", (0, 0, 0)), FeatureFrame(id="mid")))
        with pytest.raises(ValidationError, match="no geometry"):
            analyze_stackup(stack, config=_config(seed=0))


class TestControlledFeature:
    def _stack(self, n_contributors):
        frame = FeatureFrame(
            id="top",
            geometry_class=GeometryClass.PLANE,
            geometry=Geometry3D(origin=(0, 0, 0), axis=(0, 0, 1), length=10.0),
            controls=(FeatureControl(GdtSymbol.FLATNESS, 0.04),),
        )
        contributors = tuple(Contributor(f"C{i}", 1.0, 0.1, 0.1, feature="top")
                             for i in range(n_contributors))
        return Stackup(name="Flat", target=Target("T", 0.0, 1.0, -1.0),
                       contributors=contributors, features=(frame,))

    def test_callouts_applied_once(self):
        one = analyze_chain_3d(self._stack(1), _config())
        two = analyze_chain_3d(self._stack(2), _config())
        assert two.result_torsor.w.wc_max == pytest.approx(0.02)
        assert two.result_torsor.w.wc_max == pytest.approx(one.result_torsor.w.wc_max)
        assert two.result_torsor.w.rss_3sigma == pytest.approx(one.result_torsor.w.rss_3sigma)

    def test_second_contributor_has_no_share(self):
        r = analyze_chain_3d(self._stack(2), _config())
        w = 2
        assert r.sensitivity_3d[0].contribution_pct[w] == pytest.approx(100.0)
        assert r.sensitivity_3d[1].contribution_pct[w] == 0.0


class TestAnalyzeStackup3D:
    def test_report_includes_3d(self):
        ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
        report = analyze_stackup(create_bracket_chain_example(), methods=["wc", "rss"],
                                 config=_config(), analyzed_at=ts)
        assert report.results_1d.worst_case is not None
        assert report.results_3d is not None
        assert report.results_3d.analyzed_at == ts
        d = report.to_dict()
        assert d["results_3d"]["jacobian_summary"]["chain_length"] == 3
        assert "3D Torsor Analysis" in report.summary()

    def test_1d_and_3d_agree_on_collinear_chain(self):
        """Planes stacked along z with no tilt reduce to the 1D worst case."""
        stack = Stackup(
            name="Collinear",
            target=Target("H", 15.0, 15.5, 14.5),
            contributors=(
                Contributor("A", 5.0, 0.1, 0.1, feature="A"),
                Contributor("B", 10.0, 0.2, 0.1, feature="B"),
            ),
            features=(_plane("A", (0, 0, 0), angular_tolerance=0.0),
                      _plane("B", (0, 0, 5), angular_tolerance=0.0)),
            functional_direction=(0, 0, 1),
        )
        report = analyze_stackup(stack, methods=["wc"], config=_config())
        wc = report.results_1d.worst_case
        f = report.results_3d.functional
        assert f.wc_min == pytest.approx(wc.result_min - stack.target.nominal)
        assert f.wc_max == pytest.approx(wc.result_max - stack.target.nominal)
