"""Tests for result structures and their assembly."""

import json

import pytest

from tolstack.results import (
    MonteCarloResult, RssResult, Verdict, WorstCaseResult,
    assemble_3d_results, assemble_results, assemble_torsor, classify_margin, result_free_dof,
)


def _torsor(mc=False):
    return assemble_torsor(
        wc_min=[0, 0, -0.1, -0.01, 0, 0],
        wc_max=[0, 0, 0.1, 0.01, 0, 0],
        rss_mean=[0, 0, 0.0, 0, 0, 0],
        rss_sigma=[0, 0, 0.02, 0.002, 0, 0],
        mc_mean=[0.0] * 6 if mc else None,
        mc_std=[0.0, 0.0, 0.021, 0.0019, 0.0, 0.0] if mc else None,
    )


class TestClassifyMargin:
    @pytest.mark.parametrize("margin,expected", [
        (0.5, Verdict.PASS),
        (0.1, Verdict.MARGINAL),
        (0.05, Verdict.MARGINAL),
        (0.0, Verdict.FAIL),
        (-0.2, Verdict.FAIL),
    ])
    def test_default_fraction(self, margin, expected):
        assert classify_margin(margin, band=1.0) == expected


class TestAssembly:
    def test_partial_methods(self):
        wc = WorstCaseResult(0.62, 1.33, 0.12, Verdict.PASS)
        results = assemble_results(worst_case=wc)
        d = results.to_dict()
        assert d == {"worst_case": {"min": 0.62, "max": 1.33, "margin": 0.12, "result": "pass"}}

    def test_undefined_indices_serialize_as_null(self):
        r = RssResult(mean=1.0, sigma=0.0, sigma_3=0.0, variance=0.0, margin=0.5,
                      cp=None, cpk=None, yield_percent=100.0, sensitivity=(("A", None),))
        d = r.to_dict()
        assert d["cp"] is None
        assert d["sensitivity"] == [None]
        assert "undefined" in r.summary()
        json.dumps(d)

    def test_monte_carlo_summary(self):
        r = MonteCarloResult(100, 1.0, 0.0, 1.0, 1.0, 100.0, 1.0, 1.0)
        pp_line = next(l for l in r.summary().splitlines() if l.strip().startswith("Pp:"))
        assert pp_line.endswith("undefined")

    def test_torsor_stats(self):
        t = _torsor()
        assert t.w.rss_3sigma == pytest.approx(0.06)
        assert t["alpha"].wc_max == 0.01
        assert t.w.mc_mean is None
        with pytest.raises(KeyError):
            t["theta"]

    def test_free_dof(self):
        assert result_free_dof(_torsor()) == ("w", "alpha")

    def test_3d_results_dict(self):
        results = assemble_3d_results(_torsor(mc=True), [], chain_length=2,
                                      total_constrained_dof=3)
        d = results.to_dict()
        assert d["jacobian_summary"] == {
            "chain_length": 2,
            "total_constrained_dof": 3,
            "result_free_dof": ["w", "alpha"],
        }
        assert d["result_torsor"]["w"]["mc_std_dev"] == pytest.approx(0.021)
        assert "functional" not in d
        json.dumps(d)
