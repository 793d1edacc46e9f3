"""Result structures and their assembly.

Every result is a frozen dataclass with ``summary()`` for a text report and
``to_dict()`` for a JSON-compatible view. Undefined indices (zero spread)
are carried as ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from tolstack.geometry import DOF_NAMES
from tolstack.statistics import SampleStatistics


class Verdict(Enum):
    """Pass/marginal/fail classification of a margin."""
    PASS = "pass"
    MARGINAL = "marginal"
    FAIL = "fail"


def classify_margin(margin: float, band: float, marginal_fraction: float = 0.1) -> Verdict:
    """Classify a margin against the tolerance band.

    A margin equal to ``marginal_fraction * band`` is marginal.
    """
    if margin <= 0:
        return Verdict.FAIL
    if margin > marginal_fraction * band:
        return Verdict.PASS
    return Verdict.MARGINAL


def _fmt(value: Optional[float], spec: str = ".4f") -> str:
    if value is None:
        return "undefined"
    return format(value, spec)


# ---------------------------------------------------------------------------
# 1D results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WorstCaseResult:
    """Worst-case (min/max) analysis result.

    Attributes:
        result_min: Smallest achievable result.
        result_max: Largest achievable result.
        margin: min(USL - max, min - LSL).
        verdict: Pass/marginal/fail classification.
    """
    result_min: float
    result_max: float
    margin: float
    verdict: Verdict

    def summary(self) -> str:
        return "\n".join([
            "=== Worst-Case Analysis ===",
            f"  Result range:     [{self.result_min:+.6f}, {self.result_max:+.6f}]",
            f"  Margin:           {self.margin:+.6f}",
            f"  Result:           {self.verdict.value}",
        ])

    def to_dict(self) -> dict:
        return {
            "min": self.result_min,
            "max": self.result_max,
            "margin": self.margin,
            "result": self.verdict.value,
        }


@dataclass(frozen=True)
class RssResult:
    """Root-sum-square statistical analysis result.

    Attributes:
        mean: Sum of signed nominals.
        sigma: Combined standard deviation.
        sigma_3: 3 * sigma.
        variance: Combined variance.
        margin: Margin to the limits at +/-3 sigma.
        cp: Process capability, None when sigma is 0.
        cpk: Centred process capability, None when sigma is 0.
        yield_percent: Estimated yield under a normal model.
        sensitivity: (contributor name, percent of variance) pairs.
        shifted_mean: Bender-shifted mean when a k-factor is in use.
    """
    mean: float
    sigma: float
    sigma_3: float
    variance: float
    margin: float
    cp: Optional[float]
    cpk: Optional[float]
    yield_percent: float
    sensitivity: tuple[tuple[str, Optional[float]], ...] = ()
    shifted_mean: Optional[float] = None

    def summary(self) -> str:
        lines = [
            "=== RSS Analysis ===",
            f"  Mean:             {self.mean:+.6f}",
            f"  Sigma:            {self.sigma:.6f}",
            f"  +/-3 sigma:       {self.sigma_3:.6f}",
            f"  Margin (3 sigma): {self.margin:+.6f}",
            f"  Cp:               {_fmt(self.cp)}",
            f"  Cpk:              {_fmt(self.cpk)}",
            f"  Est. yield:       {self.yield_percent:.4f}%",
        ]
        if self.shifted_mean is not None:
            lines.append(f"  Shifted mean:     {self.shifted_mean:+.6f}")
        if self.sensitivity:
            lines.append("  Sensitivity (% of variance):")
            for name, pct in self.sensitivity:
                lines.append(f"    {name:30s}  {_fmt(pct, '.2f')}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        d = {
            "mean": self.mean,
            "sigma": self.sigma,
            "sigma_3": self.sigma_3,
            "variance": self.variance,
            "margin": self.margin,
            "cp": self.cp,
            "cpk": self.cpk,
            "yield_percent": self.yield_percent,
            "sensitivity": [pct for _, pct in self.sensitivity],
        }
        if self.shifted_mean is not None:
            d["shifted_mean"] = self.shifted_mean
        return d


@dataclass(frozen=True)
class MonteCarloResult:
    """Monte Carlo simulation result.

    Attributes:
        iterations: Number of samples drawn.
        mean: Sample mean.
        std_dev: Sample standard deviation.
        min: Smallest sample.
        max: Largest sample.
        yield_percent: Percent of samples within [LSL, USL].
        percentile_2_5: Lower bound of the 95% interval.
        percentile_97_5: Upper bound of the 95% interval.
        pp: Process performance, None when std_dev is 0.
        ppk: Centred process performance, None when std_dev is 0.
    """
    iterations: int
    mean: float
    std_dev: float
    min: float
    max: float
    yield_percent: float
    percentile_2_5: float
    percentile_97_5: float
    pp: Optional[float] = None
    ppk: Optional[float] = None

    @classmethod
    def from_statistics(cls, stats: SampleStatistics) -> MonteCarloResult:
        return cls(
            iterations=stats.n_samples,
            mean=stats.mean,
            std_dev=stats.std,
            min=stats.min,
            max=stats.max,
            yield_percent=stats.yield_percent,
            percentile_2_5=stats.percentile_2_5,
            percentile_97_5=stats.percentile_97_5,
            pp=stats.pp,
            ppk=stats.ppk,
        )

    def summary(self) -> str:
        return "\n".join([
            "=== Monte Carlo Analysis ===",
            f"  Iterations:       {self.iterations}",
            f"  Mean:             {self.mean:+.6f}",
            f"  Std dev:          {self.std_dev:.6f}",
            f"  Range:            [{self.min:+.6f}, {self.max:+.6f}]",
            f"  95% interval:     [{self.percentile_2_5:+.6f}, {self.percentile_97_5:+.6f}]",
            f"  Yield:            {self.yield_percent:.4f}%",
            f"  Pp:               {_fmt(self.pp)}",
            f"  Ppk:              {_fmt(self.ppk)}",
        ])

    def to_dict(self) -> dict:
        return {
            "iterations": self.iterations,
            "mean": self.mean,
            "std_dev": self.std_dev,
            "min": self.min,
            "max": self.max,
            "yield_percent": self.yield_percent,
            "percentile_2_5": self.percentile_2_5,
            "percentile_97_5": self.percentile_97_5,
            "pp": self.pp,
            "ppk": self.ppk,
        }


@dataclass(frozen=True)
class AnalysisResults:
    """Combined 1D results; methods not requested are None."""
    worst_case: Optional[WorstCaseResult] = None
    rss: Optional[RssResult] = None
    monte_carlo: Optional[MonteCarloResult] = None
    analyzed_at: Optional[datetime] = None

    def summary(self) -> str:
        parts = [r.summary() for r in (self.worst_case, self.rss, self.monte_carlo)
                 if r is not None]
        return "\n\n".join(parts)

    def to_dict(self) -> dict:
        d = {}
        if self.worst_case is not None:
            d["worst_case"] = self.worst_case.to_dict()
        if self.rss is not None:
            d["rss"] = self.rss.to_dict()
        if self.monte_carlo is not None:
            d["monte_carlo"] = self.monte_carlo.to_dict()
        if self.analyzed_at is not None:
            d["analyzed_at"] = self.analyzed_at.isoformat()
        return d


# ---------------------------------------------------------------------------
# 3D results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TorsorStats:
    """Statistics of one DOF of the result torsor."""
    wc_min: float = 0.0
    wc_max: float = 0.0
    rss_mean: float = 0.0
    rss_3sigma: float = 0.0
    mc_mean: Optional[float] = None
    mc_std_dev: Optional[float] = None

    def to_dict(self) -> dict:
        d = {
            "wc_min": self.wc_min,
            "wc_max": self.wc_max,
            "rss_mean": self.rss_mean,
            "rss_3sigma": self.rss_3sigma,
        }
        if self.mc_mean is not None:
            d["mc_mean"] = self.mc_mean
            d["mc_std_dev"] = self.mc_std_dev
        return d


@dataclass(frozen=True)
class ResultTorsor:
    """Result torsor: TorsorStats for u, v, w (translations) and
    alpha, beta, gamma (rotations in radians)."""
    u: TorsorStats
    v: TorsorStats
    w: TorsorStats
    alpha: TorsorStats
    beta: TorsorStats
    gamma: TorsorStats

    def dofs(self) -> tuple[TorsorStats, ...]:
        return (self.u, self.v, self.w, self.alpha, self.beta, self.gamma)

    def __getitem__(self, name: str) -> TorsorStats:
        if name not in DOF_NAMES:
            raise KeyError(name)
        return getattr(self, name)

    def summary(self) -> str:
        lines = ["  DOF      WC min       WC max       RSS mean     RSS 3sigma   MC mean      MC std"]
        for name, s in zip(DOF_NAMES, self.dofs()):
            mc_mean = "-" if s.mc_mean is None else f"{s.mc_mean:+.6f}"
            mc_std = "-" if s.mc_std_dev is None else f"{s.mc_std_dev:.6f}"
            lines.append(
                f"  {name:6s} {s.wc_min:+.6f}   {s.wc_max:+.6f}   {s.rss_mean:+.6f}   "
                f"{s.rss_3sigma:.6f}     {mc_mean:12s} {mc_std}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {name: s.to_dict() for name, s in zip(DOF_NAMES, self.dofs())}


@dataclass(frozen=True)
class Sensitivity3DEntry:
    """Percent of each output DOF's variance explained by one contributor.

    Attributes:
        name: Contributor name.
        feature_id: Chain feature the contributor belongs to.
        contribution_pct: Percentages ordered u, v, w, alpha, beta, gamma.
    """
    name: str
    feature_id: Optional[str]
    contribution_pct: tuple[float, float, float, float, float, float]

    def to_dict(self) -> dict:
        d = {"name": self.name, "contribution_pct": list(self.contribution_pct)}
        if self.feature_id is not None:
            d["feature_id"] = self.feature_id
        return d


@dataclass(frozen=True)
class JacobianSummary:
    """Summary of the propagation chain.

    Attributes:
        chain_length: Number of features in the chain.
        total_constrained_dof: Constrained DOF summed over the contributors.
        result_free_dof: Output DOF names carrying non-zero variation.
    """
    chain_length: int
    total_constrained_dof: int
    result_free_dof: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "chain_length": self.chain_length,
            "total_constrained_dof": self.total_constrained_dof,
            "result_free_dof": list(self.result_free_dof),
        }


@dataclass(frozen=True)
class FunctionalProjection:
    """3D result projected onto the functional direction.

    Values are deviations from the target nominal; limits are the target
    limits converted the same way.

    Attributes:
        direction: Unit functional direction.
        wc_min: Worst-case minimum deviation.
        wc_max: Worst-case maximum deviation.
        wc_margin: Worst-case margin to the deviation limits.
        rss_mean: Statistical mean deviation.
        rss_sigma: Statistical standard deviation.
        cp: Capability, None when rss_sigma is 0.
        cpk: Centred capability, None when rss_sigma is 0.
        yield_percent: Estimated yield under a normal model.
        verdict: Worst-case classification.
        mc_mean: Monte Carlo mean deviation, if sampled.
        mc_std_dev: Monte Carlo standard deviation, if sampled.
        mc_yield_percent: Monte Carlo yield, if sampled.
    """
    direction: tuple[float, float, float]
    wc_min: float
    wc_max: float
    wc_margin: float
    rss_mean: float
    rss_sigma: float
    cp: Optional[float]
    cpk: Optional[float]
    yield_percent: float
    verdict: Verdict
    mc_mean: Optional[float] = None
    mc_std_dev: Optional[float] = None
    mc_yield_percent: Optional[float] = None

    def summary(self) -> str:
        d = ", ".join(f"{x:.4f}" for x in self.direction)
        lines = [
            f"  Functional direction: ({d})",
            f"    WC range:       [{self.wc_min:+.6f}, {self.wc_max:+.6f}]",
            f"    WC margin:      {self.wc_margin:+.6f}  ({self.verdict.value})",
            f"    RSS mean:       {self.rss_mean:+.6f}  sigma {self.rss_sigma:.6f}",
            f"    Cp / Cpk:       {_fmt(self.cp)} / {_fmt(self.cpk)}",
            f"    Est. yield:     {self.yield_percent:.4f}%",
        ]
        if self.mc_mean is not None:
            lines.append(f"    MC mean:        {self.mc_mean:+.6f}  std {self.mc_std_dev:.6f}"
                         f"  yield {self.mc_yield_percent:.4f}%")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        d = {
            "direction": list(self.direction),
            "wc_min": self.wc_min,
            "wc_max": self.wc_max,
            "wc_margin": self.wc_margin,
            "rss_mean": self.rss_mean,
            "rss_sigma": self.rss_sigma,
            "cp": self.cp,
            "cpk": self.cpk,
            "yield_percent": self.yield_percent,
            "result": self.verdict.value,
        }
        if self.mc_mean is not None:
            d["mc_mean"] = self.mc_mean
            d["mc_std_dev"] = self.mc_std_dev
            d["mc_yield_percent"] = self.mc_yield_percent
        return d


@dataclass(frozen=True)
class Analysis3DResults:
    """Combined 3D results."""
    result_torsor: ResultTorsor
    sensitivity_3d: tuple[Sensitivity3DEntry, ...]
    jacobian_summary: JacobianSummary
    functional: Optional[FunctionalProjection] = None
    analyzed_at: Optional[datetime] = None

    def summary(self) -> str:
        js = self.jacobian_summary
        lines = [
            "=== 3D Torsor Analysis ===",
            f"  Chain length:     {js.chain_length}",
            f"  Constrained DOF:  {js.total_constrained_dof}",
            f"  Result free DOF:  {', '.join(js.result_free_dof) or 'none'}",
            self.result_torsor.summary(),
        ]
        if self.sensitivity_3d:
            lines.append("  Sensitivity (% of variance per DOF):")
            for e in self.sensitivity_3d:
                pct = "  ".join(f"{p:6.2f}" for p in e.contribution_pct)
                lines.append(f"    {e.name:24s}  {pct}")
        if self.functional is not None:
            lines.append(self.functional.summary())
        return "\n".join(lines)

    def to_dict(self) -> dict:
        d = {
            "result_torsor": self.result_torsor.to_dict(),
            "sensitivity_3d": [e.to_dict() for e in self.sensitivity_3d],
            "jacobian_summary": self.jacobian_summary.to_dict(),
        }
        if self.functional is not None:
            d["functional"] = self.functional.to_dict()
        if self.analyzed_at is not None:
            d["analyzed_at"] = self.analyzed_at.isoformat()
        return d


@dataclass(frozen=True)
class StackupReport:
    """Everything one ``analyze_stackup`` call produced."""
    results_1d: AnalysisResults
    results_3d: Optional[Analysis3DResults] = None

    def summary(self) -> str:
        parts = [self.results_1d.summary()]
        if self.results_3d is not None:
            parts.append(self.results_3d.summary())
        return "\n\n".join(p for p in parts if p)

    def to_dict(self) -> dict:
        d = {"results": self.results_1d.to_dict()}
        if self.results_3d is not None:
            d["results_3d"] = self.results_3d.to_dict()
        return d


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def assemble_results(
    worst_case: Optional[WorstCaseResult] = None,
    rss: Optional[RssResult] = None,
    monte_carlo: Optional[MonteCarloResult] = None,
    analyzed_at: Optional[datetime] = None,
) -> AnalysisResults:
    """Combine the 1D sub-results into one AnalysisResults."""
    return AnalysisResults(
        worst_case=worst_case, rss=rss, monte_carlo=monte_carlo, analyzed_at=analyzed_at)


def assemble_torsor(
    wc_min: Sequence[float],
    wc_max: Sequence[float],
    rss_mean: Sequence[float],
    rss_sigma: Sequence[float],
    mc_mean: Optional[Sequence[float]] = None,
    mc_std: Optional[Sequence[float]] = None,
) -> ResultTorsor:
    """Merge per-DOF worst-case, RSS and Monte Carlo arrays into a ResultTorsor."""
    stats = []
    for i in range(6):
        stats.append(TorsorStats(
            wc_min=float(wc_min[i]),
            wc_max=float(wc_max[i]),
            rss_mean=float(rss_mean[i]),
            rss_3sigma=3.0 * float(rss_sigma[i]),
            mc_mean=None if mc_mean is None else float(mc_mean[i]),
            mc_std_dev=None if mc_std is None else float(mc_std[i]),
        ))
    return ResultTorsor(*stats)


def result_free_dof(torsor: ResultTorsor, atol: float = 1e-12) -> tuple[str, ...]:
    """Names of the output DOF whose worst-case interval is not degenerate."""
    return tuple(
        name for name, s in zip(DOF_NAMES, torsor.dofs())
        if not np.isclose(s.wc_max, s.wc_min, rtol=0.0, atol=atol)
    )


def assemble_3d_results(
    torsor: ResultTorsor,
    sensitivity: Sequence[Sensitivity3DEntry],
    chain_length: int,
    total_constrained_dof: int,
    functional: Optional[FunctionalProjection] = None,
    analyzed_at: Optional[datetime] = None,
) -> Analysis3DResults:
    """Attach the Jacobian summary and timestamp to a merged torsor."""
    summary = JacobianSummary(
        chain_length=chain_length,
        total_constrained_dof=total_constrained_dof,
        result_free_dof=result_free_dof(torsor),
    )
    return Analysis3DResults(
        result_torsor=torsor,
        sensitivity_3d=tuple(sensitivity),
        jacobian_summary=summary,
        functional=functional,
        analyzed_at=analyzed_at,
    )
