"""Tolerance stack analysis engine supporting WC, RSS, and Monte Carlo."""

from __future__ import annotations

import logging
import math
import time
from datetime import datetime
from typing import Optional

import numpy as np

from tolstack.config import AnalysisConfig
from tolstack.errors import ConfigError, PartialComputationError, ValidationError
from tolstack.gdt import GdtBonusCalculator
from tolstack.models import Contributor, Direction, Stackup
from tolstack.results import (
    AnalysisResults, MonteCarloResult, RssResult, StackupReport, WorstCaseResult,
    assemble_results, classify_margin,
)
from tolstack.statistics import (
    capability_indices, compute_sample_statistics, normal_yield_percent,
    percent_contribution, sample_distribution,
)

logger = logging.getLogger(__name__)

_GDT = GdtBonusCalculator()

METHOD_ALIASES = {
    "wc": "wc", "worst-case": "wc", "worst_case": "wc",
    "rss": "rss",
    "mc": "mc", "monte-carlo": "mc", "monte_carlo": "mc",
}


def _config(config: Optional[AnalysisConfig]) -> AnalysisConfig:
    return config if config is not None else AnalysisConfig()


def _gdt_half_width(c: Contributor, config: AnalysisConfig) -> float:
    """Half of the effective GD&T tolerance folded into a contributor, or 0."""
    if not config.include_gdt:
        return 0.0
    return _GDT.effective_tolerance(c) / 2.0


def _contributor_interval(c: Contributor, config: AnalysisConfig) -> tuple[float, float]:
    """Signed (low, high) interval a contributor adds to the result."""
    extra = _gdt_half_width(c, config)
    lo = c.nominal - c.minus_tol - extra
    hi = c.nominal + c.plus_tol + extra
    if c.direction == Direction.POSITIVE:
        return lo, hi
    return -hi, -lo


def validate_stackup(stackup: Stackup) -> None:
    """Reject a snapshot that cannot be analyzed at all."""
    if not isinstance(stackup, Stackup):
        raise ValidationError(f"Expected a Stackup, got {type(stackup).__name__}")
    if not stackup.contributors:
        raise ValidationError("Stack-up has no contributors", field="contributors")


# ---------------------------------------------------------------------------
# Worst-Case analysis
# ---------------------------------------------------------------------------

def worst_case(stackup: Stackup, config: Optional[AnalysisConfig] = None) -> WorstCaseResult:
    """Perform worst-case (min/max) tolerance stack analysis.

    Every contributor is assumed to be at its extreme limit simultaneously.
    """
    config = _config(config)
    validate_stackup(stackup)
    target = stackup.target

    low = 0.0
    high = 0.0
    for c in stackup.contributors:
        lo, hi = _contributor_interval(c, config)
        low += lo
        high += hi

    margin = min(target.upper_limit - high, low - target.lower_limit)
    verdict = classify_margin(margin, target.tolerance_band, config.marginal_fraction)
    logger.debug("Worst case %r: [%g, %g] margin %g -> %s",
                 stackup.name, low, high, margin, verdict.value)

    return WorstCaseResult(result_min=low, result_max=high, margin=margin, verdict=verdict)


# ---------------------------------------------------------------------------
# RSS (Root Sum of Squares) analysis
# ---------------------------------------------------------------------------

def rss(stackup: Stackup, config: Optional[AnalysisConfig] = None) -> RssResult:
    """Perform RSS statistical tolerance stack analysis.

    Assumes each contributor's tolerance band spans ``sigma_level``
    standard deviations of a normal distribution centred at nominal.
    """
    config = _config(config)
    validate_stackup(stackup)
    target = stackup.target
    usl, lsl = target.upper_limit, target.lower_limit

    mean = 0.0
    variances = []
    for c in stackup.contributors:
        mean += c.signed_nominal
        std_i = _GDT.effective_band(c, config.include_gdt) / config.sigma_level
        variances.append(std_i ** 2)

    variance = float(sum(variances))
    sigma = math.sqrt(variance)

    shifted_mean = None
    center = mean
    if config.mean_shift_k > 0:
        # Bender: drift toward whichever limit is nearer
        if usl - mean < mean - lsl:
            shifted_mean = mean + config.mean_shift_k * sigma
        else:
            shifted_mean = mean - config.mean_shift_k * sigma
        center = shifted_mean

    cp, cpk = capability_indices(sigma, usl, lsl, center)
    pct = percent_contribution(variances)
    names = [c.name for c in stackup.contributors]
    sensitivity = tuple(zip(names, pct if pct is not None else [None] * len(names)))

    margin = min(usl - (mean + 3.0 * sigma), (mean - 3.0 * sigma) - lsl)
    yield_percent = normal_yield_percent(mean, sigma, usl, lsl)
    logger.debug("RSS %r: mean %g sigma %g yield %.4f%%",
                 stackup.name, mean, sigma, yield_percent)

    return RssResult(
        mean=mean,
        sigma=sigma,
        sigma_3=3.0 * sigma,
        variance=variance,
        margin=margin,
        cp=cp,
        cpk=cpk,
        yield_percent=yield_percent,
        sensitivity=sensitivity,
        shifted_mean=shifted_mean,
    )


# ---------------------------------------------------------------------------
# Monte Carlo analysis
# ---------------------------------------------------------------------------

def _sample_contributor(
    rng: np.random.Generator,
    c: Contributor,
    config: AnalysisConfig,
    n_samples: int,
) -> np.ndarray:
    extra = _gdt_half_width(c, config)
    sigma = (c.tolerance_band + 2.0 * extra) / config.sigma_level
    return sample_distribution(
        rng,
        c.distribution,
        low=c.nominal - c.minus_tol - extra,
        mode=c.nominal,
        high=c.nominal + c.plus_tol + extra,
        sigma=sigma,
        n_samples=n_samples,
    )


def run_batches(sample_batch, iterations: int, config: AnalysisConfig) -> np.ndarray:
    """Draw ``iterations`` samples in batches, enforcing the time budget.

    ``sample_batch(n)`` must return an array whose first axis has length n.
    Raises PartialComputationError if the budget runs out before the last
    batch; a truncated sample set is never returned.
    """
    start = time.perf_counter()
    batches = []
    completed = 0
    while completed < iterations:
        n = min(config.mc_batch_size, iterations - completed)
        batches.append(sample_batch(n))
        completed += n
        if (config.time_budget_s is not None and completed < iterations
                and time.perf_counter() - start > config.time_budget_s):
            raise PartialComputationError(
                f"Monte Carlo time budget of {config.time_budget_s}s exhausted",
                completed=completed, requested=iterations)
    return np.concatenate(batches, axis=0)


def monte_carlo(
    stackup: Stackup,
    config: Optional[AnalysisConfig] = None,
    iterations: Optional[int] = None,
    seed: Optional[int] = None,
) -> MonteCarloResult:
    """Perform Monte Carlo tolerance stack analysis.

    Each contributor is sampled according to its specified distribution,
    signed, and summed into the result distribution.

    Args:
        stackup: The stack-up snapshot to analyze.
        config: Analysis configuration; defaults to AnalysisConfig().
        iterations: Overrides ``config.mc_iterations``.
        seed: Overrides ``config.seed``.
    """
    config = _config(config)
    validate_stackup(stackup)
    if iterations is None:
        iterations = config.mc_iterations
    else:
        _check_iteration_override(iterations, config)
    if seed is None:
        seed = config.seed

    rng = np.random.default_rng(seed)
    contributors = stackup.contributors

    def sample_batch(n: int) -> np.ndarray:
        result = np.zeros(n)
        for c in contributors:
            result += c.sign * _sample_contributor(rng, c, config, n)
        return result

    samples = run_batches(sample_batch, iterations, config)
    stats = compute_sample_statistics(
        samples, stackup.target.upper_limit, stackup.target.lower_limit)
    logger.debug("Monte Carlo %r: %d iterations, mean %g std %g yield %.4f%%",
                 stackup.name, iterations, stats.mean, stats.std, stats.yield_percent)
    return MonteCarloResult.from_statistics(stats)


def _check_iteration_override(iterations, config: AnalysisConfig) -> None:
    if isinstance(iterations, bool) or not isinstance(iterations, (int, np.integer)) \
            or iterations <= 0:
        raise ConfigError(f"Monte Carlo iterations must be a positive integer, got {iterations!r}",
                          field="iterations")
    if iterations > config.max_iterations:
        raise ConfigError(
            f"Monte Carlo iterations {iterations} exceed max_iterations {config.max_iterations}",
            field="iterations")


# ---------------------------------------------------------------------------
# Convenience dispatcher
# ---------------------------------------------------------------------------

def resolve_methods(methods: Optional[list[str]]) -> list[str]:
    """Normalize method names, rejecting unknown ones."""
    if methods is None:
        return ["wc", "rss", "mc"]
    resolved = []
    for m in methods:
        key = METHOD_ALIASES.get(str(m).lower().strip())
        if key is None:
            raise ConfigError(f"Unknown analysis method: {m!r}", field="methods")
        if key not in resolved:
            resolved.append(key)
    return resolved


def analyze_stackup(
    stackup: Stackup,
    methods: Optional[list[str]] = None,
    config: Optional[AnalysisConfig] = None,
    analyzed_at: Optional[datetime] = None,
) -> StackupReport:
    """Run one or more analysis methods on a stack-up snapshot.

    All inputs are validated before any method runs, so a rejected call
    never yields partial results.

    Args:
        stackup: The stack-up to analyze.
        methods: List of method names ("wc", "rss", "mc"). Defaults to all.
        config: Analysis configuration; 3D propagation runs when
            ``config.analysis_3d.enabled`` is set.
        analyzed_at: Timestamp attached to the results (caller's clock).

    Returns:
        StackupReport with the 1D results and, when enabled, the 3D results.
    """
    from tolstack.propagation import analyze_chain_3d, validate_chain

    config = _config(config)
    selected = resolve_methods(methods)
    validate_stackup(stackup)
    if config.analysis_3d.enabled:
        validate_chain(stackup, config)

    wc_result = worst_case(stackup, config) if "wc" in selected else None
    rss_result = rss(stackup, config) if "rss" in selected else None
    mc_result = monte_carlo(stackup, config) if "mc" in selected else None
    results_1d: AnalysisResults = assemble_results(
        wc_result, rss_result, mc_result, analyzed_at=analyzed_at)

    results_3d = None
    if config.analysis_3d.enabled:
        results_3d = analyze_chain_3d(stackup, config, analyzed_at=analyzed_at)

    logger.info("Analyzed stack-up %r with methods %s%s", stackup.name,
                ", ".join(selected), " + 3D" if results_3d is not None else "")
    return StackupReport(results_1d=results_1d, results_3d=results_3d)
