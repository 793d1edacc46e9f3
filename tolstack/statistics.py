"""Capability indices and statistical utilities.

Provides the normal CDF, Cp/Cpk and Pp/Ppk, yield estimation, percent
contribution and the per-distribution sampling rules shared by the 1D and
3D Monte Carlo engines.

Capability indices are ``None`` whenever the spread is zero: a perfectly
deterministic stack has no meaningful index and is reported as undefined
rather than infinite.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy.stats import norm

from tolstack.models import Distribution


def normal_cdf(z: float) -> float:
    """Standard normal cumulative distribution function."""
    return float(norm.cdf(z))


def normal_yield_percent(mean: float, sigma: float, usl: float, lsl: float) -> float:
    """Percentage of a normal population falling within [lsl, usl].

    A zero sigma collapses the population onto ``mean``.
    """
    if sigma <= 0:
        return 100.0 if lsl <= mean <= usl else 0.0
    return (normal_cdf((usl - mean) / sigma) - normal_cdf((lsl - mean) / sigma)) * 100.0


def capability_indices(
    sigma: float,
    usl: float,
    lsl: float,
    center: float,
) -> tuple[Optional[float], Optional[float]]:
    """Return (Cp, Cpk) for a process with spread ``sigma``.

    Cp  = (USL - LSL) / 6 sigma
    Cpk = min(USL - center, center - LSL) / 3 sigma

    The same formulas give Pp/Ppk when ``sigma`` is a sample std dev.
    """
    if sigma <= 0:
        return None, None
    cp = (usl - lsl) / (6.0 * sigma)
    cpk = min(usl - center, center - lsl) / (3.0 * sigma)
    return cp, cpk


def percent_contribution(variances: Sequence[float]) -> Optional[list[float]]:
    """Percent of the total variance contributed by each term.

    Returns None when the total variance is zero (undefined).
    """
    total = float(sum(variances))
    if total <= 0:
        return None
    return [float(v) / total * 100.0 for v in variances]


def percentile_from_sorted(sorted_samples: np.ndarray, fraction: float) -> float:
    """Pick the sample at index floor(fraction * n) of a sorted array."""
    n = len(sorted_samples)
    idx = min(int(n * fraction), n - 1)
    return float(sorted_samples[idx])


@dataclass(frozen=True)
class SampleStatistics:
    """Summary statistics of a sampled result distribution.

    Attributes:
        n_samples: Number of samples.
        mean: Sample mean.
        std: Sample standard deviation (ddof=1; 0 for a single sample).
        min: Smallest sample.
        max: Largest sample.
        percentile_2_5: 2.5th percentile.
        percentile_97_5: 97.5th percentile.
        yield_percent: Percentage of samples within [LSL, USL].
        pp: Process performance index, None when std is 0.
        ppk: Process performance index with centering, None when std is 0.
    """
    n_samples: int
    mean: float
    std: float
    min: float
    max: float
    percentile_2_5: float
    percentile_97_5: float
    yield_percent: float
    pp: Optional[float]
    ppk: Optional[float]


def compute_sample_statistics(
    samples: np.ndarray,
    usl: float,
    lsl: float,
) -> SampleStatistics:
    """Compute performance statistics from sampled results.

    Args:
        samples: 1D array of result values.
        usl: Upper specification limit.
        lsl: Lower specification limit.

    Returns:
        SampleStatistics with Pp/Ppk undefined for a zero spread.
    """
    samples = np.asarray(samples, dtype=float).ravel()
    n = len(samples)
    if n < 1:
        raise ValueError("Need at least 1 sample for statistics")

    ordered = np.sort(samples)
    mean = float(np.mean(ordered))
    std = float(np.std(ordered, ddof=1)) if n > 1 else 0.0
    if ordered[0] == ordered[-1]:
        std = 0.0

    in_spec = int(np.count_nonzero((ordered >= lsl) & (ordered <= usl)))
    pp, ppk = capability_indices(std, usl, lsl, mean)

    return SampleStatistics(
        n_samples=n,
        mean=mean,
        std=std,
        min=float(ordered[0]),
        max=float(ordered[-1]),
        percentile_2_5=percentile_from_sorted(ordered, 0.025),
        percentile_97_5=percentile_from_sorted(ordered, 0.975),
        yield_percent=in_spec / n * 100.0,
        pp=pp,
        ppk=ppk,
    )


def sample_distribution(
    rng: np.random.Generator,
    distribution: Distribution,
    low: float,
    mode: float,
    high: float,
    sigma: float,
    n_samples: int,
) -> np.ndarray:
    """Generate samples for one toleranced quantity.

    This is the central sampling rule used by the 1D and 3D engines.

    Args:
        rng: NumPy random generator.
        distribution: Distribution enum value.
        low: Lower limit of the tolerance interval.
        mode: Nominal value (mean for normal, peak for triangular).
        high: Upper limit of the tolerance interval.
        sigma: Standard deviation used by the normal distribution.
        n_samples: Number of samples to generate.

    Returns:
        1D array of samples.
    """
    if distribution == Distribution.NORMAL:
        if sigma <= 0:
            return np.full(n_samples, mode, dtype=float)
        return rng.normal(loc=mode, scale=sigma, size=n_samples)

    elif distribution == Distribution.UNIFORM:
        if high <= low:
            return np.full(n_samples, mode, dtype=float)
        return rng.uniform(low=low, high=high, size=n_samples)

    elif distribution == Distribution.TRIANGULAR:
        if high <= low:
            return np.full(n_samples, mode, dtype=float)
        return rng.triangular(left=low, mode=mode, right=high, size=n_samples)

    else:
        raise ValueError(f"Unknown distribution: {distribution}")
