"""3D tolerance propagation through a kinematic chain.

Each contributor's local torsor bounds are mapped through its chain
Jacobian to the evaluation point and combined per output DOF:

    worst case:   interval sum of J @ [lo, hi]
    RSS:          sigma_d^2 = sum_i sum_k (J_i[d, k] * sigma_ik)^2
    Monte Carlo:  sum_i J_i @ sample_i, per-DOF mean and std

An optional functional direction reduces the result to a scalar deviation
that is classified against the target limits like a 1D stack.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import numpy as np

from tolstack.analysis import run_batches
from tolstack.config import AnalysisConfig, Method3D
from tolstack.errors import ConfigError, ValidationError
from tolstack.geometry import DOF_NAMES, FeatureFrame, TorsorBounds
from tolstack.jacobian import JacobianChain, projection_row
from tolstack.models import Contributor, MaterialCondition, Stackup
from tolstack.results import (
    Analysis3DResults, FunctionalProjection, Sensitivity3DEntry,
    assemble_3d_results, assemble_torsor, classify_margin,
)
from tolstack.statistics import (
    capability_indices, compute_sample_statistics, normal_yield_percent, sample_distribution,
)
from tolstack.torsor import build_torsor_bounds

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ChainContributor:
    """A contributor resolved against the chain.

    Attributes:
        contributor: The source contributor.
        frame: Chain feature it sits on.
        bounds: Local 6-DOF bounds (sign applied).
        jacobian: 6x6 map from local torsor to result torsor.
    """
    contributor: Contributor
    frame: FeatureFrame
    bounds: TorsorBounds
    jacobian: np.ndarray


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_chain(stackup: Stackup, config: AnalysisConfig) -> None:
    """Reject a 3D request with incomplete or inconsistent chain data.

    Raises:
        ConfigError: 3D analysis disabled or chain longer than allowed.
        ValidationError: missing features, geometry or class, a
            material-condition callout without size limits, or a
            contributor whose feature precedes the previous contributor's.
    """
    if not config.analysis_3d.enabled:
        raise ConfigError("3D analysis is not enabled", field="analysis_3d.enabled")
    features = stackup.features
    if not features:
        raise ValidationError("3D analysis requires a kinematic chain", field="features")
    if len(features) > config.max_chain_length:
        raise ConfigError(
            f"Chain of {len(features)} features exceeds max_chain_length "
            f"{config.max_chain_length}", field="features")
    if not stackup.contributors:
        raise ValidationError("Stack-up has no contributors", field="contributors")

    positions = {}
    for i, f in enumerate(features):
        if not isinstance(f, FeatureFrame):
            raise ValidationError(f"Expected a FeatureFrame, got {type(f).__name__}",
                                  field="features", index=i)
        if f.id in positions:
            raise ValidationError(f"Duplicate feature id {f.id!r}", field="features", index=i)
        # every frame places a link of the chain, referenced or not
        if f.geometry is None:
            raise ValidationError(f"Feature {f.id!r} has no geometry",
                                  field="geometry", index=i)
        if f.size is None and f.actual_size is not None:
            for control in f.controls:
                if control.material_condition != MaterialCondition.RFS:
                    raise ValidationError(
                        f"Feature {f.id!r}: {control.symbol.value} at "
                        f"{control.material_condition.value} needs the feature size limits",
                        field="size", index=i)
        positions[f.id] = i

    last_position = -1
    for i, c in enumerate(stackup.contributors):
        if c.feature is None:
            raise ValidationError("Contributor has no feature reference",
                                  field="feature", contributor=c.name, index=i)
        if c.feature not in positions:
            raise ValidationError(f"Feature {c.feature!r} is not in the chain",
                                  field="feature", contributor=c.name, index=i)
        frame = features[positions[c.feature]]
        if frame.geometry_class is None:
            raise ValidationError(f"Feature {frame.id!r} has no geometry class",
                                  field="geometry_class", contributor=c.name, index=i)
        if positions[c.feature] < last_position:
            raise ValidationError(
                f"Feature {c.feature!r} precedes the previous contributor's feature in the chain",
                field="feature", contributor=c.name, index=i)
        last_position = positions[c.feature]


def resolve_chain(stackup: Stackup, config: AnalysisConfig) -> list[ChainContributor]:
    """Build bounds and Jacobians for every contributor of a validated stack-up.

    A feature's callouts bound its torsor once: the first contributor on a
    controlled feature carries the control bounds and later contributors on
    the same feature get zero bounds.
    """
    chain = JacobianChain(stackup.features, config.analysis_3d.reference_point)
    resolved = []
    controlled = set()
    for c in stackup.contributors:
        idx = chain.index_of(c.feature)
        frame = stackup.features[idx]
        if frame.controls and frame.id in controlled:
            logger.info("Callouts of feature %r already applied; %r adds no variation",
                        frame.id, c.name)
            bounds = TorsorBounds()
        else:
            bounds = build_torsor_bounds(c, frame)
            if frame.controls:
                controlled.add(frame.id)
        resolved.append(ChainContributor(
            contributor=c,
            frame=frame,
            bounds=bounds,
            jacobian=chain.jacobian_at(idx),
        ))
    return resolved


# ---------------------------------------------------------------------------
# Propagation
# ---------------------------------------------------------------------------

def _interval_sum(coefficients: np.ndarray, bounds: TorsorBounds) -> tuple[np.ndarray, np.ndarray]:
    """Worst-case interval of ``coefficients @ x`` for x within ``bounds``."""
    lo = coefficients * bounds.lower
    hi = coefficients * bounds.upper
    return np.minimum(lo, hi).sum(axis=-1), np.maximum(lo, hi).sum(axis=-1)


def propagate_worst_case(chain: list[ChainContributor]) -> tuple[np.ndarray, np.ndarray]:
    """Per-DOF (min, max) of the result torsor."""
    low = np.zeros(6)
    high = np.zeros(6)
    for cc in chain:
        lo, hi = _interval_sum(cc.jacobian, cc.bounds)
        low += lo
        high += hi
    return low, high


def propagate_rss(
    chain: list[ChainContributor],
    sigma_level: float,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-DOF mean and sigma, plus the (contributor, DOF) variance table."""
    mean = np.zeros(6)
    variances = np.zeros((len(chain), 6))
    for i, cc in enumerate(chain):
        mean += cc.jacobian @ cc.bounds.centers
        sigma_local = cc.bounds.widths / sigma_level
        variances[i] = ((cc.jacobian * sigma_local) ** 2).sum(axis=1)
    return mean, np.sqrt(variances.sum(axis=0)), variances


def sensitivity_table(variances: np.ndarray) -> np.ndarray:
    """Percent of each DOF's variance per contributor; 0 where a DOF has none."""
    total = variances.sum(axis=0)
    pct = np.zeros_like(variances)
    nonzero = total > 0
    pct[:, nonzero] = variances[:, nonzero] / total[nonzero] * 100.0
    return pct


def _sample_local(
    rng: np.random.Generator,
    cc: ChainContributor,
    sigma_level: float,
    n: int,
) -> np.ndarray:
    """(n, 6) local torsor samples, each DOF drawn over its own interval."""
    out = np.empty((n, 6))
    lower, upper, centers = cc.bounds.lower, cc.bounds.upper, cc.bounds.centers
    for k in range(6):
        out[:, k] = sample_distribution(
            rng, cc.contributor.distribution,
            low=lower[k], mode=centers[k], high=upper[k],
            sigma=(upper[k] - lower[k]) / sigma_level,
            n_samples=n,
        )
    return out


def sample_result_torsors(
    chain: list[ChainContributor],
    config: AnalysisConfig,
) -> np.ndarray:
    """(iterations, 6) sampled result torsors."""
    seed = config.analysis_3d.seed if config.analysis_3d.seed is not None else config.seed
    rng = np.random.default_rng(seed)

    def sample_batch(n: int) -> np.ndarray:
        result = np.zeros((n, 6))
        for cc in chain:
            result += _sample_local(rng, cc, config.sigma_level, n) @ cc.jacobian.T
        return result

    return run_batches(sample_batch, config.analysis_3d.monte_carlo_iterations, config)


def _column_mean_std(samples: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    mean = samples.mean(axis=0)
    if len(samples) < 2:
        return mean, np.zeros(samples.shape[1])
    std = samples.std(axis=0, ddof=1)
    std[samples.min(axis=0) == samples.max(axis=0)] = 0.0
    return mean, std


# ---------------------------------------------------------------------------
# Functional projection
# ---------------------------------------------------------------------------

def project_functional(
    stackup: Stackup,
    chain: list[ChainContributor],
    config: AnalysisConfig,
    mc_samples: Optional[np.ndarray] = None,
) -> FunctionalProjection:
    """Reduce the result torsor to a scalar deviation along the functional direction.

    The deviation is compared against the target limits minus the target
    nominal.
    """
    row = projection_row(stackup.functional_direction)
    target = stackup.target
    dev_usl = target.upper_limit - target.nominal
    dev_lsl = target.lower_limit - target.nominal

    wc_min = 0.0
    wc_max = 0.0
    mean = 0.0
    variance = 0.0
    for cc in chain:
        coeff = row @ cc.jacobian
        lo, hi = _interval_sum(coeff, cc.bounds)
        wc_min += float(lo)
        wc_max += float(hi)
        mean += float(coeff @ cc.bounds.centers)
        variance += float(((coeff * cc.bounds.widths / config.sigma_level) ** 2).sum())
    sigma = float(np.sqrt(variance))

    margin = min(dev_usl - wc_max, wc_min - dev_lsl)
    cp, cpk = capability_indices(sigma, dev_usl, dev_lsl, mean)

    mc_mean = mc_std = mc_yield = None
    if mc_samples is not None:
        stats = compute_sample_statistics(mc_samples @ row, dev_usl, dev_lsl)
        mc_mean, mc_std, mc_yield = stats.mean, stats.std, stats.yield_percent

    return FunctionalProjection(
        direction=stackup.functional_direction,
        wc_min=wc_min,
        wc_max=wc_max,
        wc_margin=margin,
        rss_mean=mean,
        rss_sigma=sigma,
        cp=cp,
        cpk=cpk,
        yield_percent=normal_yield_percent(mean, sigma, dev_usl, dev_lsl),
        verdict=classify_margin(margin, target.tolerance_band, config.marginal_fraction),
        mc_mean=mc_mean,
        mc_std_dev=mc_std,
        mc_yield_percent=mc_yield,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def analyze_chain_3d(
    stackup: Stackup,
    config: Optional[AnalysisConfig] = None,
    analyzed_at: Optional[datetime] = None,
) -> Analysis3DResults:
    """Run the 3D torsor analysis of a stack-up.

    Worst case and RSS always run; Monte Carlo runs when the 3D method is
    ``monte_carlo_3d``.

    Args:
        stackup: Stack-up with a kinematic chain in ``features``.
        config: Analysis configuration with ``analysis_3d.enabled`` set.
        analyzed_at: Timestamp attached to the results (caller's clock).
    """
    if config is None:
        config = AnalysisConfig()
    validate_chain(stackup, config)
    chain = resolve_chain(stackup, config)

    wc_min, wc_max = propagate_worst_case(chain)
    rss_mean, rss_sigma, variances = propagate_rss(chain, config.sigma_level)

    mc_samples = mc_mean = mc_std = None
    if config.analysis_3d.method == Method3D.MONTE_CARLO_3D:
        mc_samples = sample_result_torsors(chain, config)
        mc_mean, mc_std = _column_mean_std(mc_samples)

    torsor = assemble_torsor(wc_min, wc_max, rss_mean, rss_sigma, mc_mean, mc_std)
    pct = sensitivity_table(variances)
    sensitivity = [
        Sensitivity3DEntry(
            name=cc.contributor.name,
            feature_id=cc.frame.id,
            contribution_pct=tuple(float(p) for p in pct[i]),
        )
        for i, cc in enumerate(chain)
    ]

    functional = None
    if stackup.functional_direction is not None:
        functional = project_functional(stackup, chain, config, mc_samples)

    total_constrained = sum(len(cc.frame.geometry_class.constrained_dof) for cc in chain)
    results = assemble_3d_results(
        torsor,
        sensitivity,
        chain_length=len(stackup.features),
        total_constrained_dof=total_constrained,
        functional=functional,
        analyzed_at=analyzed_at,
    )
    logger.info("3D analysis of %r: %d contributors, free DOF %s", stackup.name,
                len(chain), ", ".join(results.jacobian_summary.result_free_dof) or "none")
    logger.debug("3D worst case per DOF: %s", dict(zip(DOF_NAMES, zip(wc_min, wc_max))))
    return results
