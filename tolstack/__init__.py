"""Tolerance stack-up analysis engine.

Supports Worst-Case, RSS, and Monte Carlo analysis of 1D tolerance
stacks, plus 3D small-displacement-torsor propagation through a
kinematic chain of features.

Additional capabilities:
- Process capability metrics (Cp/Cpk/Pp/Ppk) and variance sensitivity
- GD&T bonus tolerance per ASME Y14.5 (MMC/LMC)
- GD&T callouts mapped onto 6-DOF torsor bounds
- Functional-direction projection of 3D results
"""

import logging

from tolstack.errors import (
    TolstackError, ValidationError, ConfigError, PartialComputationError,
)
from tolstack.models import (
    Contributor, Direction, Distribution, GdtContribution, MaterialCondition,
    Stackup, Target,
)
from tolstack.config import AnalysisConfig, Analysis3DConfig, Method3D
from tolstack.gdt import FeatureControl, GdtBonusCalculator, GdtSymbol, SizeLimits
from tolstack.geometry import FeatureFrame, Geometry3D, GeometryClass, TorsorBounds
from tolstack.analysis import analyze_stackup, monte_carlo, rss, worst_case
from tolstack.jacobian import JacobianChain
from tolstack.torsor import build_torsor_bounds
from tolstack.propagation import analyze_chain_3d
from tolstack.results import (
    AnalysisResults, Analysis3DResults, FunctionalProjection, JacobianSummary,
    MonteCarloResult, ResultTorsor, RssResult, Sensitivity3DEntry, StackupReport,
    TorsorStats, Verdict, WorstCaseResult,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Errors
    "TolstackError", "ValidationError", "ConfigError", "PartialComputationError",
    # Core models
    "Contributor", "Direction", "Distribution", "GdtContribution",
    "MaterialCondition", "Stackup", "Target",
    # Configuration
    "AnalysisConfig", "Analysis3DConfig", "Method3D",
    # GD&T
    "FeatureControl", "GdtBonusCalculator", "GdtSymbol", "SizeLimits",
    # 3D geometry
    "FeatureFrame", "Geometry3D", "GeometryClass", "TorsorBounds",
    "JacobianChain", "build_torsor_bounds",
    # Analysis
    "analyze_stackup", "worst_case", "rss", "monte_carlo", "analyze_chain_3d",
    # Results
    "AnalysisResults", "Analysis3DResults", "FunctionalProjection",
    "JacobianSummary", "MonteCarloResult", "ResultTorsor", "RssResult",
    "Sensitivity3DEntry", "StackupReport", "TorsorStats", "Verdict",
    "WorstCaseResult",
]
__version__ = "0.1.0"
