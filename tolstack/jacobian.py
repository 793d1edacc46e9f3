"""Jacobian chain for small-displacement-torsor propagation.

A torsor known at point A is moved to point B by

    t_B = t_A + omega x (B - A) = t_A + skew(A - B) @ omega

so each link of the chain is the 6x6 block matrix

    J = [[I3, skew(r)],
         [0,  I3     ]],   r = origin_from - origin_to

A feature's local torsor (local z = feature axis) is first rotated into
the common assembly frame by diag(R, R).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from tolstack.errors import ValidationError
from tolstack.geometry import FeatureFrame

logger = logging.getLogger(__name__)

Z_AXIS = np.array([0.0, 0.0, 1.0])


def skew(r) -> np.ndarray:
    """Skew-symmetric matrix such that skew(r) @ x == cross(r, x)."""
    x, y, z = (float(c) for c in r)
    return np.array([
        [0.0, -z, y],
        [z, 0.0, -x],
        [-y, x, 0.0],
    ])


def rotation_between(a, b) -> np.ndarray:
    """Minimal rotation matrix R with R @ a_hat == b_hat (Rodrigues)."""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    a = a / np.linalg.norm(a)
    b = b / np.linalg.norm(b)
    v = np.cross(a, b)
    c = float(np.dot(a, b))
    if c > 1.0 - 1e-12:
        return np.eye(3)
    if c < -1.0 + 1e-12:
        # Half turn about any axis perpendicular to a
        perp = np.cross(a, [1.0, 0.0, 0.0])
        if np.linalg.norm(perp) < 1e-6:
            perp = np.cross(a, [0.0, 1.0, 0.0])
        perp /= np.linalg.norm(perp)
        return 2.0 * np.outer(perp, perp) - np.eye(3)
    vx = skew(v)
    return np.eye(3) + vx + vx @ vx / (1.0 + c)


def transport_matrix(origin_from, origin_to) -> np.ndarray:
    """6x6 matrix moving a torsor from ``origin_from`` to ``origin_to``."""
    r = np.asarray(origin_from, dtype=float) - np.asarray(origin_to, dtype=float)
    j = np.eye(6)
    j[:3, 3:] = skew(r)
    return j


def frame_rotation(axis) -> np.ndarray:
    """6x6 block-diagonal rotation from a feature's local frame to the common frame."""
    r = rotation_between(Z_AXIS, axis)
    m = np.zeros((6, 6))
    m[:3, :3] = r
    m[3:, 3:] = r
    return m


@dataclass(frozen=True, eq=False)
class ChainLink:
    """One transport step of the chain.

    Attributes:
        from_id: Feature the link starts at.
        to_id: Feature (or evaluation point) the link ends at.
        r: origin_from - origin_to in the common frame.
        matrix: 6x6 transport matrix.
    """
    from_id: str
    to_id: str
    r: tuple[float, float, float]
    matrix: np.ndarray


class JacobianChain:
    """Ordered kinematic chain with per-feature Jacobians.

    The Jacobian of feature k maps its local torsor to the result torsor at
    the evaluation point: the product of the links downstream of k times
    the frame rotation of k.

    The result torsor is read at the origin of the last feature unless a
    reference point is given. Pass ``reference_point=(0, 0, 0)`` to evaluate
    every torsor at the assembly origin; since transport products telescope,
    each feature's Jacobian then depends only on its own origin and axis.

    Args:
        frames: Ordered chain features, each with geometry.
        reference_point: Evaluation point; defaults to the origin of the
            last feature.
    """

    EVALUATION_ID = "<evaluation point>"

    def __init__(
        self,
        frames: Sequence[FeatureFrame],
        reference_point: Optional[Sequence[float]] = None,
    ) -> None:
        self.frames = tuple(frames)
        if not self.frames:
            raise ValidationError("Kinematic chain is empty", field="features")
        for i, f in enumerate(self.frames):
            if f.geometry is None:
                raise ValidationError(f"Feature {f.id!r} has no geometry",
                                      field="geometry", index=i)
        if reference_point is None:
            self.evaluation_point = self.frames[-1].geometry.origin_array
        else:
            self.evaluation_point = np.asarray(reference_point, dtype=float)

        self.links = self._build_links()
        self._index = {f.id: i for i, f in enumerate(self.frames)}
        self._jacobians = self._build_jacobians()
        logger.debug("Built Jacobian chain of %d features evaluated at %s",
                     len(self.frames), self.evaluation_point.tolist())

    def _build_links(self) -> tuple[ChainLink, ...]:
        links = []
        for a, b in zip(self.frames[:-1], self.frames[1:]):
            links.append(self._link(a.id, a.geometry.origin_array, b.id, b.geometry.origin_array))
        last = self.frames[-1]
        links.append(self._link(last.id, last.geometry.origin_array,
                                self.EVALUATION_ID, self.evaluation_point))
        return tuple(links)

    @staticmethod
    def _link(from_id: str, p_from: np.ndarray, to_id: str, p_to: np.ndarray) -> ChainLink:
        r = p_from - p_to
        return ChainLink(
            from_id=from_id,
            to_id=to_id,
            r=tuple(float(x) for x in r),
            matrix=transport_matrix(p_from, p_to),
        )

    def _build_jacobians(self) -> list[np.ndarray]:
        n = len(self.frames)
        downstream = [np.eye(6)] * n
        acc = self.links[-1].matrix
        for i in range(n - 1, -1, -1):
            downstream[i] = acc
            if i > 0:
                acc = acc @ self.links[i - 1].matrix
        return [downstream[i] @ frame_rotation(f.geometry.axis)
                for i, f in enumerate(self.frames)]

    def __len__(self) -> int:
        return len(self.frames)

    def index_of(self, feature_id: str) -> int:
        try:
            return self._index[feature_id]
        except KeyError:
            raise ValidationError(f"Feature {feature_id!r} is not in the chain",
                                  field="feature") from None

    def jacobian(self, feature_id: str) -> np.ndarray:
        """6x6 Jacobian of a chain feature (a copy)."""
        return self._jacobians[self.index_of(feature_id)].copy()

    def jacobian_at(self, index: int) -> np.ndarray:
        return self._jacobians[index].copy()


def projection_row(direction) -> np.ndarray:
    """1x6 row projecting a torsor's translation onto a unit direction."""
    d = np.asarray(direction, dtype=float)
    row = np.zeros(6)
    row[:3] = d / np.linalg.norm(d)
    return row
