"""spatial.py

Spatial and random-number capabilities consumed by the L-system evaluator.

- SpatialState: position, orientation (unit quaternion, w-first) and step length.
- RandomSource: seedable uniform reals, shared by handle between contexts.
- Small quaternion helpers on numpy arrays.

The evaluator never looks inside a SpatialState; only instructions do.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field

import numpy as np

UP = np.array([0.0, 1.0, 0.0])

_AXES = {
    "x": np.array([1.0, 0.0, 0.0]),
    "y": np.array([0.0, 1.0, 0.0]),
    "z": np.array([0.0, 0.0, 1.0]),
}


# -------------------------
# Quaternions (w, x, y, z)
# -------------------------


def identity_quat() -> np.ndarray:
    return np.array([1.0, 0.0, 0.0, 0.0])


def axis_vector(name: str) -> np.ndarray:
    try:
        return _AXES[name].copy()
    except KeyError:
        raise ValueError(f"axis must be one of 'x', 'y', 'z'; got {name!r}") from None


def quat_from_axis_angle(axis: np.ndarray, angle: float) -> np.ndarray:
    axis = np.asarray(axis, dtype=float)
    norm = np.linalg.norm(axis)
    if norm == 0.0:
        raise ValueError("rotation axis must be non-zero")
    half = 0.5 * angle
    xyz = axis / norm * math.sin(half)
    return np.array([math.cos(half), xyz[0], xyz[1], xyz[2]])


def quat_multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Hamilton product a * b (apply b first, then a)."""
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return np.array(
        [
            aw * bw - ax * bx - ay * by - az * bz,
            aw * bx + ax * bw + ay * bz - az * by,
            aw * by - ax * bz + ay * bw + az * bx,
            aw * bz + ax * by - ay * bx + az * bw,
        ]
    )


def quat_from_euler(x: float, y: float, z: float) -> np.ndarray:
    """Quaternion for intrinsic XYZ Euler angles in radians."""
    qx = quat_from_axis_angle(_AXES["x"], x)
    qy = quat_from_axis_angle(_AXES["y"], y)
    qz = quat_from_axis_angle(_AXES["z"], z)
    return quat_multiply(quat_multiply(qx, qy), qz)


def rotate_vector(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    w = q[0]
    u = q[1:]
    v = np.asarray(v, dtype=float)
    # v' = v + 2w(u x v) + 2u x (u x v)
    t = 2.0 * np.cross(u, v)
    return v + w * t + np.cross(u, t)


# -------------------------
# Spatial state
# -------------------------


@dataclass(frozen=True, eq=False)
class SpatialState:
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=identity_quat)
    step: float = 1.0

    def __post_init__(self) -> None:
        position = np.array(self.position, dtype=float)
        rotation = np.array(self.rotation, dtype=float)
        if position.shape != (3,):
            raise ValueError("position must have 3 components")
        if rotation.shape != (4,):
            raise ValueError("rotation must be a (w, x, y, z) quaternion")
        object.__setattr__(self, "position", position)
        object.__setattr__(self, "rotation", rotation)
        object.__setattr__(self, "step", float(self.step))

    def clone(self) -> SpatialState:
        return SpatialState(self.position, self.rotation, self.step)

    def rotated(self, q: np.ndarray) -> SpatialState:
        """Compose a rotation expressed in the local frame."""
        return SpatialState(self.position, quat_multiply(self.rotation, q), self.step)

    def translated(self, offset: np.ndarray) -> SpatialState:
        """Move by a local-frame offset, transformed by the current orientation."""
        world = rotate_vector(self.rotation, offset)
        return SpatialState(self.position + world, self.rotation, self.step)

    def advanced(self, distance: float, axis: np.ndarray = UP) -> SpatialState:
        return self.translated(np.asarray(axis, dtype=float) * distance)

    def scaled(self, ratio: float) -> SpatialState:
        return SpatialState(self.position, self.rotation, self.step * ratio)

    def heading(self) -> np.ndarray:
        """World direction of the local up axis."""
        return rotate_vector(self.rotation, UP)

    def same_as(self, other: SpatialState) -> bool:
        return (
            np.array_equal(self.position, other.position)
            and np.array_equal(self.rotation, other.rotation)
            and self.step == other.step
        )

    def to_dict(self) -> dict[str, list[float] | float]:
        return {
            "position": [float(c) for c in self.position],
            "rotation": [float(c) for c in self.rotation],
            "step": self.step,
        }

    def __repr__(self) -> str:
        p = ", ".join(f"{c:.4g}" for c in self.position)
        return f"SpatialState(position=({p}), step={self.step:.4g})"


# -------------------------
# Random source
# -------------------------


class RandomSource:
    """Seedable uniform-real sampler.

    One instance is a single sequential cursor: every draw advances it, so the
    order in which instructions draw is part of the reproducibility contract.
    """

    def __init__(self, seed: int | None = None) -> None:
        self.seed = seed
        self._rng = random.Random(seed)

    def real(self, low: float, high: float, inclusive: bool = False) -> float:
        """Uniform sample in [low, high) or, with ``inclusive``, [low, high]."""
        if high < low:
            raise ValueError(f"high ({high}) must be >= low ({low})")
        if inclusive:
            return self._rng.uniform(low, high)
        return low + (high - low) * self._rng.random()

    def random(self) -> float:
        return self._rng.random()

    def __repr__(self) -> str:
        return f"RandomSource(seed={self.seed!r})"
