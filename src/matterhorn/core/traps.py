"""
Orbit trap geometry.

A trap measures the closest approach of an orbit to a fixed shape. The
kernels fold the distance returned here into a single running minimum while
iterating, so no trajectory is ever stored.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

import numpy as np


class TrapKind(str, Enum):
    NONE = "none"
    POINT = "point"
    CIRCLE = "circle"
    CROSS = "cross"


@dataclass(frozen=True)
class OrbitTrap:
    """Trap geometry attached to a render request."""

    kind: TrapKind = TrapKind.NONE
    center: complex = 0j
    radius: float = 0.35
    arm_width: float = 0.1
    # Strength falloff: exp(-distance * softness)
    softness: float = 5.0
    # None maps trap strength through the palette; a color blends towards it.
    color: Optional[Tuple[float, float, float]] = None

    @property
    def enabled(self) -> bool:
        return self.kind != TrapKind.NONE

    @classmethod
    def point(cls, center: complex, **kwargs) -> "OrbitTrap":
        return cls(kind=TrapKind.POINT, center=center, **kwargs)

    @classmethod
    def circle(cls, center: complex, radius: float, **kwargs) -> "OrbitTrap":
        return cls(kind=TrapKind.CIRCLE, center=center, radius=radius, **kwargs)

    @classmethod
    def cross(cls, center: complex, arm_width: float, **kwargs) -> "OrbitTrap":
        return cls(kind=TrapKind.CROSS, center=center, arm_width=arm_width, **kwargs)

    def validate(self):
        if self.kind == TrapKind.CIRCLE and not self.radius >= 0:
            raise ValueError("radius must be >= 0 for a circle trap")
        if self.kind == TrapKind.CROSS and not self.arm_width > 0:
            raise ValueError("arm_width must be > 0 for a cross trap")
        if not (math.isfinite(self.center.real) and math.isfinite(self.center.imag)):
            raise ValueError("trap center must be finite")
        if not self.softness >= 0:
            raise ValueError("softness must be >= 0")


NO_TRAP = OrbitTrap()


def trap_distance(trap: Optional[OrbitTrap]) -> Optional[Callable[[complex], float]]:
    """
    Return a scalar distance function for the trap, or None for no trap.

    Point: Euclidean distance to the center.
    Circle: |distance to center - radius|.
    Cross: distance to the nearer of the two axis lines through the center,
    capped at arm_width.
    """
    if trap is None or not trap.enabled:
        return None

    cx = trap.center.real
    cy = trap.center.imag

    if trap.kind == TrapKind.POINT:
        def distance(z: complex) -> float:
            return math.sqrt((z.real - cx) ** 2 + (z.imag - cy) ** 2)
    elif trap.kind == TrapKind.CIRCLE:
        radius = trap.radius

        def distance(z: complex) -> float:
            return abs(math.sqrt((z.real - cx) ** 2 + (z.imag - cy) ** 2) - radius)
    else:
        arm = trap.arm_width

        def distance(z: complex) -> float:
            return min(abs(z.real - cx), abs(z.imag - cy), arm)

    return distance


def grid_trap_distance(
    trap: Optional[OrbitTrap],
) -> Optional[Callable[[np.ndarray, np.ndarray], np.ndarray]]:
    """Vectorized counterpart of trap_distance over (real, imag) arrays."""
    if trap is None or not trap.enabled:
        return None

    cx = trap.center.real
    cy = trap.center.imag

    if trap.kind == TrapKind.POINT:
        def distance(x: np.ndarray, y: np.ndarray) -> np.ndarray:
            return np.sqrt((x - cx) ** 2 + (y - cy) ** 2)
    elif trap.kind == TrapKind.CIRCLE:
        radius = trap.radius

        def distance(x: np.ndarray, y: np.ndarray) -> np.ndarray:
            return np.abs(np.sqrt((x - cx) ** 2 + (y - cy) ** 2) - radius)
    else:
        arm = trap.arm_width

        def distance(x: np.ndarray, y: np.ndarray) -> np.ndarray:
            return np.minimum(np.minimum(np.abs(x - cx), np.abs(y - cy)), arm)

    return distance


def trap_strength(distance, trap: OrbitTrap):
    """Map a trap distance to a strength in [0, 1] (1 = on the trap)."""
    distance = np.asarray(distance, dtype=np.float64)
    # Orbits that never stepped keep an infinite distance: no trap contribution.
    finite = np.isfinite(distance)
    safe = np.where(finite, distance, 0.0)
    return np.where(finite, np.clip(np.exp(-safe * trap.softness), 0.0, 1.0), 0.0)
