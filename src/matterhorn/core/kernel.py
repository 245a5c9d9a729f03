"""
Escape-time iteration kernel.

Two renditions of one algorithm: `iterate` runs a single point in plain
Python, `iterate_grid` runs a whole complex array with numpy (no per-pixel
Python loops). Both perform the same floating-point operations in the same
order, so they agree to rounding.

All arithmetic is double precision. Non-integer exponents use the polar form
r**p * (cos(p*theta) + i*sin(p*theta)).
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, NamedTuple, Optional

import numpy as np

from matterhorn.core.traps import OrbitTrap, grid_trap_distance, trap_distance


class FractalKind(str, Enum):
    MANDELBROT = "mandelbrot"
    JULIA = "julia"
    BURNING_SHIP = "burning_ship"
    MULTIBROT = "multibrot"


@dataclass
class FractalParams:
    """Per-render fractal configuration."""

    kind: FractalKind = FractalKind.MANDELBROT
    max_iterations: int = 800
    escape_radius: float = 4.0
    power: float = 2.0
    julia_c: complex = complex(-0.8, 0.156)
    # Tone mapping applied after the palette
    exposure: float = 1.0
    gamma: float = 2.2

    @property
    def effective_power(self) -> float:
        """Mandelbrot and Julia always square; the others use `power`."""
        if self.kind in (FractalKind.MANDELBROT, FractalKind.JULIA):
            return 2.0
        return float(self.power)

    def validate(self):
        """Raise ValueError naming the first offending field."""
        if not isinstance(self.max_iterations, int) or self.max_iterations <= 0:
            raise ValueError("max_iterations must be a positive integer")
        if not math.isfinite(self.escape_radius) or abs(self.escape_radius) <= 2.0:
            raise ValueError("escape_radius must be finite with escape_radius**2 > 4")
        if not math.isfinite(self.power) or self.power < 1.0:
            raise ValueError("power must be finite and >= 1")
        if not (math.isfinite(self.julia_c.real) and math.isfinite(self.julia_c.imag)):
            raise ValueError("julia_c must be finite")
        if not math.isfinite(self.exposure) or self.exposure <= 0:
            raise ValueError("exposure must be finite and > 0")
        if not math.isfinite(self.gamma) or self.gamma <= 0:
            raise ValueError("gamma must be finite and > 0")


class IterationResult(NamedTuple):
    iteration_count: float
    escaped: bool
    final_z: complex
    # Minimum trap distance over the orbit, None without a trap
    trap_distance: Optional[float]
    steps: int


class GridResult(NamedTuple):
    iteration_count: np.ndarray
    escaped: np.ndarray
    final_z: np.ndarray
    trap_distance: Optional[np.ndarray]
    steps: np.ndarray


def _polar_power(x: float, y: float, p: float) -> complex:
    r = math.sqrt(x * x + y * y)
    theta = math.atan2(y, x)
    cos_p = math.cos(theta * p)
    sin_p = math.sin(theta * p)
    try:
        r_p = r ** p
    except OverflowError:
        # Past float range: report an infinite modulus so the orbit escapes
        return complex(math.copysign(math.inf, cos_p), math.copysign(math.inf, sin_p))
    return complex(r_p * cos_p, r_p * sin_p)


def step_function(params: FractalParams) -> Callable[[complex, complex], complex]:
    """Select the per-step recurrence for the fractal family once per call."""
    p = params.effective_power

    if params.kind == FractalKind.BURNING_SHIP:
        if p == 2.0:
            def step(z: complex, c: complex) -> complex:
                x = abs(z.real)
                y = abs(z.imag)
                return complex(x * x - y * y + c.real, 2.0 * x * y + c.imag)
        else:
            def step(z: complex, c: complex) -> complex:
                w = _polar_power(abs(z.real), abs(z.imag), p)
                return complex(w.real + c.real, w.imag + c.imag)
        return step

    if p == 2.0:
        def step(z: complex, c: complex) -> complex:
            x = z.real
            y = z.imag
            return complex(x * x - y * y + c.real, 2.0 * x * y + c.imag)
    else:
        def step(z: complex, c: complex) -> complex:
            w = _polar_power(z.real, z.imag, p)
            return complex(w.real + c.real, w.imag + c.imag)
    return step


def _grid_polar_power(x: np.ndarray, y: np.ndarray, p: float):
    r = np.sqrt(x * x + y * y)
    theta = np.arctan2(y, x)
    cos_p = np.cos(theta * p)
    sin_p = np.sin(theta * p)
    r_p = r ** p
    wx = r_p * cos_p
    wy = r_p * sin_p
    overflow = np.isinf(r_p)
    if overflow.any():
        wx[overflow] = np.copysign(np.inf, cos_p[overflow])
        wy[overflow] = np.copysign(np.inf, sin_p[overflow])
    return wx, wy


def grid_step_function(params: FractalParams):
    """Vectorized counterpart of step_function operating on (x, y, cx, cy) arrays."""
    p = params.effective_power
    burning = params.kind == FractalKind.BURNING_SHIP

    if p == 2.0:
        def step(x, y, cx, cy):
            if burning:
                x = np.abs(x)
                y = np.abs(y)
            return x * x - y * y + cx, 2.0 * x * y + cy
    else:
        def step(x, y, cx, cy):
            if burning:
                x = np.abs(x)
                y = np.abs(y)
            wx, wy = _grid_polar_power(x, y, p)
            return wx + cx, wy + cy
    return step


def smooth_count(count: int, modulus: float, escape_radius: float, power: float) -> float:
    """
    Continuous iteration count for an escaped orbit.

    count + 1 - log(log|z| / log R) / log p, clamped to [count, count + 1]
    so the value never decreases as the true count increases.
    """
    if power <= 1.0:
        return float(count)
    ratio = math.log(modulus) / math.log(escape_radius)
    nu = math.log(ratio) / math.log(power) if ratio > 0 else 0.0
    nu = min(max(nu, 0.0), 1.0)
    return count + 1.0 - nu


def _initial_state(point: complex, params: FractalParams):
    if params.kind == FractalKind.JULIA:
        return point, params.julia_c
    return 0j, point


def iterate(
    point: complex,
    params: FractalParams,
    trap: Optional[OrbitTrap] = None,
) -> IterationResult:
    """
    Run the escape-time recurrence for one world coordinate.

    Interior points (no escape within max_iterations) report
    iteration_count == max_iterations and escaped == False.
    """
    step = step_function(params)
    distance = trap_distance(trap)
    z, c = _initial_state(complex(point), params)
    r2 = params.escape_radius * params.escape_radius
    trap_min = math.inf if distance is not None else None

    count = 0
    while count < params.max_iterations:
        if z.real * z.real + z.imag * z.imag > r2:
            break
        z = step(z, c)
        count += 1
        if distance is not None:
            trap_min = min(trap_min, distance(z))

    modulus2 = z.real * z.real + z.imag * z.imag
    escaped = modulus2 > r2
    if escaped:
        value = smooth_count(count, math.sqrt(modulus2), params.escape_radius, params.effective_power)
    else:
        value = float(params.max_iterations)

    return IterationResult(value, escaped, z, trap_min, count)


def iterate_grid(
    points: np.ndarray,
    params: FractalParams,
    trap: Optional[OrbitTrap] = None,
) -> GridResult:
    """Vectorized `iterate` over an array of world coordinates of any shape."""
    points = np.asarray(points, dtype=np.complex128)
    step = grid_step_function(params)
    distance = grid_trap_distance(trap)

    if params.kind == FractalKind.JULIA:
        x = points.real.copy()
        y = points.imag.copy()
        cx = np.full(points.shape, params.julia_c.real)
        cy = np.full(points.shape, params.julia_c.imag)
    else:
        x = np.zeros(points.shape, dtype=np.float64)
        y = np.zeros(points.shape, dtype=np.float64)
        cx = points.real.copy()
        cy = points.imag.copy()

    r2 = params.escape_radius * params.escape_radius
    count = np.zeros(points.shape, dtype=np.int64)
    active = np.ones(points.shape, dtype=bool)
    trap_min = np.full(points.shape, np.inf) if distance is not None else None

    for _ in range(params.max_iterations):
        active &= (x * x + y * y) <= r2
        if not active.any():
            break
        nx, ny = step(x[active], y[active], cx[active], cy[active])
        x[active] = nx
        y[active] = ny
        count[active] += 1
        if distance is not None:
            trap_min[active] = np.minimum(trap_min[active], distance(nx, ny))

    modulus2 = x * x + y * y
    escaped = modulus2 > r2
    value = np.full(points.shape, float(params.max_iterations))

    if escaped.any():
        p = params.effective_power
        esc_count = count[escaped].astype(np.float64)
        if p <= 1.0:
            value[escaped] = esc_count
        else:
            ratio = np.log(np.sqrt(modulus2[escaped])) / math.log(params.escape_radius)
            with np.errstate(divide="ignore", invalid="ignore"):
                nu = np.where(ratio > 0, np.log(ratio) / math.log(p), 0.0)
            nu = np.clip(nu, 0.0, 1.0)
            value[escaped] = esc_count + 1.0 - nu

    return GridResult(value, escaped, x + 1j * y, trap_min, count)
