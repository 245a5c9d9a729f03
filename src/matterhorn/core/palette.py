"""
Palette mapping and color grading.

Maps normalized escape / trap values to RGB through piecewise-linear
palette stops, with optional palette cycling and exposure/gamma tone mapping.
"""

import colorsys
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

import numpy as np

Color = Tuple[float, float, float]

COLOR_SPACES = ("rgb", "hsv")


@dataclass(frozen=True)
class PaletteStop:
    position: float
    color: Color


def default_stops() -> List[PaletteStop]:
    return [
        PaletteStop(0.0, (0.0, 0.03, 0.39)),
        PaletteStop(0.16, (0.13, 0.42, 0.8)),
        PaletteStop(0.42, (0.93, 1.0, 1.0)),
        PaletteStop(0.6425, (1.0, 0.67, 0.0)),
        PaletteStop(0.8575, (0.0, 0.01, 0.0)),
        PaletteStop(1.0, (0.0, 0.03, 0.39)),
    ]


PALETTE_PRESETS = {
    "Neon Pulse": [
        (0.0, (1.0, 0.0, 0.6)),
        (0.2, (0.0, 1.0, 0.9)),
        (0.4, (1.0, 1.0, 0.0)),
        (0.6, (0.0, 0.8, 0.2)),
        (0.8, (0.0, 0.2, 1.0)),
        (1.0, (1.0, 0.0, 0.0)),
    ],
    "Cyber Sunset": [
        (0.0, (0.05, 0.0, 0.2)),
        (0.15, (0.4, 0.0, 0.5)),
        (0.35, (1.0, 0.0, 0.4)),
        (0.6, (1.0, 0.6, 0.0)),
        (0.85, (1.0, 0.95, 0.5)),
        (1.0, (0.05, 0.0, 0.2)),
    ],
    "Laser Grid": [
        (0.0, (0.0, 0.0, 0.0)),
        (0.2, (0.0, 1.0, 0.0)),
        (0.4, (1.0, 0.0, 0.0)),
        (0.6, (0.0, 0.0, 1.0)),
        (0.8, (1.0, 1.0, 1.0)),
        (1.0, (1.0, 0.0, 1.0)),
    ],
    "Ultraviolet": [
        (0.0, (0.2, 0.0, 0.4)),
        (0.25, (0.5, 0.0, 0.9)),
        (0.5, (0.1, 0.6, 1.0)),
        (0.75, (0.9, 0.6, 0.0)),
        (1.0, (0.1, 0.0, 0.2)),
    ],
}


def normalized_stops(stops: List[PaletteStop]) -> List[PaletteStop]:
    """Sort stops and pad them so they span exactly [0, 1]."""
    if not stops:
        return default_stops()
    ordered = sorted(stops, key=lambda s: s.position)
    if ordered[0].position > 0.0:
        ordered.insert(0, PaletteStop(0.0, ordered[0].color))
    if ordered[-1].position < 1.0:
        ordered.append(PaletteStop(1.0, ordered[-1].color))
    return ordered


@dataclass
class Palette:
    """Ordered color stops plus cycling state."""

    stops: List[PaletteStop] = field(default_factory=default_stops)
    cycle_phase: float = 0.0
    cycle_enabled: bool = True
    color_space: str = "rgb"
    # None means the color at palette position 0
    interior_color: Optional[Color] = None

    def validate(self):
        if not self.stops:
            raise ValueError("palette needs at least one stop")
        previous = -np.inf
        for stop in self.stops:
            if not 0.0 <= stop.position <= 1.0:
                raise ValueError(f"stop position {stop.position} outside [0, 1]")
            if stop.position < previous:
                raise ValueError("stop positions must be monotonically increasing")
            previous = stop.position
            if len(stop.color) != 3 or not all(np.isfinite(stop.color)):
                raise ValueError(f"stop color {stop.color} must be a finite RGB triple")
        if not 0.0 <= self.cycle_phase < 1.0:
            raise ValueError("cycle_phase must be in [0, 1)")
        if self.color_space not in COLOR_SPACES:
            raise ValueError(f"color_space must be one of {COLOR_SPACES}")

    def effective_positions(self, values: np.ndarray, extra_phase: float = 0.0) -> np.ndarray:
        values = np.asarray(values, dtype=np.float64)
        if self.cycle_enabled:
            return np.mod(values + self.cycle_phase + extra_phase, 1.0)
        return values

    def map_array(self, values: np.ndarray, extra_phase: float = 0.0) -> np.ndarray:
        """
        Map normalized values to colors.

        Args:
            values: Array of values in [0, 1], any shape.
            extra_phase: Additional cycling offset (e.g. from the timeline).

        Returns:
            values.shape + (3,) float64 RGB array in [0, 1].
        """
        positions = self.effective_positions(values, extra_phase)
        return interpolate_stops(self.stops, positions, self.color_space)

    def map_value(self, value: float, extra_phase: float = 0.0) -> Color:
        rgb = self.map_array(np.array([value]), extra_phase)[0]
        return (float(rgb[0]), float(rgb[1]), float(rgb[2]))

    def interior_rgb(self) -> Color:
        if self.interior_color is not None:
            return tuple(self.interior_color)
        return normalized_stops(self.stops)[0].color


def interpolate_stops(
    stops: List[PaletteStop],
    positions: np.ndarray,
    color_space: str = "rgb",
) -> np.ndarray:
    """Component-wise linear interpolation between bracketing stops."""
    ordered = normalized_stops(stops)
    xp = np.array([s.position for s in ordered], dtype=np.float64)
    colors = np.array([s.color for s in ordered], dtype=np.float64)
    if color_space == "hsv":
        colors = np.array([colorsys.rgb_to_hsv(*c) for c in colors], dtype=np.float64)

    positions = np.asarray(positions, dtype=np.float64)
    out = np.empty(positions.shape + (3,), dtype=np.float64)
    for channel in range(3):
        # np.interp clamps outside [xp[0], xp[-1]] to the endpoint values
        out[..., channel] = np.interp(positions, xp, colors[:, channel])

    if color_space == "hsv":
        out = _hsv_to_rgb_array(out[..., 0], out[..., 1], out[..., 2])
    return out


def build_lut(palette: Palette, size: int = 2048) -> np.ndarray:
    """Sample the un-cycled palette into a (size, 3) float32 lookup table."""
    positions = np.linspace(0.0, 1.0, size)
    return interpolate_stops(palette.stops, positions, palette.color_space).astype(np.float32)


def _hsv_to_rgb_array(
    h: np.ndarray,
    s: np.ndarray,
    v: np.ndarray,
) -> np.ndarray:
    """
    Vectorized HSV to RGB conversion.

    Args:
        h, s, v: Arrays of same shape, values in [0, 1].

    Returns:
        shape + (3,) float64 array in [0, 1].
    """
    h6 = (h * 6.0) % 6.0
    i = h6.astype(np.int32)
    f = h6 - i

    p = v * (1.0 - s)
    q = v * (1.0 - s * f)
    t = v * (1.0 - s * (1.0 - f))

    rgb = np.zeros(h.shape + (3,), dtype=np.float64)
    sectors = (
        (v, t, p),
        (q, v, p),
        (p, v, t),
        (p, q, v),
        (t, p, v),
        (v, p, q),
    )
    for sector, (r, g, b) in enumerate(sectors):
        mask = i == sector
        rgb[mask, 0] = r[mask]
        rgb[mask, 1] = g[mask]
        rgb[mask, 2] = b[mask]

    return rgb


def tone_map(rgb: np.ndarray, exposure: float = 1.0, gamma: float = 2.2) -> np.ndarray:
    """Exponential exposure followed by gamma: (1 - exp(-c * exposure)) ** (1 / gamma)."""
    mapped = 1.0 - np.exp(-np.asarray(rgb, dtype=np.float64) * exposure)
    return np.clip(mapped, 0.0, 1.0) ** (1.0 / gamma)


def to_uint8(rgb: np.ndarray) -> np.ndarray:
    """Quantize float RGB in [0, 1] to uint8 (truncating)."""
    return (np.clip(rgb, 0.0, 1.0) * 255.0).astype(np.uint8)


def preset_palette(name: str) -> Palette:
    try:
        stops = PALETTE_PRESETS[name]
    except KeyError:
        raise KeyError(f"unknown palette preset '{name}'") from None
    return Palette(stops=[PaletteStop(pos, color) for pos, color in stops])


def flip_palette(palette: Palette) -> Palette:
    """Mirror stop positions around 0.5."""
    flipped = [PaletteStop(1.0 - s.position, s.color) for s in palette.stops]
    return replace(palette, stops=sorted(flipped, key=lambda s: s.position))


def cycle_palette_colors(palette: Palette) -> Palette:
    """Rotate colors one stop to the right, keeping positions."""
    if len(palette.stops) < 2:
        return palette
    colors = [s.color for s in palette.stops]
    colors = colors[-1:] + colors[:-1]
    return replace(
        palette,
        stops=[PaletteStop(s.position, c) for s, c in zip(palette.stops, colors)],
    )
