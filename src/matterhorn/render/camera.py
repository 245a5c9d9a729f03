"""
Camera model and pixel-to-world mapping.
"""

import math
from dataclasses import dataclass

import numpy as np

from matterhorn.render.tiles import Tile


@dataclass
class Camera:
    """View onto the complex plane."""

    center: complex = complex(-0.5, 0.0)
    # World units per pixel (inverse of zoom)
    scale: float = 1.0 / 300.0
    # Radians
    rotation: float = 0.0

    def validate(self):
        if not (math.isfinite(self.center.real) and math.isfinite(self.center.imag)):
            raise ValueError("camera center must be finite")
        if not math.isfinite(self.scale) or self.scale <= 0:
            raise ValueError("camera scale must be finite and > 0")
        if not math.isfinite(self.rotation):
            raise ValueError("camera rotation must be finite")

    @property
    def zoom(self) -> float:
        return 1.0 / self.scale

    def world_coordinates(self, xs, ys, width: int, height: int) -> np.ndarray:
        """
        Map pixel indices to complex world coordinates.

        world = center + rotate(pixel - frame_center) * scale
        """
        u = np.asarray(xs, dtype=np.float64) - width / 2.0
        v = np.asarray(ys, dtype=np.float64) - height / 2.0
        if self.rotation:
            cos_r = math.cos(self.rotation)
            sin_r = math.sin(self.rotation)
            u, v = u * cos_r - v * sin_r, u * sin_r + v * cos_r
        re = self.center.real + u * self.scale
        im = self.center.imag + v * self.scale
        return re + 1j * im

    def tile_points(self, tile: Tile, width: int, height: int) -> np.ndarray:
        """(tile.height, tile.width) complex grid of world coordinates for a tile."""
        xs = np.arange(tile.x, tile.x + tile.width)
        ys = np.arange(tile.y, tile.y + tile.height)
        xg, yg = np.meshgrid(xs, ys)
        return self.world_coordinates(xg, yg, width, height)
