"""
Frame renderer interface and the CPU backend.

A frame is split into tiles; each tile maps its pixels to world
coordinates, runs the escape-time kernel, folds in the orbit trap and maps
the result through the palette. Tiles write disjoint slices of the output
array, so the only synchronization is the join after the last tile.
"""

import abc
import logging
import os
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

from matterhorn.cancel import CancelToken
from matterhorn.core.kernel import FractalParams, GridResult, iterate_grid
from matterhorn.core.palette import Palette, to_uint8, tone_map
from matterhorn.core.traps import NO_TRAP, OrbitTrap, trap_strength
from matterhorn.errors import RenderCancelled, RenderError
from matterhorn.render.camera import Camera
from matterhorn.render.tiles import Tile, tile_iterator

logger = logging.getLogger(__name__)


class RenderBackend(str, Enum):
    CPU = "cpu"
    GPU = "gpu"


@dataclass
class RenderRequest:
    """Everything a backend needs to produce one raster."""

    width: int
    height: int
    camera: Camera = field(default_factory=Camera)
    params: FractalParams = field(default_factory=FractalParams)
    palette: Palette = field(default_factory=Palette)
    trap: OrbitTrap = NO_TRAP
    tile_size: int = 256
    # Extra cycling offset on top of palette.cycle_phase (timeline track)
    palette_phase: float = 0.0

    def validate(self):
        """Raise RenderError when the request cannot be rendered."""
        if self.width <= 0 or self.height <= 0:
            raise RenderError(f"resolution must be positive, got {self.width}x{self.height}")
        if self.tile_size <= 0:
            raise RenderError(f"tile_size must be positive, got {self.tile_size}")
        if not np.isfinite(self.palette_phase):
            raise RenderError("palette_phase must be finite")
        for name, part in (
            ("camera", self.camera),
            ("fractal", self.params),
            ("palette", self.palette),
            ("trap", self.trap),
        ):
            try:
                part.validate()
            except ValueError as exc:
                raise RenderError(f"{name}: {exc}") from exc


def shade(result: GridResult, request: RenderRequest) -> np.ndarray:
    """
    Combine kernel output into float RGB.

    Escaped pixels use the normalized smooth count (or the trap strength when
    a palette-mapped trap is attached); interior pixels take the palette's
    interior color. Exposure/gamma apply to the whole tile.
    """
    params = request.params
    palette = request.palette
    trap = request.trap

    if trap.enabled and trap.color is None:
        values = trap_strength(result.trap_distance, trap)
    else:
        values = np.clip(result.iteration_count / params.max_iterations, 0.0, 1.0)

    rgb = palette.map_array(values, request.palette_phase)
    rgb[~result.escaped] = palette.interior_rgb()
    rgb = tone_map(rgb, params.exposure, params.gamma)

    if trap.enabled and trap.color is not None:
        strength = trap_strength(result.trap_distance, trap)[..., np.newaxis]
        strength = np.where(result.escaped[..., np.newaxis], strength, 0.0)
        rgb = rgb + (np.asarray(trap.color, dtype=np.float64) - rgb) * strength

    return rgb


class FrameRenderer(abc.ABC):
    """
    Backend-agnostic frame renderer.

    Subclasses implement `render_tile`; `render` owns tiling, cancellation
    and assembly.
    """

    backend: RenderBackend

    @abc.abstractmethod
    def render_tile(self, tile: Tile, request: RenderRequest) -> np.ndarray:
        """Return a (tile.height, tile.width, 3) uint8 RGB array."""

    def render(
        self,
        request: RenderRequest,
        cancel: Optional[CancelToken] = None,
    ) -> np.ndarray:
        """
        Render a complete frame.

        Returns:
            (H, W, 3) uint8 RGB array.

        Raises:
            RenderError: invalid request or a tile failed.
            RenderCancelled: the cancel token fired before completion.
        """
        request.validate()
        frame = np.zeros((request.height, request.width, 3), dtype=np.uint8)
        tiles = tile_iterator(request.width, request.height, request.tile_size)
        logger.debug(
            "%s render %dx%d in %d tiles",
            self.backend.value, request.width, request.height, len(tiles),
        )
        self._render_tiles(frame, tiles, request, cancel)
        return frame

    def _fill(self, frame: np.ndarray, tile: Tile, request: RenderRequest, cancel):
        if cancel is not None:
            cancel.raise_if_cancelled(RenderCancelled, "render superseded")
        try:
            pixels = self.render_tile(tile, request)
        except (RenderError, RenderCancelled):
            raise
        except (ArithmeticError, ValueError) as exc:
            raise RenderError(f"tile at ({tile.x}, {tile.y}) failed: {exc}") from exc
        frame[tile.rows, tile.cols] = pixels

    def _render_tiles(self, frame, tiles: List[Tile], request, cancel):
        for tile in tiles:
            self._fill(frame, tile, request, cancel)

    def close(self):
        """Release backend resources."""

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class CpuRenderer(FrameRenderer):
    """Numpy kernel with tiles fanned out over a thread pool."""

    backend = RenderBackend.CPU

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = max_workers or min(8, os.cpu_count() or 1)
        self._executor: Optional[ThreadPoolExecutor] = None

    def render_tile(self, tile: Tile, request: RenderRequest) -> np.ndarray:
        points = request.camera.tile_points(tile, request.width, request.height)
        with np.errstate(over="ignore", invalid="ignore"):
            result = iterate_grid(points, request.params, request.trap)
        return to_uint8(shade(result, request))

    def _render_tiles(self, frame, tiles, request, cancel):
        if len(tiles) == 1 or self.max_workers == 1:
            super()._render_tiles(frame, tiles, request, cancel)
            return

        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="matterhorn-tile"
            )
        futures = [
            self._executor.submit(self._fill, frame, tile, request, cancel)
            for tile in tiles
        ]
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        for future in pending:
            future.cancel()
        # Wait out tiles already running so none writes into a discarded frame.
        wait(pending)
        for future in futures:
            if future.done() and not future.cancelled():
                future.result()

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


def create_renderer(
    backend: RenderBackend | str = RenderBackend.CPU,
    fallback: bool = False,
    **kwargs,
) -> FrameRenderer:
    """
    Build the renderer for a backend chosen at runtime.

    With fallback=True a GPU initialisation failure is logged and the CPU
    backend is returned instead.
    """
    backend = RenderBackend(backend)
    if backend == RenderBackend.CPU:
        return CpuRenderer(**kwargs)

    from matterhorn.render.gpu import GpuRenderer

    try:
        return GpuRenderer(**kwargs)
    except RenderError as exc:
        if not fallback:
            raise
        logger.warning("GPU init failed: %s. Falling back to CPU.", exc)
        return CpuRenderer()
