"""
Frame rendering: tiling, backends and the superseding preview renderer.
"""

from matterhorn.render.backend import (
    CpuRenderer,
    FrameRenderer,
    RenderBackend,
    RenderRequest,
    create_renderer,
    shade,
)
from matterhorn.render.camera import Camera
from matterhorn.render.interactive import InteractiveRenderer
from matterhorn.render.tiles import Tile, tile_iterator
