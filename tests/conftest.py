"""Pytest configuration and shared fixtures."""

import pytest

from matterhorn.core.kernel import FractalKind, FractalParams
from matterhorn.core.palette import Palette
from matterhorn.core.traps import NO_TRAP
from matterhorn.export.settings import ExportSettings
from matterhorn.io.project import Project
from matterhorn.render.backend import RenderRequest
from matterhorn.render.camera import Camera
from matterhorn.timeline import Timeline, TrackKind

# Small rasters keep the numpy kernel fast in tests
TEST_WIDTH = 48
TEST_HEIGHT = 32


@pytest.fixture
def fast_params() -> FractalParams:
    """Mandelbrot with a low iteration cap."""
    return FractalParams(kind=FractalKind.MANDELBROT, max_iterations=64)


@pytest.fixture
def overview_camera() -> Camera:
    """Camera framing the whole Mandelbrot set on a TEST_WIDTH raster."""
    return Camera(center=complex(-0.5, 0.0), scale=3.0 / TEST_WIDTH)


@pytest.fixture
def small_request(fast_params, overview_camera) -> RenderRequest:
    return RenderRequest(
        width=TEST_WIDTH,
        height=TEST_HEIGHT,
        camera=overview_camera,
        params=fast_params,
        palette=Palette(),
        trap=NO_TRAP,
        tile_size=TEST_WIDTH,
    )


@pytest.fixture
def zoom_timeline() -> Timeline:
    """One second zooming in by 4x while the palette cycles once."""
    timeline = Timeline(duration=1.0)
    timeline.add_keyframe(TrackKind.ZOOM, 0.0, 3.0 / TEST_WIDTH)
    timeline.add_keyframe(TrackKind.ZOOM, 1.0, 0.75 / TEST_WIDTH)
    timeline.add_keyframe(TrackKind.PALETTE_PHASE, 0.0, 0.0)
    timeline.add_keyframe(TrackKind.PALETTE_PHASE, 1.0, 0.9)
    return timeline


@pytest.fixture
def small_project(fast_params, overview_camera, zoom_timeline, tmp_path) -> Project:
    """Project that exports 10 tiny frames into tmp_path."""
    return Project(
        name="test",
        fractal=fast_params,
        camera=overview_camera,
        timeline=zoom_timeline,
        export=ExportSettings(
            width=TEST_WIDTH,
            height=TEST_HEIGHT,
            fps=10,
            duration_seconds=1.0,
            tile_size=16,
            output_path=tmp_path / "out" / "zoom.mp4",
        ),
    )

