"""
Offline export: timeline -> PNG frame sequence -> ffmpeg.

Frames are written to a scratch directory that is removed on every exit
path. The encoder only runs once all frames exist on disk.
"""

import logging
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

import numpy as np
from PIL import Image

from matterhorn.cancel import CancelToken
from matterhorn.core.kernel import FractalParams
from matterhorn.core.palette import Palette
from matterhorn.core.traps import NO_TRAP, OrbitTrap
from matterhorn.errors import ExportCancelled, ExportIoError, FfmpegError, RenderCancelled
from matterhorn.export import encoder
from matterhorn.export.settings import ExportSettings
from matterhorn.render.backend import (
    FrameRenderer,
    RenderBackend,
    RenderRequest,
    create_renderer,
)
from matterhorn.render.camera import Camera
from matterhorn.timeline import Timeline, TimelineSample

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def frame_request(
    timeline: Timeline,
    t: float,
    params: FractalParams,
    palette: Palette,
    trap: OrbitTrap,
    settings: ExportSettings,
    camera: Camera,
) -> RenderRequest:
    """Build the render request for timeline time t."""
    fallback = TimelineSample(
        zoom_scale=camera.scale,
        palette_phase=0.0,
        camera_center=camera.center,
        rotation=camera.rotation,
    )
    sample = timeline.sample(t, fallback)
    rotation = sample.rotation if sample.rotation is not None else camera.rotation
    return RenderRequest(
        width=settings.width,
        height=settings.height,
        camera=Camera(center=sample.camera_center, scale=sample.zoom_scale, rotation=rotation),
        params=params,
        palette=palette,
        trap=trap,
        tile_size=settings.tile_size,
        palette_phase=sample.palette_phase,
    )


def write_frame(frame: np.ndarray, path: Path):
    """Save one RGB frame as PNG."""
    try:
        Image.fromarray(np.ascontiguousarray(frame, dtype=np.uint8)).save(path, format="PNG")
    except OSError as exc:
        raise ExportIoError(path, f"could not write frame: {exc}") from exc


def export_video(
    timeline: Timeline,
    params: FractalParams,
    palette: Palette,
    settings: ExportSettings,
    trap: OrbitTrap = NO_TRAP,
    camera: Optional[Camera] = None,
    renderer: Optional[FrameRenderer] = None,
    backend: RenderBackend | str = RenderBackend.CPU,
    cancel: Optional[CancelToken] = None,
    progress_callback: Optional[ProgressCallback] = None,
    temp_root: Optional[Path] = None,
    encoder_binary: str = "ffmpeg",
) -> Path:
    """
    Render the timeline to a video file.

    Frame i samples the timeline at t = i / fps for
    round(duration_seconds * fps) frames.

    Args:
        timeline: Animation to render.
        params: Fractal parameters shared by every frame.
        palette: Palette shared by every frame.
        settings: Resolution, rate, codec and destination.
        trap: Orbit trap shared by every frame.
        camera: Values used where a timeline track is empty.
        renderer: Backend to use; created (and closed) here when omitted.
        backend: Backend to create when no renderer is given.
        cancel: Checked between frames and while ffmpeg runs.
        progress_callback: Optional callback(current, total) after each frame.
        temp_root: Parent for the scratch frame directory.
        encoder_binary: ffmpeg executable name or path.

    Returns:
        Path of the written video.

    Raises:
        InvalidSettingsError, RenderError, ExportIoError, FfmpegError,
        ExportCancelled.
    """
    settings.validate()
    camera = camera or Camera()
    total = settings.total_frames

    # Reject bad fractal/palette/camera parameters before any work starts.
    frame_request(timeline, 0.0, params, palette, trap, settings, camera).validate()
    encoder.find_encoder(encoder_binary)

    output_path = encoder.output_path_for(settings.codec, settings.output_path)
    for directory in (output_path.parent, temp_root):
        if directory is None:
            continue
        try:
            Path(directory).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExportIoError(directory, f"could not create directory: {exc}") from exc

    owns_renderer = renderer is None
    if owns_renderer:
        renderer = create_renderer(backend, fallback=True)

    logger.info(
        "exporting %d frames at %dx%d @ %d fps (%s) to %s",
        total, settings.width, settings.height, settings.fps,
        encoder.VideoCodec(settings.codec).label, output_path,
    )
    t0 = time.time()
    try:
        try:
            scratch = tempfile.TemporaryDirectory(prefix="matterhorn_export_", dir=temp_root)
        except OSError as exc:
            root = temp_root or tempfile.gettempdir()
            raise ExportIoError(root, f"could not create scratch dir: {exc}") from exc

        with scratch as frames_dir:
            frames_dir = Path(frames_dir)
            for i in range(total):
                if cancel is not None:
                    cancel.raise_if_cancelled(ExportCancelled, "export cancelled")
                request = frame_request(timeline, i / settings.fps, params, palette, trap, settings, camera)
                try:
                    frame = renderer.render(request, cancel=cancel)
                except RenderCancelled as exc:
                    raise ExportCancelled("export cancelled") from exc
                write_frame(frame, frames_dir / (encoder.FRAME_PATTERN % i))
                logger.debug("frame %d/%d written", i + 1, total)
                if progress_callback:
                    progress_callback(i + 1, total)

            cmd = encoder.build_ffmpeg_command(
                frames_dir,
                output_path,
                fps=settings.fps,
                codec=settings.codec,
                crf=settings.crf,
                binary=encoder_binary,
            )
            encoder.run_encoder(cmd, cancel=cancel)
    finally:
        if owns_renderer:
            renderer.close()

    if not output_path.exists():
        raise FfmpegError(f"ffmpeg finished but produced no file at {output_path}")

    logger.info("export finished in %.1fs: %s", time.time() - t0, output_path)
    return output_path


def export_project(project, settings: Optional[ExportSettings] = None, **kwargs) -> Path:
    """Export a Project using its own settings unless overridden."""
    return export_video(
        project.timeline,
        project.fractal,
        project.palette,
        settings or project.export,
        trap=project.trap,
        camera=project.camera,
        backend=kwargs.pop("backend", project.backend),
        **kwargs,
    )
