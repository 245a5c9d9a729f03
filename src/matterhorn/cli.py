"""
CLI entry point for the Matterhorn fractal renderer.

Usage:
    matterhorn export <project> [output] [options]
    matterhorn render <project> <output.png> [--time T]
    matterhorn init <project>
    python -m matterhorn ...
"""

import argparse
import logging
import signal
import sys
import time
from dataclasses import replace
from pathlib import Path

from matterhorn import __version__
from matterhorn.cancel import CancelToken
from matterhorn.errors import ExportCancelled, ExportIoError, MatterhornError
from matterhorn.export.encoder import VideoCodec
from matterhorn.export.pipeline import export_project, frame_request, write_frame
from matterhorn.export.settings import PROFILES
from matterhorn.io.project import Project, load_project, save_project
from matterhorn.render.backend import RenderBackend, create_renderer

logger = logging.getLogger("matterhorn")

EXIT_CANCELLED = ExportCancelled.exit_code


class ProgressPrinter:
    """Frame progress for the terminal: a redrawn bar on a tty, milestone lines otherwise."""

    def __init__(self, stream=None, bar_width: int = 30, milestones: int = 20):
        self.stream = stream or sys.stdout
        self.bar_width = bar_width
        self.milestones = milestones
        self._started = None

    def __call__(self, current: int, total: int):
        if self._started is None:
            self._started = time.time()
        total = max(total, 1)
        fraction = min(current / total, 1.0)
        elapsed = time.time() - self._started
        eta = elapsed / fraction - elapsed if fraction > 0 else 0.0

        if self.stream.isatty():
            done = int(self.bar_width * fraction)
            bar = "=" * done + " " * (self.bar_width - done)
            self.stream.write(f"\r  |{bar}| {current}/{total} frames, eta {eta:4.0f}s")
            if current >= total:
                self.stream.write("\n")
            self.stream.flush()
            return

        step = max(1, total // self.milestones)
        if current % step == 0 or current >= total:
            print(f"  {fraction:6.1%}  frame {current}/{total}", file=self.stream, flush=True)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="matterhorn",
        description="Escape-time fractal renderer and zoom-video exporter",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    sub = parser.add_subparsers(dest="command", required=True)

    # export
    p_export = sub.add_parser("export", help="Render a project's timeline to a video")
    p_export.add_argument("project", type=Path, help="Project file (.json or .toml)")
    p_export.add_argument(
        "output", type=Path, nargs="?", default=None,
        help="Output video path (default: the project's output_path)",
    )
    p_export.add_argument(
        "-p", "--profile", type=str, default=None,
        choices=sorted(PROFILES),
        help="Target profile (low: 720p 30fps, medium: 1080p 30fps, high: 4k 60fps)",
    )
    p_export.add_argument("--width", type=int, default=None, help="Video width (overrides profile)")
    p_export.add_argument("--height", type=int, default=None, help="Video height (overrides profile)")
    p_export.add_argument("-f", "--fps", type=int, default=None, help="Frames per second (overrides profile)")
    p_export.add_argument("-d", "--duration", type=float, default=None, help="Length in seconds")
    p_export.add_argument(
        "--codec", type=str, default=None,
        choices=[c.value for c in VideoCodec],
        help="Video codec (default: project setting)",
    )
    p_export.add_argument("--crf", type=int, default=None, help="Quality (lower is better)")
    p_export.add_argument("--tile-size", type=int, default=None, help="Render tile edge in pixels")
    p_export.add_argument(
        "--backend", type=str, default=None,
        choices=[b.value for b in RenderBackend],
        help="Render backend (gpu falls back to cpu when unavailable)",
    )
    p_export.add_argument("--ffmpeg", type=str, default="ffmpeg", help="ffmpeg executable")

    # render
    p_render = sub.add_parser("render", help="Render a single still frame")
    p_render.add_argument("project", type=Path, help="Project file")
    p_render.add_argument("output", type=Path, help="Output PNG path")
    p_render.add_argument("-t", "--time", type=float, default=0.0, help="Timeline time in seconds")
    p_render.add_argument("--width", type=int, default=None, help="Image width")
    p_render.add_argument("--height", type=int, default=None, help="Image height")
    p_render.add_argument(
        "--backend", type=str, default=None,
        choices=[b.value for b in RenderBackend],
        help="Render backend",
    )

    # init
    p_init = sub.add_parser("init", help="Write a default project file")
    p_init.add_argument("project", type=Path, help="Project file to create")
    p_init.add_argument("--name", type=str, default=None, help="Project name")
    p_init.add_argument("--force", action="store_true", help="Overwrite an existing file")

    return parser


def _load_or_default(path: Path) -> Project:
    if path.exists():
        return load_project(path)
    logger.warning("project %s not found, using the default project", path)
    return Project(name=path.stem)


def _cmd_export(args) -> int:
    project = _load_or_default(args.project)

    settings = project.export
    if args.profile:
        settings = settings.with_profile(args.profile)
    overrides = {
        "width": args.width,
        "height": args.height,
        "fps": args.fps,
        "duration_seconds": args.duration,
        "codec": VideoCodec(args.codec) if args.codec else None,
        "crf": args.crf,
        "tile_size": args.tile_size,
        "output_path": args.output,
    }
    settings = replace(settings, **{k: v for k, v in overrides.items() if v is not None})
    settings.validate()
    backend = RenderBackend(args.backend) if args.backend else project.backend

    print(f"Project: {project.name}")
    print(
        f"Rendering {settings.total_frames} frames at {settings.width}x{settings.height} "
        f"@ {settings.fps}fps"
    )
    print(f"  Codec: {VideoCodec(settings.codec).label}, CRF: {settings.crf}, Backend: {backend.value}")

    cancel = CancelToken()
    previous = signal.signal(signal.SIGINT, lambda signum, frame: cancel.cancel())
    t0 = time.time()
    try:
        output = export_project(
            project,
            settings=settings,
            backend=backend,
            cancel=cancel,
            progress_callback=ProgressPrinter(),
            encoder_binary=args.ffmpeg,
        )
    finally:
        signal.signal(signal.SIGINT, previous)

    elapsed = time.time() - t0
    file_size_mb = output.stat().st_size / 1024 / 1024
    print(f"\nDone! {file_size_mb:.1f} MB")
    print(f"  Render+encode took {elapsed:.1f}s ({settings.total_frames / max(elapsed, 0.01):.1f} fps)")
    print(f"  Output: {output}")
    return 0


def _cmd_render(args) -> int:
    project = load_project(args.project)
    settings = replace(
        project.export,
        width=args.width or project.export.width,
        height=args.height or project.export.height,
    )
    settings.validate()
    request = frame_request(
        project.timeline,
        args.time,
        project.fractal,
        project.palette,
        project.trap,
        settings,
        project.camera,
    )
    backend = RenderBackend(args.backend) if args.backend else project.backend

    t0 = time.time()
    with create_renderer(backend, fallback=True) as renderer:
        frame = renderer.render(request)
    try:
        args.output.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ExportIoError(args.output.parent, f"could not create directory: {exc}") from exc
    write_frame(frame, args.output)
    print(f"Rendered {settings.width}x{settings.height} at t={args.time:.2f}s in {time.time() - t0:.1f}s")
    print(f"  Output: {args.output}")
    return 0


def _cmd_init(args) -> int:
    if args.project.exists() and not args.force:
        print(f"Error: {args.project} already exists (use --force to overwrite)", file=sys.stderr)
        return 1
    project = Project(name=args.name or args.project.stem)
    save_project(project, args.project)
    print(f"Wrote {args.project}")
    return 0


COMMANDS = {
    "export": _cmd_export,
    "render": _cmd_render,
    "init": _cmd_init,
}


def main(argv=None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        return COMMANDS[args.command](args)
    except MatterhornError as exc:
        print(f"\nError: {exc}", file=sys.stderr)
        return exc.exit_code
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_CANCELLED


if __name__ == "__main__":
    sys.exit(main())
