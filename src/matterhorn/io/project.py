"""
Project and palette serialization.

Projects are stored as pretty-printed JSON, or as TOML when the path ends
in `.toml` or `.mahproj`. Palettes use the `.ahpal` format: a JSON list of
`{"pos": float, "color": [r, g, b]}` stops.
"""

import json
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

import tomli_w

from matterhorn.core.kernel import FractalKind, FractalParams
from matterhorn.core.palette import Palette, PaletteStop, normalized_stops
from matterhorn.core.traps import NO_TRAP, OrbitTrap, TrapKind
from matterhorn.errors import ProjectError
from matterhorn.export.encoder import VideoCodec
from matterhorn.export.settings import ExportSettings
from matterhorn.render.backend import RenderBackend
from matterhorn.render.camera import Camera
from matterhorn.timeline import (
    EndlessZoomPreset,
    Easing,
    Keyframe,
    RepeatingSpotState,
    Timeline,
    Track,
    TrackKind,
)

logger = logging.getLogger(__name__)

PROJECT_VERSION = 1
PALETTE_SUFFIX = ".ahpal"
TOML_SUFFIXES = (".toml", ".mahproj")

PathLike = Union[str, Path]


@dataclass
class Project:
    """Everything needed to reproduce a render or an export."""

    name: str = "Untitled"
    fractal: FractalParams = field(default_factory=FractalParams)
    camera: Camera = field(default_factory=Camera)
    timeline: Timeline = field(default_factory=Timeline)
    palette: Palette = field(default_factory=Palette)
    trap: OrbitTrap = NO_TRAP
    export: ExportSettings = field(default_factory=ExportSettings)
    backend: RenderBackend = RenderBackend.CPU

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": PROJECT_VERSION,
            "name": self.name,
            "backend": RenderBackend(self.backend).value,
            "fractal": _fractal_to_dict(self.fractal),
            "camera": {
                "center": _complex_to_dict(self.camera.center),
                "scale": self.camera.scale,
                "rotation": self.camera.rotation,
            },
            "palette": palette_to_dict(self.palette),
            "trap": _trap_to_dict(self.trap),
            "timeline": _timeline_to_dict(self.timeline),
            "export": _export_to_dict(self.export),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        """
        Build a project from its dictionary form.

        Missing sections take their defaults.

        Raises:
            ProjectError: a field has the wrong type or an unknown value.
        """
        if not isinstance(data, dict):
            raise ProjectError("project document must be an object")
        try:
            camera = data.get("camera", {})
            default_camera = Camera()
            return cls(
                name=str(data.get("name", "Untitled")),
                fractal=_fractal_from_dict(data.get("fractal", {})),
                camera=Camera(
                    center=_complex_from(camera.get("center", default_camera.center)),
                    scale=float(camera.get("scale", default_camera.scale)),
                    rotation=float(camera.get("rotation", default_camera.rotation)),
                ),
                timeline=_timeline_from_dict(data.get("timeline", {})),
                palette=palette_from_dict(data.get("palette", {})),
                trap=_trap_from_dict(data.get("trap", {})),
                export=_export_from_dict(data.get("export", {})),
                backend=RenderBackend(data.get("backend", "cpu")),
            )
        except ProjectError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ProjectError(f"malformed project: {exc}") from exc


# -- complex numbers ------------------------------------------------------

def _complex_to_dict(value: complex) -> dict[str, float]:
    value = complex(value)
    return {"re": value.real, "im": value.imag}


def _complex_from(value) -> complex:
    if isinstance(value, dict):
        return complex(float(value["re"]), float(value["im"]))
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return complex(float(value[0]), float(value[1]))
    if isinstance(value, (int, float, complex)):
        return complex(value)
    raise ValueError(f"cannot read complex number from {value!r}")


# -- sections -------------------------------------------------------------

def _fractal_to_dict(params: FractalParams) -> dict[str, Any]:
    return {
        "kind": FractalKind(params.kind).value,
        "max_iterations": params.max_iterations,
        "escape_radius": params.escape_radius,
        "power": params.power,
        "julia_c": _complex_to_dict(params.julia_c),
        "exposure": params.exposure,
        "gamma": params.gamma,
    }


def _fractal_from_dict(data: dict[str, Any]) -> FractalParams:
    defaults = FractalParams()
    return FractalParams(
        kind=FractalKind(data.get("kind", defaults.kind)),
        max_iterations=int(data.get("max_iterations", defaults.max_iterations)),
        escape_radius=float(data.get("escape_radius", defaults.escape_radius)),
        power=float(data.get("power", defaults.power)),
        julia_c=_complex_from(data.get("julia_c", defaults.julia_c)),
        exposure=float(data.get("exposure", defaults.exposure)),
        gamma=float(data.get("gamma", defaults.gamma)),
    )


def _trap_to_dict(trap: OrbitTrap) -> dict[str, Any]:
    data = {
        "kind": TrapKind(trap.kind).value,
        "center": _complex_to_dict(trap.center),
        "radius": trap.radius,
        "arm_width": trap.arm_width,
        "softness": trap.softness,
    }
    # TOML has no null; an absent color means "map through the palette"
    if trap.color is not None:
        data["color"] = list(trap.color)
    return data


def _trap_from_dict(data: dict[str, Any]) -> OrbitTrap:
    color = data.get("color")
    return OrbitTrap(
        kind=TrapKind(data.get("kind", "none")),
        center=_complex_from(data.get("center", 0j)),
        radius=float(data.get("radius", NO_TRAP.radius)),
        arm_width=float(data.get("arm_width", NO_TRAP.arm_width)),
        softness=float(data.get("softness", NO_TRAP.softness)),
        color=tuple(float(c) for c in color) if color is not None else None,
    )


def _export_to_dict(settings: ExportSettings) -> dict[str, Any]:
    return {
        "width": settings.width,
        "height": settings.height,
        "fps": settings.fps,
        "duration_seconds": settings.duration_seconds,
        "codec": VideoCodec(settings.codec).value,
        "crf": settings.crf,
        "tile_size": settings.tile_size,
        "output_path": str(settings.output_path),
    }


def _export_from_dict(data: dict[str, Any]) -> ExportSettings:
    defaults = ExportSettings()
    return ExportSettings(
        width=int(data.get("width", defaults.width)),
        height=int(data.get("height", defaults.height)),
        fps=int(data.get("fps", defaults.fps)),
        duration_seconds=float(data.get("duration_seconds", defaults.duration_seconds)),
        codec=VideoCodec(data.get("codec", defaults.codec)),
        crf=int(data.get("crf", defaults.crf)),
        tile_size=int(data.get("tile_size", defaults.tile_size)),
        output_path=Path(data.get("output_path", defaults.output_path)),
    )


def _track_to_list(track: Track) -> list[dict[str, Any]]:
    keys = []
    for key in track.keyframes:
        value = key.value
        if track.kind == TrackKind.CAMERA_CENTER:
            value = _complex_to_dict(value)
        keys.append({"time": key.time, "value": value, "easing": key.easing.value})
    return keys


def _track_from_list(kind: TrackKind, items: list) -> Track:
    keys = []
    for item in items:
        value = item["value"]
        value = _complex_from(value) if kind == TrackKind.CAMERA_CENTER else float(value)
        keys.append(Keyframe(float(item["time"]), value, Easing(item.get("easing", "linear"))))
    return Track(kind, keys)


def _timeline_to_dict(timeline: Timeline) -> dict[str, Any]:
    data: dict[str, Any] = {
        "fps": timeline.fps,
        "duration": timeline.duration,
        "looping": timeline.looping,
        "tracks": {
            kind.value: _track_to_list(timeline.track(kind)) for kind in TrackKind
        },
    }
    preset = timeline.endless_zoom
    if preset is not None:
        data["endless_zoom"] = {"base_scale": preset.base_scale, "rate": preset.rate}
        if preset.anchor_time is not None:
            data["endless_zoom"]["anchor_time"] = preset.anchor_time
    spot = timeline.repeating_spot
    if spot is not None:
        data["repeating_spot"] = {
            "target": _complex_to_dict(spot.target),
            "enabled": spot.enabled,
            "rotation": spot.rotation,
        }
    return data


def _timeline_from_dict(data: dict[str, Any]) -> Timeline:
    tracks = data.get("tracks", {})
    timeline = Timeline(
        zoom=_track_from_list(TrackKind.ZOOM, tracks.get("zoom", [])),
        palette_phase=_track_from_list(TrackKind.PALETTE_PHASE, tracks.get("palette_phase", [])),
        camera_center=_track_from_list(TrackKind.CAMERA_CENTER, tracks.get("camera_center", [])),
        fps=int(data.get("fps", 30)),
        duration=float(data.get("duration", 5.0)),
        looping=bool(data.get("looping", False)),
    )
    preset = data.get("endless_zoom")
    if preset is not None:
        anchor = preset.get("anchor_time")
        timeline.endless_zoom = EndlessZoomPreset(
            base_scale=float(preset["base_scale"]),
            rate=float(preset.get("rate", 0.1)),
            anchor_time=float(anchor) if anchor is not None else None,
        )
        timeline.endless_zoom.validate()
    spot = data.get("repeating_spot")
    if spot is not None:
        timeline.repeating_spot = RepeatingSpotState(
            target=_complex_from(spot["target"]),
            enabled=bool(spot.get("enabled", False)),
            rotation=float(spot.get("rotation", 0.0)),
        )
    return timeline


# -- palettes -------------------------------------------------------------

def palette_to_dict(palette: Palette) -> dict[str, Any]:
    data = {
        "stops": [{"pos": s.position, "color": list(s.color)} for s in palette.stops],
        "cycle_phase": palette.cycle_phase,
        "cycle_enabled": palette.cycle_enabled,
        "color_space": palette.color_space,
    }
    if palette.interior_color is not None:
        data["interior_color"] = list(palette.interior_color)
    return data


def _stops_from_list(items: list) -> list[PaletteStop]:
    stops = []
    for item in items:
        color = tuple(float(c) for c in item["color"])
        if len(color) != 3:
            raise ValueError(f"palette color needs 3 components, got {len(color)}")
        stops.append(PaletteStop(float(item["pos"]), color))
    return normalized_stops(stops)


def palette_from_dict(data) -> Palette:
    """Read a palette from a stop list or a full palette dictionary."""
    if isinstance(data, list):
        return Palette(stops=_stops_from_list(data))
    defaults = Palette()
    interior = data.get("interior_color")
    stops = data.get("stops")
    return Palette(
        stops=_stops_from_list(stops) if stops else defaults.stops,
        cycle_phase=float(data.get("cycle_phase", defaults.cycle_phase)),
        cycle_enabled=bool(data.get("cycle_enabled", defaults.cycle_enabled)),
        color_space=str(data.get("color_space", defaults.color_space)),
        interior_color=tuple(float(c) for c in interior) if interior is not None else None,
    )


def save_palette(palette: Palette, path: PathLike) -> Path:
    """Write the palette's stops as an `.ahpal` file."""
    path = Path(path)
    if not path.suffix:
        path = path.with_suffix(PALETTE_SUFFIX)
    stops = [{"pos": s.position, "color": list(s.color)} for s in palette.stops]
    _write_json(stops, path)
    return path


def load_palette(path: PathLike) -> Palette:
    """
    Read an `.ahpal` palette.

    Raises:
        ProjectError: unreadable file, invalid JSON or malformed stops.
    """
    path = Path(path)
    data = _read_json(path)
    try:
        palette = palette_from_dict(data)
        palette.validate()
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ProjectError(f"invalid palette {path}: {exc}") from exc
    logger.debug("loaded palette with %d stops from %s", len(palette.stops), path)
    return palette


# -- projects -------------------------------------------------------------

def _write_json(data, path: Path):
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
    except OSError as exc:
        raise ProjectError(f"could not write {path}: {exc}") from exc


def _read_json(path: Path):
    try:
        with open(path) as f:
            return json.load(f)
    except OSError as exc:
        raise ProjectError(f"could not read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ProjectError(f"invalid JSON in {path}: {exc}") from exc


def _write_toml(data, path: Path):
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            tomli_w.dump(data, f)
    except OSError as exc:
        raise ProjectError(f"could not write {path}: {exc}") from exc


def save_project(project: Project, path: PathLike) -> Path:
    """Write the project as TOML for `.toml` / `.mahproj`, JSON otherwise."""
    path = Path(path)
    if path.suffix.lower() in TOML_SUFFIXES:
        _write_toml(project.to_dict(), path)
    else:
        _write_json(project.to_dict(), path)
    logger.info("saved project '%s' to %s", project.name, path)
    return path


def load_project(path: PathLike) -> Project:
    """
    Read a project file.

    `.json` is parsed as JSON, `.toml` / `.mahproj` as TOML. Any other
    suffix is tried as JSON first, then TOML.

    Raises:
        ProjectError: unreadable, unparsable or malformed document.
    """
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as exc:
        raise ProjectError(f"could not read {path}: {exc}") from exc

    suffix = path.suffix.lower()
    if suffix == ".json":
        parsers = [_parse_json]
    elif suffix in TOML_SUFFIXES:
        parsers = [_parse_toml]
    else:
        parsers = [_parse_json, _parse_toml]

    errors = []
    for parser in parsers:
        try:
            data = parser(text)
        except ValueError as exc:
            errors.append(str(exc))
            continue
        project = Project.from_dict(data)
        logger.info("loaded project '%s' from %s", project.name, path)
        return project

    raise ProjectError(f"could not parse {path}: {'; '.join(errors)}")


def _parse_json(text: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"JSON: {exc}") from exc


def _parse_toml(text: str):
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"TOML: {exc}") from exc
