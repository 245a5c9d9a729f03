"""Tests for project and palette files."""

import json

import pytest

from matterhorn.core.kernel import FractalKind
from matterhorn.core.palette import Palette, PaletteStop, preset_palette
from matterhorn.core.traps import OrbitTrap
from matterhorn.errors import ProjectError
from matterhorn.export.encoder import VideoCodec
from matterhorn.io.project import (
    Project,
    load_palette,
    load_project,
    save_palette,
    save_project,
)
from matterhorn.render.backend import RenderBackend
from matterhorn.timeline import Easing, TrackKind


@pytest.fixture
def rich_project(small_project) -> Project:
    project = small_project
    project.trap = OrbitTrap.cross(complex(0.1, -0.2), 0.05, color=(1.0, 0.5, 0.0))
    project.palette = preset_palette("Cyber Sunset")
    project.timeline.add_keyframe(TrackKind.CAMERA_CENTER, 0.5, complex(-0.7, 0.1), Easing.EASE_IN)
    project.timeline.set_endless_zoom_preset(0.001, 0.25)
    project.timeline.enable_repeating_spot(rotation=0.2)
    project.backend = RenderBackend.GPU
    return project


class TestProjectJson:
    def test_round_trip(self, rich_project, tmp_path):
        path = save_project(rich_project, tmp_path / "p.json")
        loaded = load_project(path)
        assert loaded.to_dict() == rich_project.to_dict()
        assert loaded.trap == rich_project.trap
        assert loaded.timeline.camera_center.keyframes[0].easing == Easing.EASE_IN
        assert loaded.backend == RenderBackend.GPU

    def test_complex_values_are_objects(self, rich_project, tmp_path):
        path = save_project(rich_project, tmp_path / "p.json")
        data = json.loads(path.read_text())
        assert data["camera"]["center"] == {"re": -0.5, "im": 0.0}
        assert set(data["fractal"]["julia_c"]) == {"re", "im"}

    def test_missing_sections_take_defaults(self, tmp_path):
        path = tmp_path / "p.json"
        path.write_text(json.dumps({"name": "bare", "fractal": {"kind": "burning_ship"}}))
        project = load_project(path)
        assert project.name == "bare"
        assert project.fractal.kind == FractalKind.BURNING_SHIP
        assert project.export.codec == VideoCodec.H264
        assert len(project.timeline.zoom) == 0

    def test_unknown_suffix_tries_json(self, rich_project, tmp_path):
        path = tmp_path / "p.project"
        path.write_text(json.dumps(rich_project.to_dict()))
        assert load_project(path).name == rich_project.name


class TestProjectToml:
    def test_loads_toml(self, tmp_path):
        path = tmp_path / "p.toml"
        path.write_text(
            'name = "from toml"\n'
            'backend = "cpu"\n'
            "[fractal]\n"
            'kind = "multibrot"\n'
            "power = 3.0\n"
            "max_iterations = 200\n"
            "[camera]\n"
            "center = { re = -0.75, im = 0.1 }\n"
            "scale = 0.001\n"
            "[export]\n"
            'codec = "prores"\n'
            "fps = 24\n"
        )
        project = load_project(path)
        assert project.name == "from toml"
        assert project.fractal.kind == FractalKind.MULTIBROT
        assert project.fractal.power == 3.0
        assert project.camera.center == complex(-0.75, 0.1)
        assert project.export.codec == VideoCodec.PRORES
        assert project.export.fps == 24

    @pytest.mark.parametrize("suffix", [".json", ".toml", ".mahproj"])
    def test_save_load_round_trip(self, rich_project, tmp_path, suffix):
        path = save_project(rich_project, tmp_path / f"p{suffix}")
        loaded = load_project(path)
        assert loaded.to_dict() == rich_project.to_dict()
        assert loaded.timeline.endless_zoom == rich_project.timeline.endless_zoom

    def test_toml_suffix_writes_toml(self, rich_project, tmp_path):
        path = save_project(rich_project, tmp_path / "p.mahproj")
        text = path.read_text()
        assert text.startswith("version = 1")
        assert "[fractal]" in text
        with pytest.raises(json.JSONDecodeError):
            json.loads(text)


class TestProjectErrors:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ProjectError):
            load_project(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(ProjectError):
            load_project(path)

    def test_unparsable_unknown_suffix(self, tmp_path):
        path = tmp_path / "bad.proj"
        path.write_text("{{{ neither")
        with pytest.raises(ProjectError):
            load_project(path)

    def test_unknown_enum_value(self, tmp_path):
        path = tmp_path / "p.json"
        path.write_text(json.dumps({"fractal": {"kind": "sierpinski"}}))
        with pytest.raises(ProjectError):
            load_project(path)

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "p.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(ProjectError) as info:
            load_project(path)
        assert info.value.exit_code == 7


class TestPaletteFiles:
    def test_round_trip(self, tmp_path):
        palette = preset_palette("Neon Pulse")
        path = save_palette(palette, tmp_path / "neon")
        assert path.suffix == ".ahpal"
        loaded = load_palette(path)
        assert loaded.stops == palette.stops

    def test_format_is_stop_list(self, tmp_path):
        palette = Palette(stops=[PaletteStop(0.0, (0.0, 0.0, 0.0)), PaletteStop(1.0, (1.0, 1.0, 1.0))])
        path = save_palette(palette, tmp_path / "bw.ahpal")
        assert json.loads(path.read_text()) == [
            {"pos": 0.0, "color": [0.0, 0.0, 0.0]},
            {"pos": 1.0, "color": [1.0, 1.0, 1.0]},
        ]

    def test_pads_partial_range(self, tmp_path):
        path = tmp_path / "p.ahpal"
        path.write_text(json.dumps([{"pos": 0.5, "color": [1.0, 0.0, 0.0]}]))
        palette = load_palette(path)
        assert [s.position for s in palette.stops] == [0.0, 0.5, 1.0]

    def test_accepts_full_palette_object(self, tmp_path):
        path = tmp_path / "p.ahpal"
        path.write_text(json.dumps({
            "stops": [{"pos": 0.0, "color": [0, 0, 0]}, {"pos": 1.0, "color": [1, 1, 1]}],
            "cycle_phase": 0.25,
            "cycle_enabled": False,
        }))
        palette = load_palette(path)
        assert palette.cycle_phase == 0.25
        assert not palette.cycle_enabled

    def test_bad_color(self, tmp_path):
        path = tmp_path / "p.ahpal"
        path.write_text(json.dumps([{"pos": 0.0, "color": [1.0, 0.0]}]))
        with pytest.raises(ProjectError):
            load_palette(path)
