"""Tests for the frame-sequence export pipeline."""

import shutil
from dataclasses import replace
from pathlib import Path

import pytest
from PIL import Image

from matterhorn.cancel import CancelToken
from matterhorn.core.kernel import FractalParams
from matterhorn.errors import (
    ExportCancelled,
    ExportIoError,
    FfmpegError,
    InvalidSettingsError,
    RenderError,
)
from matterhorn.export import encoder, pipeline
from matterhorn.export.encoder import VideoCodec
from matterhorn.export.pipeline import export_project, frame_request
from matterhorn.export.settings import ExportSettings
from matterhorn.render.backend import CpuRenderer


class FakeEncoder:
    """Stands in for run_encoder: records the frames, writes the output."""

    def __init__(self):
        self.frames = []
        self.sizes = set()
        self.frames_dir = None

    def __call__(self, cmd, cancel=None):
        pattern = Path(cmd[cmd.index("-i") + 1])
        self.frames_dir = pattern.parent
        self.frames = sorted(p.name for p in self.frames_dir.glob("frame_*.png"))
        for name in self.frames:
            with Image.open(self.frames_dir / name) as img:
                self.sizes.add(img.size)
        Path(cmd[-1]).write_bytes(b"fake video")


class FailingRenderer(CpuRenderer):
    """CPU renderer whose tiles blow up from the given frame on."""

    def __init__(self, fail_on_frame: int, scratch: Path):
        super().__init__(max_workers=1)
        self.fail_on_frame = fail_on_frame
        self.scratch = scratch
        self.frames = 0
        self.frames_on_disk = 0

    def render(self, request, cancel=None):
        self.frames += 1
        return super().render(request, cancel)

    def render_tile(self, tile, request):
        if self.frames > self.fail_on_frame:
            self.frames_on_disk = len(list(self.scratch.glob("*/frame_*.png")))
            raise ValueError("tile kernel failed")
        return super().render_tile(tile, request)


@pytest.fixture
def fake_encoder(monkeypatch):
    fake = FakeEncoder()
    monkeypatch.setattr(encoder, "find_encoder", lambda binary="ffmpeg": binary)
    monkeypatch.setattr(encoder, "run_encoder", fake)
    return fake


class TestExportVideo:
    def test_writes_one_png_per_frame(self, small_project, fake_encoder, tmp_path):
        output = export_project(small_project, temp_root=tmp_path / "scratch")
        assert output == small_project.export.output_path
        assert output.exists()
        assert fake_encoder.frames == [f"frame_{i:06d}.png" for i in range(10)]
        assert fake_encoder.sizes == {(48, 32)}

    def test_scratch_dir_removed(self, small_project, fake_encoder, tmp_path):
        scratch = tmp_path / "scratch"
        export_project(small_project, temp_root=scratch)
        assert not fake_encoder.frames_dir.exists()
        assert list(scratch.iterdir()) == []

    def test_progress_reports_every_frame(self, small_project, fake_encoder, tmp_path):
        progress = []
        export_project(
            small_project,
            temp_root=tmp_path,
            progress_callback=lambda c, t: progress.append((c, t)),
        )
        assert progress == [(i, 10) for i in range(1, 11)]

    def test_suffix_follows_codec(self, small_project, fake_encoder, tmp_path):
        settings = replace(small_project.export, codec=VideoCodec.VP9, output_path=tmp_path / "clip")
        output = export_project(small_project, settings=settings, temp_root=tmp_path)
        assert output == tmp_path / "clip.webm"

    def test_missing_output_is_an_error(self, small_project, monkeypatch, tmp_path):
        monkeypatch.setattr(encoder, "find_encoder", lambda binary="ffmpeg": binary)
        monkeypatch.setattr(encoder, "run_encoder", lambda cmd, cancel=None: None)
        with pytest.raises(FfmpegError):
            export_project(small_project, temp_root=tmp_path)


class TestExportErrors:
    def test_missing_ffmpeg_before_any_frame(self, small_project, tmp_path):
        scratch = tmp_path / "scratch"
        progress = []
        with pytest.raises(FfmpegError):
            export_project(
                small_project,
                temp_root=scratch,
                encoder_binary="definitely-not-ffmpeg-binary",
                progress_callback=lambda c, t: progress.append(c),
            )
        assert progress == []
        assert not scratch.exists() or list(scratch.iterdir()) == []
        assert not small_project.export.output_path.exists()

    def test_encoder_failure_cleans_scratch(self, small_project, monkeypatch, tmp_path):
        def failing(cmd, cancel=None):
            raise FfmpegError("ffmpeg exited with code 1", returncode=1, output="boom")

        monkeypatch.setattr(encoder, "find_encoder", lambda binary="ffmpeg": binary)
        monkeypatch.setattr(encoder, "run_encoder", failing)
        scratch = tmp_path / "scratch"
        with pytest.raises(FfmpegError) as info:
            export_project(small_project, temp_root=scratch)
        assert info.value.returncode == 1
        assert list(scratch.iterdir()) == []

    @pytest.mark.parametrize(
        "field, value",
        [("fps", 0), ("width", -4), ("crf", 60), ("duration_seconds", 0.0)],
    )
    def test_invalid_settings(self, small_project, fake_encoder, field, value):
        settings = replace(small_project.export, **{field: value})
        with pytest.raises(InvalidSettingsError) as info:
            export_project(small_project, settings=settings)
        assert info.value.field == field
        assert info.value.exit_code == 3

    def test_render_failure_mid_export_cleans_scratch(self, small_project, fake_encoder, tmp_path):
        scratch = tmp_path / "scratch"
        renderer = FailingRenderer(fail_on_frame=3, scratch=scratch)
        progress = []
        with renderer:
            with pytest.raises(RenderError):
                export_project(
                    small_project,
                    renderer=renderer,
                    temp_root=scratch,
                    progress_callback=lambda c, t: progress.append(c),
                )
        assert progress == [1, 2, 3]
        assert renderer.frames_on_disk == 3
        assert list(scratch.iterdir()) == []
        assert fake_encoder.frames_dir is None
        assert not small_project.export.output_path.exists()

    def test_frame_write_failure_mid_export_cleans_scratch(
        self, small_project, fake_encoder, monkeypatch, tmp_path
    ):
        scratch = tmp_path / "scratch"
        written = []
        real_write = pipeline.write_frame

        def write_or_fail(frame, path):
            if len(written) == 4:
                path = path.parent / "gone" / path.name
            real_write(frame, path)
            written.append(path)

        monkeypatch.setattr(pipeline, "write_frame", write_or_fail)
        with pytest.raises(ExportIoError) as info:
            export_project(small_project, temp_root=scratch)
        assert info.value.exit_code == 4
        assert info.value.path.name == "frame_000004.png"
        assert len(written) == 4
        assert list(scratch.iterdir()) == []
        assert fake_encoder.frames_dir is None

    def test_unusable_temp_root_is_io_error(self, small_project, fake_encoder, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file in the way")
        with pytest.raises(ExportIoError) as info:
            export_project(small_project, temp_root=blocker)
        assert info.value.path == blocker

    def test_invalid_fractal_is_render_error(self, small_project, fake_encoder, tmp_path):
        small_project.fractal = FractalParams(max_iterations=0)
        with pytest.raises(RenderError):
            export_project(small_project, temp_root=tmp_path)
        assert fake_encoder.frames_dir is None

    def test_cancel_before_start(self, small_project, fake_encoder, tmp_path):
        token = CancelToken()
        token.cancel()
        with pytest.raises(ExportCancelled):
            export_project(small_project, temp_root=tmp_path, cancel=token)
        assert fake_encoder.frames_dir is None

    def test_cancel_mid_export(self, small_project, fake_encoder, tmp_path):
        token = CancelToken()
        scratch = tmp_path / "scratch"

        def progress(current, total):
            if current == 3:
                token.cancel()

        with pytest.raises(ExportCancelled):
            export_project(small_project, temp_root=scratch, cancel=token, progress_callback=progress)
        assert list(scratch.iterdir()) == []
        assert fake_encoder.frames_dir is None


class TestFrameRequest:
    def test_samples_timeline(self, small_project):
        project = small_project
        request = frame_request(
            project.timeline, 0.5, project.fractal, project.palette, project.trap,
            project.export, project.camera,
        )
        sample = project.timeline.sample(0.5)
        assert request.camera.scale == pytest.approx(sample.zoom_scale)
        assert request.palette_phase == pytest.approx(sample.palette_phase)
        assert request.width == project.export.width
        assert request.tile_size == project.export.tile_size

    def test_empty_tracks_use_project_camera(self, small_project):
        project = small_project
        request = frame_request(
            project.timeline, 0.5, project.fractal, project.palette, project.trap,
            project.export, project.camera,
        )
        assert request.camera.center == project.camera.center
        assert request.camera.rotation == project.camera.rotation


class TestExportSettings:
    def test_total_frames_rounds(self):
        assert ExportSettings(fps=30, duration_seconds=1.01).total_frames == 30
        assert ExportSettings(fps=24, duration_seconds=2.5).total_frames == 60

    def test_profile(self):
        settings = ExportSettings().with_profile("low")
        assert (settings.width, settings.height, settings.fps) == (1280, 720, 30)

    def test_prores_has_no_crf_limit(self):
        ExportSettings(codec=VideoCodec.PRORES, crf=99).validate()


@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")
class TestFfmpegIntegration:
    def test_encodes_h264(self, small_project, tmp_path):
        output = export_project(small_project, temp_root=tmp_path / "scratch")
        assert output.exists()
        assert output.stat().st_size > 0
