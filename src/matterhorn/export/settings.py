"""
Export configuration.
"""

import math
from dataclasses import dataclass, field, replace
from pathlib import Path

from matterhorn.errors import InvalidSettingsError
from matterhorn.export.encoder import CRF_LIMITS, VideoCodec

# Resolution / rate / quality presets for the CLI
PROFILES = {
    "low": {"width": 1280, "height": 720, "fps": 30, "crf": 28},
    "medium": {"width": 1920, "height": 1080, "fps": 30, "crf": 20},
    "high": {"width": 3840, "height": 2160, "fps": 60, "crf": 16},
}


@dataclass
class ExportSettings:
    """Video export configuration."""

    width: int = 1920
    height: int = 1080
    fps: int = 30
    duration_seconds: float = 5.0
    codec: VideoCodec = VideoCodec.H264
    crf: int = 20
    tile_size: int = 2048
    output_path: Path = field(default_factory=lambda: Path("output.mp4"))

    @property
    def total_frames(self) -> int:
        return int(round(self.duration_seconds * self.fps))

    def with_profile(self, name: str) -> "ExportSettings":
        return replace(self, **PROFILES[name])

    def validate(self):
        """Raise InvalidSettingsError naming the first bad field."""
        for name in ("width", "height", "fps", "tile_size"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise InvalidSettingsError(name, f"must be a positive integer, got {value!r}")
        if not math.isfinite(self.duration_seconds * self.fps) or self.duration_seconds <= 0:
            raise InvalidSettingsError(
                "duration_seconds", f"must be a finite number > 0, got {self.duration_seconds!r}"
            )
        try:
            codec = VideoCodec(self.codec)
        except ValueError:
            raise InvalidSettingsError("codec", f"unknown codec {self.codec!r}") from None
        if not isinstance(self.crf, int) or self.crf < 0:
            raise InvalidSettingsError("crf", f"must be a non-negative integer, got {self.crf!r}")
        limit = CRF_LIMITS[codec]
        if limit is not None and self.crf > limit:
            raise InvalidSettingsError("crf", f"{codec.label} accepts 0..{limit}, got {self.crf}")
        if self.total_frames <= 0:
            raise InvalidSettingsError(
                "duration_seconds",
                f"{self.duration_seconds}s at {self.fps} fps yields no frames",
            )
        if not str(self.output_path):
            raise InvalidSettingsError("output_path", "must not be empty")
