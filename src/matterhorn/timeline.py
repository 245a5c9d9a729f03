"""
Keyframe animation timeline.

Three tracks (zoom scale, palette phase, camera center) are sampled
independently. Beyond the last zoom keyframe an optional Endless-Zoom preset
extrapolates the scale exponentially, and an enabled Repeating Spot pins the
camera center to a fixed target regardless of the center track.

Sampling is a pure query. Every state change goes through an explicit
mutator.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Generic, List, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

# Keyframes closer than this are the same keyframe.
TIME_EPSILON = 1e-4

Value = TypeVar("Value", float, complex)


class Easing(str, Enum):
    LINEAR = "linear"
    EASE_IN = "ease_in"
    EASE_OUT = "ease_out"
    EASE_IN_OUT = "ease_in_out"
    SMOOTH_STEP = "smooth_step"
    # Holds the previous value until the keyframe is reached
    STEP = "step"

    def apply(self, u: float) -> float:
        """Map normalized local time u in [0, 1] to an interpolation weight."""
        u = min(max(u, 0.0), 1.0)
        if self is Easing.LINEAR:
            return u
        if self is Easing.EASE_IN:
            return u * u
        if self is Easing.EASE_OUT:
            return 1.0 - (1.0 - u) * (1.0 - u)
        if self is Easing.EASE_IN_OUT:
            if u < 0.5:
                return 2.0 * u * u
            return 1.0 - (-2.0 * u + 2.0) ** 2 / 2.0
        if self is Easing.SMOOTH_STEP:
            return u * u * (3.0 - 2.0 * u)
        return 1.0 if u >= 1.0 else 0.0


class TrackKind(str, Enum):
    ZOOM = "zoom"
    PALETTE_PHASE = "palette_phase"
    CAMERA_CENTER = "camera_center"


@dataclass(frozen=True)
class Keyframe(Generic[Value]):
    time: float
    value: Value
    easing: Easing = Easing.LINEAR


@dataclass
class Track(Generic[Value]):
    """Keyframes of one parameter, unique by time and kept sorted."""

    kind: TrackKind
    keyframes: List[Keyframe] = field(default_factory=list)

    def __post_init__(self):
        ordered = []
        for key in sorted(self.keyframes, key=lambda k: k.time):
            if ordered and abs(ordered[-1].time - key.time) < TIME_EPSILON:
                ordered[-1] = key
            else:
                ordered.append(key)
        self.keyframes = ordered

    def __len__(self) -> int:
        return len(self.keyframes)

    @property
    def last_time(self) -> Optional[float]:
        return self.keyframes[-1].time if self.keyframes else None

    def _coerce(self, value) -> Value:
        if self.kind == TrackKind.CAMERA_CENTER:
            return complex(value)
        return float(value)

    def find(self, time: float) -> Optional[int]:
        for index, key in enumerate(self.keyframes):
            if abs(key.time - time) < TIME_EPSILON:
                return index
        return None

    def upsert(self, time: float, value, easing: Optional[Easing] = None) -> int:
        """
        Insert a keyframe, or overwrite the one already at this time.

        An overwrite keeps the existing easing unless a new one is given.
        Returns the keyframe's index.
        """
        if not math.isfinite(time) or time < 0:
            raise ValueError(f"keyframe time must be finite and >= 0, got {time}")
        value = self._coerce(value)
        existing = self.find(time)
        if existing is not None:
            old = self.keyframes[existing]
            self.keyframes[existing] = Keyframe(old.time, value, easing or old.easing)
            return existing

        self.keyframes.append(Keyframe(float(time), value, easing or Easing.LINEAR))
        self.keyframes.sort(key=lambda k: k.time)
        return self.find(time)

    def move(self, index: int, new_time: float) -> int:
        """Retime a keyframe; landing on another keyframe replaces it."""
        key = self.keyframes.pop(index)
        return self.upsert(new_time, key.value, key.easing)

    def remove(self, index: int) -> Keyframe:
        return self.keyframes.pop(index)

    def set_easing(self, index: int, easing: Easing):
        self.keyframes[index] = replace(self.keyframes[index], easing=Easing(easing))

    def clamp_all(self, duration: float):
        """Pull every keyframe into [0, duration]; collisions keep the later entry."""
        clamped = [replace(k, time=min(max(k.time, 0.0), duration)) for k in self.keyframes]
        self.keyframes = clamped
        self.__post_init__()

    def sample(self, t: float, default: Value) -> Value:
        """
        Interpolated value at time t.

        Before the first keyframe and after the last the value is clamped.
        Between two keyframes the later keyframe's easing shapes the
        interpolation.
        """
        keys = self.keyframes
        if not keys:
            return default
        if t <= keys[0].time:
            return keys[0].value
        if t >= keys[-1].time:
            return keys[-1].value

        for prev, key in zip(keys, keys[1:]):
            if t <= key.time:
                u = (t - prev.time) / (key.time - prev.time)
                w = key.easing.apply(u)
                return prev.value + (key.value - prev.value) * w
        return keys[-1].value


@dataclass
class EndlessZoomPreset:
    """
    Open-ended exponential zoom beyond the last zoom keyframe.

    scale(t) = base_scale * exp(-rate * (t - origin)), where origin is
    anchor_time when set, else the last zoom keyframe's time (0 without
    keyframes).
    """

    base_scale: float
    rate: float = 0.1
    anchor_time: Optional[float] = None

    def validate(self):
        if not math.isfinite(self.base_scale) or self.base_scale <= 0:
            raise ValueError("base_scale must be finite and > 0")
        if not math.isfinite(self.rate):
            raise ValueError("rate must be finite")

    def value_at(self, t: float, origin: float) -> float:
        return self.base_scale * math.exp(-self.rate * (t - origin))


@dataclass
class RepeatingSpotState:
    """Hand-tuned minibrot location the camera locks onto."""

    target: complex
    enabled: bool = False
    rotation: float = 0.0


# Seahorse Valley spot with near-perfect self similarity.
SEAHORSE_REPEAT_SPOT = complex(-0.7436439, 0.13182591)


@dataclass(frozen=True)
class TimelineSample:
    """Parameter snapshot for one query time."""

    zoom_scale: float
    palette_phase: float
    camera_center: complex
    # Set only when the repeating spot overrides the camera
    rotation: Optional[float] = None


DEFAULT_FALLBACK = TimelineSample(
    zoom_scale=1.0 / 300.0,
    palette_phase=0.0,
    camera_center=complex(-0.5, 0.0),
)


@dataclass
class Timeline:
    """
    Owns the animation tracks and the endless-zoom / repeating-spot state.

    Playback fields (fps, duration, looping, playing, current_time) drive
    `advance`; `sample` itself is independent of them.
    """

    zoom: Track = field(default_factory=lambda: Track(TrackKind.ZOOM))
    palette_phase: Track = field(default_factory=lambda: Track(TrackKind.PALETTE_PHASE))
    camera_center: Track = field(default_factory=lambda: Track(TrackKind.CAMERA_CENTER))
    endless_zoom: Optional[EndlessZoomPreset] = None
    repeating_spot: Optional[RepeatingSpotState] = None
    fps: int = 30
    duration: float = 5.0
    looping: bool = False
    playing: bool = False
    current_time: float = 0.0

    def track(self, kind: Union[TrackKind, str]) -> Track:
        kind = TrackKind(kind)
        return {
            TrackKind.ZOOM: self.zoom,
            TrackKind.PALETTE_PHASE: self.palette_phase,
            TrackKind.CAMERA_CENTER: self.camera_center,
        }[kind]

    # -- queries ---------------------------------------------------------

    def _zoom_origin(self) -> float:
        if self.endless_zoom is not None and self.endless_zoom.anchor_time is not None:
            return self.endless_zoom.anchor_time
        last = self.zoom.last_time
        return last if last is not None else 0.0

    def sample_zoom(self, t: float, default: float) -> float:
        last = self.zoom.last_time
        if self.endless_zoom is not None and (last is None or t > last):
            return self.endless_zoom.value_at(t, self._zoom_origin())
        return self.zoom.sample(t, default)

    @property
    def repeating_spot_locked(self) -> bool:
        return self.repeating_spot is not None and self.repeating_spot.enabled

    def sample(self, t: float, fallback: TimelineSample = DEFAULT_FALLBACK) -> TimelineSample:
        """
        Parameter snapshot at time t.

        Empty tracks yield the fallback's value. A locked repeating spot
        replaces the camera center (and rotation) at every t.
        """
        scale = self.sample_zoom(t, fallback.zoom_scale)
        phase = self.palette_phase.sample(t, fallback.palette_phase)

        if self.repeating_spot_locked:
            center = self.repeating_spot.target
            rotation = self.repeating_spot.rotation
        else:
            center = self.camera_center.sample(t, fallback.camera_center)
            rotation = fallback.rotation

        return TimelineSample(scale, phase, complex(center), rotation)

    def sample_current(self, fallback: TimelineSample = DEFAULT_FALLBACK) -> TimelineSample:
        return self.sample(self.current_time, fallback)

    # -- keyframe editing ------------------------------------------------

    def add_keyframe(self, kind, time: float, value, easing: Optional[Easing] = None) -> int:
        """Add or overwrite (newest value wins) a keyframe on a track."""
        return self.track(kind).upsert(time, value, Easing(easing) if easing else None)

    def move_keyframe(self, kind, index: int, new_time: float) -> int:
        return self.track(kind).move(index, new_time)

    def delete_keyframe(self, kind, index: int) -> Keyframe:
        return self.track(kind).remove(index)

    def set_keyframe_easing(self, kind, index: int, easing: Easing):
        self.track(kind).set_easing(index, easing)

    def clamp_keyframes(self):
        """Pull every track's keyframes into [0, duration]."""
        for track in (self.zoom, self.palette_phase, self.camera_center):
            track.clamp_all(self.duration)

    # -- endless zoom ----------------------------------------------------

    def set_endless_zoom_preset(self, base_scale: float, rate: float) -> EndlessZoomPreset:
        preset = EndlessZoomPreset(base_scale=base_scale, rate=rate)
        preset.validate()
        self.endless_zoom = preset
        return preset

    def convert_zoom_to_endless(self, rate: float, default_scale: float = DEFAULT_FALLBACK.zoom_scale):
        """
        Replace the zoom keyframes with an Endless-Zoom preset.

        The preset starts from the zoom value at the current time so the
        view does not jump, then playback restarts looping from zero.
        """
        start = self.sample_zoom(self.current_time, default_scale)
        self.zoom.keyframes.clear()
        preset = self.set_endless_zoom_preset(start, rate)
        self.current_time = 0.0
        self.playing = True
        self.looping = True
        return preset

    def clear_endless_zoom(self):
        self.endless_zoom = None

    def rebase(self, default_scale: float = DEFAULT_FALLBACK.zoom_scale) -> Optional[EndlessZoomPreset]:
        """
        Re-anchor the endless zoom at the current time and scale.

        The anchor never precedes the last zoom keyframe, where the
        extrapolation takes over, so the zoom stays continuous there. The
        zoom value at current_time is unchanged. Camera position and the
        repeating spot are untouched. Without a preset this is a no-op.
        """
        if self.endless_zoom is None:
            logger.debug("rebase ignored: no endless zoom preset")
            return None
        anchor = self.current_time
        last = self.zoom.last_time
        if last is not None:
            anchor = max(anchor, last)
        scale = self.sample_zoom(anchor, default_scale)
        self.endless_zoom = replace(self.endless_zoom, base_scale=scale, anchor_time=anchor)
        return self.endless_zoom

    # -- repeating spot --------------------------------------------------

    def enable_repeating_spot(self, target: complex = SEAHORSE_REPEAT_SPOT, rotation: float = 0.0):
        """Disabled -> Locked, recording the target."""
        if not (math.isfinite(complex(target).real) and math.isfinite(complex(target).imag)):
            raise ValueError("repeating spot target must be finite")
        self.repeating_spot = RepeatingSpotState(complex(target), True, rotation)
        return self.repeating_spot

    def disable_repeating_spot(self):
        """Locked -> Disabled. The last target is kept for re-enabling."""
        if self.repeating_spot is not None:
            self.repeating_spot.enabled = False

    def recenter_to_repeating_spot(self) -> Optional[complex]:
        """
        Locked -> Locked: re-apply the target without touching the zoom.

        Returns the target, or None when the spot is not locked.
        """
        if not self.repeating_spot_locked:
            return None
        spot = self.repeating_spot
        self.repeating_spot = RepeatingSpotState(spot.target, True, spot.rotation)
        return spot.target

    # -- playback --------------------------------------------------------

    def seek(self, t: float):
        if self.duration <= 0:
            self.current_time = max(t, 0.0)
        else:
            self.current_time = min(max(t, 0.0), self.duration)

    def advance(self, dt: float):
        """Move the playhead while playing; loop or stop at the end."""
        if not self.playing:
            return
        self.current_time += dt
        if self.duration > 0 and self.current_time >= self.duration:
            if self.looping:
                self.current_time %= self.duration
            else:
                self.current_time = self.duration
                self.playing = False
