"""
FFmpeg video encoder.

Turns a numbered PNG sequence into a video with codec-specific arguments.
The encoder runs as one blocking child process that a cancel token can
terminate.
"""

import logging
import shutil
import subprocess
from enum import Enum
from pathlib import Path
from typing import List, Optional

from matterhorn.cancel import CancelToken
from matterhorn.errors import ExportCancelled, FfmpegError

logger = logging.getLogger(__name__)

FRAME_PATTERN = "frame_%06d.png"
POLL_INTERVAL = 0.1


class VideoCodec(str, Enum):
    H264 = "h264"
    PRORES = "prores"
    VP9 = "vp9"
    AV1 = "av1"

    @property
    def label(self) -> str:
        return CODEC_LABELS[self]


CODEC_LABELS = {
    VideoCodec.H264: "H.264",
    VideoCodec.PRORES: "ProRes 422",
    VideoCodec.VP9: "VP9",
    VideoCodec.AV1: "AV1",
}

# codec -> (container suffix, ffmpeg muxer)
CONTAINERS = {
    VideoCodec.H264: (".mp4", "mp4"),
    VideoCodec.PRORES: (".mov", "mov"),
    VideoCodec.VP9: (".webm", "webm"),
    VideoCodec.AV1: (".mkv", "matroska"),
}

# Highest CRF each encoder accepts; ProRes is profile based and ignores CRF.
CRF_LIMITS = {
    VideoCodec.H264: 51,
    VideoCodec.PRORES: None,
    VideoCodec.VP9: 63,
    VideoCodec.AV1: 63,
}


def codec_args(codec: VideoCodec, crf: int) -> List[str]:
    """Encoder, pixel format and quality flags for a codec."""
    codec = VideoCodec(codec)
    if codec == VideoCodec.H264:
        return ["-c:v", "libx264", "-pix_fmt", "yuv420p", "-crf", str(crf)]
    if codec == VideoCodec.PRORES:
        return ["-c:v", "prores_ks", "-profile:v", "3", "-pix_fmt", "yuv422p10le"]
    if codec == VideoCodec.VP9:
        return ["-c:v", "libvpx-vp9", "-pix_fmt", "yuv420p", "-b:v", "0", "-crf", str(crf)]
    return ["-c:v", "libaom-av1", "-pix_fmt", "yuv420p", "-b:v", "0", "-crf", str(crf)]


def output_path_for(codec: VideoCodec, output_path: Path) -> Path:
    """Append the codec's container suffix when the path has none."""
    output_path = Path(output_path)
    if output_path.suffix:
        return output_path
    return output_path.with_suffix(CONTAINERS[VideoCodec(codec)][0])


def build_ffmpeg_command(
    frames_dir: Path,
    output_path: Path,
    fps: int,
    codec: VideoCodec,
    crf: int,
    binary: str = "ffmpeg",
) -> List[str]:
    """
    Assemble the ffmpeg invocation for a PNG sequence.

    Args:
        frames_dir: Directory holding frame_000000.png, frame_000001.png, ...
        output_path: Destination video file.
        fps: Input and output frame rate.
        codec: Target codec.
        crf: Quality value (ignored by ProRes).
        binary: ffmpeg executable name or path.
    """
    codec = VideoCodec(codec)
    cmd = [
        binary, "-y",
        "-hide_banner",
        "-loglevel", "error",
        "-framerate", str(fps),
        "-i", str(Path(frames_dir) / FRAME_PATTERN),
    ]
    cmd.extend(codec_args(codec, crf))
    cmd.extend(["-r", str(fps), "-f", CONTAINERS[codec][1], str(output_path)])
    return cmd


def find_encoder(binary: str = "ffmpeg") -> str:
    """Resolve the encoder executable or raise FfmpegError."""
    resolved = shutil.which(binary)
    if resolved is None:
        raise FfmpegError(f"ffmpeg executable not found: {binary}")
    return resolved


def _error_summary(stderr: str) -> str:
    error_lines = [
        line for line in stderr.split("\n")
        if "error" in line.lower() or "invalid" in line.lower()
    ]
    return "\n".join(error_lines[-5:]) if error_lines else stderr[-500:]


def run_encoder(cmd: List[str], cancel: Optional[CancelToken] = None) -> None:
    """
    Run ffmpeg to completion.

    Raises:
        FfmpegError: binary missing or non-zero exit (stderr attached).
        ExportCancelled: the cancel token fired; the child is terminated.
    """
    logger.info("running encoder: %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise FfmpegError(f"ffmpeg executable not found: {cmd[0]}") from exc
    except OSError as exc:
        raise FfmpegError(f"could not start ffmpeg: {exc}") from exc

    try:
        while True:
            try:
                _, stderr_bytes = proc.communicate(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.cancelled:
                    proc.terminate()
                    try:
                        proc.wait(timeout=5)
                    except subprocess.TimeoutExpired:
                        proc.kill()
                        proc.wait()
                    raise ExportCancelled("export cancelled while encoding")
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()

    stderr = stderr_bytes.decode("utf-8", errors="replace")
    if proc.returncode != 0:
        raise FfmpegError(
            f"ffmpeg exited with code {proc.returncode}: {_error_summary(stderr)}",
            returncode=proc.returncode,
            output=stderr,
        )
