"""
Video export: frame sequence rendering and ffmpeg encoding.
"""

from matterhorn.export.encoder import VideoCodec, build_ffmpeg_command
from matterhorn.export.pipeline import export_project, export_video
from matterhorn.export.settings import PROFILES, ExportSettings
