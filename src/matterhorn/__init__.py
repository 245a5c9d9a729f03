"""
Matterhorn: escape-time fractal renderer with keyframed animation and
ffmpeg video export.
"""

__version__ = "0.1.0"
