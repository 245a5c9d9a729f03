"""
Project and palette files.
"""

from matterhorn.io.project import (
    Project,
    load_palette,
    load_project,
    save_palette,
    save_project,
)
