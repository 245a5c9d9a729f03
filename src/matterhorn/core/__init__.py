"""
Pure numeric core: escape-time kernel, orbit traps and palette mapping.
"""

from matterhorn.core.kernel import (
    FractalKind,
    FractalParams,
    GridResult,
    IterationResult,
    iterate,
    iterate_grid,
)
from matterhorn.core.palette import Palette, PaletteStop, default_stops
from matterhorn.core.traps import NO_TRAP, OrbitTrap, TrapKind
