"""
Raster tiling.
"""

from typing import List, NamedTuple


class Tile(NamedTuple):
    x: int
    y: int
    width: int
    height: int

    @property
    def rows(self) -> slice:
        return slice(self.y, self.y + self.height)

    @property
    def cols(self) -> slice:
        return slice(self.x, self.x + self.width)


def tile_iterator(width: int, height: int, tile_size: int) -> List[Tile]:
    """
    Split a width x height raster into tile_size squares, row-major.

    Tiles on the last row / column are clipped to the raster.
    """
    if width <= 0 or height <= 0:
        raise ValueError("raster dimensions must be positive")
    if tile_size <= 0:
        raise ValueError("tile_size must be positive")

    tiles = []
    for y in range(0, height, tile_size):
        for x in range(0, width, tile_size):
            tiles.append(
                Tile(x, y, min(tile_size, width - x), min(tile_size, height - y))
            )
    return tiles
