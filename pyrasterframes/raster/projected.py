from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from geo.crs import CRS
from geo.extent import Extent
from raster.celltype import CellType
from raster.tile import Tile


@dataclass(frozen=True)
class TileContext:
    """
    Spatial context (extent + CRS) travelling with a tile.
    """

    extent: Extent
    crs: CRS

    def to_projected_raster_tile(self, tile: Tile) -> "ProjectedRasterTile":
        return ProjectedRasterTile(tile=tile, extent=self.extent, crs=self.crs)


@dataclass(frozen=True)
class ProjectedRasterTile:
    tile: Tile
    extent: Extent
    crs: CRS

    @property
    def cell_type(self) -> CellType:
        return self.tile.cell_type

    @property
    def cols(self) -> int:
        return self.tile.cols

    @property
    def rows(self) -> int:
        return self.tile.rows

    @property
    def context(self) -> TileContext:
        return TileContext(self.extent, self.crs)

    @property
    def projected_extent(self) -> tuple[Extent, CRS]:
        return (self.extent, self.crs)

    def map_tile(self, f: Callable[[Tile], Tile]) -> "ProjectedRasterTile":
        return ProjectedRasterTile(f(self.tile), self.extent, self.crs)

    def convert(self, cell_type: CellType) -> "ProjectedRasterTile":
        return self.map_tile(lambda t: t.convert(cell_type))


@dataclass(frozen=True)
class ProjectedRaster:
    """
    A multiband raster: equally sized band tiles sharing one extent and CRS.
    """

    tiles: tuple[Tile, ...]
    extent: Extent
    crs: CRS

    def __post_init__(self) -> None:
        tiles = tuple(self.tiles)
        if not tiles:
            raise ValueError("A projected raster needs at least one band")
        shape = tiles[0].cells.shape
        if any(t.cells.shape != shape for t in tiles):
            raise ValueError("All bands of a projected raster must have the same dimensions")
        object.__setattr__(self, "tiles", tiles)

    @property
    def band_count(self) -> int:
        return len(self.tiles)

    @property
    def cols(self) -> int:
        return self.tiles[0].cols

    @property
    def rows(self) -> int:
        return self.tiles[0].rows

    def band(self, i: int) -> ProjectedRasterTile:
        return ProjectedRasterTile(self.tiles[i], self.extent, self.crs)
