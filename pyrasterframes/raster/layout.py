from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any

from geo.crs import CRS
from geo.extent import Extent
from raster.celltype import CellType

# Fraction of a cell under which a grid coordinate snaps to the nearest line.
_GRID_EPSILON = 1e-7


@dataclass(frozen=True)
class TileDimensions:
    cols: int
    rows: int

    def to_dict(self) -> dict[str, int]:
        return {"cols": int(self.cols), "rows": int(self.rows)}


@dataclass(frozen=True)
class GridBounds:
    """
    Inclusive cell index bounds: (col_min, row_min) .. (col_max, row_max).
    """

    col_min: int
    row_min: int
    col_max: int
    row_max: int

    @property
    def width(self) -> int:
        return self.col_max - self.col_min + 1

    @property
    def height(self) -> int:
        return self.row_max - self.row_min + 1

    @property
    def size(self) -> int:
        return self.width * self.height

    def intersection(self, other: "GridBounds") -> "GridBounds | None":
        gb = GridBounds(
            col_min=max(self.col_min, other.col_min),
            row_min=max(self.row_min, other.row_min),
            col_max=min(self.col_max, other.col_max),
            row_max=min(self.row_max, other.row_max),
        )
        if gb.col_min > gb.col_max or gb.row_min > gb.row_max:
            return None
        return gb

    def combine(self, other: "GridBounds") -> "GridBounds":
        return GridBounds(
            col_min=min(self.col_min, other.col_min),
            row_min=min(self.row_min, other.row_min),
            col_max=max(self.col_max, other.col_max),
            row_max=max(self.row_max, other.row_max),
        )

    def split(self, cols: int, rows: int) -> list["GridBounds"]:
        """
        Row-major windows of at most `cols x rows` covering these bounds.
        """
        out: list[GridBounds] = []
        for r in range(self.row_min, self.row_max + 1, rows):
            for c in range(self.col_min, self.col_max + 1, cols):
                out.append(
                    GridBounds(c, r, min(c + cols - 1, self.col_max), min(r + rows - 1, self.row_max))
                )
        return out


@dataclass(frozen=True)
class SpatialKey:
    col: int
    row: int

    def subdivide(self, n: int) -> list["SpatialKey"]:
        if n < 0:
            raise ValueError(f"Subdivision factor must be non-negative, got {n}")
        if n <= 1:
            return [self]
        return [
            SpatialKey(self.col * n + c, self.row * n + r)
            for r in range(n)
            for c in range(n)
        ]

    def to_dict(self) -> dict[str, int]:
        return {"col": int(self.col), "row": int(self.row)}


@dataclass(frozen=True)
class KeyBounds:
    min_key: SpatialKey
    max_key: SpatialKey

    def subdivide(self, n: int) -> "KeyBounds":
        if n < 0:
            raise ValueError(f"Subdivision factor must be non-negative, got {n}")
        if n <= 1:
            return self
        return KeyBounds(
            SpatialKey(self.min_key.col * n, self.min_key.row * n),
            SpatialKey((self.max_key.col + 1) * n - 1, (self.max_key.row + 1) * n - 1),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"minKey": self.min_key.to_dict(), "maxKey": self.max_key.to_dict()}


@dataclass(frozen=True)
class TileLayout:
    layout_cols: int
    layout_rows: int
    tile_cols: int
    tile_rows: int

    @property
    def total_cols(self) -> int:
        return self.layout_cols * self.tile_cols

    @property
    def total_rows(self) -> int:
        return self.layout_rows * self.tile_rows

    def subdivide(self, n: int) -> "TileLayout":
        if n < 0:
            raise ValueError(f"Subdivision factor must be non-negative, got {n}")
        if n <= 1:
            return self
        return TileLayout(
            self.layout_cols * n,
            self.layout_rows * n,
            self.tile_cols // n,
            self.tile_rows // n,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "layoutCols": self.layout_cols,
            "layoutRows": self.layout_rows,
            "tileCols": self.tile_cols,
            "tileRows": self.tile_rows,
        }


@dataclass(frozen=True)
class RasterExtent:
    """
    An extent divided into a `cols x rows` grid of equally sized cells.
    """

    extent: Extent
    cols: int
    rows: int

    @property
    def cell_width(self) -> float:
        return self.extent.width / self.cols

    @property
    def cell_height(self) -> float:
        return self.extent.height / self.rows

    @property
    def grid_bounds(self) -> GridBounds:
        return GridBounds(0, 0, self.cols - 1, self.rows - 1)

    def grid_bounds_for(self, sub: Extent, clamp: bool = True) -> GridBounds:
        col_min = _floor_snap((sub.xmin - self.extent.xmin) / self.cell_width)
        row_min = _floor_snap((self.extent.ymax - sub.ymax) / self.cell_height)
        col_max = _ceil_snap((sub.xmax - self.extent.xmin) / self.cell_width) - 1
        row_max = _ceil_snap((self.extent.ymax - sub.ymin) / self.cell_height) - 1
        gb = GridBounds(col_min, row_min, col_max, row_max)
        if clamp:
            gb = GridBounds(
                max(0, min(self.cols - 1, gb.col_min)),
                max(0, min(self.rows - 1, gb.row_min)),
                max(0, min(self.cols - 1, gb.col_max)),
                max(0, min(self.rows - 1, gb.row_max)),
            )
        return gb

    def extent_for(self, gb: GridBounds, clamp: bool = True) -> Extent:
        xmin = self.extent.xmin + gb.col_min * self.cell_width
        xmax = self.extent.xmin + (gb.col_max + 1) * self.cell_width
        ymax = self.extent.ymax - gb.row_min * self.cell_height
        ymin = self.extent.ymax - (gb.row_max + 1) * self.cell_height
        e = Extent(xmin, ymin, xmax, ymax)
        if clamp:
            e = Extent(
                max(e.xmin, self.extent.xmin),
                max(e.ymin, self.extent.ymin),
                min(e.xmax, self.extent.xmax),
                min(e.ymax, self.extent.ymax),
            )
        return e


@dataclass(frozen=True)
class LayoutDefinition:
    extent: Extent
    tile_layout: TileLayout

    @property
    def cell_width(self) -> float:
        return self.extent.width / self.tile_layout.total_cols

    @property
    def cell_height(self) -> float:
        return self.extent.height / self.tile_layout.total_rows

    def to_raster_extent(self) -> RasterExtent:
        return RasterExtent(self.extent, self.tile_layout.total_cols, self.tile_layout.total_rows)

    def key_extent(self, key: SpatialKey) -> Extent:
        tl = self.tile_layout
        w = self.extent.width / tl.layout_cols
        h = self.extent.height / tl.layout_rows
        xmin = self.extent.xmin + key.col * w
        ymax = self.extent.ymax - key.row * h
        return Extent(xmin, ymax - h, xmin + w, ymax)

    def subdivide(self, n: int) -> "LayoutDefinition":
        return LayoutDefinition(self.extent, self.tile_layout.subdivide(n))

    def to_dict(self) -> dict[str, Any]:
        return {"extent": self.extent.to_dict(), "tileLayout": self.tile_layout.to_dict()}


@dataclass(frozen=True)
class TileLayerMetadata:
    cell_type: CellType
    layout: LayoutDefinition
    extent: Extent
    crs: CRS
    bounds: KeyBounds

    @property
    def tile_layout(self) -> TileLayout:
        return self.layout.tile_layout

    def total_dimensions(self) -> TileDimensions:
        gb = self.layout.to_raster_extent().grid_bounds_for(self.extent)
        return TileDimensions(gb.width, gb.height)

    def subdivide(self, n: int) -> "TileLayerMetadata":
        return TileLayerMetadata(
            cell_type=self.cell_type,
            layout=self.layout.subdivide(n),
            extent=self.extent,
            crs=self.crs,
            bounds=self.bounds.subdivide(n),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "extent": self.extent.to_dict(),
            "layoutDefinition": self.layout.to_dict(),
            "bounds": self.bounds.to_dict(),
            "cellType": self.cell_type.name,
            "crs": self.crs.to_proj4(),
        }

    def to_json(self, *, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "TileLayerMetadata":
        ld = d["layoutDefinition"]
        tl = ld["tileLayout"]
        b = d["bounds"]
        return TileLayerMetadata(
            cell_type=CellType.from_name(str(d["cellType"])),
            layout=LayoutDefinition(
                extent=Extent.from_dict(ld["extent"]),
                tile_layout=TileLayout(
                    int(tl["layoutCols"]), int(tl["layoutRows"]), int(tl["tileCols"]), int(tl["tileRows"])
                ),
            ),
            extent=Extent.from_dict(d["extent"]),
            crs=CRS.from_user_input(d["crs"]),
            bounds=KeyBounds(
                SpatialKey(int(b["minKey"]["col"]), int(b["minKey"]["row"])),
                SpatialKey(int(b["maxKey"]["col"]), int(b["maxKey"]["row"])),
            ),
        )

    @staticmethod
    def from_json(text: str) -> "TileLayerMetadata":
        return TileLayerMetadata.from_dict(json.loads(text))


def floating_layout(extent: Extent, cols: int, rows: int, tile_dims: TileDimensions) -> LayoutDefinition:
    """
    Layout whose tiles start at the raster's upper left corner.

    The layout extent grows right and down to cover whole tiles.
    """
    cw = extent.width / cols
    ch = extent.height / rows
    layout_cols = max(1, math.ceil(cols / tile_dims.cols))
    layout_rows = max(1, math.ceil(rows / tile_dims.rows))
    layout_extent = Extent(
        extent.xmin,
        extent.ymax - layout_rows * tile_dims.rows * ch,
        extent.xmin + layout_cols * tile_dims.cols * cw,
        extent.ymax,
    )
    return LayoutDefinition(layout_extent, TileLayout(layout_cols, layout_rows, tile_dims.cols, tile_dims.rows))


def _floor_snap(v: float) -> int:
    r = round(v)
    if abs(v - r) < _GRID_EPSILON:
        return int(r)
    return int(math.floor(v))


def _ceil_snap(v: float) -> int:
    r = round(v)
    if abs(v - r) < _GRID_EPSILON:
        return int(r)
    return int(math.ceil(v))
