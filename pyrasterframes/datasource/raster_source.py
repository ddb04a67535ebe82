from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Sequence

import numpy as np
import rasterio
from rasterio.windows import Window

from geo.crs import CRS
from geo.extent import Extent
from raster.celltype import CellType, cell_type_for_dtype
from raster.layout import GridBounds, RasterExtent, TileDimensions
from raster.projected import ProjectedRaster
from raster.tile import Tile

logger = logging.getLogger(__name__)


def normalize_uri(uri: str) -> str:
    text = str(uri).strip()
    if text.startswith("file://"):
        return text[len("file://"):]
    return text


@dataclass(frozen=True)
class _SourceInfo:
    extent: Extent
    crs: CRS
    cell_type: CellType
    cols: int
    rows: int
    band_count: int
    tags: dict[str, str]


@lru_cache(maxsize=128)
def _source_info(path: str, mtime_ns: int, size: int) -> _SourceInfo:
    # mtime_ns and size only key the cache so a rewritten file is read again.
    with rasterio.open(path) as ds:
        if ds.crs is None:
            raise ValueError(f"Raster has no CRS: {path}")
        return _SourceInfo(
            extent=Extent.from_bounds(ds.bounds),
            crs=CRS.from_user_input(ds.crs),
            cell_type=cell_type_for_dtype(np.dtype(ds.dtypes[0]), no_data=ds.nodata),
            cols=int(ds.width),
            rows=int(ds.height),
            band_count=int(ds.count),
            tags={str(k): str(v) for k, v in (ds.tags() or {}).items()},
        )


class RasterSource:
    """
    Metadata and windowed reads over one raster file, backed by rasterio.

    Metadata is cached per path and file version (mtime, size); pixel reads open the file each time.
    """

    def __init__(self, uri: str):
        self.uri = str(uri)
        self.path = normalize_uri(uri)

    @property
    def _info(self) -> _SourceInfo:
        if os.path.isfile(self.path):
            st = os.stat(self.path)
            return _source_info(self.path, st.st_mtime_ns, st.st_size)
        return _source_info(self.path, 0, 0)

    @property
    def extent(self) -> Extent:
        return self._info.extent

    @property
    def crs(self) -> CRS:
        return self._info.crs

    @property
    def cell_type(self) -> CellType:
        return self._info.cell_type

    @property
    def cols(self) -> int:
        return self._info.cols

    @property
    def rows(self) -> int:
        return self._info.rows

    @property
    def dimensions(self) -> TileDimensions:
        return TileDimensions(self.cols, self.rows)

    @property
    def band_count(self) -> int:
        return self._info.band_count

    @property
    def size(self) -> int:
        return self.cols * self.rows

    @property
    def tags(self) -> dict[str, str]:
        return dict(self._info.tags)

    @property
    def grid_bounds(self) -> GridBounds:
        return GridBounds(0, 0, self.cols - 1, self.rows - 1)

    @property
    def raster_extent(self) -> RasterExtent:
        return RasterExtent(self.extent, self.cols, self.rows)

    def layout_bounds(self, dims: TileDimensions) -> list[GridBounds]:
        return self.grid_bounds.split(dims.cols, dims.rows)

    def layout_extents(self, dims: TileDimensions) -> list[Extent]:
        re = self.raster_extent
        return [re.extent_for(gb) for gb in self.layout_bounds(dims)]

    def read_window(
        self, bounds: GridBounds, bands: Sequence[int] | None = None, *, boundless: bool = False
    ) -> ProjectedRaster:
        """
        Read cells inside `bounds` for 1-based `bands`.

        Bounds are clamped to the raster unless `boundless`, in which case cells
        outside the raster are filled with NoData (0 for cell types without NoData).
        """
        gb = bounds if boundless else bounds.intersection(self.grid_bounds)
        if gb is None or gb.intersection(self.grid_bounds) is None:
            raise ValueError(f"Window {bounds} does not intersect raster {self.uri}")
        indexes = list(bands) if bands else list(range(1, self.band_count + 1))
        for b in indexes:
            if b < 1 or b > self.band_count:
                raise ValueError(f"Band {b} out of range 1..{self.band_count} for {self.uri}")
        ct = self.cell_type
        logger.debug("Reading %s bands %s window %s", self.uri, indexes, gb)
        window = Window(gb.col_min, gb.row_min, gb.width, gb.height)
        with rasterio.open(self.path) as ds:
            if boundless:
                fill = ct.no_data if ct.has_no_data else 0
                data = ds.read(indexes=indexes, window=window, boundless=True, fill_value=fill)
            else:
                data = ds.read(indexes=indexes, window=window)
        tiles = tuple(Tile(np.asarray(data[i]), ct) for i in range(len(indexes)))
        return ProjectedRaster(tiles, self.raster_extent.extent_for(gb, clamp=not boundless), self.crs)

    def read(self, extent: Extent, bands: Sequence[int] | None = None) -> ProjectedRaster:
        if not extent.intersects(self.extent):
            raise ValueError(f"Extent {extent} does not intersect raster {self.uri}")
        return self.read_window(self.raster_extent.grid_bounds_for(extent), bands)

    def read_all(self, dims: TileDimensions | None = None, bands: Sequence[int] | None = None) -> list[ProjectedRaster]:
        if dims is None:
            return [self.read_window(self.grid_bounds, bands)]
        return [self.read_window(gb, bands) for gb in self.layout_bounds(dims)]

    def __repr__(self) -> str:
        return f"RasterSource({self.uri!r})"
