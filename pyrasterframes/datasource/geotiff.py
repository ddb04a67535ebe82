"""
`geotiff` data source: read GeoTIFFs into relations and write relations as GeoTIFFs.
"""
from __future__ import annotations

import glob
import logging
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Mapping, Sequence, Union

import duckdb
import numpy as np
import rasterio
from rasterio.enums import ColorInterp
from rasterio.transform import from_bounds

from datasource.options import GeoTiffReadOptions, GeoTiffWriteOptions, parse_options
from datasource.raster_ref import RasterRef
from datasource.raster_source import RasterSource
from engine.aggregates import collect
from engine.config import memory_budget_bytes
from engine.frames import RasterFrameLayer, create_relation, tile_columns
from geo.crs import CRS
from raster.layout import GridBounds, KeyBounds, SpatialKey, TileDimensions, TileLayerMetadata, floating_layout
from raster.projected import ProjectedRaster

logger = logging.getLogger(__name__)

SHORT_NAME = "geotiff"

Frame = Union[RasterFrameLayer, duckdb.DuckDBPyRelation]


def band_column(i: int) -> str:
    return f"b_{i}"


def library_version() -> str:
    try:
        return version("pyrasterframes")
    except PackageNotFoundError:
        return "unknown"


def read_geotiff(
    conn: duckdb.DuckDBPyConnection, options: Mapping[str, Any] | None = None, **kwargs: Any
) -> Frame:
    """
    Single file: a `RasterFrameLayer` keyed by `spatial_key`.
    Glob path: a plain relation with one row per file window and a `path` column.
    """
    opts = parse_options(GeoTiffReadOptions, options, **kwargs)
    if opts.is_collection:
        return _read_collection(conn, opts)
    return _read_layer(conn, opts)


def _read_layer(conn: duckdb.DuckDBPyConnection, opts: GeoTiffReadOptions) -> RasterFrameLayer:
    src = RasterSource(opts.path)
    dims = TileDimensions(opts.tileWidth, opts.tileHeight)
    layout = floating_layout(src.extent, src.cols, src.rows, dims)
    tl = layout.tile_layout
    bands = list(range(1, src.band_count + 1))

    rows: list[list[Any]] = []
    for r in range(tl.layout_rows):
        for c in range(tl.layout_cols):
            key = SpatialKey(c, r)
            # Full-size windows; cells past the raster edge read as NoData.
            gb = GridBounds(c * dims.cols, r * dims.rows, (c + 1) * dims.cols - 1, (r + 1) * dims.rows - 1)
            extent = layout.key_extent(key)
            if opts.lazyTiles:
                tiles: Sequence[Any] = [RasterRef(src.uri, b, gb) for b in bands]
            else:
                tiles = src.read_window(gb, bands, boundless=True).tiles
            rows.append([key, extent, src.crs, *tiles])

    columns: list[tuple[str, Any]] = [("spatial_key", "spatial_key"), ("extent", "extent"), ("crs", "crs")]
    columns += [(band_column(b), "raster") for b in bands]
    rel = create_relation(conn, columns, rows)
    tlm = TileLayerMetadata(
        cell_type=src.cell_type,
        layout=layout,
        extent=src.extent,
        crs=src.crs,
        bounds=KeyBounds(SpatialKey(0, 0), SpatialKey(tl.layout_cols - 1, tl.layout_rows - 1)),
    )
    logger.debug("Read %s as a %dx%d tile layer", src.uri, tl.layout_cols, tl.layout_rows)
    return RasterFrameLayer(rel, tlm)


def _read_collection(conn: duckdb.DuckDBPyConnection, opts: GeoTiffReadOptions) -> duckdb.DuckDBPyRelation:
    dims = TileDimensions(opts.tileWidth, opts.tileHeight)
    rows: list[list[Any]] = []
    for path in sorted(glob.glob(opts.path.removeprefix("file://"))):
        src = RasterSource(path)
        bands = [b for b in range(1, opts.bandCount + 1) if b <= src.band_count]
        if len(bands) < opts.bandCount:
            logger.warning("%s has %d bands, fewer than bandCount=%d", path, src.band_count, opts.bandCount)
        for gb in src.layout_bounds(dims):
            if opts.lazyTiles:
                tiles: list[Any] = [RasterRef(src.uri, b, gb) for b in bands]
                extent = src.raster_extent.extent_for(gb)
            else:
                pr = src.read_window(gb, bands)
                tiles = list(pr.tiles)
                extent = pr.extent
            tiles += [None] * (opts.bandCount - len(tiles))
            rows.append([path, extent, src.crs, *tiles])
    columns: list[tuple[str, Any]] = [("path", "varchar"), ("extent", "extent"), ("crs", "crs")]
    columns += [(band_column(b), "raster") for b in range(1, opts.bandCount + 1)]
    return create_relation(conn, columns, rows)


def write_geotiff(frame: Frame, options: Mapping[str, Any] | None = None, **kwargs: Any) -> str:
    """
    Write the tile columns of `frame` as bands of one GeoTIFF; returns the path written.

    Layers are written at full size unless `imageWidth`/`imageHeight` are given.
    Other relations need a destination `crs` and are rasterized first.
    """
    opts = parse_options(GeoTiffWriteOptions, options, **kwargs)
    if isinstance(frame, RasterFrameLayer):
        cols = frame.tile_columns()
        if not cols:
            raise ValueError("Could not find any tile columns.")
        dims = frame.total_dimensions()
        width = opts.imageWidth if opts.has_dimensions else dims.cols
        height = opts.imageHeight if opts.has_dimensions else dims.rows
        if float(width) * height * 64.0 > memory_budget_bytes() * 0.5:
            logger.warning(
                "You've asked for the construction of a very large image (%d x %d), destined for %s. "
                "Running out of memory is likely.",
                width,
                height,
                opts.path,
            )
        raster = frame.to_multiband_raster(cols, width, height)
    else:
        cols = tile_columns(frame)
        if not cols:
            raise ValueError("Could not find any tile columns.")
        if not opts.crs:
            raise ValueError("A destination CRS must be provided")
        dims = TileDimensions(opts.imageWidth, opts.imageHeight) if opts.has_dimensions else None
        raster = collect(frame, CRS.from_user_input(opts.crs), raster_dims=dims)

    write_projected_raster(opts.local_path, raster, band_names=cols, compress=opts.compress)
    return opts.local_path


def write_projected_raster(
    path: str, raster: ProjectedRaster, *, band_names: Sequence[str] | None = None, compress: bool = False
) -> None:
    ct = raster.tiles[0].cell_type
    for t in raster.tiles[1:]:
        ct = ct.union(t.cell_type)
    # Bands share one dtype in a GeoTIFF; widen them all to the union.
    data = np.stack([t.convert(ct).cells for t in raster.tiles])
    dtype = "uint8" if ct.base == "bool" else ct.dtype.name
    e = raster.extent
    profile: dict[str, Any] = {
        "driver": "GTiff",
        "width": raster.cols,
        "height": raster.rows,
        "count": raster.band_count,
        "dtype": dtype,
        "crs": raster.crs.to_rasterio(),
        "transform": from_bounds(e.xmin, e.ymin, e.xmax, e.ymax, raster.cols, raster.rows),
        "tiled": True,
        "blockxsize": 256,
        "blockysize": 256,
        "compress": "deflate" if compress else None,
        "nodata": ct.no_data,
    }
    rgb = raster.band_count in (3, 4)
    if rgb:
        profile["photometric"] = "RGB"
    profile = {k: v for k, v in profile.items() if v is not None}
    logger.debug("Writing GeoTIFF (%d x %d, %d bands) at %s", raster.cols, raster.rows, raster.band_count, path)
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(data.astype(dtype))
        dst.update_tags(RF_VERSION=library_version())
        for i, name in enumerate(band_names or [], start=1):
            if i <= raster.band_count:
                dst.update_tags(i, RF_COL=name)
        if rgb:
            interp = [ColorInterp.red, ColorInterp.green, ColorInterp.blue]
            if raster.band_count == 4:
                interp.append(ColorInterp.alpha)
            dst.colorinterp = interp
